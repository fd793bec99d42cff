from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from inventoria.errors import MalformedDocument
from inventoria.snapshot import CandidateSnapshot, decode, encode

CATEGORY = {"id": 1, "name": "Tools"}
USER = {"id": 3, "username": "jdoe", "fullName": "Jane Doe", "role": "admin"}
ITEM = {"id": 9, "name": "Drill", "sku": "D1", "unitPrice": "9.99", "categoryId": 1}


def test_decode_top_level_document() -> None:
    candidate = decode({"categories": [CATEGORY], "users": [USER], "items": [ITEM]})

    assert candidate == CandidateSnapshot(categories=[CATEGORY], users=[USER], items=[ITEM])


def test_decode_document_nested_under_data() -> None:
    candidate = decode({"data": {"categories": [CATEGORY], "users": [USER], "items": [ITEM]}})

    assert candidate.categories == [CATEGORY]
    assert candidate.users == [USER]
    assert candidate.items == [ITEM]


def test_decode_prefers_top_level_keys_over_nested() -> None:
    candidate = decode(
        {
            "users": [USER],
            "data": {"users": [{"username": "other"}], "categories": [CATEGORY]},
        }
    )

    assert candidate.users == [USER]
    assert candidate.categories == [CATEGORY]
    assert candidate.items == []


def test_decode_defaults_missing_keys_to_empty_lists() -> None:
    candidate = decode({"exportDate": "2024-01-01T00:00:00Z", "transactions": [{"id": 1}]})

    assert candidate == CandidateSnapshot()


def test_decode_keeps_non_list_values_for_the_reconciler() -> None:
    candidate = decode({"items": "nope", "users": {"username": "x"}})

    assert candidate.items == "nope"
    assert candidate.users == {"username": "x"}


def test_decode_accepts_json_bytes_and_text() -> None:
    document = {"categories": [CATEGORY], "users": [USER]}

    from_bytes = decode(json.dumps(document).encode("utf-8"))
    from_text = decode(json.dumps(document))

    assert from_bytes == from_text
    assert from_bytes.users == [USER]


@pytest.mark.parametrize(
    "payload",
    [
        b"{not json",
        b"\xff\xfe\x00garbage",
        "",
        json.dumps([CATEGORY]),
        b"42",
    ],
)
def test_decode_rejects_unparseable_payloads(payload) -> None:
    with pytest.raises(MalformedDocument):
        decode(payload)


def test_encode_projects_records_with_camel_case_keys() -> None:
    created = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    exported = datetime(2024, 3, 2, 8, 30, tzinfo=timezone.utc)
    category = SimpleNamespace(id=1, name="Tools", description=None, created_at=created)
    user = SimpleNamespace(
        id=2, username="jdoe", full_name="Jane Doe", role="admin", is_active=True, created_at=created
    )
    item = SimpleNamespace(
        id=3,
        name="Drill",
        sku="D1",
        description=None,
        category_id=1,
        quantity=4,
        unit_price=Decimal("9.99"),
        location="Shelf A",
        min_stock_level=5,
        status="active",
        rented_count=0,
        broken_count=1,
        rentable=True,
        expirable=False,
        expiration_date=None,
        created_at=created,
        updated_at=created,
    )
    transaction = SimpleNamespace(
        id=4, type="in", quantity=4, user_id=2, item_id=3, notes="Restock", created_at=created
    )

    document = encode([category], [user], [item], [transaction], exported_at=exported)
    payload = document.model_dump(mode="json", by_alias=True)

    assert list(payload) == ["items", "categories", "users", "transactions", "exportDate"]
    assert payload["exportDate"].startswith("2024-03-02T08:30:00")
    assert payload["items"][0]["categoryId"] == 1
    assert payload["items"][0]["unitPrice"] == "9.99"
    assert payload["items"][0]["brokenCount"] == 1
    assert payload["users"][0]["fullName"] == "Jane Doe"
    assert payload["users"][0]["isActive"] is True
    assert payload["transactions"][0]["userId"] == 2


def test_encoded_document_decodes_back_into_a_candidate() -> None:
    created = datetime(2024, 3, 1, tzinfo=timezone.utc)
    category = SimpleNamespace(id=5, name="Tools", description="Hand tools", created_at=created)
    user = SimpleNamespace(
        id=6, username="jdoe", full_name="Jane Doe", role="admin", is_active=True, created_at=created
    )

    document = encode([category], [user], [], [])
    candidate = decode(document.model_dump_json(by_alias=True).encode("utf-8"))

    assert candidate.categories[0]["id"] == 5
    assert candidate.categories[0]["description"] == "Hand tools"
    assert candidate.users[0]["username"] == "jdoe"
    assert candidate.items == []
