"""ASGI entrypoint for running the service."""
from __future__ import annotations

import uvicorn

from .config import get_settings
from .logging_config import setup_logging


def run() -> None:
    """Convenience wrapper used by ``python -m inventoria.main``."""

    settings = get_settings()
    setup_logging(settings)
    uvicorn.run(
        "inventoria.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    run()
