"""Module executed when running ``python -m smartinbox``."""

from __future__ import annotations

import uvicorn

from .config import get_settings


def main() -> None:
    """Start the uvicorn server using the configured settings."""

    settings = get_settings()
    uvicorn.run(
        "smartinbox.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
