from __future__ import annotations

import logging

import uvicorn

from discussion_gateway.infrastructure.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Serve the gateway API; it binds to loopback unless HOST says otherwise."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    logger.info(
        "Starting gateway on %s:%d (models: %s)",
        settings.host,
        settings.port,
        ", ".join(settings.allowed_model_prefixes),
    )
    uvicorn.run(
        "discussion_gateway.interface.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
