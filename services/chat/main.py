"""Entrypoint for the chat service."""

from __future__ import annotations

from services.common.structured_logging import configure_logging
from services.chat.config import load_chat_config

_config = load_chat_config()

# Configure logging BEFORE importing the app so module-level loggers
# pick up the structured configuration
configure_logging(
    _config.logging.level,
    json_logs=_config.logging.json_logs,
    service_name=_config.logging.service_name,
)


def main() -> None:
    """Main entrypoint for the chat service."""
    import uvicorn

    # Import app AFTER logging is configured
    from services.chat.app import app

    # log_config=None keeps uvicorn from replacing the structlog setup
    uvicorn.run(
        app,
        host=_config.server.host,
        port=_config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
