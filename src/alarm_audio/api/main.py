"""Alarm audio API entry point.

Provides the application instance for ASGI servers (uvicorn) and a run()
function for the alarm-audio-api console script.
"""

import logging

from alarm_audio.api import create_app

logger = logging.getLogger(__name__)

# uvicorn target: alarm_audio.api.main:app
app = create_app()


def run() -> None:
    """Run the API server using uvicorn."""
    import uvicorn

    from alarm_audio.core.settings import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info("Starting alarm audio API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        "alarm_audio.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    run()
