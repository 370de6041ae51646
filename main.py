"""
SIGNAL GATE — Main Entry Point
Serves the HTTP API.
"""
import uvicorn
from signal_gate.config.settings import get_settings
from signal_gate.utils.logger import setup_logging, get_logger

logger = get_logger("main")


def run_api():
    """Run the FastAPI application."""
    settings = get_settings()
    setup_logging(settings)
    logger.info("starting_signal_gate", version=settings.version, port=settings.port)
    uvicorn.run(
        "signal_gate.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run_api()
