import sys

from loguru import logger

from gtfs_editor.core.config import Settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}"

def configureLogging(settings: Settings) -> None:
    # Handlers are only replaced on explicit request, never at import time.
    logger.remove()
    logger.add(sys.stderr, level=settings.logLevel.upper(), format=LOG_FORMAT)
