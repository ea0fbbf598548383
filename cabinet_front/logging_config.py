import os
import sys

from loguru import logger


def configure_logging() -> None:
    level = os.getenv("CABINETX_LOG_LEVEL", "INFO")
    json_mode = os.getenv("CABINETX_LOG_JSON", "0") == "1"
    logger.remove()

    log_format = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | {message}"
        if not json_mode
        else "{message}"
    )

    logger.add(
        sys.stdout,
        level=level.upper(),
        backtrace=False,
        diagnose=False,
        format=log_format,
        serialize=json_mode,
    )
