import logging
import sys
from typing import Optional

NOISY_LOGGERS = ("httpx", "aiohttp", "asyncio", "websockets", "telegram")


def configure_logging(level: str = "INFO", log_file: Optional[str] = "bot.log"):
    """Root logging to stdout, plus a log file unless `log_file` is empty"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
