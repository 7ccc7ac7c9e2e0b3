import logging
from typing import Optional

from chatsync.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def setup_logging(level: Optional[str] = None) -> None:
    """Настройка корневого логгера, один раз на процесс (API и воркер)"""
    global _configured

    if _configured:
        return

    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # aio-pika/aiormq пишут каждый фрейм на DEBUG
    logging.getLogger("aiormq").setLevel(logging.WARNING)
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    _configured = True
