"""Процесс потребителя статусов прочтения: ``chatsync-read-worker`` или ``python -m chatsync.worker``."""

import asyncio
import logging
import sys

from chatsync.broker.connection import BrokerConnection, BrokerUnavailableError
from chatsync.broker.consumer import ReadStatusConsumer
from chatsync.database import check_database
from chatsync.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    await check_database()

    connection = BrokerConnection.from_settings()
    consumer = ReadStatusConsumer(connection)
    try:
        await consumer.run()
    finally:
        await connection.close()


def main() -> int:
    setup_logging()
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("[WORKER] Stopped")
        return 0
    except BrokerUnavailableError as exc:
        logger.critical("[WORKER] Broker unavailable, exiting: %s", exc)
        return 1
    except Exception:
        logger.exception("[WORKER] Fatal startup failure")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
