import asyncio
import logging
import signal
from typing import List

from dotenv import load_dotenv

from app.core.logging_config import configure_logging
from app.core.sentry import init_sentry
from app.services.sqs.client import sqs_client
from app.utils.token_processor import TokenProcessor, init_token_processor
from app.workers.base_worker import BaseWorker
from app.workers.billing_worker import BillingWorker
from app.workers.chat_message_worker import ChatMessageWorker
from app.workers.dead_letter_worker import DeadLetterWorker
from app.workers.file_upload_worker import FileUploadWorker
from app.workers.lifecycle_worker import ConnectionLifecycleWorker

logger = logging.getLogger(__name__)


def build_workers(token_processor: TokenProcessor) -> List[BaseWorker]:
    """One worker per queue topic, all sharing the process-wide vault."""
    return [
        ChatMessageWorker(token_processor),
        FileUploadWorker(token_processor),
        ConnectionLifecycleWorker(),
        BillingWorker(),
        DeadLetterWorker(),
    ]


async def main():
    """
    Run every queue worker until a termination signal is received and perform graceful shutdown.

    Starts one worker per topic, installs handlers for SIGINT and SIGTERM to trigger shutdown, waits for the shutdown event, and on exit stops the workers and closes the SQS client to ensure resources are cleaned up.
    """
    logger.info("Starting worker process...")

    token_processor = init_token_processor()
    workers = build_workers(token_processor)

    try:
        for worker in workers:
            await worker.start()
        loop = asyncio.get_running_loop()
        shutdown = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, shutdown.set)
            except NotImplementedError:
                pass  # Windows
        await shutdown.wait()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        for worker in workers:
            await worker.stop()
        await sqs_client.close()
        logger.info("Worker process stopped")


def run():
    load_dotenv()
    configure_logging()
    init_sentry()

    # Reduce SQLAlchemy logging verbosity
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

    asyncio.run(main())


if __name__ == "__main__":
    run()
