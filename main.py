"""Demo entry point: ships sample structured logs to a Loki endpoint."""

import logging
import random
import signal
import sys
import threading

from lokilog.client import new_loki_client
from lokilog.config import load_client_config
from lokilog.logx import new_logger, with_fields

SAMPLE_LEVELS = [
    logging.DEBUG,
    logging.INFO,
    logging.INFO,
    logging.INFO,
    logging.WARNING,
    logging.ERROR,
]
SAMPLE_MESSAGES = [
    "User logged in",
    "Request processed successfully",
    "Database query completed",
    "Cache miss for key",
    "Configuration reloaded",
    "Health check passed",
    "Connection timeout to upstream",
    "Disk usage above threshold",
    "Authentication failed for user",
    "Service restarted",
]


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger(__name__)

    config = load_client_config()
    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    client, close = new_loki_client(config)
    logger.info(
        "Shipping sample logs to %s (batch_size=%d, period=%.1fs)",
        config.push_url,
        config.batch_size,
        config.period,
    )

    app_logger = with_fields(
        new_logger([client, sys.stdout], level="debug", name="lokilog-demo"),
        service="lokilog-demo",
    )

    try:
        while not shutdown_event.is_set():
            app_logger.log(
                random.choice(SAMPLE_LEVELS),
                random.choice(SAMPLE_MESSAGES),
                extra={"request_id": random.randint(1000, 9999)},
            )
            shutdown_event.wait(timeout=0.2)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        close()


if __name__ == "__main__":
    main()
