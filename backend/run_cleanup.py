"""Run the token cleanup scheduler as its own process.

Use this with RUN_EMBEDDED_CLEANUP=false on the API so that only one
process purges the token store.
"""

import logging
import signal
import threading

from tokenkeeper.core.logging_config import configure_logging
from tokenkeeper.services.cleanup_scheduler import cleanup_scheduler

logger = logging.getLogger("tokenkeeper.cleanup")


def main() -> None:
    configure_logging()
    stop = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: stop.set())

    cleanup_scheduler.start()
    logger.info(
        "Cleanup runner started (interval %ss, initial delay %ss)",
        cleanup_scheduler.interval_seconds,
        cleanup_scheduler.initial_delay_seconds,
    )
    stop.wait()
    cleanup_scheduler.stop()


if __name__ == "__main__":
    main()
