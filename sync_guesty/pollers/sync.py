import logging

from sync_guesty.config import DRY_RUN
from sync_guesty.db.engine import engine
from sync_guesty.logging_config import setup_logging
from sync_guesty.state import build_services

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


def main() -> int:
    """
    One cron cycle: refresh every property's availability, then retry failed syncs.

    Returns:
        int: Process exit code; 1 if any property refresh or booking retry failed
    """
    services = build_services(engine)

    refreshed = services.availability.refresh_all()
    retried = services.booking_sync.retry_all_failed()

    logger.info(
        "Poll cycle done: %s/%s properties refreshed, %s/%s failed syncs recovered (dry_run=%s)",
        sum(refreshed.values()),
        len(refreshed),
        retried.success_count,
        retried.retried_count,
        DRY_RUN,
    )
    return 0 if all(refreshed.values()) and retried.failed_count == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
