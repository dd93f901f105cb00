from typing import Optional

from flask import current_app

from stifle.models import now_ms
from . import canonical_log

DAY_MS = 24 * 60 * 60 * 1000


def cleanup_old_events(retention_days: Optional[int] = None, now: Optional[int] = None) -> int:
    """Delete raw events past the retention window. Weekly scores are kept.

    Runs independently of any device-side purge; the two have no ordering
    dependency.
    """
    if retention_days is None:
        retention_days = int(current_app.config.get('EVENT_RETENTION_DAYS', 14))
    now = now_ms() if now is None else now
    deleted = canonical_log.purge_older_than(now - retention_days * DAY_MS)
    current_app.logger.info(f"[cleanup] retention_days={retention_days} deleted={deleted}")
    return deleted
