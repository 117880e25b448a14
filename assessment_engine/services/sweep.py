import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from assessment_engine.core.config import Settings, settings
from assessment_engine.core.errors import StateConflictError
from assessment_engine.models.orm import utcnow
from assessment_engine.services.attempts import END_STALE, END_TIME_LIMIT, AttemptTracker

logger = logging.getLogger(__name__)


def abandon_stale_attempts(db: Session, now: Optional[datetime] = None, config: Settings = settings) -> Dict[str, int]:
    """
    Abandon quizzes past their time limit (plus grace) and untimed attempts idle
    for longer than STALE_ATTEMPT_HOURS. An attempt that completes or changes
    while the sweep runs is skipped, never forced.
    """
    now = now or utcnow()
    tracker = AttemptTracker(db, config, clock=lambda: now)
    expired = tracker.store.find_expired_attempt_ids(now - timedelta(seconds=config.ATTEMPT_GRACE_SECONDS))
    idle = tracker.store.find_idle_attempt_ids(now - timedelta(hours=config.STALE_ATTEMPT_HOURS))

    abandoned = skipped = 0
    for ids, reason in ((expired, END_TIME_LIMIT), (idle, END_STALE)):
        for attempt_id in ids:
            try:
                tracker.abandon(attempt_id, reason=reason)
                abandoned += 1
            except StateConflictError as e:
                logger.info("Sweep skipped attempt=%s: %s", attempt_id, e.message)
                skipped += 1
    logger.info("Sweep done abandoned=%d skipped=%d", abandoned, skipped)
    return {"abandoned": abandoned, "skipped": skipped}
