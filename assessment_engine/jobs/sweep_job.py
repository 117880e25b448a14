import logging
from datetime import timedelta
from rq import get_current_job
from assessment_engine.core.config import settings
from assessment_engine.core.database import SessionLocal
from assessment_engine.jobs.queue import queue
from assessment_engine.services.sweep import abandon_stale_attempts

logger = logging.getLogger(__name__)

def sweep_job(reschedule=False):
    job = get_current_job()
    if job:
        job.meta.update({"state": "running"}); job.save_meta()
    db = SessionLocal()
    try:
        result = abandon_stale_attempts(db)
    except Exception:
        logger.error("Attempt sweep failed", exc_info=True)
        if job:
            job.meta.update({"state": "failed"}); job.save_meta()
        raise
    finally:
        db.close()
    if job:
        job.meta.update({"state": "done", **result}); job.save_meta()
    if reschedule and settings.SWEEP_INTERVAL_SECONDS > 0:
        queue.enqueue_in(timedelta(seconds=settings.SWEEP_INTERVAL_SECONDS), sweep_job, True, job_timeout=600)
    return result
