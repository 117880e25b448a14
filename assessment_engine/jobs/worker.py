import logging
from rq import Worker
from assessment_engine.core.config import settings
from assessment_engine.jobs.queue import queue, redis
from assessment_engine.jobs.sweep_job import sweep_job

if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    # first run now; each run schedules the next
    queue.enqueue(sweep_job, True, job_timeout=600)
    w = Worker([settings.RQ_QUEUE], connection=redis)
    w.work(with_scheduler=True)
