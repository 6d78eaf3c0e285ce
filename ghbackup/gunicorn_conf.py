# Gunicorn configuration for the ghbackup frontend
# Handles scheduler ownership for discovery jobs

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('LISTEN', 'localhost:8080')

# Discovery jobs are queued into the in-process scheduler of whichever worker
# serves /callback, so a single worker process owns the scheduler and
# concurrency comes from threads.
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', '4'))

# The scheduler thread must start inside the worker, not in the master
preload_app = False

timeout = 60
accesslog = '-'


def post_worker_init(worker):
    """
    Called after a worker is initialized.

    The single worker is the scheduler owner: loading the app started it. A
    replacement worker (age > 0) loads the app again and owns a new scheduler.

    Args:
        worker: Gunicorn worker instance (uses 'age' attribute: 0, 1, 2, ...)
    """
    logger.info(f"Worker PID {worker.pid} (age={worker.age}): SCHEDULER OWNER, {threads} threads")
