# Gunicorn configuration for rotavault
# Only one worker may host the embedded backup scheduler

import os
import logging

logger = logging.getLogger('gunicorn.error')

wsgi_app = 'rotavault:create_app()'


def post_fork(server, worker):
    """
    Called in the worker right after fork, before the app is loaded.

    Designates the first spawned worker (worker.age == 1) as the scheduler owner.
    With EMBEDDED_SCHEDULER enabled, only this worker polls the tiers, so
    two workers never run the same tier concurrently.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (ages start at 1 and grow with each spawn)
    """
    if worker.age == 1:
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Designated as SCHEDULER OWNER")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Standard HTTP worker (scheduler disabled)")
