"""
Scheduler hosting for rotavault.

Manages:
- Building the SchedulerRunner from app config
- Embedded mode: an APScheduler interval job polling the runner
- Process mode: a detached runner process tracked through a PID file
"""

import logging
import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from rotavault.backup.tiers import build_policies
from rotavault.runner import (
    CancellationToken,
    DatabaseCheckpointStore,
    SchedulerRunner,
    make_clock,
)


logger = logging.getLogger(__name__)

# Global scheduler instance, Flask app reference and hosted runner
scheduler = None
flask_app = None
runner = None


class SchedulerError(Exception):
    """Raised when the background runner cannot be controlled."""
    pass


class SchedulerAlreadyRunning(SchedulerError):
    pass


class SchedulerNotRunning(SchedulerError):
    pass


def build_runner(app, trigger: str = 'scheduler') -> SchedulerRunner:
    """
    Build a SchedulerRunner from app config.

    Tier runs execute inside the app context so they can record history.

    Args:
        app: Flask app instance
        trigger: Trigger label recorded on each TierRun

    Returns:
        SchedulerRunner (checkpoints restored when enabled)
    """
    from rotavault.backup.executor import execute_tier

    def tier_job(tier: str):
        with app.app_context():
            return execute_tier(tier, trigger=trigger)

    checkpoints = DatabaseCheckpointStore() if app.config['CHECKPOINT_ENABLED'] else None

    new_runner = SchedulerRunner(
        policies=build_policies(app.config),
        tier_job=tier_job,
        clock=make_clock(app.config['SCHEDULER_TIMEZONE']),
        checkpoints=checkpoints,
        poll_interval=app.config['POLL_INTERVAL_SECONDS']
    )

    if checkpoints is not None:
        with app.app_context():
            new_runner.restore_checkpoints()

    return new_runner


def init_scheduler(app):
    """
    Initialize and configure APScheduler for embedded mode.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app, runner

    if scheduler is not None:
        return scheduler

    flask_app = app
    runner = build_runner(app)

    # One worker: tiers must never overlap inside a process
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one poll at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config['SCHEDULER_TIMEZONE']
    )

    scheduler.add_job(
        func=_poll_wrapper,
        trigger=IntervalTrigger(seconds=app.config['POLL_INTERVAL_SECONDS']),
        id='tier_poll',
        name='Backup Tier Poll',
        replace_existing=True
    )

    return scheduler


def _poll_wrapper():
    """Run one runner poll from the APScheduler thread."""
    global runner

    try:
        ran = runner.poll_once()
        if ran:
            logger.info(f"Scheduler poll ran tiers: {', '.join(ran)}")
    except Exception as e:
        logger.error(f"Scheduler poll failed: {e}")


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started successfully (state={scheduler.state}, running={scheduler.running})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def is_scheduler_running(pid_file: Optional[str] = None) -> bool:
    """
    Check if a runner is active, embedded or as a separate process.

    Args:
        pid_file: PID file of the background runner, if any

    Returns:
        True if the embedded scheduler runs or the recorded process is alive
    """
    global scheduler

    if scheduler is not None and scheduler.running:
        return True

    if pid_file:
        pid = read_pid(pid_file)
        return pid is not None and is_process_running(pid)

    return False


def get_scheduler_diagnostics(pid_file: Optional[str] = None) -> dict:
    """
    Get scheduler diagnostics for troubleshooting.

    Returns:
        Dict with embedded scheduler state, runner state and PID info
    """
    global scheduler, runner

    pid = read_pid(pid_file) if pid_file else None
    process = {
        'pid': pid,
        'running': pid is not None and is_process_running(pid)
    }

    if scheduler is None:
        return {
            'initialized': False,
            'running': process['running'],
            'state': 'NOT_INITIALIZED',
            'process': process
        }

    try:
        jobs = []
        for job in scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger)
            })

        return {
            'initialized': True,
            'running': scheduler.running,
            'state': str(scheduler.state),
            'jobs': jobs,
            'last_runs': {
                tier: when.isoformat() for tier, when in runner.state.as_dict().items()
            } if runner else {},
            'process': process
        }
    except Exception as e:
        return {
            'initialized': True,
            'running': process['running'],
            'state': 'ERROR',
            'process': process,
            'error': str(e)
        }


# Process mode

def read_pid(pid_file: str) -> Optional[int]:
    """Read the recorded runner PID, or None if missing or unreadable."""
    try:
        return int(Path(pid_file).read_text().strip())
    except (OSError, ValueError):
        return None


def is_process_running(pid: int) -> bool:
    """Check whether a process with this PID exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


def start_background_runner(pid_file: str, log_file: str, config_name: str) -> int:
    """
    Start the runner loop as a detached process and record its PID.

    Args:
        pid_file: Where to write the PID
        log_file: File receiving the runner's output
        config_name: Config name passed to the child process

    Returns:
        PID of the started process

    Raises:
        SchedulerAlreadyRunning: If the recorded process is still alive
        SchedulerError: If the process cannot be started
    """
    pid = read_pid(pid_file)
    if pid is not None and is_process_running(pid):
        raise SchedulerAlreadyRunning(f"Background scheduler is already running with PID {pid}")

    Path(pid_file).parent.mkdir(parents=True, exist_ok=True)
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    env = os.environ.copy()
    env['ROTAVAULT_CONFIG'] = config_name

    try:
        with open(log_file, 'a') as log:
            process = subprocess.Popen(
                [sys.executable, '-m', 'rotavault', 'scheduler-loop'],
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                env=env,
                start_new_session=True
            )
    except OSError as e:
        raise SchedulerError(f"Failed to start background scheduler: {e}")

    Path(pid_file).write_text(f"{process.pid}\n")
    return process.pid


def stop_background_runner(pid_file: str) -> int:
    """
    Signal the recorded runner process to stop and remove the PID file.

    Args:
        pid_file: PID file written by start_background_runner

    Returns:
        PID that was signalled

    Raises:
        SchedulerNotRunning: If there is no PID file or the process is gone
        SchedulerError: If the process cannot be signalled
    """
    pid = read_pid(pid_file)

    if pid is None:
        raise SchedulerNotRunning("Scheduler PID file not found. Scheduler may not be running.")

    if not is_process_running(pid):
        Path(pid_file).unlink(missing_ok=True)
        raise SchedulerNotRunning(f"Scheduler process with PID {pid} is not running")

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        Path(pid_file).unlink(missing_ok=True)
        raise SchedulerNotRunning(f"Scheduler process with PID {pid} is not running")
    except PermissionError as e:
        # PID file is kept: the process is alive but owned by another user
        raise SchedulerError(f"Permission denied stopping scheduler process {pid}: {e}")

    Path(pid_file).unlink(missing_ok=True)
    return pid


def run_foreground(app) -> SchedulerRunner:
    """
    Run the runner loop in this process until SIGTERM/SIGINT.

    The signal handler only cancels the token, so a tier in progress
    finishes before the loop exits.

    Args:
        app: Flask app instance

    Returns:
        The stopped runner
    """
    token = CancellationToken()

    def _handle_stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current poll")
        token.cancel()

    signal.signal(signal.SIGTERM, _handle_stop)
    signal.signal(signal.SIGINT, _handle_stop)

    foreground = build_runner(app)
    foreground.run(token)
    return foreground
