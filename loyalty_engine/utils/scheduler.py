"""
Background scheduler for the daily recalculation pass.

Runs RecalculationService.run_for_all_organizations() once a day at
RECALCULATION_HOUR (UTC, default 2 AM). The cron endpoint
(/api/cron/ai-segmentation) does the same on demand for deployments that
use an external scheduler instead.
"""
import os
import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Flask app reference for job context

RECALCULATION_JOB_ID = 'daily_recalculation'


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs in production or when ENABLE_SCHEDULER=true, never in testing.
    Only one process per host starts it.
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING'):
        logger.debug('[Scheduler] Disabled in testing mode')
        return None

    if not (os.getenv('FLASK_ENV') == 'production' or os.getenv('ENABLE_SCHEDULER') == 'true'):
        logger.info('[Scheduler] Disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return None

    # Prevent multiple scheduler instances across gunicorn workers
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return None

    hour = int(app.config.get('RECALCULATION_HOUR', 2))

    _scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,  # Combine missed runs
            'max_instances': 1,  # Prevent overlapping passes
            'misfire_grace_time': 3600  # 1 hour grace period
        }
    )

    _scheduler.add_job(
        run_daily_recalculation,
        trigger=CronTrigger(hour=hour, minute=0),
        id=RECALCULATION_JOB_ID,
        name='Recalculate loyalty, segments and action plans',
        replace_existing=True
    )

    _scheduler.start()
    os.environ['SCHEDULER_RUNNING'] = 'true'
    atexit.register(shutdown_scheduler)

    logger.info(f'[Scheduler] Started: daily recalculation at {hour:02d}:00 UTC')
    return _scheduler


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def run_daily_recalculation():
    """Full recalculation pass for every active organization."""
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return

    logger.info('[Scheduler] Starting daily recalculation...')

    with _flask_app.app_context():
        from ..services.recalculation_service import RecalculationService

        try:
            result = RecalculationService().run_for_all_organizations()
        except Exception as e:
            logger.error(f'[Scheduler] Daily recalculation failed: {e}')
            return

        failed_orgs = [r['organization_id'] for r in result['results'] if not r.get('success')]
        logger.info(
            f"[Scheduler] Daily recalculation complete: {result['organizations_processed']} organizations, "
            f"{result['total_customers_processed']} customers, {result['total_failed']} failed"
        )
        if failed_orgs:
            logger.warning(f'[Scheduler] Organizations that failed: {failed_orgs}')
