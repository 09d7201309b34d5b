import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from repository import SQLRepository
from services import AdminService


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = "database_backup"
BACKUP_TRIGGERS = {
    "daily": {"hour": 3, "minute": 15},
    "weekly": {"day_of_week": "sun", "hour": 3, "minute": 15},
    "monthly": {"day": 1, "hour": 3, "minute": 15},
}


def backup_trigger(frequency: str, timezone: str = "") -> CronTrigger:
    fields = BACKUP_TRIGGERS.get(frequency, BACKUP_TRIGGERS["daily"])
    if timezone:
        return CronTrigger(timezone=timezone, **fields)
    return CronTrigger(**fields)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        if settings.timezone:
            self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        else:
            self.scheduler = BackgroundScheduler()

    def _run_backup(self, source: str = "manual") -> None:
        logger.info(f"backup_run: source={source}")
        settings = get_settings()
        with session_scope() as session:
            # user_id 0: system actor, never a real account
            path = AdminService(SQLRepository(session), 0).write_backup(
                settings.backup_dir
            )
        logger.info(f"backup_run: source={source} path={path}")

    def schedule_backups(self, frequency: str) -> None:
        self.scheduler.add_job(
            self._run_backup,
            backup_trigger(frequency, get_settings().timezone),
            args=[f"{frequency}_03:15"],
            id=BACKUP_JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
        )
        logger.info(f"backup_scheduled: frequency={frequency}")

    def start(self) -> None:
        with session_scope() as session:
            frequency = SQLRepository(session).get_system_settings().backup_frequency
        self.schedule_backups(frequency)
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
