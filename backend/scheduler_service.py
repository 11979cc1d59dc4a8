"""
Scheduler pour les tâches automatiques Chantiers Console
- Recalcul quotidien des statuts "En retard"
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import CHANTIERS_COLLECTION, STATUS_REFRESH_HOUR
from services.chantier_service import ChantierService
from services.errors import TransientStoreError
from services.status_refresh import refresh_overdue_chantiers

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Gestionnaire de tâches planifiées"""

    def __init__(self, db, refresh_hour: int = STATUS_REFRESH_HOUR):
        self.scheduler = AsyncIOScheduler(timezone="Europe/Paris")
        self.db = db
        self.refresh_hour = refresh_hour
        self.last_report: Optional[dict] = None

    def start(self):
        """Démarre le scheduler avec toutes les tâches"""
        self.scheduler.add_job(
            self.refresh_statuses,
            CronTrigger(hour=self.refresh_hour, minute=0),
            id="refresh_statuses",
            name="Recalcul statuts chantiers",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info(f"Scheduler démarré (recalcul statuts à {self.refresh_hour}h)")

    def stop(self):
        """Arrête le scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler arrêté")

    # ==================== TÂCHES PLANIFIÉES ====================

    async def refresh_statuses(self):
        """Passe "En retard" les chantiers en cours dont la date de fin est dépassée"""
        service = ChantierService(self.db[CHANTIERS_COLLECTION])
        try:
            self.last_report = await refresh_overdue_chantiers(service)
        except TransientStoreError as e:
            logger.error(f"Erreur recalcul statuts: {str(e)}")
