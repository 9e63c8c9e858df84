"""
Monitoring des jobs de watchlist.

Log le cycle de vie des jobs (démarrage, progression, fin) et, si Supabase
est configuré, reflète chaque job dans la table `price_actions_jobs`.
La persistance est best-effort : une erreur est loguée, jamais propagée
au job. Une alerte Slack optionnelle signale les jobs en échec.
"""

import asyncio
import json
import logging
import os
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
from supabase import Client, create_client

from ..config.settings import Settings

logger = logging.getLogger(__name__)

JOBS_TABLE = "price_actions_jobs"


class AlertLevel(Enum):
    """Niveaux d'alerte."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class JobMonitor:
    """
    Gestionnaire de monitoring des jobs.

    Les hooks reçoivent le job (objet exposant `job_id`, `status` et
    `to_status_dict()`).
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Client] = None):
        """
        Args:
            settings: Configuration (si None, charge depuis env)
            client: Client Supabase déjà construit (sinon créé à la demande)
        """
        self.settings = settings or Settings.from_env()
        self._supabase_client = client
        self.slack_webhook_url = os.getenv("SLACK_WEBHOOK_URL", "")

    def _get_supabase_client(self) -> Optional[Client]:
        """Récupère le client Supabase (lazy init)."""
        if self._supabase_client is not None:
            return self._supabase_client
        if not self.settings.supabase_configured:
            return None
        self._supabase_client = create_client(self.settings.supabase_url, self.settings.supabase_key)
        return self._supabase_client

    async def _persist(self, job) -> bool:
        try:
            supabase_client = self._get_supabase_client()
        except Exception as e:
            logger.error(f"Supabase client unavailable, job {job.job_id} not persisted: {e}")
            return False
        if supabase_client is None:
            return False

        status = job.to_status_dict()
        record = {
            "id": job.job_id,
            "status": status["status"],
            "progress_percent": status["progressPercent"],
            "processed_items": status["processedItems"],
            "total_items": status["totalItems"],
            "current_step": status["currentStep"],
            "error_message": status["errorMessage"],
            "created_at": status["createdAt"],
            "started_at": status["startedAt"],
            "completed_at": status["completedAt"],
            "parameters": json.dumps(job.parameters.to_dict()),
        }

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: supabase_client.table(JOBS_TABLE)
                    .upsert(record)
                    .execute()
            )
            return True
        except Exception as e:
            logger.error(f"Error persisting job {job.job_id} to database: {e}")
            return False

    async def job_started(self, job) -> None:
        logger.info(
            f"[Monitor] Job started: {job.job_id} "
            f"(max_candidates: {job.parameters.max_candidates}, batch_size: {job.parameters.batch_size})"
        )
        await self._persist(job)

    async def job_progress(self, job) -> None:
        logger.info(
            f"[Monitor] Job {job.job_id}: {job.processed_items}/{job.total_items} "
            f"({job.progress_percent}%) - {job.current_step}"
        )
        await self._persist(job)

    async def job_finished(self, job) -> None:
        duration = 0.0
        if job.started_at and job.completed_at:
            duration = (job.completed_at - job.started_at).total_seconds()

        logger.info(
            f"[Monitor] Job ended: {job.job_id} (status: {job.status.value}, "
            f"duration: {duration:.2f}s, processed: {job.processed_items}, "
            f"skipped: {job.skipped_items})"
        )
        await self._persist(job)

        if job.status.value == "failed":
            await self.send_alert(
                f"Watchlist job {job.job_id} failed",
                AlertLevel.ERROR,
                {"error_message": job.error_message, "processed": job.processed_items},
            )

    async def send_alert(
        self,
        message: str,
        level: AlertLevel = AlertLevel.ERROR,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Log l'alerte et l'envoie sur Slack si `SLACK_WEBHOOK_URL` est défini.

        Returns:
            True si l'alerte a été envoyée (ou seulement loguée), False en cas d'erreur d'envoi.
        """
        details = details or {}

        if level == AlertLevel.ERROR:
            logger.error(f"[Alert] {message} - Details: {details}")
        elif level == AlertLevel.WARNING:
            logger.warning(f"[Alert] {message} - Details: {details}")
        else:
            logger.info(f"[Alert] {message} - Details: {details}")

        if not self.slack_webhook_url:
            return True

        payload = {
            "text": f"Price Actions Alert: {level.value.upper()}",
            "attachments": [
                {
                    "title": message,
                    "fields": [
                        {"title": k, "value": str(v), "short": True}
                        for k, v in details.items()
                    ],
                    "ts": int(datetime.now().timestamp()),
                }
            ],
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.slack_webhook_url, json=payload) as response:
                    if response.status == 200:
                        logger.info("Slack alert sent successfully")
                        return True
                    error_text = await response.text()
                    logger.error(f"Error sending Slack alert: {response.status} - {error_text}")
                    return False
        except aiohttp.ClientError as e:
            logger.error(f"Error sending Slack alert: {e}")
            return False
