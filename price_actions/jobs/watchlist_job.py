"""
Jobs asynchrones de watchlist.

Un job parcourt un ensemble borné de candidats, par lots traités
séquentiellement ; dans un lot, les candidats sont traités en parallèle
(`asyncio.gather`), ce qui borne le travail concurrent à la taille du lot.

Cycle de vie : pending → running → {completed, failed, cancelled}.
Les états terminaux n'ont aucune transition sortante.

Usage:
    manager = WatchlistJobManager(data_source, config_store)
    job = await manager.start_job({"maxCandidates": 200, "batchSize": 20})
    await manager.wait_for_job(job.job_id)
    page = manager.get_result(job.job_id, page=1, page_size=50)
"""

import asyncio
import logging
import math
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config.config_provider import ConfigProvider, Thresholds
from ..config.settings import Settings
from ..errors import (
    DataSourceError,
    InvalidJobParameters,
    JobNotFoundError,
    JobNotReadyError,
)
from ..interfaces.config_store import ConfigStore
from ..interfaces.data_access import SalesDataSource, WatchlistFilters
from ..models.cluster import ClusterIdentifier, ClusterVelocityCache, ClusterVelocityEstimator
from ..models.scorer import classify_reasons, score_item
from ..models.types import (
    JobStatus,
    ProductCandidate,
    VelocityWeighting,
    WatchlistItem,
    WatchlistReason,
)
from ..models.velocity import compute_stock_metrics, compute_velocity_metrics, severity_for_index
from ..utils.dates import now_utc, today_in_timezone
from ..utils.monitoring import JobMonitor

logger = logging.getLogger(__name__)

MAX_RITMO_VENTANA_DIAS = 365
MAX_CYCLE_DAYS = 3650


class JobCancelled(Exception):
    """Levée dans le job quand l'annulation a été demandée."""


class CancellationToken:
    """Drapeau d'annulation coopérative, vérifié par lot et par candidat."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise JobCancelled()


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _int_param(name: str, value: Any, low: int, high: int) -> int:
    if isinstance(value, bool):
        raise InvalidJobParameters(f"{name} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidJobParameters(f"{name} must be an integer")
        value = int(value)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise InvalidJobParameters(f"{name} must be an integer, got {value!r}")
    if not low <= parsed <= high:
        raise InvalidJobParameters(f"{name} must be between {low} and {high}, got {parsed}")
    return parsed


@dataclass
class WatchlistJobParameters:
    """Paramètres validés d'un job de watchlist."""

    filters: WatchlistFilters = field(default_factory=WatchlistFilters)
    ritmo_ventana_dias: Optional[int] = None
    cycle_days: Optional[int] = None
    max_candidates: int = 200
    batch_size: int = 20
    ponderacion: VelocityWeighting = VelocityWeighting.UNITS
    as_of: Optional[date] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], settings: Settings) -> "WatchlistJobParameters":
        """
        Valide un payload de démarrage de job.

        Raises:
            InvalidJobParameters: si un paramètre est hors bornes ou mal typé.
        """
        data = data or {}
        if not isinstance(data, dict):
            raise InvalidJobParameters("Job parameters must be an object")

        filters = WatchlistFilters.from_dict(data.get("filters"))

        ritmo = _pick(data, "ritmoVentanaDias", "ritmo_ventana_dias")
        if ritmo is not None:
            ritmo = _int_param("ritmoVentanaDias", ritmo, 1, MAX_RITMO_VENTANA_DIAS)

        cycle_days = _pick(data, "cycleDays", "cycle_days")
        if cycle_days is not None:
            cycle_days = _int_param("cycleDays", cycle_days, 1, MAX_CYCLE_DAYS)

        max_candidates = _pick(data, "maxCandidates", "max_candidates")
        max_candidates = settings.max_candidates if max_candidates is None else _int_param(
            "maxCandidates", max_candidates, 1, settings.max_candidates_limit
        )

        batch_size = _pick(data, "batchSize", "batch_size")
        batch_size = settings.batch_size if batch_size is None else _int_param(
            "batchSize", batch_size, 1, settings.max_batch_size
        )

        raw_weighting = _pick(data, "ponderacion") or VelocityWeighting.UNITS.value
        try:
            ponderacion = VelocityWeighting(raw_weighting)
        except ValueError:
            raise InvalidJobParameters(
                f"ponderacion must be one of {[w.value for w in VelocityWeighting]}, got {raw_weighting!r}"
            )

        as_of = _pick(data, "asOf", "as_of")
        if as_of is not None:
            try:
                as_of = date.fromisoformat(str(as_of))
            except ValueError:
                raise InvalidJobParameters(f"asOf must be an ISO date (YYYY-MM-DD), got {as_of!r}")

        return cls(
            filters=filters,
            ritmo_ventana_dias=ritmo,
            cycle_days=cycle_days,
            max_candidates=max_candidates,
            batch_size=batch_size,
            ponderacion=ponderacion,
            as_of=as_of,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filters": self.filters.to_dict(),
            "ritmoVentanaDias": self.ritmo_ventana_dias,
            "cycleDays": self.cycle_days,
            "maxCandidates": self.max_candidates,
            "batchSize": self.batch_size,
            "ponderacion": self.ponderacion.value,
            "asOf": self.as_of.isoformat() if self.as_of else None,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Job:
    """État d'un job. Modifié uniquement par sa propre tâche d'orchestration."""

    job_id: str
    parameters: WatchlistJobParameters
    status: JobStatus = JobStatus.PENDING
    progress_percent: int = 0
    processed_items: int = 0
    total_items: int = 0
    current_step: str = "En cola"
    created_at: datetime = field(default_factory=now_utc)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    items: Optional[List[WatchlistItem]] = None
    summary: Optional[Dict[str, Any]] = None
    thresholds: Optional[Thresholds] = None
    warnings: List[str] = field(default_factory=list)
    skipped_items: int = 0

    def transition(self, status: JobStatus, step: Optional[str] = None) -> bool:
        """Change de statut ; refusé (False) depuis un état terminal."""
        if self.status.is_terminal:
            return False
        self.status = status
        if step is not None:
            self.current_step = step
        if status == JobStatus.RUNNING:
            self.started_at = now_utc()
        elif status.is_terminal:
            self.completed_at = now_utc()
        return True

    def to_status_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "progressPercent": self.progress_percent,
            "processedItems": self.processed_items,
            "totalItems": self.total_items,
            "currentStep": self.current_step,
            "errorMessage": self.error_message,
            "createdAt": _iso(self.created_at),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "warnings": list(self.warnings),
            "skippedItems": self.skipped_items,
        }


def progress_percent(processed: int, total: int) -> int:
    """Pourcentage arrondi à l'entier le plus proche (0.5 vers le haut)."""
    if total <= 0:
        return 100
    return int(math.floor(processed * 100 / total + 0.5))


def build_summary(items: Sequence[WatchlistItem], thresholds: Thresholds, skipped: int = 0) -> Dict[str, Any]:
    """Résumé du résultat : répartition par sévérité, score moyen, motifs les plus fréquents."""
    critical = sum(1 for i in items if i.velocity.indice_ritmo < thresholds.indice_ritmo_critico)
    low = sum(
        1 for i in items
        if thresholds.indice_ritmo_critico <= i.velocity.indice_ritmo < thresholds.indice_ritmo_bajo
    )
    normal = len(items) - critical - low
    average = sum(i.score for i in items) / len(items) if items else 0.0

    reason_counts = Counter(reason for item in items for reason in item.reasons)
    top_reasons = [
        {"motivo": reason.value, "count": count}
        for reason, count in sorted(reason_counts.items(), key=lambda kv: (-kv[1], kv[0].value))
    ]

    return {
        "totalItems": len(items),
        "criticalCount": critical,
        "lowCount": low,
        "normalCount": normal,
        "averageScore": round(average, 1),
        "topMotivos": top_reasons,
        "skippedItems": skipped,
    }


# Colonnes de tri exposées (snake_case et alias camelCase)
SORT_COLUMNS: Dict[str, Callable[[WatchlistItem], Any]] = {
    "score": lambda i: i.score,
    "product_code": lambda i: i.candidate.product_code,
    "description": lambda i: i.candidate.description,
    "category_name": lambda i: i.candidate.category_name,
    "brand_name": lambda i: i.candidate.brand_name,
    "gender_name": lambda i: i.candidate.gender_name,
    "price_band": lambda i: i.cluster.price_band.min if i.cluster.price_band else None,
    "current_price": lambda i: i.candidate.current_price,
    "unit_cost": lambda i: i.candidate.unit_cost,
    "margen_porcentaje": lambda i: i.margen_porcentaje,
    "stock_total": lambda i: i.candidate.stock_total,
    "units_7": lambda i: i.candidate.units_7,
    "units_14": lambda i: i.candidate.units_14,
    "units_28": lambda i: i.candidate.units_28,
    "ritmo_actual": lambda i: i.velocity.ritmo_actual,
    "ritmo_cluster": lambda i: i.velocity.ritmo_cluster,
    "indice_ritmo": lambda i: i.velocity.indice_ritmo,
    "indice_desaceleracion": lambda i: i.velocity.indice_desaceleracion,
    "dias_stock": lambda i: i.stock.dias_stock,
    "dias_desde_inicio": lambda i: i.stock.dias_desde_inicio,
    "dias_restantes_ciclo": lambda i: i.stock.dias_restantes_ciclo,
}

_SORT_ALIASES = {
    "productCode": "product_code",
    "categoryName": "category_name",
    "brandName": "brand_name",
    "genderName": "gender_name",
    "priceBand": "price_band",
    "currentPrice": "current_price",
    "precioActual": "current_price",
    "unitCost": "unit_cost",
    "margenPorcentaje": "margen_porcentaje",
    "stockTotal": "stock_total",
    "ritmoActual": "ritmo_actual",
    "ritmoCluster": "ritmo_cluster",
    "indiceRitmo": "indice_ritmo",
    "indiceDesaceleracion": "indice_desaceleracion",
    "diasStock": "dias_stock",
    "diasDesdeInicio": "dias_desde_inicio",
    "diasRestantesCiclo": "dias_restantes_ciclo",
}

SEVERITY_FILTERS = ("critico", "bajo", "normal", "all")


def sort_items(items: Sequence[WatchlistItem], column: str, direction: str) -> List[WatchlistItem]:
    """
    Trie les items ; les valeurs inconnues (None) restent en fin de liste
    quel que soit le sens.

    Raises:
        InvalidJobParameters: colonne ou sens de tri inconnu.
    """
    column = _SORT_ALIASES.get(column, column)
    key = SORT_COLUMNS.get(column)
    if key is None:
        raise InvalidJobParameters(f"Unknown sort column '{column}'")
    direction = (direction or "desc").lower()
    if direction not in ("asc", "desc"):
        raise InvalidJobParameters(f"sortDirection must be 'asc' or 'desc', got {direction!r}")

    known = [i for i in items if key(i) is not None]
    unknown = [i for i in items if key(i) is None]
    known.sort(key=key, reverse=direction == "desc")
    return known + unknown


def _severity(item: WatchlistItem, thresholds: Thresholds) -> str:
    label = severity_for_index(
        item.velocity.indice_ritmo,
        thresholds.indice_ritmo_critico,
        thresholds.indice_ritmo_bajo,
        thresholds.indice_ritmo_alto,
    )
    return "normal" if label == "alto" else label


def filter_items(
    items: Sequence[WatchlistItem],
    thresholds: Thresholds,
    severidad: Optional[str] = None,
    motivos: Optional[Sequence[str]] = None,
    price_bands: Optional[Sequence[str]] = None,
) -> List[WatchlistItem]:
    if severidad and severidad not in SEVERITY_FILTERS:
        raise InvalidJobParameters(f"severidad must be one of {list(SEVERITY_FILTERS)}, got {severidad!r}")

    selected = list(items)
    if severidad and severidad != "all":
        selected = [i for i in selected if _severity(i, thresholds) == severidad]
    if motivos:
        wanted = set(motivos)
        selected = [i for i in selected if any(r.value in wanted for r in i.reasons)]
    if price_bands:
        wanted_bands = set(price_bands)
        selected = [i for i in selected if i.cluster.price_band_label in wanted_bands]
    return selected


class CandidateProcessor:
    """Pipeline par candidat : cluster → ritmo de cluster → métriques → motifs → score."""

    def __init__(
        self,
        config: ConfigProvider,
        thresholds: Thresholds,
        identifier: ClusterIdentifier,
        estimator: ClusterVelocityEstimator,
        cache: ClusterVelocityCache,
        parameters: WatchlistJobParameters,
        window: int,
        today: date,
    ):
        self.config = config
        self.thresholds = thresholds
        self.identifier = identifier
        self.estimator = estimator
        self.cache = cache
        self.parameters = parameters
        self.window = window
        self.today = today

    async def process(self, candidate: ProductCandidate, token: CancellationToken) -> Optional[WatchlistItem]:
        """Retourne l'item de watchlist, ou None si aucun motif ne s'applique."""
        token.raise_if_cancelled()

        cluster = await self.identifier.identify(
            candidate.category_id, candidate.gender_id, candidate.brand_id, candidate.current_price
        )
        start = self.today - timedelta(days=self.window)
        ritmo_cluster = await self.cache.get_or_compute(
            candidate.category_id,
            candidate.gender_id,
            candidate.brand_id,
            cluster.price_band,
            candidate.current_price,
            lambda: self.estimator.estimate(cluster, start, self.today, self.parameters.ponderacion),
        )

        cycle_days = self.parameters.cycle_days
        if cycle_days is None:
            cycle_days = await self.config.get_cycle_days(candidate.category_id)

        velocity = compute_velocity_metrics(candidate, ritmo_cluster, self.window, self.today)
        stock = compute_stock_metrics(candidate, velocity.ritmo_actual, cycle_days, self.today)

        reasons = classify_reasons(velocity, stock, candidate.units_14, self.thresholds)
        if not reasons:
            return None

        breakdown = score_item(
            velocity, stock, candidate.current_price, candidate.unit_cost, self.thresholds
        )
        return WatchlistItem(
            candidate=candidate,
            cluster=cluster,
            velocity=velocity,
            stock=stock,
            reasons=reasons,
            breakdown=breakdown,
        )


class WatchlistJobManager:
    """
    Registre et orchestrateur des jobs de watchlist.

    Au plus `max_concurrent_jobs` jobs s'exécutent simultanément ; les
    suivants restent `pending` jusqu'à libération d'une place.
    """

    def __init__(
        self,
        data_source: SalesDataSource,
        config_store: ConfigStore,
        settings: Optional[Settings] = None,
        monitor: Optional[JobMonitor] = None,
    ):
        self.data_source = data_source
        self.config_store = config_store
        self.settings = settings or Settings.from_env()
        self.monitor = monitor or JobMonitor(self.settings)
        self._jobs: Dict[str, Job] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_jobs))

        logger.info(
            f"Initialized WatchlistJobManager (max_concurrent_jobs={self.settings.max_concurrent_jobs}, "
            f"timeout={self.settings.job_timeout_seconds}s)"
        )

    async def start_job(self, payload: Optional[Dict[str, Any]] = None) -> Job:
        """
        Valide les paramètres, crée le job (pending) et planifie son exécution.

        Retourne immédiatement, sans attendre le traitement.

        Raises:
            InvalidJobParameters: paramètres invalides (aucun job n'est créé).
        """
        parameters = WatchlistJobParameters.from_dict(payload, self.settings)
        job = Job(job_id=str(uuid.uuid4()), parameters=parameters)
        token = CancellationToken()

        self._jobs[job.job_id] = job
        self._tokens[job.job_id] = token
        self._tasks[job.job_id] = asyncio.create_task(self._run_job(job, token))

        logger.info(f"Watchlist job {job.job_id} created")
        return job

    def get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        return job

    def get_status(self, job_id: str) -> Dict[str, Any]:
        return self.get_job(job_id).to_status_dict()

    def list_jobs(self) -> List[Dict[str, Any]]:
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
        return [j.to_status_dict() for j in jobs]

    def cancel_job(self, job_id: str) -> Dict[str, Any]:
        """
        Demande l'annulation d'un job.

        Idempotent : un job déjà terminal est laissé tel quel et son statut
        courant est renvoyé avec `cancelled: False`.
        """
        job = self.get_job(job_id)
        if job.status.is_terminal:
            return {"jobId": job_id, "status": job.status.value, "cancelled": False}

        self._tokens[job_id].cancel()
        if job.status == JobStatus.PENDING:
            job.transition(JobStatus.CANCELLED, "Cancelado")
        logger.info(f"Cancellation requested for job {job_id} (status: {job.status.value})")
        return {"jobId": job_id, "status": job.status.value, "cancelled": True}

    def get_result(
        self,
        job_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        sort_column: str = "score",
        sort_direction: str = "desc",
        severidad: Optional[str] = None,
        motivos: Optional[Sequence[str]] = None,
        price_bands: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """
        Page triée/filtrée du résultat d'un job terminé.

        Raises:
            JobNotFoundError: job inconnu.
            JobNotReadyError: job non `completed`.
            InvalidJobParameters: tri ou filtre invalide.
        """
        job = self.get_job(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobNotReadyError(f"Job '{job_id}' is {job.status.value}, result not available", job.status.value)

        thresholds = job.thresholds or Thresholds()
        items = filter_items(job.items or [], thresholds, severidad, motivos, price_bands)
        items = sort_items(items, sort_column, sort_direction)

        if page_size is None:
            page_size = self.settings.default_page_size
        page_size = min(max(1, page_size), self.settings.max_page_size)
        page = max(1, page)

        total = len(items)
        start = (page - 1) * page_size
        page_items = items[start:start + page_size]

        return {
            "items": [i.to_dict() for i in page_items],
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": math.ceil(total / page_size) if total else 0,
            "summary": job.summary,
            "completedAt": _iso(job.completed_at),
        }

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Attend la fin de la tâche du job (utile aux scripts et aux tests)."""
        job = self.get_job(job_id)
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            await asyncio.wait({task}, timeout=timeout)
        return job

    async def shutdown(self) -> None:
        """Annule les tâches encore actives et attend leur fin."""
        pending = [t for t in self._tasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info(f"WatchlistJobManager shut down ({len(pending)} task(s) cancelled)")

    async def _run_job(self, job: Job, token: CancellationToken) -> None:
        async with self._semaphore:
            if token.cancelled or job.status.is_terminal:
                job.transition(JobStatus.CANCELLED, "Cancelado")
                await self._notify_finished(job)
                return

            job.transition(JobStatus.RUNNING, "Consultando candidatos...")

            try:
                await self.monitor.job_started(job)
                await asyncio.wait_for(
                    self._execute(job, token),
                    timeout=self.settings.job_timeout_seconds,
                )
            except JobCancelled:
                job.transition(JobStatus.CANCELLED, "Cancelado")
                logger.info(f"Job {job.job_id} cancelled after {job.processed_items} item(s)")
            except asyncio.TimeoutError:
                job.error_message = f"Job timed out after {self.settings.job_timeout_seconds}s"
                job.transition(JobStatus.FAILED, "Error")
                logger.error(f"Job {job.job_id}: {job.error_message}")
            except asyncio.CancelledError:
                job.transition(JobStatus.CANCELLED, "Cancelado")
                raise
            except Exception as e:
                job.error_message = str(e) or e.__class__.__name__
                job.transition(JobStatus.FAILED, "Error")
                logger.error(f"Job {job.job_id} failed: {job.error_message}", exc_info=True)

            await self._notify_finished(job)

    async def _notify_finished(self, job: Job) -> None:
        try:
            await self.monitor.job_finished(job)
        except Exception as e:
            logger.error(f"Monitor error on job {job.job_id} end: {e}")

    async def _execute(self, job: Job, token: CancellationToken) -> None:
        params = job.parameters
        config = ConfigProvider(self.config_store)
        thresholds = await config.get_thresholds()
        job.thresholds = thresholds

        window = params.ritmo_ventana_dias or thresholds.ritmo_ventana_dias
        today = params.as_of or today_in_timezone(self.settings.default_timezone)

        try:
            candidates = await self.data_source.fetch_candidates(
                params.filters, today, window, params.max_candidates
            )
        except Exception as e:
            raise DataSourceError(f"Candidate fetch failed: {e}") from e

        candidates = list(candidates)[:params.max_candidates]
        total = len(candidates)
        job.total_items = total
        job.current_step = f"Procesando {total} productos..."
        logger.info(f"Job {job.job_id}: {total} candidate(s), batch size {params.batch_size}")

        token.raise_if_cancelled()

        processor = CandidateProcessor(
            config=config,
            thresholds=thresholds,
            identifier=ClusterIdentifier(config, self.data_source),
            estimator=ClusterVelocityEstimator(self.data_source),
            cache=ClusterVelocityCache(thresholds.cluster_cache_price_bucket),
            parameters=params,
            window=window,
            today=today,
        )

        items: List[WatchlistItem] = []
        for start in range(0, total, params.batch_size):
            token.raise_if_cancelled()
            batch = candidates[start:start + params.batch_size]

            outcomes = await asyncio.gather(
                *(processor.process(candidate, token) for candidate in batch),
                return_exceptions=True,
            )

            for candidate, outcome in zip(batch, outcomes):
                if isinstance(outcome, JobCancelled):
                    raise outcome
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    job.skipped_items += 1
                    logger.warning(f"Job {job.job_id}: skipping {candidate.product_code}: {outcome}")
                elif outcome is not None:
                    items.append(outcome)

            job.processed_items += len(batch)
            job.progress_percent = progress_percent(job.processed_items, total)
            job.current_step = f"Procesando {job.processed_items} de {total} productos..."
            job.warnings = list(config.degraded_reasons)
            await self.monitor.job_progress(job)

        token.raise_if_cancelled()

        job.current_step = "Generando resumen..."
        job.warnings = list(config.degraded_reasons)
        job.items = items
        job.summary = build_summary(items, thresholds, job.skipped_items)
        job.progress_percent = 100
        job.transition(JobStatus.COMPLETED, "Completado")
        logger.info(
            f"Job {job.job_id} completed: {len(items)} item(s) in watchlist, "
            f"{job.skipped_items} skipped, cluster cache {len(processor.cache)} key(s)"
        )
