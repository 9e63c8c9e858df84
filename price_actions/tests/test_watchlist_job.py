"""
Tests pour l'orchestrateur de jobs de watchlist.
"""

import asyncio

import pytest

from conftest import AS_OF, FakeSalesDataSource, RecordingMonitor, make_candidate

from price_actions.config.settings import Settings
from price_actions.errors import InvalidJobParameters, JobNotFoundError, JobNotReadyError
from price_actions.interfaces.config_store import ConfigEntry, InMemoryConfigStore
from price_actions.interfaces.data_access import SkuWindowSales
from price_actions.jobs.watchlist_job import (
    CancellationToken,
    JobCancelled,
    WatchlistJobManager,
    WatchlistJobParameters,
    progress_percent,
)
from price_actions.models.types import JobStatus, VelocityWeighting

PAYLOAD = {"asOf": AS_OF.isoformat()}


def make_manager(data_source, settings, monitor=None, config_store=None):
    return WatchlistJobManager(
        data_source, config_store or InMemoryConfigStore(), settings, monitor or RecordingMonitor()
    )


async def run_to_end(manager, payload=None):
    job = await manager.start_job(payload or PAYLOAD)
    await manager.wait_for_job(job.job_id, timeout=5)
    return job


class TestJobParameters:
    """Tests pour WatchlistJobParameters.from_dict."""

    def test_defaults_from_settings(self, settings):
        params = WatchlistJobParameters.from_dict({}, settings)

        assert params.max_candidates == 200
        assert params.batch_size == 20
        assert params.ponderacion == VelocityWeighting.UNITS
        assert params.ritmo_ventana_dias is None
        assert params.as_of is None

    def test_camel_and_snake_case(self, settings):
        camel = WatchlistJobParameters.from_dict(
            {"maxCandidates": 50, "batchSize": 5, "ritmoVentanaDias": 28, "ponderacion": "dias"}, settings
        )
        snake = WatchlistJobParameters.from_dict(
            {"max_candidates": 50, "batch_size": 5, "ritmo_ventana_dias": 28, "ponderacion": "dias"}, settings
        )

        assert camel == snake
        assert camel.ponderacion == VelocityWeighting.DAYS
        assert camel.to_dict()["ritmoVentanaDias"] == 28

    @pytest.mark.parametrize("payload", [
        {"batchSize": 0},
        {"batchSize": 101},
        {"maxCandidates": 5000},
        {"maxCandidates": "abc"},
        {"maxCandidates": True},
        {"ritmoVentanaDias": 2.5},
        {"ponderacion": "semanas"},
        {"asOf": "30/06/2024"},
        {"filters": {"categories": "10"}},
    ])
    def test_invalid_parameters(self, settings, payload):
        with pytest.raises(InvalidJobParameters):
            WatchlistJobParameters.from_dict(payload, settings)

    def test_progress_percent(self):
        assert progress_percent(20, 45) == 44
        assert progress_percent(40, 45) == 89
        assert progress_percent(45, 45) == 100
        assert progress_percent(1, 8) == 13
        assert progress_percent(0, 0) == 100


class TestCancellationToken:

    def test_cancel(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()

        assert token.cancelled
        with pytest.raises(JobCancelled):
            token.raise_if_cancelled()


class TestJobExecution:
    """Tests d'exécution de bout en bout."""

    @pytest.mark.asyncio
    async def test_batch_progress(self, peer_sales, settings, monitor):
        """45 candidats par lots de 20 → 3 lots (20, 20, 5)."""
        candidates = [make_candidate(f"SKU-{i}") for i in range(45)]
        source = FakeSalesDataSource(candidates=candidates, cluster_sales=peer_sales)
        manager = make_manager(source, settings, monitor)

        job = await run_to_end(manager)

        assert job.status == JobStatus.COMPLETED
        assert monitor.progress == [(20, 45, 44), (40, 45, 89), (45, 45, 100)]
        assert monitor.finished == ["completed"]
        # même cluster et même tranche de prix → un seul calcul de ritmo
        assert len(source.cluster_sales_calls) == 1

    @pytest.mark.asyncio
    async def test_result_and_summary(self, watchlist_candidates, peer_sales, settings):
        source = FakeSalesDataSource(candidates=watchlist_candidates, cluster_sales=peer_sales)
        manager = make_manager(source, settings)

        job = await run_to_end(manager)
        result = manager.get_result(job.job_id)

        assert [i["product_code"] for i in result["items"]] == ["SKU-B", "SKU-A", "SKU-D"]
        assert [i["score"] for i in result["items"]] == [82, 70, 46]
        assert result["total"] == 3
        assert result["totalPages"] == 1

        by_code = {i["product_code"]: i for i in result["items"]}
        assert by_code["SKU-A"]["reasons"] == ["Early", "Desacelera", "Sin tracción"]
        assert by_code["SKU-A"]["price_band"] == "1791-2090"
        assert by_code["SKU-B"]["reasons"] == ["Early", "Sobrestock"]
        assert by_code["SKU-D"]["reasons"] == ["Desacelera", "Sin tracción"]
        assert by_code["SKU-B"]["ritmo_cluster"] == pytest.approx(2.0)

        summary = result["summary"]
        assert summary["totalItems"] == 3
        assert summary["criticalCount"] == 3
        assert summary["lowCount"] == 0
        assert summary["averageScore"] == 66.0
        assert summary["topMotivos"][0] == {"motivo": "Desacelera", "count": 2}
        assert summary["topMotivos"][-1] == {"motivo": "Sobrestock", "count": 1}

        status = manager.get_status(job.job_id)
        assert status["progressPercent"] == 100
        assert status["currentStep"] == "Completado"
        assert status["completedAt"] is not None

    @pytest.mark.asyncio
    async def test_sort_filter_and_paging(self, watchlist_candidates, peer_sales, settings):
        source = FakeSalesDataSource(candidates=watchlist_candidates, cluster_sales=peer_sales)
        manager = make_manager(source, settings)
        job = await run_to_end(manager)

        asc = manager.get_result(job.job_id, sort_column="score", sort_direction="asc")
        assert [i["product_code"] for i in asc["items"]] == ["SKU-D", "SKU-A", "SKU-B"]

        # valeurs inconnues en fin de liste dans les deux sens
        for direction in ("asc", "desc"):
            by_stock_days = manager.get_result(job.job_id, sort_column="diasStock", sort_direction=direction)
            assert by_stock_days["items"][0]["product_code"] == "SKU-B"

        bands = manager.get_result(job.job_id, price_bands=["0-1490"])
        assert {i["product_code"] for i in bands["items"]} == {"SKU-B", "SKU-D"}

        motivo = manager.get_result(job.job_id, motivos=["Sobrestock"])
        assert [i["product_code"] for i in motivo["items"]] == ["SKU-B"]

        assert manager.get_result(job.job_id, severidad="bajo")["total"] == 0
        assert manager.get_result(job.job_id, severidad="critico")["total"] == 3

        page = manager.get_result(job.job_id, page=2, page_size=1)
        assert page["items"][0]["product_code"] == "SKU-A"
        assert page["totalPages"] == 3

        assert manager.get_result(job.job_id, page_size=0)["pageSize"] == 1
        assert manager.get_result(job.job_id, page_size=10000)["pageSize"] == settings.max_page_size
        assert manager.get_result(job.job_id, page=9)["items"] == []

        with pytest.raises(InvalidJobParameters):
            manager.get_result(job.job_id, sort_column="unknown")
        with pytest.raises(InvalidJobParameters):
            manager.get_result(job.job_id, sort_direction="sideways")
        with pytest.raises(InvalidJobParameters):
            manager.get_result(job.job_id, severidad="extremo")

    @pytest.mark.asyncio
    async def test_cluster_rate_follows_price_band(self, settings):
        """Deux prix du même palier de cache mais de bandes différentes."""
        peers = [
            SkuWindowSales(sku="LOW", units=14, days_with_sales=10, list_price=1400),
            SkuWindowSales(sku="HIGH", units=56, days_with_sales=14, list_price=1600),
        ]
        candidates = [
            make_candidate("P-LOW", current_price=1400.0),
            make_candidate("P-HIGH", current_price=1495.0),
        ]
        source = FakeSalesDataSource(candidates=candidates, cluster_sales=peers)
        manager = make_manager(source, settings)

        job = await run_to_end(manager, {**PAYLOAD, "batchSize": 1})

        assert job.status == JobStatus.COMPLETED
        items = {i["product_code"]: i for i in manager.get_result(job.job_id)["items"]}
        assert items["P-LOW"]["ritmo_cluster"] == pytest.approx(1.0)
        assert items["P-HIGH"]["ritmo_cluster"] == pytest.approx(4.0)
        assert len(source.cluster_sales_calls) == 2

    @pytest.mark.asyncio
    async def test_max_candidates(self, peer_sales, settings):
        candidates = [make_candidate(f"SKU-{i}") for i in range(10)]
        source = FakeSalesDataSource(candidates=candidates, cluster_sales=peer_sales)
        manager = make_manager(source, settings)

        job = await run_to_end(manager, {**PAYLOAD, "maxCandidates": 4})

        assert source.candidate_calls[0][3] == 4
        assert job.total_items == 4

    @pytest.mark.asyncio
    async def test_no_candidates(self, settings):
        manager = make_manager(FakeSalesDataSource(), settings)

        job = await run_to_end(manager)

        assert job.status == JobStatus.COMPLETED
        assert job.progress_percent == 100
        assert manager.get_result(job.job_id)["items"] == []

    @pytest.mark.asyncio
    async def test_degraded_config_warnings(self, watchlist_candidates, peer_sales, settings):
        store = InMemoryConfigStore({"dias_stock_alerta": ConfigEntry("dias_stock_alerta", "x", "string")})
        source = FakeSalesDataSource(candidates=watchlist_candidates, cluster_sales=peer_sales)
        manager = make_manager(source, settings, config_store=store)

        job = await run_to_end(manager)

        assert job.status == JobStatus.COMPLETED
        assert any("dias_stock_alerta" in w for w in manager.get_status(job.job_id)["warnings"])


class TestJobFailures:
    """Tests des chemins d'erreur."""

    @pytest.mark.asyncio
    async def test_candidate_fetch_failure(self, settings, monitor):
        source = FakeSalesDataSource()
        source.candidate_error = ConnectionError("db down")
        manager = make_manager(source, settings, monitor)

        job = await run_to_end(manager)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Candidate fetch failed: db down"
        assert monitor.finished == ["failed"]
        with pytest.raises(JobNotReadyError) as exc_info:
            manager.get_result(job.job_id)
        assert exc_info.value.status == "failed"

    @pytest.mark.asyncio
    async def test_failing_candidate_is_skipped(self, peer_sales, settings):
        """Une erreur sur un candidat n'interrompt pas le job."""
        candidates = [make_candidate("OK-1"), make_candidate("BAD-1", brand_id=7), make_candidate("OK-2")]
        source = FakeSalesDataSource(candidates=candidates, cluster_sales=peer_sales)
        source.failing_brands = {7}
        manager = make_manager(source, settings)

        job = await run_to_end(manager)

        assert job.status == JobStatus.COMPLETED
        assert job.skipped_items == 1
        assert job.processed_items == 3
        assert job.summary["skippedItems"] == 1
        codes = {i["product_code"] for i in manager.get_result(job.job_id)["items"]}
        assert codes == {"OK-1", "OK-2"}

    @pytest.mark.asyncio
    async def test_timeout(self, peer_sales):
        settings = Settings(max_concurrent_jobs=2, batch_size=20, job_timeout_seconds=0.1)
        source = FakeSalesDataSource(candidates=[make_candidate()], cluster_sales=peer_sales)
        source.gate = asyncio.Event()
        manager = make_manager(source, settings)

        job = await run_to_end(manager)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Job timed out after 0.1s"

    @pytest.mark.asyncio
    async def test_monitor_start_error_fails_job(self, peer_sales, settings):
        """Une erreur du monitor au démarrage termine le job en failed."""

        class StartFailingMonitor(RecordingMonitor):
            async def job_started(self, job):
                raise RuntimeError("monitor down")

        monitor = StartFailingMonitor()
        source = FakeSalesDataSource(candidates=[make_candidate()], cluster_sales=peer_sales)
        manager = make_manager(source, settings, monitor)

        job = await run_to_end(manager)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "monitor down"
        assert monitor.finished == ["failed"]

    @pytest.mark.asyncio
    async def test_monitor_end_error_keeps_status(self, peer_sales, settings):
        class EndFailingMonitor(RecordingMonitor):
            async def job_finished(self, job):
                raise RuntimeError("monitor down")

        source = FakeSalesDataSource(candidates=[make_candidate()], cluster_sales=peer_sales)
        manager = make_manager(source, settings, EndFailingMonitor())

        job = await run_to_end(manager)

        assert job.status == JobStatus.COMPLETED
        assert manager.get_result(job.job_id)["summary"]["totalItems"] == 1

    @pytest.mark.asyncio
    async def test_invalid_parameters_create_no_job(self, settings):
        manager = make_manager(FakeSalesDataSource(), settings)

        with pytest.raises(InvalidJobParameters):
            await manager.start_job({"batchSize": -1})
        assert manager.list_jobs() == []

    @pytest.mark.asyncio
    async def test_unknown_job(self, settings):
        manager = make_manager(FakeSalesDataSource(), settings)

        with pytest.raises(JobNotFoundError):
            manager.get_status("missing")
        with pytest.raises(JobNotFoundError):
            manager.get_result("missing")
        with pytest.raises(JobNotFoundError):
            manager.cancel_job("missing")


class TestCancellation:
    """Tests d'annulation."""

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, peer_sales, settings, monitor):
        """Annulation pendant un lot → le job finit cancelled, jamais completed."""
        candidates = [make_candidate(f"SKU-{i}") for i in range(45)]
        source = FakeSalesDataSource(candidates=candidates, cluster_sales=peer_sales)
        source.gate = asyncio.Event()
        source.entered = asyncio.Event()
        manager = make_manager(source, settings, monitor)

        job = await manager.start_job(PAYLOAD)
        await asyncio.wait_for(source.entered.wait(), timeout=5)

        with pytest.raises(JobNotReadyError) as exc_info:
            manager.get_result(job.job_id)
        assert exc_info.value.status == "running"

        outcome = manager.cancel_job(job.job_id)
        assert outcome == {"jobId": job.job_id, "status": "running", "cancelled": True}

        source.gate.set()
        await manager.wait_for_job(job.job_id, timeout=5)

        assert job.status == JobStatus.CANCELLED
        assert job.processed_items < 45
        assert monitor.finished == ["cancelled"]

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, peer_sales):
        settings = Settings(max_concurrent_jobs=1, batch_size=20, job_timeout_seconds=30)
        source = FakeSalesDataSource(candidates=[make_candidate()], cluster_sales=peer_sales)
        source.gate = asyncio.Event()
        source.entered = asyncio.Event()
        manager = make_manager(source, settings)

        first = await manager.start_job(PAYLOAD)
        await asyncio.wait_for(source.entered.wait(), timeout=5)
        second = await manager.start_job(PAYLOAD)
        assert second.status == JobStatus.PENDING

        outcome = manager.cancel_job(second.job_id)
        assert outcome["status"] == "cancelled"
        assert second.status == JobStatus.CANCELLED

        source.gate.set()
        await manager.wait_for_job(first.job_id, timeout=5)
        await manager.wait_for_job(second.job_id, timeout=5)

        assert first.status == JobStatus.COMPLETED
        assert second.status == JobStatus.CANCELLED
        assert second.started_at is None

    @pytest.mark.asyncio
    async def test_cancel_after_completion(self, watchlist_candidates, peer_sales, settings):
        """Annuler un job terminé ne change rien."""
        source = FakeSalesDataSource(candidates=watchlist_candidates, cluster_sales=peer_sales)
        manager = make_manager(source, settings)
        job = await run_to_end(manager)

        outcome = manager.cancel_job(job.job_id)

        assert outcome == {"jobId": job.job_id, "status": "completed", "cancelled": False}
        assert job.status == JobStatus.COMPLETED
        assert manager.get_result(job.job_id)["total"] == 3

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self, peer_sales, settings):
        source = FakeSalesDataSource(candidates=[make_candidate()], cluster_sales=peer_sales)
        source.gate = asyncio.Event()
        source.entered = asyncio.Event()
        manager = make_manager(source, settings)

        job = await manager.start_job(PAYLOAD)
        await asyncio.wait_for(source.entered.wait(), timeout=5)
        await manager.shutdown()

        assert job.status == JobStatus.CANCELLED
