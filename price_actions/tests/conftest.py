"""
Fixtures partagées pour les tests.
"""

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

# Ajouter la racine du projet au path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from price_actions.config.settings import Settings
from price_actions.interfaces.config_store import InMemoryConfigStore
from price_actions.interfaces.data_access import (
    CatalogNames,
    MonthlyPricePoint,
    ProductSnapshot,
    SalesDataSource,
    SkuWindowSales,
    WatchlistFilters,
)
from price_actions.models.types import ProductCandidate
from price_actions.utils.monitoring import JobMonitor

AS_OF = date(2024, 6, 30)


def make_candidate(product_code: str = "SKU-1", **overrides) -> ProductCandidate:
    """Candidat par défaut : sans ventes récentes, avec stock (motif Sin tracción)."""
    values = dict(
        product_code=product_code,
        description=f"Producto {product_code}",
        short_description=product_code,
        category_id=10,
        category_name="Zapatillas",
        gender_id=1,
        gender_name="Hombre",
        brand_id=5,
        brand_name="Marca",
        current_price=1000.0,
        unit_cost=600.0,
        stock_on_hand=30.0,
        stock_pending=0.0,
        stock_total=30.0,
        units_7=0.0,
        units_14=0.0,
        units_28=0.0,
        units_window=0.0,
        units_since_first_sale=0.0,
        first_sale_date=None,
    )
    values.update(overrides)
    return ProductCandidate(**values)


class FakeSalesDataSource(SalesDataSource):
    """
    Collaborateur de données en mémoire.

    - `gate` : si défini, `fetch_catalog_names` attend cet événement
      (permet de bloquer un lot en cours de traitement),
    - `entered` : signalé dès qu'un candidat entre dans `fetch_catalog_names`.
    """

    def __init__(
        self,
        candidates: Optional[List[ProductCandidate]] = None,
        cluster_sales: Optional[List[SkuWindowSales]] = None,
        monthly_series: Optional[List[MonthlyPricePoint]] = None,
        snapshots: Optional[Dict[str, ProductSnapshot]] = None,
    ):
        self.candidates = list(candidates or [])
        self.cluster_sales = list(cluster_sales or [])
        self.monthly_series = list(monthly_series or [])
        self.snapshots = dict(snapshots or {})
        self.names = CatalogNames("Zapatillas", "Hombre", "Marca")
        self.candidate_error: Optional[Exception] = None
        self.failing_brands: Set[int] = set()
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None
        self.cluster_sales_calls: List[Tuple[int, int, int, date, date]] = []
        self.candidate_calls: List[Tuple[WatchlistFilters, date, int, int]] = []

    async def fetch_candidates(self, filters, as_of, window_days, limit):
        self.candidate_calls.append((filters, as_of, window_days, limit))
        if self.candidate_error is not None:
            raise self.candidate_error
        return self.candidates[:limit]

    async def fetch_cluster_sales(self, category_id, gender_id, brand_id, start, end):
        self.cluster_sales_calls.append((category_id, gender_id, brand_id, start, end))
        await asyncio.sleep(0)
        return list(self.cluster_sales)

    async def fetch_monthly_price_series(self, category_id, gender_id, brand_id, start, end):
        return list(self.monthly_series)

    async def fetch_catalog_names(self, category_id, gender_id, brand_id):
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if brand_id in self.failing_brands:
            raise RuntimeError(f"catalog lookup failed for brand {brand_id}")
        return self.names

    async def fetch_product_snapshot(self, product_code, as_of, window_days):
        return self.snapshots.get(product_code)


class RecordingMonitor(JobMonitor):
    """Monitor sans persistance qui enregistre la progression des jobs."""

    def __init__(self):
        super().__init__(Settings())
        self.slack_webhook_url = ""
        self.progress: List[Tuple[int, int, int]] = []
        self.finished: List[str] = []

    async def job_progress(self, job) -> None:
        self.progress.append((job.processed_items, job.total_items, job.progress_percent))
        await super().job_progress(job)

    async def job_finished(self, job) -> None:
        self.finished.append(job.status.value)
        await super().job_finished(job)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def settings():
    """Settings de test (sans Supabase)."""
    return Settings(max_concurrent_jobs=2, max_candidates=200, batch_size=20, job_timeout_seconds=30)


@pytest.fixture
def config_store():
    """Store de configuration vide (toutes les valeurs par défaut)."""
    return InMemoryConfigStore()


@pytest.fixture
def peer_sales():
    """Ventes de pairs : 28 unités sur 14 jours → ritmo de cluster 2.0."""
    return [SkuWindowSales(sku="PEER-1", units=28, days_with_sales=10, list_price=None)]


@pytest.fixture
def data_source(peer_sales):
    return FakeSalesDataSource(cluster_sales=peer_sales)


@pytest.fixture
def monitor():
    return RecordingMonitor()


@pytest.fixture
def watchlist_candidates():
    """
    Jeu de candidats couvrant les motifs :
    - SKU-A : sans ventes récentes, gros stock (Early, Desacelera, Sin tracción), score 70
    - SKU-B : ritmo moitié du cluster, stock > ciclo restant (Early, Sobrestock), score 82
    - SKU-C : ritmo supérieur au cluster, aucun motif (exclu)
    - SKU-D : jamais vendu (Desacelera, Sin tracción), score 46
    """
    return [
        make_candidate(
            "SKU-A", current_price=2000.0, unit_cost=800.0, stock_on_hand=150.0, stock_total=150.0,
            units_since_first_sale=60.0, first_sale_date=AS_OF - timedelta(days=60),
        ),
        make_candidate(
            "SKU-B", current_price=1000.0, unit_cost=750.0, stock_on_hand=100.0, stock_total=100.0,
            units_7=7.0, units_14=14.0, units_28=28.0, units_window=14.0,
            units_since_first_sale=80.0, first_sale_date=AS_OF - timedelta(days=80),
        ),
        make_candidate(
            "SKU-C", current_price=1500.0, unit_cost=1200.0, stock_total=30.0,
            units_7=21.0, units_14=42.0, units_28=84.0, units_window=42.0,
            units_since_first_sale=90.0, first_sale_date=AS_OF - timedelta(days=30),
        ),
        make_candidate(
            "SKU-D", current_price=500.0, unit_cost=400.0, stock_on_hand=10.0, stock_total=10.0,
        ),
    ]
