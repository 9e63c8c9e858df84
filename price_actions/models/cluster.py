"""
Clusters de pairs et ritmo de cluster.

Un cluster regroupe les produits d'un même triplet catégorie / genre / marque
dans la même bande de prix. Le ritmo de cluster (unités/jour) sert de
référence de demande pour les indices de la watchlist et pour le simulateur.
"""

import asyncio
import logging
import math
from datetime import date
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config.config_provider import ConfigProvider
from ..interfaces.data_access import SalesDataSource, SkuWindowSales
from ..utils.dates import window_days
from .price_bands import resolve_price_band
from .types import Cluster, PriceBand, VelocityWeighting

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, int, int, Optional[PriceBand], float]


class ClusterIdentifier:
    """Détermine le cluster d'un produit (bandes via la config, libellés via le catalogue)."""

    def __init__(self, config: ConfigProvider, data_source: SalesDataSource):
        self.config = config
        self.data_source = data_source

    async def identify(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
        price: float,
        band_category_id: Optional[int] = None,
    ) -> Cluster:
        """
        Args:
            band_category_id: catégorie dont on lit les bandes spécifiques
                (par défaut `category_id`). Sans bandes propres à cette
                catégorie, `get_price_bands` retombe sur les bandes globales.
        """
        bands_category = category_id if band_category_id is None else band_category_id
        bands = await self.config.get_price_bands(bands_category)
        band = resolve_price_band(price, bands)
        names = await self.data_source.fetch_catalog_names(category_id, gender_id, brand_id)

        return Cluster(
            category_id=category_id,
            category_name=names.category_name,
            gender_id=gender_id,
            gender_name=names.gender_name,
            brand_id=brand_id,
            brand_name=names.brand_name,
            price_band=band,
        )


def sku_in_band(row: SkuWindowSales, band: Optional[PriceBand]) -> bool:
    """
    Un SKU appartient à la bande si son prix de liste est inconnu, ou si son
    prix de liste ou son prix unitaire moyen sur la fenêtre tombe dans la bande.
    """
    if band is None or row.list_price is None:
        return True
    if band.contains(row.list_price):
        return True
    return row.avg_unit_price is not None and band.contains(row.avg_unit_price)


def weighted_average_rate(samples: Iterable[Tuple[float, float]]) -> float:
    """
    Moyenne pondérée de couples (ritmo, poids).

    Seuls les ritmos > 0 comptent ; 0 si aucun échantillon ne qualifie.
    """
    total_weighted = 0.0
    total_weight = 0.0
    for rate, weight in samples:
        if rate <= 0 or weight <= 0:
            continue
        total_weighted += rate * weight
        total_weight += weight
    if total_weight == 0:
        return 0.0
    return total_weighted / total_weight


def weighted_cluster_velocity(
    rows: Sequence[SkuWindowSales],
    days: int,
    weighting: VelocityWeighting = VelocityWeighting.UNITS,
    band: Optional[PriceBand] = None,
) -> float:
    """Ritmo de cluster pondéré pour des ventes par SKU sur une fenêtre de `days` jours."""
    days = max(1, days)
    samples: List[Tuple[float, float]] = []
    for row in rows:
        if not sku_in_band(row, band):
            continue
        rate = row.units / days
        if weighting == VelocityWeighting.UNITS:
            weight = row.units
        else:
            weight = row.days_with_sales or 1
        samples.append((rate, weight))
    return weighted_average_rate(samples)


class ClusterVelocityEstimator:
    """Calcule le ritmo d'un cluster à partir des ventes de ses pairs."""

    def __init__(self, data_source: SalesDataSource):
        self.data_source = data_source

    async def estimate(
        self,
        cluster: Cluster,
        start: date,
        end: date,
        weighting: VelocityWeighting = VelocityWeighting.UNITS,
    ) -> float:
        rows = await self.data_source.fetch_cluster_sales(
            cluster.category_id, cluster.gender_id, cluster.brand_id, start, end
        )
        if not rows:
            return 0.0
        days = window_days(start, end)
        return weighted_cluster_velocity(rows, days, weighting, cluster.price_band)


def cache_key(
    category_id: int,
    gender_id: int,
    brand_id: int,
    price_band: Optional[PriceBand],
    price: float,
    bucket: float,
) -> CacheKey:
    """
    Clé de cache : triplet + bande de prix résolue + prix arrondi au palier
    inférieur (`bucket`).

    Le ritmo de cluster filtre les pairs par bande : deux prix du même palier
    mais de bandes différentes ne partagent pas de valeur.
    """
    return (category_id, gender_id, brand_id, price_band, math.floor(price / bucket) * bucket)


class ClusterVelocityCache:
    """
    Cache du ritmo de cluster, propre à une exécution de job.

    Un verrou par clé garantit qu'une seule coroutine calcule une clé donnée ;
    les autres attendent puis lisent la valeur mémorisée.
    """

    def __init__(self, price_bucket: float = 500):
        self.price_bucket = price_bucket
        self._values: Dict[CacheKey, float] = {}
        self._locks: Dict[CacheKey, asyncio.Lock] = {}
        self._guard = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._values)

    async def _lock_for(self, key: CacheKey) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    async def get_or_compute(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
        price_band: Optional[PriceBand],
        price: float,
        compute: Callable[[], Awaitable[float]],
    ) -> float:
        key = cache_key(category_id, gender_id, brand_id, price_band, price, self.price_bucket)
        lock = await self._lock_for(key)
        async with lock:
            if key in self._values:
                self.hits += 1
                return self._values[key]
            self.misses += 1
            value = await compute()
            self._values[key] = value
            logger.debug(f"Cluster velocity cached for {key}: {value:.3f}")
            return value
