"""
Élasticité prix-demande d'un cluster.

Élasticité = %Δ quantité / %Δ prix, calculée mois à mois pour chaque SKU
du cluster puis moyennée. C'est un proxy linéaire à un seul facteur, pas un
modèle de prévision.
"""

import logging
from datetime import date
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from ..config.config_provider import ConfigProvider
from ..interfaces.data_access import MonthlyPricePoint, SalesDataSource
from ..utils.dates import months_back
from .types import Cluster, Confidence, ElasticityInfo, ElasticityMethod, PriceBand

logger = logging.getLogger(__name__)

MIN_OBSERVATIONS_HIGH_CONFIDENCE = 20
MIN_OBSERVATIONS_MEDIUM_CONFIDENCE = 10

# Variation de prix minimale pour qu'une observation compte (1 %)
MIN_PRICE_CHANGE = 0.01
ELASTICITY_BOUNDS = (-5.0, 1.0)


def fallback_elasticity(value: float, observations: int, warning: str) -> ElasticityInfo:
    return ElasticityInfo(
        value=value,
        confidence=Confidence.BAJA,
        observations=observations,
        method=ElasticityMethod.FALLBACK,
        warning=warning,
    )


def _points_frame(points: Sequence[MonthlyPricePoint], band: Optional[PriceBand]) -> pd.DataFrame:
    df = pd.DataFrame(
        [
            {
                "sku": p.sku,
                "month": pd.Timestamp(p.month),
                "avg_price": p.avg_price,
                "units": p.units,
                "list_price": p.list_price,
            }
            for p in points
        ],
        columns=["sku", "month", "avg_price", "units", "list_price"],
    )
    if df.empty:
        return df

    df = df[df["units"] > 0]
    if band is not None:
        list_price = pd.to_numeric(df["list_price"], errors="coerce")
        in_band = (
            list_price.isna()
            | list_price.between(band.min, band.max)
            | df["avg_price"].between(band.min, band.max)
        )
        df = df[in_band]
    return df.sort_values(["sku", "month"])


def estimate_elasticity(
    points: Sequence[MonthlyPricePoint],
    band: Optional[PriceBand] = None,
    fallback: float = -1.0,
) -> ElasticityInfo:
    """
    Estime l'élasticité à partir de séries mensuelles (prix moyen, unités) par SKU.

    Observation retenue : mois précédent avec prix > 0 et unités > 0, et
    variation de prix > 1 %. Les élasticités hors de [-5, 1] sont écartées.
    Moins de 10 observations → valeur de repli, confiance basse.
    """
    df = _points_frame(points, band)

    if df.empty:
        return fallback_elasticity(
            fallback, 0,
            "Datos insuficientes para calcular elasticidad (0 observaciones). Usando valor conservador.",
        )

    by_sku = df.groupby("sku")
    df = df.assign(
        prev_price=by_sku["avg_price"].shift(1),
        prev_units=by_sku["units"].shift(1),
    )
    df = df[(df["prev_price"] > 0) & (df["prev_units"] > 0)]

    delta_price = (df["avg_price"] - df["prev_price"]) / df["prev_price"]
    delta_units = (df["units"] - df["prev_units"]) / df["prev_units"]
    significant = delta_price.abs() > MIN_PRICE_CHANGE

    elasticities = (delta_units[significant] / delta_price[significant]).to_numpy(dtype=float)
    low, high = ELASTICITY_BOUNDS
    elasticities = elasticities[(elasticities >= low) & (elasticities <= high)]
    observations = int(elasticities.size)

    if observations < MIN_OBSERVATIONS_MEDIUM_CONFIDENCE:
        return fallback_elasticity(
            fallback, observations,
            f"Datos insuficientes para calcular elasticidad ({observations} observaciones). "
            "Usando valor conservador.",
        )

    confidence = (
        Confidence.ALTA if observations >= MIN_OBSERVATIONS_HIGH_CONFIDENCE else Confidence.MEDIA
    )
    return ElasticityInfo(
        value=float(np.mean(elasticities)),
        confidence=confidence,
        observations=observations,
        method=ElasticityMethod.CLUSTER,
    )


class ElasticityEstimator:
    """Récupère l'historique mensuel du cluster et estime son élasticité."""

    def __init__(self, config: ConfigProvider, data_source: SalesDataSource):
        self.config = config
        self.data_source = data_source

    async def estimate(self, cluster: Cluster, as_of: date) -> ElasticityInfo:
        thresholds = await self.config.get_thresholds()
        start = months_back(as_of, thresholds.elasticity_lookback_months)

        try:
            points = await self.data_source.fetch_monthly_price_series(
                cluster.category_id, cluster.gender_id, cluster.brand_id, start, as_of
            )
        except Exception as e:
            logger.warning(
                f"Elasticity series unavailable for cluster "
                f"{cluster.category_id}/{cluster.gender_id}/{cluster.brand_id}: {e}"
            )
            return fallback_elasticity(
                thresholds.elasticity_fallback, 0, f"Error al calcular elasticidad: {e}"
            )

        info = estimate_elasticity(points, cluster.price_band, thresholds.elasticity_fallback)
        logger.info(
            f"Elasticity for cluster {cluster.category_id}/{cluster.gender_id}/{cluster.brand_id} "
            f"[{cluster.price_band_label}]: {info.value:.2f} ({info.confidence.value}, "
            f"{info.observations} obs)"
        )
        return info
