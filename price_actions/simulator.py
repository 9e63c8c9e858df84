"""
Simulateur d'impact d'un changement de prix.

Projette, pour un prix proposé, le ritmo de vente, les unités vendues sur
l'horizon (plafonnées par le stock), le revenu, la marge, le coût du
castigo et le sell-out. Aucun changement de prix n'est jamais appliqué.

Modèle linéaire à un facteur :
    ritmo_proyectado = max(0, ritmo * (1 + elasticidad * %Δprecio))
"""

import logging
from datetime import date, timedelta
from typing import Optional

from .config.config_provider import ConfigProvider
from .errors import ProductNotFoundError, SimulationInputError
from .interfaces.data_access import SalesDataSource
from .models.cluster import ClusterIdentifier, ClusterVelocityEstimator
from .models.elasticity import ElasticityEstimator
from .models.types import (
    Confidence,
    ElasticityInfo,
    ElasticityMethod,
    SimulationInput,
    SimulationResult,
    VelocityWeighting,
)
from .utils.dates import days_since, today_in_timezone

logger = logging.getLogger(__name__)

LOW_SELL_OUT_PERCENT = 50.0

# Produit sans ventes récentes : fraction du ritmo de cluster prise comme base
ZERO_VELOCITY_CLUSTER_SHARE = 0.3


def zero_velocity_baseline(ritmo_cluster: float, delta_precio: float) -> float:
    """
    Ritmo de base d'un produit sans ventes récentes.

    30 % du ritmo de cluster, modulé par la baisse de prix :
    ×0.5 sans baisse, jusqu'à ×1.5 pour une baisse de 50 % ou plus.
    """
    factor = min(1.0, abs(delta_precio) * 2) if delta_precio < 0 else 0.0
    return ritmo_cluster * ZERO_VELOCITY_CLUSTER_SHARE * (0.5 + factor)


def break_even_price(costo: float, margen_minimo: float) -> float:
    """Prix minimal assurant `margen_minimo` % de marge sur le prix."""
    return costo / (1 - margen_minimo / 100)


def simulate_price_change(
    inp: SimulationInput,
    elasticity: ElasticityInfo,
    min_margin_pct: Optional[float] = None,
    ritmo_cluster: Optional[float] = None,
) -> SimulationResult:
    """
    Simule un changement de prix (fonction pure).

    Args:
        inp: prix actuel/proposé, horizon, ritmo actuel, stock et coût.
        elasticity: élasticité à appliquer.
        min_margin_pct: marge minimale acceptable (%) ; active le prix de break-even.
        ritmo_cluster: ritmo du cluster ; utilisé comme base quand le produit
            n'a pas de ventes récentes.

    Raises:
        SimulationInputError: stock ou coût manquant, ou prix actuel non positif.
    """
    if inp.stock_total is None:
        raise SimulationInputError("stock_total is required to simulate a price change")
    if inp.costo is None:
        raise SimulationInputError("costo is required to simulate a price change")
    if inp.precio_actual <= 0:
        raise SimulationInputError(f"precio_actual must be positive, got {inp.precio_actual}")

    stock_total = inp.stock_total
    costo = inp.costo
    delta_precio = (inp.precio_propuesto - inp.precio_actual) / inp.precio_actual

    warnings = []
    ritmo_base = inp.ritmo_actual
    using_cluster_baseline = False
    if inp.ritmo_actual == 0 and ritmo_cluster is not None and ritmo_cluster > 0:
        ritmo_base = zero_velocity_baseline(ritmo_cluster, delta_precio)
        using_cluster_baseline = True
        warnings.append(
            f"📊 Producto sin ventas recientes. Usando "
            f"{ritmo_cluster * ZERO_VELOCITY_CLUSTER_SHARE:.2f} u/día "
            f"(30% del cluster: {ritmo_cluster:.2f} u/día) como estimación base."
        )

    ritmo_proyectado = max(0.0, ritmo_base * (1 + elasticity.value * delta_precio))
    unidades_proyectadas = ritmo_proyectado * inp.horizonte_dias
    unidades_cap = min(unidades_proyectadas, stock_total)

    ingreso = unidades_cap * inp.precio_propuesto
    margen_unitario = inp.precio_propuesto - costo
    margen_total = unidades_cap * margen_unitario
    costo_castigo = (inp.precio_actual - inp.precio_propuesto) * unidades_cap
    sell_out = unidades_cap / stock_total * 100 if stock_total > 0 else 0.0

    if margen_unitario < 0:
        warnings.append("⚠️ El margen unitario queda negativo con este precio")
    if elasticity.confidence == Confidence.BAJA:
        warnings.append(
            f"⚠️ Elasticidad estimada con baja confianza ({elasticity.observations} observaciones)"
        )
    if sell_out < LOW_SELL_OUT_PERCENT and stock_total > 0 and not using_cluster_baseline:
        warnings.append(f"⚠️ Sell-out proyectado bajo ({sell_out:.1f}%)")

    break_even = None
    if min_margin_pct is not None:
        break_even = break_even_price(costo, min_margin_pct)

    return SimulationResult(
        product_code=inp.product_code,
        precio_actual=inp.precio_actual,
        precio_propuesto=inp.precio_propuesto,
        delta_precio_porcentaje=delta_precio * 100,
        elasticidad=elasticity,
        ritmo_actual=inp.ritmo_actual,
        ritmo_proyectado=ritmo_proyectado,
        unidades_proyectadas=unidades_proyectadas,
        unidades_proyectadas_cap=unidades_cap,
        ingreso_proyectado=ingreso,
        costo=costo,
        margen_unitario=margen_unitario,
        margen_total=margen_total,
        costo_castigo=costo_castigo,
        sell_out_proyectado_porcentaje=sell_out,
        stock_total=stock_total,
        horizonte_dias=inp.horizonte_dias,
        warnings=warnings,
        break_even_precio=break_even,
    )


def manual_elasticity(value: float) -> ElasticityInfo:
    return ElasticityInfo(
        value=value,
        confidence=Confidence.MEDIA,
        observations=0,
        method=ElasticityMethod.MANUAL,
    )


class PriceSimulationService:
    """
    Simulation à la demande pour un produit du catalogue.

    Charge le produit, identifie son cluster, estime l'élasticité (sauf
    override manuel) puis appelle `simulate_price_change`.
    """

    def __init__(
        self,
        config: ConfigProvider,
        data_source: SalesDataSource,
        timezone_name: str = "UTC",
    ):
        self.config = config
        self.data_source = data_source
        self.timezone_name = timezone_name
        self.identifier = ClusterIdentifier(config, data_source)
        self.velocity_estimator = ClusterVelocityEstimator(data_source)
        self.elasticity_estimator = ElasticityEstimator(config, data_source)

    async def simulate(
        self,
        product_code: str,
        precio_actual: float,
        precio_propuesto: float,
        horizonte_dias: Optional[int] = None,
        elasticidad: Optional[float] = None,
        as_of: Optional[date] = None,
    ) -> SimulationResult:
        as_of = as_of or today_in_timezone(self.timezone_name)
        thresholds = await self.config.get_thresholds()
        window = thresholds.ritmo_ventana_dias

        snapshot = await self.data_source.fetch_product_snapshot(product_code, as_of, window)
        if snapshot is None:
            raise ProductNotFoundError(f"Product '{product_code}' not found")

        ritmo_actual = snapshot.units_window / window

        cluster = await self.identifier.identify(
            snapshot.category_id, snapshot.gender_id, snapshot.brand_id, precio_actual
        )

        if elasticidad is not None:
            elasticity = manual_elasticity(elasticidad)
        else:
            elasticity = await self.elasticity_estimator.estimate(cluster, as_of)

        if horizonte_dias is None:
            cycle_days = await self.config.get_cycle_days(snapshot.category_id)
            horizonte_dias = cycle_days
            if snapshot.first_sale_date is not None:
                remaining = cycle_days - days_since(snapshot.first_sale_date, as_of)
                if remaining > 0:
                    horizonte_dias = remaining

        ritmo_cluster = None
        if ritmo_actual == 0:
            try:
                ritmo_cluster = await self.velocity_estimator.estimate(
                    cluster, as_of - timedelta(days=window), as_of, VelocityWeighting.UNITS
                )
            except Exception as e:
                logger.warning(f"Cluster velocity unavailable for {product_code}: {e}")

        result = simulate_price_change(
            SimulationInput(
                precio_actual=precio_actual,
                precio_propuesto=precio_propuesto,
                horizonte_dias=horizonte_dias,
                ritmo_actual=ritmo_actual,
                stock_total=snapshot.stock_total,
                costo=snapshot.unit_cost,
                product_code=product_code,
            ),
            elasticity,
            min_margin_pct=thresholds.margen_minimo_aceptable,
            ritmo_cluster=ritmo_cluster,
        )

        logger.info(
            f"Simulated {product_code}: {precio_actual} -> {precio_propuesto} "
            f"({result.delta_precio_porcentaje:+.1f}%), units {result.unidades_proyectadas_cap:.1f}, "
            f"{len(result.warnings)} warning(s)"
        )
        return result
