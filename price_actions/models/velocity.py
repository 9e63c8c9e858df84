"""
Métriques de ritmo et de stock d'un produit.

Toutes les divisions sont protégées : un dénominateur nul donne une valeur
sentinelle (0 ou None), jamais inf ou NaN.
"""

from datetime import date
from typing import Optional

from ..utils.dates import days_since
from .types import ProductCandidate, StockMetrics, VelocityMetrics


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    if not denominator:
        return default
    return numerator / denominator


def compute_velocity_metrics(
    candidate: ProductCandidate,
    ritmo_cluster: float,
    ritmo_ventana_dias: int,
    today: date,
) -> VelocityMetrics:
    ritmo_actual = safe_divide(candidate.units_window, max(1, ritmo_ventana_dias))
    dias_desde_inicio = days_since(candidate.first_sale_date, today)
    ritmo_base = candidate.units_since_first_sale / max(1, dias_desde_inicio)

    indice_ritmo = safe_divide(ritmo_actual, ritmo_cluster) if ritmo_cluster > 0 else 0.0

    if ritmo_base > 0:
        indice_desaceleracion = ritmo_actual / ritmo_base
    else:
        # Pas d'historique : pas de désaccélération mesurable
        indice_desaceleracion = 1.0 if ritmo_actual > 0 else 0.0

    return VelocityMetrics(
        ritmo_actual=ritmo_actual,
        ritmo_base=ritmo_base,
        ritmo_cluster=ritmo_cluster,
        indice_ritmo=indice_ritmo,
        indice_desaceleracion=indice_desaceleracion,
    )


def compute_stock_metrics(
    candidate: ProductCandidate,
    ritmo_actual: float,
    cycle_days: int,
    today: date,
) -> StockMetrics:
    dias_stock: Optional[float] = None
    if ritmo_actual > 0:
        dias_stock = candidate.stock_total / ritmo_actual

    dias_desde_inicio = days_since(candidate.first_sale_date, today)
    dias_restantes_ciclo: Optional[int] = None
    if candidate.first_sale_date is not None:
        dias_restantes_ciclo = max(0, cycle_days - dias_desde_inicio)

    return StockMetrics(
        stock_total=candidate.stock_total,
        dias_stock=dias_stock,
        dias_desde_inicio=dias_desde_inicio,
        dias_restantes_ciclo=dias_restantes_ciclo,
    )


def severity_for_index(
    indice_ritmo: float,
    critico: float = 0.6,
    bajo: float = 0.9,
    alto: float = 1.1,
) -> str:
    """Libellé de sévérité d'un indice de ritmo : critico / bajo / normal / alto."""
    if indice_ritmo < critico:
        return "critico"
    if indice_ritmo < bajo:
        return "bajo"
    if indice_ritmo >= alto:
        return "alto"
    return "normal"
