"""
Motifs d'inclusion et score de priorité de la watchlist.

Le score (0-100) combine quatre composantes heuristiques :
- sévérité de l'indice de ritmo (0-40),
- jours de stock vs jours restants du ciclo (0-30),
- marge unitaire en % du prix (0-20),
- stock total / capital immobilisé (0-10).
"""

import math
from typing import List

from ..config.config_provider import Thresholds
from .types import ScoreBreakdown, StockMetrics, VelocityMetrics, WatchlistReason

# Seuils fixes des règles Early / Desacelera
EARLY_INDICE_RITMO = 0.7
EARLY_CLUSTER_SHARE = 0.6
DESACELERA_INDICE_RITMO = 0.8


def classify_reasons(
    velocity: VelocityMetrics,
    stock: StockMetrics,
    units_14: float,
    thresholds: Thresholds,
) -> List[WatchlistReason]:
    """Retourne les motifs applicables (liste vide = produit hors watchlist)."""
    reasons: List[WatchlistReason] = []

    # Échec précoce
    if stock.dias_desde_inicio >= thresholds.early_days and (
        velocity.indice_ritmo < EARLY_INDICE_RITMO
        or velocity.ritmo_actual < EARLY_CLUSTER_SHARE * velocity.ritmo_cluster
    ):
        reasons.append(WatchlistReason.EARLY)

    # Désaccélération
    high_stock_days = stock.dias_stock is not None and stock.dias_stock > thresholds.dias_stock_alerta
    if (
        velocity.indice_desaceleracion < thresholds.indice_desaceleracion
        and stock.stock_total > 0
        and (high_stock_days or velocity.indice_ritmo < DESACELERA_INDICE_RITMO)
    ):
        reasons.append(WatchlistReason.DESACELERA)

    # Surstock vs ciclo restant
    if (
        stock.dias_stock is not None
        and stock.dias_restantes_ciclo is not None
        and stock.dias_stock > stock.dias_restantes_ciclo
    ):
        reasons.append(WatchlistReason.SOBRESTOCK)

    # Sans traction
    if units_14 == 0 and stock.stock_total > 0:
        reasons.append(WatchlistReason.SIN_TRACCION)

    return reasons


def _rate_score(indice_ritmo: float, thresholds: Thresholds) -> int:
    if indice_ritmo < thresholds.indice_ritmo_critico:
        return 40
    if indice_ritmo < thresholds.indice_ritmo_bajo:
        return 25
    if indice_ritmo < 1.0:
        return 10
    return 0


def _stock_days_score(stock: StockMetrics, thresholds: Thresholds) -> int:
    if stock.dias_stock is not None and stock.dias_restantes_ciclo is not None:
        if stock.dias_restantes_ciclo == 0:
            ratio = math.inf if stock.dias_stock > 0 else 0.0
        else:
            ratio = stock.dias_stock / stock.dias_restantes_ciclo
        if ratio > 2.0:
            return 30
        if ratio > 1.5:
            return 20
        if ratio > 1.0:
            return 10
        return 0
    if stock.dias_stock is not None and stock.dias_stock > thresholds.dias_stock_alerta:
        return 15
    return 0


def _margin_score(margen_porcentaje: float) -> int:
    if margen_porcentaje > 50:
        return 20
    if margen_porcentaje > 30:
        return 12
    if margen_porcentaje > 15:
        return 6
    return 0


def _capital_score(stock_total: float) -> int:
    if stock_total > 100:
        return 10
    if stock_total > 50:
        return 6
    if stock_total > 20:
        return 3
    return 0


def margin_percentage(price: float, cost: float) -> float:
    if price <= 0:
        return 0.0
    return (price - cost) / price * 100


def score_item(
    velocity: VelocityMetrics,
    stock: StockMetrics,
    current_price: float,
    unit_cost: float,
    thresholds: Thresholds,
) -> ScoreBreakdown:
    """Calcule le score de priorité et son explication."""
    margen_porcentaje = margin_percentage(current_price, unit_cost)

    rate = _rate_score(velocity.indice_ritmo, thresholds)
    stock_days = _stock_days_score(stock, thresholds)
    margin = _margin_score(margen_porcentaje)
    capital = _capital_score(stock.stock_total)

    explanations: List[str] = []
    if rate >= 25:
        level = "crítico" if velocity.indice_ritmo < thresholds.indice_ritmo_critico else "bajo"
        explanations.append(f"Ritmo {level} ({velocity.indice_ritmo:.2f}x del cluster)")
    if stock_days >= 10:
        days = f"{stock.dias_stock:.0f}" if stock.dias_stock is not None else "N/A"
        explanations.append(f"Stock alto vs ciclo ({days} días)")
    if margin >= 6:
        explanations.append(f"Margen alto ({margen_porcentaje:.1f}%)")
    if capital >= 3:
        explanations.append(f"Capital inmovilizado ({stock.stock_total:g} unidades)")

    return ScoreBreakdown(
        indice_ritmo_score=rate,
        dias_stock_score=stock_days,
        margen_score=margin,
        stock_score=capital,
        explanation=" • ".join(explanations) if explanations else "Prioridad normal",
    )
