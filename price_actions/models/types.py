"""
Types du domaine Price Actions.

Valeurs immuables (bandes, clusters) et structures de résultat
(métriques, items de watchlist, simulations) partagées par les modules
du moteur. Aucune logique d'accès aux données ici.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional


class Confidence(str, Enum):
    """Niveau de confiance d'une élasticité."""
    ALTA = "alta"
    MEDIA = "media"
    BAJA = "baja"


class ElasticityMethod(str, Enum):
    CLUSTER = "cluster"
    MANUAL = "manual"
    FALLBACK = "fallback"


class WatchlistReason(str, Enum):
    """Motifs d'inclusion dans la watchlist."""
    EARLY = "Early"
    DESACELERA = "Desacelera"
    SOBRESTOCK = "Sobrestock"
    SIN_TRACCION = "Sin tracción"


class VelocityWeighting(str, Enum):
    """Pondération du ritmo de cluster : par unités vendues ou par jours avec vente."""
    UNITS = "unidades"
    DAYS = "dias"


class JobStatus(str, Enum):
    """Statuts d'un job de watchlist."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


def _format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


@dataclass(frozen=True)
class PriceBand:
    """
    Bande de prix [min, max].

    La tranche ouverte au-dessus de la dernière bande est représentée
    avec `max = inf` (libellé "<min>+").
    """
    min: float
    max: float

    @property
    def is_open_ended(self) -> bool:
        return math.isinf(self.max)

    @property
    def label(self) -> str:
        if self.is_open_ended:
            return f"{_format_amount(self.min)}+"
        return f"{_format_amount(self.min)}-{_format_amount(self.max)}"

    def contains(self, price: float) -> bool:
        return self.min <= price <= self.max


UNKNOWN_BAND_LABEL = "unknown"


@dataclass(frozen=True)
class Cluster:
    """Groupe de pairs : catégorie, genre, marque et bande de prix."""
    category_id: int
    category_name: str
    gender_id: int
    gender_name: str
    brand_id: int
    brand_name: str
    price_band: Optional[PriceBand]

    @property
    def price_band_label(self) -> str:
        return self.price_band.label if self.price_band is not None else UNKNOWN_BAND_LABEL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "gender_id": self.gender_id,
            "gender_name": self.gender_name,
            "brand_id": self.brand_id,
            "brand_name": self.brand_name,
            "price_band": self.price_band_label,
        }


@dataclass
class ProductCandidate:
    """Produit candidat à la watchlist, tel que renvoyé par le collaborateur de données."""
    product_code: str
    description: str
    short_description: str
    category_id: int
    category_name: str
    gender_id: int
    gender_name: str
    brand_id: int
    brand_name: str
    current_price: float
    unit_cost: float
    stock_on_hand: float
    stock_pending: float
    stock_total: float
    units_7: float
    units_14: float
    units_28: float
    units_window: float
    units_since_first_sale: float
    first_sale_date: Optional[date] = None


@dataclass
class VelocityMetrics:
    ritmo_actual: float
    ritmo_base: float
    ritmo_cluster: float
    indice_ritmo: float
    indice_desaceleracion: float


@dataclass
class StockMetrics:
    stock_total: float
    dias_stock: Optional[float]
    dias_desde_inicio: int
    dias_restantes_ciclo: Optional[int]


@dataclass
class ElasticityInfo:
    value: float
    confidence: Confidence
    observations: int
    method: ElasticityMethod
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "confidence": self.confidence.value,
            "observations": self.observations,
            "method": self.method.value,
            "warning": self.warning,
        }


@dataclass
class ScoreBreakdown:
    """Composantes du score de priorité (0-100)."""
    indice_ritmo_score: int
    dias_stock_score: int
    margen_score: int
    stock_score: int
    explanation: str

    @property
    def total(self) -> int:
        return self.indice_ritmo_score + self.dias_stock_score + self.margen_score + self.stock_score


@dataclass
class WatchlistItem:
    candidate: ProductCandidate
    cluster: Cluster
    velocity: VelocityMetrics
    stock: StockMetrics
    reasons: List[WatchlistReason]
    breakdown: ScoreBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.total

    @property
    def margen_porcentaje(self) -> float:
        price = self.candidate.current_price
        if price <= 0:
            return 0.0
        return (price - self.candidate.unit_cost) / price * 100

    def to_dict(self) -> Dict[str, Any]:
        c = self.candidate
        return {
            "product_code": c.product_code,
            "description": c.description,
            "short_description": c.short_description,
            "category_id": c.category_id,
            "category_name": c.category_name,
            "gender_id": c.gender_id,
            "gender_name": c.gender_name,
            "brand_id": c.brand_id,
            "brand_name": c.brand_name,
            "price_band": self.cluster.price_band_label,
            "current_price": c.current_price,
            "unit_cost": c.unit_cost,
            "margen_porcentaje": round(self.margen_porcentaje, 2),
            "stock_on_hand": c.stock_on_hand,
            "stock_pending": c.stock_pending,
            "stock_total": c.stock_total,
            "units_7": c.units_7,
            "units_14": c.units_14,
            "units_28": c.units_28,
            "first_sale_date": c.first_sale_date.isoformat() if c.first_sale_date else None,
            "ritmo_actual": self.velocity.ritmo_actual,
            "ritmo_base": self.velocity.ritmo_base,
            "ritmo_cluster": self.velocity.ritmo_cluster,
            "indice_ritmo": self.velocity.indice_ritmo,
            "indice_desaceleracion": self.velocity.indice_desaceleracion,
            "dias_stock": self.stock.dias_stock,
            "dias_desde_inicio": self.stock.dias_desde_inicio,
            "dias_restantes_ciclo": self.stock.dias_restantes_ciclo,
            "reasons": [r.value for r in self.reasons],
            "score": self.score,
            "score_breakdown": {
                "indice_ritmo": self.breakdown.indice_ritmo_score,
                "dias_stock": self.breakdown.dias_stock_score,
                "margen": self.breakdown.margen_score,
                "stock": self.breakdown.stock_score,
            },
            "score_explanation": self.breakdown.explanation,
            "cluster": self.cluster.to_dict(),
        }


@dataclass
class SimulationInput:
    precio_actual: float
    precio_propuesto: float
    horizonte_dias: int
    ritmo_actual: float
    stock_total: Optional[float]
    costo: Optional[float]
    product_code: Optional[str] = None


@dataclass
class SimulationResult:
    product_code: Optional[str]
    precio_actual: float
    precio_propuesto: float
    delta_precio_porcentaje: float
    elasticidad: ElasticityInfo
    ritmo_actual: float
    ritmo_proyectado: float
    unidades_proyectadas: float
    unidades_proyectadas_cap: float
    ingreso_proyectado: float
    costo: float
    margen_unitario: float
    margen_total: float
    costo_castigo: float
    sell_out_proyectado_porcentaje: float
    stock_total: float
    horizonte_dias: int
    warnings: List[str] = field(default_factory=list)
    break_even_precio: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["elasticidad"] = self.elasticidad.to_dict()
        return data
