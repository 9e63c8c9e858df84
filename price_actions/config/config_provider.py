"""
Configuration métier du moteur Price Actions.

Ce module définit les seuils utilisés par la watchlist et le simulateur :
- seuils d'indice de ritmo (critique / bas / haut),
- seuils de désaccélération et de jours de stock,
- fenêtre de calcul du ritmo, ciclo de vente par défaut,
- élasticité de repli et marge minimale acceptable,
- ensembles de bandes de prix (globales ou par catégorie).

Les valeurs sont lues dans le store clé/valeur. Une clé absente donne la
valeur par défaut documentée ; une valeur invalide donne aussi la valeur
par défaut, mais le provider passe alors en mode dégradé (raison loguée).

Un `ConfigProvider` est instancié par exécution de job : il mémorise ses
lectures, si bien qu'un job voit une configuration stable du début à la fin.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import InvalidBandSet
from ..interfaces.config_store import ConfigEntry, ConfigStore
from ..models.price_bands import DEFAULT_PRICE_BANDS, bands_from_config
from ..models.types import PriceBand

logger = logging.getLogger(__name__)

DEFAULT_CYCLE_DAYS = 90


@dataclass(frozen=True)
class Thresholds:
    """Seuils métier (valeurs par défaut = clés absentes du store)."""

    early_days: float = 10
    indice_ritmo_critico: float = 0.6
    indice_ritmo_bajo: float = 0.9
    indice_ritmo_alto: float = 1.1
    indice_desaceleracion: float = 0.7
    dias_stock_alerta: float = 45
    ritmo_ventana_dias: int = 14
    elasticity_fallback: float = -1.0
    elasticity_lookback_months: int = 6
    cluster_cache_price_bucket: float = 500
    # None = pas de marge minimale configurée (pas de prix de break-even)
    margen_minimo_aceptable: Optional[float] = None


_THRESHOLD_KEYS = {
    "early_days": "early_days_threshold",
    "indice_ritmo_critico": "indice_ritmo_critico",
    "indice_ritmo_bajo": "indice_ritmo_bajo",
    "indice_ritmo_alto": "indice_ritmo_alto",
    "indice_desaceleracion": "indice_desaceleracion",
    "dias_stock_alerta": "dias_stock_alerta",
    "ritmo_ventana_dias": "ritmo_ventana_dias",
    "elasticity_fallback": "elasticity_fallback",
    "elasticity_lookback_months": "elasticity_lookback_months",
    "cluster_cache_price_bucket": "cluster_cache_price_bucket",
}

_INTEGER_FIELDS = {"ritmo_ventana_dias", "elasticity_lookback_months"}
_POSITIVE_FIELDS = {"ritmo_ventana_dias", "elasticity_lookback_months", "cluster_cache_price_bucket"}


class ConfigProvider:
    """
    Lecture typée de la configuration, avec valeurs par défaut.

    Ne lève jamais d'exception : toute anomalie est convertie en valeur par
    défaut et enregistrée dans `degraded_reasons`.
    """

    def __init__(self, store: ConfigStore):
        self._store = store
        self._entries: Dict[str, Optional[ConfigEntry]] = {}
        self._thresholds: Optional[Thresholds] = None
        self.degraded_reasons: List[str] = []

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_reasons)

    def _mark_degraded(self, reason: str) -> None:
        if reason not in self.degraded_reasons:
            logger.warning(f"[Config] Degraded mode: {reason}")
            self.degraded_reasons.append(reason)

    async def _entry(self, key: str) -> Optional[ConfigEntry]:
        if key in self._entries:
            return self._entries[key]
        try:
            entry = await self._store.get_entry(key)
        except Exception as e:
            self._mark_degraded(f"config store unavailable for '{key}' ({e})")
            entry = None
        self._entries[key] = entry
        return entry

    async def get_number(self, key: str, default: float) -> float:
        value = await self.get_optional_number(key)
        return default if value is None else value

    async def get_optional_number(self, key: str) -> Optional[float]:
        entry = await self._entry(key)
        if entry is None:
            return None
        if entry.config_type != "number":
            self._mark_degraded(f"'{key}' has type '{entry.config_type}', expected 'number'")
            return None
        try:
            return float(entry.value)
        except (TypeError, ValueError):
            self._mark_degraded(f"'{key}' is not a number: {entry.value!r}")
            return None

    async def get_thresholds(self) -> Thresholds:
        if self._thresholds is not None:
            return self._thresholds

        defaults = Thresholds()
        values = {}
        for field_name, key in _THRESHOLD_KEYS.items():
            default = getattr(defaults, field_name)
            value = await self.get_number(key, default)
            if field_name in _POSITIVE_FIELDS and value <= 0:
                self._mark_degraded(f"'{key}' must be positive, got {value}")
                value = default
            if field_name in _INTEGER_FIELDS:
                value = int(value)
            values[field_name] = value

        margen = await self.get_optional_number("margen_minimo_aceptable")
        if margen is not None and not 0 <= margen < 100:
            self._mark_degraded(f"'margen_minimo_aceptable' must be in [0, 100), got {margen}")
            margen = None
        values["margen_minimo_aceptable"] = margen

        self._thresholds = Thresholds(**values)
        return self._thresholds

    async def _bands_for_key(self, key: str) -> Optional[List[PriceBand]]:
        entry = await self._entry(key)
        if entry is None:
            return None
        if entry.config_type != "json":
            self._mark_degraded(f"'{key}' has type '{entry.config_type}', expected 'json'")
            return None
        try:
            return bands_from_config(json.loads(entry.value))
        except (json.JSONDecodeError, InvalidBandSet) as e:
            self._mark_degraded(f"'{key}' is not a valid price band set ({e})")
            return None

    async def get_global_price_bands(self) -> List[PriceBand]:
        bands = await self._bands_for_key("price_bands_global")
        return bands if bands is not None else list(DEFAULT_PRICE_BANDS)

    async def get_price_bands(self, category_id: Optional[int] = None) -> List[PriceBand]:
        """Bandes de la catégorie si elles existent, sinon les bandes globales."""
        if category_id is not None:
            bands = await self._bands_for_key(f"price_bands_category_{category_id}")
            if bands is not None:
                return bands
        return await self.get_global_price_bands()

    async def get_cycle_days(self, category_id: Optional[int] = None) -> int:
        """Durée du ciclo de vente (jours) pour la catégorie, sinon la valeur par défaut."""
        default = await self.get_number("cycle_days_default", DEFAULT_CYCLE_DAYS)
        if default <= 0:
            self._mark_degraded(f"'cycle_days_default' must be positive, got {default}")
            default = DEFAULT_CYCLE_DAYS
        if category_id is not None:
            value = await self.get_optional_number(f"cycle_days_category_{category_id}")
            if value is not None and value > 0:
                return int(value)
        return int(default)
