"""
Résolution et validation des bandes de prix.

Une bande est un intervalle fermé [min, max]. Un ensemble valide est trié
par `min`, sans chevauchement, avec `min >= 0` et `max > min` pour chaque bande.
"""

import math
import re
from typing import Any, List, Optional, Sequence

from ..errors import InvalidBandSet
from .types import PriceBand

# Bandes utilisées quand la configuration est absente ou invalide
DEFAULT_PRICE_BANDS: List[PriceBand] = [
    PriceBand(0, 1490),
    PriceBand(1491, 1790),
    PriceBand(1791, 2090),
    PriceBand(2091, 2490),
    PriceBand(2491, 2990),
    PriceBand(2991, 999999),
]

_BAND_STRING_RE = re.compile(r"^(\d+(?:\.\d+)?)-(\d+(?:\.\d+)?)$")


def resolve_price_band(price: float, bands: Sequence[PriceBand]) -> Optional[PriceBand]:
    """
    Retourne la bande qui contient `price`.

    - tranche ouverte "<max>+" si le prix dépasse le max de la dernière bande,
    - None ("unknown") si l'ensemble est vide ou si le prix tombe hors de toute bande.
    """
    if not bands:
        return None

    ordered = sorted(bands, key=lambda b: b.min)
    for band in ordered:
        if band.contains(price):
            return band

    last = ordered[-1]
    if price > last.max:
        return PriceBand(last.max, math.inf)

    return None


def validate_price_bands(bands: Sequence[PriceBand]) -> None:
    """
    Valide un ensemble de bandes.

    Raises:
        InvalidBandSet: ensemble vide, bande avec min < 0 ou max <= min,
            ou bandes qui se chevauchent une fois triées par min.
    """
    if not bands:
        raise InvalidBandSet("At least one price band is required")

    ordered = sorted(bands, key=lambda b: b.min)

    for band in ordered:
        if band.min < 0 or band.max <= band.min:
            raise InvalidBandSet(f"Invalid price band [{band.min}-{band.max}]")

    for current, following in zip(ordered, ordered[1:]):
        if current.max >= following.min:
            raise InvalidBandSet(
                f"Overlapping price bands: [{current.min}-{current.max}] "
                f"and [{following.min}-{following.max}]"
            )


def bands_from_config(raw: Any) -> List[PriceBand]:
    """
    Convertit une valeur de configuration (liste de {min, max}) en bandes triées.

    Raises:
        InvalidBandSet: si la structure n'est pas exploitable ou si l'ensemble est invalide.
    """
    if not isinstance(raw, list):
        raise InvalidBandSet(f"Price bands must be a list, got {type(raw).__name__}")

    bands: List[PriceBand] = []
    for entry in raw:
        try:
            bands.append(PriceBand(float(entry["min"]), float(entry["max"])))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidBandSet(f"Malformed price band entry {entry!r}: {e}") from e

    validate_price_bands(bands)
    return sorted(bands, key=lambda b: b.min)


def parse_price_band_string(value: str) -> Optional[PriceBand]:
    """Parse un libellé "0-1490" en bande, ou None si le format est invalide."""
    match = _BAND_STRING_RE.match(value.strip())
    if not match:
        return None
    low, high = float(match.group(1)), float(match.group(2))
    if low >= high:
        return None
    return PriceBand(low, high)


def format_price_band(band: Optional[PriceBand]) -> str:
    """Formate une bande pour l'affichage ("$0 - $1490", "$2991+")."""
    if band is None:
        return "unknown"
    if band.is_open_ended or band.max >= 999999:
        return f"${band.min:g}+"
    return f"${band.min:g} - ${band.max:g}"
