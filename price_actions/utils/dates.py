"""
Utilitaires de dates pour le moteur Price Actions.

Le "jour courant" d'un job est calculé dans le fuseau horaire du commerce
(`Settings.default_timezone`) et non en UTC, pour que les fenêtres
7/14/28 jours correspondent aux journées de vente réelles.
"""

import logging
import math
from datetime import date, datetime
from typing import Optional

import pytz
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


def today_in_timezone(timezone_name: str) -> date:
    """
    Retourne la date du jour dans le fuseau donné.

    Fuseau inconnu → UTC (avec un warning).
    """
    try:
        tz = pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{timezone_name}', falling back to UTC")
        tz = pytz.UTC
    return datetime.now(tz).date()


def now_utc() -> datetime:
    return datetime.now(pytz.UTC)


def months_back(day: date, months: int) -> date:
    """Même jour, `months` mois plus tôt (fin de mois gérée par relativedelta)."""
    return day - relativedelta(months=months)


def window_days(start: date, end: date) -> int:
    """Nombre de jours d'une fenêtre [start, end], minimum 1."""
    return max(1, (end - start).days)


def days_since(first_sale: Optional[date], today: date) -> int:
    """
    Jours écoulés depuis la première vente (arrondi supérieur, minimum 1).

    0 si le produit n'a jamais vendu.
    """
    if first_sale is None:
        return 0
    elapsed = (today - first_sale).total_seconds() / 86400
    return max(1, math.ceil(elapsed))
