"""
Accès aux données de ventes, stock et catalogue pour le moteur Price Actions.

Ce module fournit une couche d'abstraction entre le moteur et l'entrepôt de
données :
- `SalesDataSource` : contrat asynchrone en lecture seule utilisé par le moteur,
- adaptateurs typés (`candidate_from_row`, ...) : les lignes brutes (dict) sont
  converties ici, le moteur ne manipule jamais de dict non typés,
- `SupabaseSalesDataSource` : implémentation via des fonctions RPC PostgreSQL
  exposées par Supabase (les requêtes SQL elles-mêmes vivent côté base).

Le client Supabase étant synchrone, chaque appel est exécuté dans
l'executor par défaut pour ne pas bloquer la boucle asyncio.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from ..config.settings import Settings
from ..errors import DataSourceError, InvalidJobParameters
from ..models.types import ProductCandidate

logger = logging.getLogger(__name__)

MAX_SEARCH_LENGTH = 200


@dataclass
class WatchlistFilters:
    """Filtres de sélection des candidats (ids de catégorie/marque/genre/magasin, recherche libre)."""

    categories: List[int] = field(default_factory=list)
    brands: List[int] = field(default_factory=list)
    genders: List[int] = field(default_factory=list)
    stores: List[int] = field(default_factory=list)
    search: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WatchlistFilters":
        """
        Construit et valide des filtres depuis un payload JSON.

        Raises:
            InvalidJobParameters: si une liste d'ids ou la recherche est mal formée.
        """
        data = data or {}
        if not isinstance(data, dict):
            raise InvalidJobParameters("filters must be an object")

        def _ids(name: str) -> List[int]:
            raw = data.get(name) or []
            if not isinstance(raw, list):
                raise InvalidJobParameters(f"filters.{name} must be a list of ids")
            ids: List[int] = []
            for value in raw:
                if isinstance(value, bool):
                    raise InvalidJobParameters(f"filters.{name} contains a non-integer id: {value!r}")
                try:
                    ids.append(int(value))
                except (TypeError, ValueError):
                    raise InvalidJobParameters(f"filters.{name} contains a non-integer id: {value!r}")
            return ids

        search = data.get("search")
        if search is not None:
            if not isinstance(search, str):
                raise InvalidJobParameters("filters.search must be a string")
            search = search.strip() or None
            if search and len(search) > MAX_SEARCH_LENGTH:
                raise InvalidJobParameters(f"filters.search is limited to {MAX_SEARCH_LENGTH} characters")

        return cls(
            categories=_ids("categories"),
            brands=_ids("brands"),
            genders=_ids("genders"),
            stores=_ids("stores"),
            search=search,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categories": list(self.categories),
            "brands": list(self.brands),
            "genders": list(self.genders),
            "stores": list(self.stores),
            "search": self.search,
        }


@dataclass
class SkuWindowSales:
    """Ventes d'un SKU du cluster sur une fenêtre."""
    sku: str
    units: float
    days_with_sales: int
    list_price: Optional[float] = None
    avg_unit_price: Optional[float] = None


@dataclass
class MonthlyPricePoint:
    """Point mensuel (prix moyen, unités) d'un SKU du cluster."""
    sku: str
    month: date
    avg_price: float
    units: float
    list_price: Optional[float] = None


@dataclass
class CatalogNames:
    category_name: str = ""
    gender_name: str = ""
    brand_name: str = ""


@dataclass
class ProductSnapshot:
    """Données d'un produit pour le simulateur à la demande."""
    product_code: str
    category_id: int
    gender_id: int
    brand_id: int
    current_price: Optional[float]
    unit_cost: Optional[float]
    stock_total: Optional[float]
    units_window: float
    first_sale_date: Optional[date] = None


class SalesDataSource(ABC):
    """Collaborateur de données (lecture seule) du moteur."""

    @abstractmethod
    async def fetch_candidates(
        self,
        filters: WatchlistFilters,
        as_of: date,
        window_days: int,
        limit: int,
    ) -> List[ProductCandidate]:
        """Produits avec stock > 0 correspondant aux filtres, au plus `limit`."""

    @abstractmethod
    async def fetch_cluster_sales(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
        start: date,
        end: date,
    ) -> List[SkuWindowSales]:
        """Ventes par SKU du triplet catégorie/genre/marque sur [start, end]."""

    @abstractmethod
    async def fetch_monthly_price_series(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
        start: date,
        end: date,
    ) -> List[MonthlyPricePoint]:
        """Série mensuelle prix moyen / unités par SKU du triplet."""

    @abstractmethod
    async def fetch_catalog_names(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
    ) -> CatalogNames:
        """Libellés du triplet (chaînes vides si inconnus)."""

    @abstractmethod
    async def fetch_product_snapshot(
        self,
        product_code: str,
        as_of: date,
        window_days: int,
    ) -> Optional[ProductSnapshot]:
        """Données d'un produit, ou None s'il n'existe pas."""


def _safe_int(value: Any) -> int:
    try:
        if value is None:
            return 0
        return int(value)
    except (TypeError, ValueError):
        return 0


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _float_or_zero(value: Any) -> float:
    parsed = _safe_float(value)
    return parsed if parsed is not None else 0.0


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        # Normaliser la date (enlever l'heure si présente)
        return date.fromisoformat(str(value).split("T")[0].split(" ")[0])
    except ValueError:
        return None


def _required(row: Dict[str, Any], key: str) -> Any:
    value = row.get(key)
    if value is None or value == "":
        raise DataSourceError(f"Missing '{key}' in data source row")
    return value


def candidate_from_row(row: Dict[str, Any]) -> ProductCandidate:
    """Adapte une ligne brute en `ProductCandidate`."""
    stock_on_hand = _float_or_zero(row.get("stock_on_hand"))
    stock_pending = max(_float_or_zero(row.get("stock_pending")), 0.0)
    stock_total = _safe_float(row.get("stock_total"))
    if stock_total is None:
        stock_total = stock_on_hand + stock_pending

    return ProductCandidate(
        product_code=str(_required(row, "product_code")),
        description=row.get("description") or "",
        short_description=row.get("short_description") or "",
        category_id=_safe_int(_required(row, "category_id")),
        category_name=row.get("category_name") or "",
        gender_id=_safe_int(_required(row, "gender_id")),
        gender_name=row.get("gender_name") or "",
        brand_id=_safe_int(_required(row, "brand_id")),
        brand_name=row.get("brand_name") or "",
        current_price=_float_or_zero(row.get("current_price")),
        unit_cost=_float_or_zero(row.get("unit_cost")),
        stock_on_hand=stock_on_hand,
        stock_pending=stock_pending,
        stock_total=stock_total,
        units_7=_float_or_zero(row.get("units_7")),
        units_14=_float_or_zero(row.get("units_14")),
        units_28=_float_or_zero(row.get("units_28")),
        units_window=_float_or_zero(row.get("units_window", row.get("units_14"))),
        units_since_first_sale=_float_or_zero(row.get("units_since_first_sale")),
        first_sale_date=_parse_date(row.get("first_sale_date")),
    )


def sku_sales_from_row(row: Dict[str, Any]) -> SkuWindowSales:
    return SkuWindowSales(
        sku=str(_required(row, "sku")),
        units=_float_or_zero(row.get("units")),
        days_with_sales=_safe_int(row.get("days_with_sales")),
        list_price=_safe_float(row.get("list_price")),
        avg_unit_price=_safe_float(row.get("avg_unit_price")),
    )


def monthly_point_from_row(row: Dict[str, Any]) -> MonthlyPricePoint:
    month = _parse_date(row.get("month"))
    if month is None:
        raise DataSourceError(f"Invalid month in monthly series row: {row.get('month')!r}")
    return MonthlyPricePoint(
        sku=str(_required(row, "sku")),
        month=month,
        avg_price=_float_or_zero(row.get("avg_price")),
        units=_float_or_zero(row.get("units")),
        list_price=_safe_float(row.get("list_price")),
    )


def catalog_names_from_row(row: Optional[Dict[str, Any]]) -> CatalogNames:
    row = row or {}
    return CatalogNames(
        category_name=row.get("category_name") or "",
        gender_name=row.get("gender_name") or "",
        brand_name=row.get("brand_name") or "",
    )


def snapshot_from_row(row: Dict[str, Any]) -> ProductSnapshot:
    return ProductSnapshot(
        product_code=str(_required(row, "product_code")),
        category_id=_safe_int(_required(row, "category_id")),
        gender_id=_safe_int(_required(row, "gender_id")),
        brand_id=_safe_int(_required(row, "brand_id")),
        current_price=_safe_float(row.get("current_price")),
        unit_cost=_safe_float(row.get("unit_cost")),
        stock_total=_safe_float(row.get("stock_total")),
        units_window=_float_or_zero(row.get("units_window")),
        first_sale_date=_parse_date(row.get("first_sale_date")),
    )


_supabase_client: Optional[Client] = None


def get_supabase_client(settings: Optional[Settings] = None) -> Client:
    """
    Retourne un client Supabase partagé.

    Réutilise les variables d'environnement `SUPABASE_URL` et
    `SUPABASE_SERVICE_ROLE_KEY` (ou `SUPABASE_KEY`).
    """
    global _supabase_client

    if _supabase_client is not None:
        return _supabase_client

    settings = settings or Settings.from_env()
    if not settings.supabase_configured:
        raise RuntimeError(
            "Les variables d'environnement SUPABASE_URL et SUPABASE_SERVICE_ROLE_KEY/SUPABASE_KEY "
            "doivent être configurées pour utiliser le moteur Price Actions."
        )

    _supabase_client = create_client(settings.supabase_url, settings.supabase_key)
    return _supabase_client


class SupabaseSalesDataSource(SalesDataSource):
    """
    Implémentation Supabase : une fonction RPC par requête.

    Fonctions attendues côté base :
    - price_actions_candidates(p_as_of, p_window_days, p_limit, p_categories, p_brands,
      p_genders, p_stores, p_search)
    - price_actions_cluster_sales(p_category_id, p_gender_id, p_brand_id, p_start, p_end)
    - price_actions_monthly_series(p_category_id, p_gender_id, p_brand_id, p_start, p_end)
    - price_actions_catalog_names(p_category_id, p_gender_id, p_brand_id)
    - price_actions_product_snapshot(p_product_code, p_as_of, p_window_days)
    """

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        self.settings = settings or Settings.from_env()
        self._client = client

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client(self.settings)
        return self._client

    async def _rpc(self, function_name: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        client = self._get_client()
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: client.rpc(function_name, params).execute()
        )

        # Vérifier si response.data existe (compatible avec différentes versions de Supabase)
        if not hasattr(response, "data"):
            raise DataSourceError(f"Invalid Supabase response for '{function_name}': no 'data' attribute")

        data = response.data or []
        if isinstance(data, dict):
            data = [data]
        return data

    async def fetch_candidates(
        self,
        filters: WatchlistFilters,
        as_of: date,
        window_days: int,
        limit: int,
    ) -> List[ProductCandidate]:
        rows = await self._rpc(
            "price_actions_candidates",
            {
                "p_as_of": as_of.isoformat(),
                "p_window_days": window_days,
                "p_limit": limit,
                "p_categories": filters.categories or None,
                "p_brands": filters.brands or None,
                "p_genders": filters.genders or None,
                "p_stores": filters.stores or None,
                "p_search": filters.search,
            },
        )
        logger.info(f"Retrieved {len(rows)} watchlist candidates from Supabase")
        return [candidate_from_row(row) for row in rows[:limit]]

    async def fetch_cluster_sales(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
        start: date,
        end: date,
    ) -> List[SkuWindowSales]:
        rows = await self._rpc(
            "price_actions_cluster_sales",
            {
                "p_category_id": category_id,
                "p_gender_id": gender_id,
                "p_brand_id": brand_id,
                "p_start": start.isoformat(),
                "p_end": end.isoformat(),
            },
        )
        return [sku_sales_from_row(row) for row in rows]

    async def fetch_monthly_price_series(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
        start: date,
        end: date,
    ) -> List[MonthlyPricePoint]:
        rows = await self._rpc(
            "price_actions_monthly_series",
            {
                "p_category_id": category_id,
                "p_gender_id": gender_id,
                "p_brand_id": brand_id,
                "p_start": start.isoformat(),
                "p_end": end.isoformat(),
            },
        )
        return [monthly_point_from_row(row) for row in rows]

    async def fetch_catalog_names(
        self,
        category_id: int,
        gender_id: int,
        brand_id: int,
    ) -> CatalogNames:
        rows = await self._rpc(
            "price_actions_catalog_names",
            {
                "p_category_id": category_id,
                "p_gender_id": gender_id,
                "p_brand_id": brand_id,
            },
        )
        return catalog_names_from_row(rows[0] if rows else None)

    async def fetch_product_snapshot(
        self,
        product_code: str,
        as_of: date,
        window_days: int,
    ) -> Optional[ProductSnapshot]:
        rows = await self._rpc(
            "price_actions_product_snapshot",
            {
                "p_product_code": product_code,
                "p_as_of": as_of.isoformat(),
                "p_window_days": window_days,
            },
        )
        if not rows:
            return None
        return snapshot_from_row(rows[0])
