"""
Contrat de lecture du store de configuration clé/valeur.

Le moteur ne fait que lire ce store : la persistance (création, mise à jour)
relève de l'application d'administration. Chaque entrée porte sa valeur
sérialisée et son type déclaré ('string', 'number', 'json').
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from supabase import Client, create_client

from ..config.settings import Settings

logger = logging.getLogger(__name__)

CONFIG_TABLE = "price_actions_config"


@dataclass(frozen=True)
class ConfigEntry:
    key: str
    value: str
    config_type: str


class ConfigStore(ABC):
    """Source de configuration en lecture seule."""

    @abstractmethod
    async def get_entry(self, key: str) -> Optional[ConfigEntry]:
        """Retourne l'entrée pour `key`, ou None si la clé n'existe pas."""


class InMemoryConfigStore(ConfigStore):
    """
    Store en mémoire (tests, développement local).

    Les valeurs Python sont sérialisées comme le ferait la table :
    nombres → 'number', listes/dicts → 'json', le reste → 'string'.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._entries: Dict[str, ConfigEntry] = {}
        for key, value in (values or {}).items():
            self.set(key, value)

    def set(self, key: str, value: Any) -> None:
        if isinstance(value, ConfigEntry):
            self._entries[key] = value
        elif isinstance(value, bool):
            self._entries[key] = ConfigEntry(key, str(value).lower(), "string")
        elif isinstance(value, (int, float)):
            self._entries[key] = ConfigEntry(key, str(value), "number")
        elif isinstance(value, (list, dict)):
            self._entries[key] = ConfigEntry(key, json.dumps(value), "json")
        else:
            self._entries[key] = ConfigEntry(key, str(value), "string")

    async def get_entry(self, key: str) -> Optional[ConfigEntry]:
        return self._entries.get(key)


class SupabaseConfigStore(ConfigStore):
    """Lecture de la table `price_actions_config` (config_key, config_value, config_type)."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Client] = None):
        self.settings = settings or Settings.from_env()
        self._client = client

    def _get_client(self) -> Client:
        if self._client is None:
            if not self.settings.supabase_configured:
                raise RuntimeError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY/SUPABASE_KEY must be set "
                    "to read the price actions configuration."
                )
            self._client = create_client(self.settings.supabase_url, self.settings.supabase_key)
        return self._client

    async def get_entry(self, key: str) -> Optional[ConfigEntry]:
        client = self._get_client()
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: client.table(CONFIG_TABLE)
                .select("config_key, config_value, config_type")
                .eq("config_key", key)
                .limit(1)
                .execute()
        )

        rows = getattr(response, "data", None) or []
        if not rows:
            return None

        row = rows[0]
        return ConfigEntry(
            key=row.get("config_key", key),
            value=str(row.get("config_value") or ""),
            config_type=str(row.get("config_type") or "string"),
        )
