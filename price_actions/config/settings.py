"""
Configuration générale du moteur Price Actions.

Paramètres d'infrastructure (Supabase, fuseau, limites des jobs, serveur).
Les seuils métier, eux, viennent du store clé/valeur via `ConfigProvider`.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Charger .env depuis la racine du projet
project_root = Path(__file__).parent.parent.parent
load_dotenv(dotenv_path=project_root / ".env")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Configuration globale du moteur."""

    # Base de données
    supabase_url: str = ""
    supabase_key: str = ""

    # Fuseau du commerce (calcul du "jour courant" des fenêtres de vente)
    default_timezone: str = "UTC"

    # Jobs de watchlist
    max_concurrent_jobs: int = 2
    max_candidates: int = 200
    max_candidates_limit: int = 1000
    batch_size: int = 20
    max_batch_size: int = 100
    job_timeout_seconds: float = 600

    # Lecture des résultats
    default_page_size: int = 50
    max_page_size: int = 200

    # Serveur HTTP
    server_host: str = "0.0.0.0"
    server_port: int = 8080

    # Logging
    log_level: str = "INFO"

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """Crée une instance Settings depuis les variables d'environnement."""
        return cls(
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", os.getenv("SUPABASE_KEY", "")),
            default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC"),
            max_concurrent_jobs=_env_int("PRICE_ACTIONS_MAX_CONCURRENT_JOBS", 2),
            max_candidates=_env_int("PRICE_ACTIONS_MAX_CANDIDATES", 200),
            max_candidates_limit=_env_int("PRICE_ACTIONS_MAX_CANDIDATES_LIMIT", 1000),
            batch_size=_env_int("PRICE_ACTIONS_BATCH_SIZE", 20),
            job_timeout_seconds=_env_int("PRICE_ACTIONS_JOB_TIMEOUT_SECONDS", 600),
            max_page_size=_env_int("PRICE_ACTIONS_MAX_PAGE_SIZE", 200),
            server_host=os.getenv("SERVER_HOST", "0.0.0.0"),
            server_port=_env_int("SERVER_PORT", 8080),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
