"""
Script pour exécuter un job de watchlist en ligne de commande.

Usage:
    python -m scripts.run_watchlist --max-candidates 200 --top 20
    python -m scripts.run_watchlist --categories 10,11 --as-of 2024-06-30 --json

Le job tourne en local (même orchestrateur que le serveur) sur les données
Supabase ; les N premiers items par score sont affichés.
"""

import argparse
import asyncio
import json
import logging
import sys

from price_actions.config.settings import Settings
from price_actions.errors import PriceActionsError
from price_actions.interfaces.config_store import SupabaseConfigStore
from price_actions.interfaces.data_access import SupabaseSalesDataSource
from price_actions.jobs.watchlist_job import WatchlistJobManager
from price_actions.models.types import JobStatus

logger = logging.getLogger(__name__)


def _ids(raw):
    if not raw:
        return []
    return [int(v) for v in raw.split(",") if v.strip()]


async def run(args: argparse.Namespace) -> int:
    settings = Settings.from_env()
    if not settings.supabase_configured:
        logger.error("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY/SUPABASE_KEY must be set")
        return 1

    manager = WatchlistJobManager(
        SupabaseSalesDataSource(settings=settings),
        SupabaseConfigStore(settings=settings),
        settings,
    )

    payload = {
        "filters": {"categories": _ids(args.categories), "brands": _ids(args.brands)},
        "maxCandidates": args.max_candidates,
        "batchSize": args.batch_size,
        "ponderacion": args.ponderacion,
    }
    if args.as_of:
        payload["asOf"] = args.as_of

    job = await manager.start_job(payload)
    await manager.wait_for_job(job.job_id)

    if job.status != JobStatus.COMPLETED:
        logger.error(f"Job {job.job_id} ended {job.status.value}: {job.error_message}")
        return 1

    result = manager.get_result(job.job_id, page=1, page_size=args.top)

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0

    summary = result["summary"]
    print(f"\n{'=' * 70}")
    print(f"Watchlist : {summary['totalItems']} produit(s), score moyen {summary['averageScore']}")
    print(f"  critiques: {summary['criticalCount']}  bas: {summary['lowCount']}  normaux: {summary['normalCount']}")
    for motivo in summary["topMotivos"]:
        print(f"  - {motivo['motivo']}: {motivo['count']}")
    print(f"{'=' * 70}")
    for item in result["items"]:
        print(
            f"{item['score']:>3}  {item['product_code']:<20} {item['price_band']:<12} "
            f"ritmo {item['ritmo_actual']:.2f} / cluster {item['ritmo_cluster']:.2f}  "
            f"[{', '.join(item['reasons'])}]"
        )
    for warning in job.warnings:
        print(f"⚠️  {warning}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Exécute un job de watchlist Price Actions.")
    parser.add_argument("--categories", default="", help="Ids de catégorie séparés par des virgules.")
    parser.add_argument("--brands", default="", help="Ids de marque séparés par des virgules.")
    parser.add_argument("--max-candidates", type=int, default=200)
    parser.add_argument("--batch-size", type=int, default=20)
    parser.add_argument("--ponderacion", choices=["unidades", "dias"], default="unidades")
    parser.add_argument("--as-of", default=None, help="Date de référence (YYYY-MM-DD).")
    parser.add_argument("--top", type=int, default=20, help="Nombre d'items affichés.")
    parser.add_argument("--json", action="store_true", help="Sortie JSON brute.")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        sys.exit(asyncio.run(run(args)))
    except (PriceActionsError, ValueError) as e:
        logger.error(f"Watchlist run failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
