"""
Script pour simuler l'impact d'une grille de prix proposés sur un produit.

Usage:
    python -m scripts.simulate_price_grid --product-code SKU --precio-actual 1990 --price-grid 1790,1590,1390

L'élasticité est estimée pour le cluster du produit, sauf si elle est
fournie avec --elasticidad. Le résultat est affiché en JSON sur stdout.
"""

import argparse
import asyncio
import json
import logging
import sys

from price_actions.config.config_provider import ConfigProvider
from price_actions.config.settings import Settings
from price_actions.errors import PriceActionsError
from price_actions.interfaces.config_store import SupabaseConfigStore
from price_actions.interfaces.data_access import SupabaseSalesDataSource
from price_actions.simulator import PriceSimulationService


async def simulate_grid(args: argparse.Namespace, price_grid) -> list:
    settings = Settings.from_env()
    service = PriceSimulationService(
        ConfigProvider(SupabaseConfigStore(settings=settings)),
        SupabaseSalesDataSource(settings=settings),
        settings.default_timezone,
    )

    results = []
    for precio in price_grid:
        result = await service.simulate(
            args.product_code,
            args.precio_actual,
            precio,
            horizonte_dias=args.horizonte_dias,
            elasticidad=args.elasticidad,
        )
        results.append(result.to_dict())
    return results


def main() -> None:
    parser = argparse.ArgumentParser(description="Simule une grille de prix pour un produit.")
    parser.add_argument("--product-code", required=True, help="Code produit (baseCol).")
    parser.add_argument("--precio-actual", required=True, type=float, help="Prix actuel.")
    parser.add_argument("--price-grid", required=True, help="Prix proposés séparés par des virgules.")
    parser.add_argument("--horizonte-dias", type=int, default=None, help="Horizon en jours (défaut : ciclo restant).")
    parser.add_argument("--elasticidad", type=float, default=None, help="Élasticité manuelle (facultatif).")
    parser.add_argument("--verbose", action="store_true", help="Logs détaillés sur stderr.")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        price_grid = [float(p.strip()) for p in args.price_grid.split(",") if p.strip()]
    except ValueError:
        print(f"❌ Erreur: Format de grille de prix invalide: {args.price_grid}", file=sys.stderr)
        sys.exit(1)

    if not price_grid or any(p <= 0 for p in price_grid):
        print("❌ Erreur: La grille doit contenir des prix positifs", file=sys.stderr)
        sys.exit(1)

    try:
        simulations = asyncio.run(simulate_grid(args, price_grid))
    except PriceActionsError as e:
        print(f"❌ Erreur lors de la simulation: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(simulations, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
