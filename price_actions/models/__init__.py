"""
Sous-package `models` du moteur Price Actions.

- `types` : valeurs du domaine (bandes, clusters, métriques, résultats),
- `price_bands` : résolution et validation des bandes de prix,
- `cluster` : identification des clusters et ritmo de cluster,
- `velocity` : métriques de ritmo et de stock par produit,
- `elasticity` : élasticité prix-demande par cluster,
- `scorer` : motifs d'inclusion et score de priorité.
"""

from .types import (
    Cluster,
    Confidence,
    ElasticityInfo,
    ElasticityMethod,
    JobStatus,
    PriceBand,
    ProductCandidate,
    SimulationInput,
    SimulationResult,
    VelocityWeighting,
    WatchlistItem,
    WatchlistReason,
)

__all__ = [
    "Cluster",
    "Confidence",
    "ElasticityInfo",
    "ElasticityMethod",
    "JobStatus",
    "PriceBand",
    "ProductCandidate",
    "SimulationInput",
    "SimulationResult",
    "VelocityWeighting",
    "WatchlistItem",
    "WatchlistReason",
]
