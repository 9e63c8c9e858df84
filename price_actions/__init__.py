"""
Moteur Price Actions : intelligence prix pour le retail.

Ce package contient :
- la configuration (infrastructure + seuils métier lus dans le store clé/valeur),
- les modèles : bandes de prix, clusters, ritmo, élasticité, motifs et score,
- le simulateur de changement de prix,
- l'orchestrateur de jobs asynchrones de watchlist,
- le serveur HTTP (aiohttp) et les interfaces vers Supabase.
"""

__version__ = "1.0.0"
