"""
Exceptions métier du moteur Price Actions.

Le serveur HTTP les traduit en codes de statut (404, 409, 400) selon le type.
Elles ne dépendent d'aucun framework.
"""


class PriceActionsError(Exception):
    """Base pour les erreurs métier du moteur."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidBandSet(PriceActionsError):
    """Ensemble de bandes de prix invalide (vide, bande incohérente ou chevauchement)."""


class InvalidJobParameters(PriceActionsError, ValueError):
    """Paramètres de job (filtres, fenêtres, pagination, tri) invalides."""


class JobNotFoundError(PriceActionsError):
    """Aucun job avec cet identifiant."""


class JobNotReadyError(PriceActionsError):
    """Le job n'est pas terminé avec succès, les résultats ne sont pas disponibles."""

    def __init__(self, message: str, status: str) -> None:
        self.status = status
        super().__init__(message)


class ProductNotFoundError(PriceActionsError):
    """Produit inconnu du collaborateur de données."""


class SimulationInputError(PriceActionsError, ValueError):
    """Entrée obligatoire manquante ou incohérente pour le simulateur."""


class DataSourceError(PriceActionsError):
    """Réponse invalide du collaborateur de données."""
