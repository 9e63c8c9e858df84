"""Configuration module for the Price Actions engine."""

from .settings import Settings

__all__ = [
    "Settings",
]
