"""
Setup script for price_actions package.
"""

from setuptools import setup, find_packages

setup(
    name="price-actions-engine",
    version="1.0.0",
    description="Moteur de watchlist et de simulation de prix pour le retail (ritmo, clusters, élasticité)",
    author="PricEye Team",
    packages=find_packages(exclude=["scripts", "*.tests", "*.tests.*"]),
    install_requires=[
        "aiohttp>=3.9.0",
        "supabase>=2.0.0",
        "pandas>=2.0.0",
        "numpy>=1.24.0",
        "python-dotenv>=1.0.0",
        "pytz>=2023.3",
        "python-dateutil>=2.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "price-actions-server=price_actions.server:main",
        ],
    },
    python_requires=">=3.9",
)
