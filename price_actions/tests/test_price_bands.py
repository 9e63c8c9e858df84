"""
Tests unitaires pour price_bands.py
"""

import math

import pytest

from price_actions.errors import InvalidBandSet
from price_actions.models.price_bands import (
    DEFAULT_PRICE_BANDS,
    bands_from_config,
    format_price_band,
    parse_price_band_string,
    resolve_price_band,
    validate_price_bands,
)
from price_actions.models.types import PriceBand


class TestResolvePriceBand:
    """Tests pour resolve_price_band."""

    def test_price_inside_band(self):
        """Un prix à l'intérieur d'une bande retourne cette bande."""
        band = resolve_price_band(1600, DEFAULT_PRICE_BANDS)
        assert band == PriceBand(1491, 1790)
        assert band.label == "1491-1790"

    def test_bounds_are_inclusive(self):
        """Les bornes min et max appartiennent à la bande."""
        assert resolve_price_band(0, DEFAULT_PRICE_BANDS) == PriceBand(0, 1490)
        assert resolve_price_band(1490, DEFAULT_PRICE_BANDS) == PriceBand(0, 1490)
        assert resolve_price_band(1491, DEFAULT_PRICE_BANDS) == PriceBand(1491, 1790)

    def test_open_ended_bucket_above_last_band(self):
        """Au-delà du dernier max : tranche ouverte "<max>+"."""
        bands = [PriceBand(0, 100), PriceBand(101, 200)]
        band = resolve_price_band(250, bands)
        assert band.is_open_ended
        assert band.min == 200
        assert math.isinf(band.max)
        assert band.label == "200+"

    def test_empty_band_set_is_unknown(self):
        """Ensemble vide → None (unknown)."""
        assert resolve_price_band(100, []) is None

    def test_gap_between_bands_is_unknown(self):
        """Un prix dans un trou entre deux bandes → None."""
        bands = [PriceBand(0, 100), PriceBand(200, 300)]
        assert resolve_price_band(150, bands) is None

    def test_unsorted_bands(self):
        """L'ordre de l'ensemble n'a pas d'importance."""
        bands = [PriceBand(101, 200), PriceBand(0, 100)]
        assert resolve_price_band(50, bands) == PriceBand(0, 100)
        assert resolve_price_band(500, bands).label == "200+"

    def test_at_most_one_band_matches(self):
        """Pour un ensemble valide, un seul résultat possible par prix."""
        validate_price_bands(DEFAULT_PRICE_BANDS)
        for price in (0, 500, 1490, 1491, 2090, 2991, 5000):
            matches = [b for b in DEFAULT_PRICE_BANDS if b.contains(price)]
            assert len(matches) <= 1


class TestValidatePriceBands:
    """Tests pour validate_price_bands."""

    def test_default_bands_are_valid(self):
        validate_price_bands(DEFAULT_PRICE_BANDS)

    def test_empty_set_rejected(self):
        with pytest.raises(InvalidBandSet):
            validate_price_bands([])

    def test_negative_min_rejected(self):
        with pytest.raises(InvalidBandSet):
            validate_price_bands([PriceBand(-1, 100)])

    def test_max_not_greater_than_min_rejected(self):
        with pytest.raises(InvalidBandSet):
            validate_price_bands([PriceBand(100, 100)])

    def test_overlap_rejected(self):
        """max[i] >= min[i+1] est un chevauchement."""
        with pytest.raises(InvalidBandSet, match="Overlapping"):
            validate_price_bands([PriceBand(0, 100), PriceBand(100, 200)])


class TestBandsFromConfig:
    """Tests pour bands_from_config."""

    def test_parses_and_sorts(self):
        bands = bands_from_config([{"min": 101, "max": 200}, {"min": 0, "max": 100}])
        assert bands == [PriceBand(0, 100), PriceBand(101, 200)]

    def test_not_a_list(self):
        with pytest.raises(InvalidBandSet):
            bands_from_config({"min": 0, "max": 100})

    def test_malformed_entry(self):
        with pytest.raises(InvalidBandSet):
            bands_from_config([{"min": 0}])

    def test_invalid_set(self):
        with pytest.raises(InvalidBandSet):
            bands_from_config([{"min": 0, "max": 150}, {"min": 100, "max": 200}])


class TestBandStrings:
    """Tests pour parse_price_band_string et format_price_band."""

    def test_parse_valid(self):
        assert parse_price_band_string("0-1490") == PriceBand(0, 1490)
        assert parse_price_band_string(" 1491-1790 ") == PriceBand(1491, 1790)

    def test_parse_invalid(self):
        assert parse_price_band_string("unknown") is None
        assert parse_price_band_string("200-100") is None

    def test_format(self):
        assert format_price_band(PriceBand(0, 1490)) == "$0 - $1490"
        assert format_price_band(PriceBand(2991, 999999)) == "$2991+"
        assert format_price_band(PriceBand(2990, math.inf)) == "$2990+"
        assert format_price_band(None) == "unknown"
