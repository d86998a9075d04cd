# tests/test_config.py
"""
Unit tests for settings validation.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("ENVIRONMENT", "X402_NETWORK", "SOLANA_COMMITMENT", "X402_TOLERANCE_PERCENT"):
            monkeypatch.delenv(name, raising=False)
        s = Settings(_env_file=None)

        assert s.is_production is True
        assert s.X402_NETWORK == "solana-devnet"
        assert s.SOLANA_COMMITMENT == "confirmed"
        assert s.tolerance_percent == Decimal("1")

    @pytest.mark.parametrize("environment,expected", [
        ("production", True),
        (" Production ", True),
        ("development", False),
        ("test", False),
    ])
    def test_is_production(self, environment, expected):
        assert Settings(_env_file=None, ENVIRONMENT=environment).is_production is expected

    @pytest.mark.parametrize("environment", ["prod", "staging", "produciton", ""])
    def test_unknown_environment_rejected(self, environment):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ENVIRONMENT=environment)

    def test_unknown_environment_from_env_rejected(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "prod")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    @pytest.mark.parametrize("commitment", ["confirmed", "finalized"])
    def test_accepted_commitments(self, commitment):
        assert Settings(_env_file=None, SOLANA_COMMITMENT=commitment).SOLANA_COMMITMENT == commitment

    def test_processed_commitment_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, SOLANA_COMMITMENT="processed")

    @pytest.mark.parametrize("tolerance", [-1, 100])
    def test_tolerance_bounds(self, tolerance):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, X402_TOLERANCE_PERCENT=tolerance)

    def test_unknown_network_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, X402_NETWORK="ethereum")

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("X402_TOLERANCE_PERCENT", "5")
        assert Settings(_env_file=None).tolerance_percent == Decimal("5")
