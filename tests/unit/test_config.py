"""
Unit tests for ETL configuration loading.
"""

import pytest
from decimal import Decimal
from pathlib import Path

from retail_dw.core.config import BusinessPolicy, EtlConfig, EtlConfigLoader, load_config


@pytest.mark.unit
class TestBusinessPolicy:

    def test_defaults(self):
        policy = BusinessPolicy()
        assert policy.tax_rate == Decimal("0.18")
        assert [s.label for s in policy.spend_segments] == ["VIP", "Premium", "Regular"]
        assert [r.label for r in policy.price_ranges] == ["Budget", "Mid-Range", "Premium"]
        assert policy.unknown_label == "Unknown"
        assert policy.open_statuses == ["pending", "processing"]

    def test_segments_sorted_highest_first(self):
        policy = BusinessPolicy(spend_segments=[
            {"label": "Regular", "min_spent": 10000},
            {"label": "VIP", "min_spent": 100000},
        ])
        assert [s.label for s in policy.spend_segments] == ["VIP", "Regular"]

    def test_tax_rate_bounds(self):
        with pytest.raises(ValueError):
            BusinessPolicy(tax_rate=Decimal("1.5"))


@pytest.mark.unit
class TestEtlConfigLoader:

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "etl.yaml"
        path.write_text(
            "policy:\n"
            "  tax_rate: \"0.05\"\n"
            "  default_segment: Starter\n"
            "runtime:\n"
            "  timeout_seconds: 60\n"
        )
        config = EtlConfigLoader(path).load()
        assert config.policy.tax_rate == Decimal("0.05")
        assert config.policy.default_segment == "Starter"
        assert config.timeout_seconds == 60
        assert config.stale_run_minutes == 120

    def test_top_level_runtime_keys(self):
        config = EtlConfigLoader.from_dict({"stale_run_minutes": 15})
        assert config.stale_run_minutes == 15
        assert config.timeout_seconds is None

    def test_invalid_values(self):
        with pytest.raises(ValueError, match="Invalid ETL configuration"):
            EtlConfigLoader.from_dict({"runtime": {"timeout_seconds": -1}})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            EtlConfigLoader(tmp_path / "missing.yaml")

    def test_repository_config_matches_defaults(self):
        config = load_config(Path(__file__).parents[2] / "config" / "etl_config.yaml")
        assert config.policy == EtlConfig().policy
        assert config.timeout_seconds == 1800

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = tmp_path / "etl.yaml"
        path.write_text("runtime:\n  stale_run_minutes: 5\n")
        monkeypatch.setenv("ETL_CONFIG", str(path))
        assert load_config().stale_run_minutes == 5
