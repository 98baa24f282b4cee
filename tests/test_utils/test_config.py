"""
Unit Tests for Configuration Loading
====================================

Tests the bundled YAML defaults, dictionary conversion and error reporting.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from remitci.control import TargetSite
from remitci.evaluation import DEFAULT_THRESHOLDS, Direction
from remitci.solvers import IntegrationMethod
from remitci.utils.config import (
    DEFAULT_CONFIG_PATH,
    SimulationConfig,
    config_from_dict,
    load_config,
)
from remitci.utils.exceptions import ConfigurationError


class TestLoadConfig:
    """Test suite for load_config."""

    def test_default_file(self):
        """Test that the bundled file matches the built-in defaults."""
        assert DEFAULT_CONFIG_PATH.exists()
        config = load_config()
        defaults = SimulationConfig()

        assert config.integrator == defaults.integrator
        assert config.tci.target_site is TargetSite.EFFECT_SITE
        assert abs(config.tci.control_interval - defaults.tci.control_interval) < 1e-12
        assert config.thresholds == DEFAULT_THRESHOLDS
        assert config.protocol == defaults.protocol
        assert config.strict_plausibility is False
        assert config.logging['log_level'] == 'INFO'

    def test_custom_file(self, tmp_path):
        """Test a partial YAML file overriding some settings."""
        path = tmp_path / "custom.yaml"
        path.write_text(
            "integrator:\n"
            "  method: fixed_rk4\n"
            "  dt_init: 0.01\n"
            "tci:\n"
            "  target_site: plasma\n"
            "events:\n"
            "  - name: deep\n"
            "    threshold: 1.5\n"
            "    direction: rising\n"
            "model:\n"
            "  strict_plausibility: true\n"
        )
        config = load_config(path)

        assert config.integrator.method is IntegrationMethod.FIXED_RK4
        assert config.integrator.dt_init == 0.01
        assert config.tci.target_site is TargetSite.PLASMA
        assert len(config.thresholds) == 1
        assert config.thresholds[0].direction is Direction.RISING
        assert config.strict_plausibility is True

    def test_empty_file(self, tmp_path):
        """Test that an empty file gives the defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).integrator == SimulationConfig().integrator

    def test_missing_file(self, tmp_path):
        """Test that an explicit missing path is an error."""
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test that unparsable YAML is reported as a configuration error."""
        path = tmp_path / "broken.yaml"
        path.write_text("integrator: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestConfigFromDict:
    """Test suite for config_from_dict."""

    @pytest.mark.parametrize("raw", [
        {'solver': {}},
        {'integrator': {'order': 5}},
        {'tci': {'gain': 1.0}},
        {'model': {'strict': True}},
        {'logging': {'colour': True}},
        {'events': [{'name': 'x', 'threshold': 0.5, 'colour': 'red'}]},
    ])
    def test_unknown_keys(self, raw):
        """Test that unknown sections and keys are rejected."""
        with pytest.raises(ConfigurationError):
            config_from_dict(raw)

    def test_invalid_values(self):
        """Test that invalid values surface as configuration errors."""
        with pytest.raises(ConfigurationError):
            config_from_dict({'integrator': {'method': 'leapfrog'}})
        with pytest.raises(ConfigurationError):
            config_from_dict({'events': {'name': 'x'}})
        with pytest.raises(ConfigurationError):
            config_from_dict({'events': [{'threshold': 0.5}]})

    def test_round_trip_through_dict(self):
        """Test that to_dict output is accepted back unchanged."""
        config = SimulationConfig()
        again = config_from_dict(config.to_dict())
        assert again.integrator == config.integrator
        assert again.tci == config.tci
        assert again.thresholds == config.thresholds
        assert again.protocol == config.protocol


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
