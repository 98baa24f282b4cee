"""
Unit Tests for Logging Utilities
================================
"""

import logging
import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from remitci.utils.config import SimulationConfig
from remitci.utils.exceptions import ConfigurationError
from remitci.utils.logger import setup_logging, configure_logging, get_logger, log_config


@pytest.fixture
def restore_root_logger():
    """Put back the root handlers replaced by setup_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test suite for setup_logging."""

    def test_console_only(self, restore_root_logger):
        """Test that no files are written without a log directory."""
        setup_logging(log_level='DEBUG')
        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1

    def test_log_files(self, temp_log_dir, restore_root_logger):
        """Test the main log and the error-only log."""
        setup_logging(log_dir=temp_log_dir, log_level='INFO', run_name='reference')
        logger = get_logger('remitci.test')
        logger.info("run started")
        logger.error("integration diverged")
        for handler in restore_root_logger.handlers:
            handler.flush()

        main_log = (temp_log_dir / 'reference.log').read_text()
        error_log = (temp_log_dir / 'errors.log').read_text()
        assert "run started" in main_log
        assert "integration diverged" in main_log
        assert "run started" not in error_log
        assert "integration diverged" in error_log

    def test_timestamped_name(self, temp_log_dir, restore_root_logger):
        """Test the default file name when no run name is given."""
        log_file = setup_logging(log_dir=temp_log_dir)
        assert list(temp_log_dir.glob('simulation_*.log')) == [log_file]

    def test_run_name_template(self, temp_log_dir, restore_root_logger):
        """Test a run name with a timestamp placeholder."""
        log_file = setup_logging(log_dir=temp_log_dir, run_name='tci_{timestamp}')
        assert log_file.name.startswith('tci_2')
        assert '{' not in log_file.name

    def test_unknown_level(self, restore_root_logger):
        """Test that an unknown level name is a configuration error."""
        with pytest.raises(ConfigurationError):
            setup_logging(log_level='LOUD')

    def test_plotting_loggers_quiet(self, restore_root_logger):
        """Test that matplotlib debug output is suppressed."""
        setup_logging(log_level='DEBUG')
        assert logging.getLogger('matplotlib').level == logging.WARNING


class TestConfigureLogging:
    """Test suite for configure_logging."""

    def test_from_config_section(self, temp_log_dir, restore_root_logger):
        """Test the logging section of a loaded configuration with overrides."""
        config = SimulationConfig(logging={'log_dir': None, 'log_level': 'DEBUG', 'run_name': None})
        log_file = configure_logging(config.logging, log_dir=temp_log_dir, run_name='batch')
        assert log_file == temp_log_dir / 'batch.log'
        assert restore_root_logger.level == logging.DEBUG

    def test_console_only_defaults(self, restore_root_logger):
        """Test that an empty section logs to the console at INFO."""
        assert configure_logging({}) is None
        assert restore_root_logger.level == logging.INFO

    def test_unknown_key(self, restore_root_logger):
        """Test that unknown settings are rejected."""
        with pytest.raises(ConfigurationError):
            configure_logging({'log_file': 'x.log'})


class TestLogConfig:
    """Test suite for log_config."""

    def test_nested_dict(self, temp_log_dir, restore_root_logger):
        """Test that nested sections are written indented."""
        setup_logging(log_dir=temp_log_dir, run_name='config')
        log_config(get_logger('remitci.test'), {'tci': {'max_rate': 20.0}}, "Settings")
        for handler in restore_root_logger.handlers:
            handler.flush()

        text = (temp_log_dir / 'config.log').read_text()
        assert "Settings:" in text
        assert "  tci:" in text
        assert "    max_rate: 20.0" in text

    def test_simulation_config(self, temp_log_dir, restore_root_logger):
        """Test a SimulationConfig with its list of event thresholds."""
        setup_logging(log_dir=temp_log_dir, run_name='full')
        log_config(get_logger('remitci.test'), SimulationConfig())
        for handler in restore_root_logger.handlers:
            handler.flush()

        text = (temp_log_dir / 'full.log').read_text()
        assert "Configuration:" in text
        assert "  events:" in text
        assert "      name: induction" in text
        assert "    max_rate: 20.0" in text


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
