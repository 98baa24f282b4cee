"""
Logging Utilities for Remimazolam TCI Simulation
================================================

Every module logs through ``get_logger(__name__)``. A run configures the
root logger once, usually from the ``logging`` section of a
SimulationConfig:

    config = load_config('config/simulation.yaml')
    configure_logging(config.logging, run_name='tci_{timestamp}')

Console output is coloured with colorlog. When a log directory is given,
each run writes ``<run_name>.log`` plus an ``errors.log`` that collects
only errors (failed integrations, rejected steps).

Run names may contain ``{timestamp}``; without a run name the file is
``simulation_<timestamp>.log``.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union
from datetime import datetime
import colorlog

from .exceptions import ConfigurationError


FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
COLOR_FORMAT = '%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s - %(message)s'

LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Plotting libraries are chatty at DEBUG
QUIET_LOGGERS = ('matplotlib', 'PIL')

LOGGING_KEYS = ('log_dir', 'log_level', 'run_name')


def _parse_level(log_level: Union[str, int]) -> int:
    if isinstance(log_level, int):
        return log_level
    level = logging.getLevelName(str(log_level).upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {log_level!r}")
    return level


def log_file_name(run_name: Optional[str] = None) -> str:
    """File name of a run's main log, with ``{timestamp}`` filled in."""
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    if not run_name:
        return f"simulation_{timestamp}.log"
    return f"{run_name.format(timestamp=timestamp)}.log"


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: Union[str, int] = 'INFO',
    run_name: Optional[str] = None
) -> Optional[Path]:
    """
    Configure the root logger for a simulation run.

    Args:
        log_dir: Directory for log files; console only if None
        log_level: Level name or number
        run_name: Main log file name without extension

    Returns:
        Path of the main log file, or None for console-only logging

    Raises:
        ConfigurationError: For an unknown level name
    """
    level = _parse_level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        COLOR_FORMAT,
        log_colors=LOG_COLORS,
        reset=True,
        style='%'
    ))
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if log_dir is None:
        return None

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / log_file_name(run_name)
    file_formatter = logging.Formatter(FILE_FORMAT)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(file_formatter)
    root_logger.addHandler(file_handler)

    error_handler = logging.FileHandler(log_dir / "errors.log")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_formatter)
    root_logger.addHandler(error_handler)

    return log_file


def configure_logging(settings: Optional[Dict[str, Any]] = None, **overrides) -> Optional[Path]:
    """
    Call setup_logging with the ``logging`` section of a SimulationConfig.

    Keyword overrides take precedence over the section; None values in
    the section fall back to the setup_logging defaults.

    Raises:
        ConfigurationError: For keys other than log_dir, log_level, run_name
    """
    merged = dict(settings or {})
    merged.update(overrides)
    unknown = sorted(set(merged) - set(LOGGING_KEYS))
    if unknown:
        raise ConfigurationError(f"Unknown logging settings: {', '.join(unknown)}")
    return setup_logging(**{k: v for k, v in merged.items() if v is not None})


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_config(logger: logging.Logger, config: Any, config_name: str = "Configuration") -> None:
    """
    Write a configuration to the log, one line per setting.

    Accepts a mapping or an object with ``to_dict()`` (SimulationConfig,
    TCIConfig, IntegratorConfig). Nested sections are indented by two
    spaces per level; lists of sections (event thresholds) are written
    as ``- `` items.
    """
    if hasattr(config, 'to_dict'):
        config = config.to_dict()
    logger.info("%s:", config_name)
    _log_mapping(logger, config, 2)


def _log_mapping(logger: logging.Logger, values: Dict[str, Any], indent: int) -> None:
    pad = ' ' * indent
    for key, value in values.items():
        if isinstance(value, dict):
            logger.info("%s%s:", pad, key)
            _log_mapping(logger, value, indent + 2)
        elif isinstance(value, (list, tuple)) and value and all(isinstance(v, dict) for v in value):
            logger.info("%s%s:", pad, key)
            for item in value:
                logger.info("%s  -", pad)
                _log_mapping(logger, item, indent + 4)
        else:
            logger.info("%s%s: %s", pad, key, value)
