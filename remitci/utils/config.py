"""
Simulation Configuration
========================

Loads YAML configuration and converts it into the typed settings used by
the simulator.

Sections:
    integrator: method, dt_init, abs_tol, rel_tol, max_retries, min_step,
                max_step, output_interval, max_steps
    tci:        target_site, control_interval, max_rate, prediction_horizon,
                substeps, correction
    events:     list of {name, threshold, direction, variable, start_time}
    model:      strict_plausibility
    protocol:   bolus + continuous protocol engine settings
    logging:    log_dir, log_level, run_name

Every section is optional; missing keys take the dataclass defaults.
Unknown sections or keys raise ConfigurationError.

Example:
--------
    >>> config = load_config('config/simulation.yaml')
    >>> config.integrator.method
    <IntegrationMethod.ADAPTIVE_RK45: 'adaptive_rk45'>
"""

from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from .exceptions import ConfigurationError
from .logger import LOGGING_KEYS, get_logger
from ..control.tci_controller import TCIConfig
from ..dosing.optimizer import ProtocolSettings
from ..evaluation.events import ThresholdSpec, DEFAULT_THRESHOLDS
from ..solvers.base import IntegratorConfig

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / 'config' / 'simulation.yaml'

_SECTIONS = ('integrator', 'tci', 'events', 'model', 'protocol', 'logging')
_MODEL_KEYS = ('strict_plausibility',)


@dataclass
class SimulationConfig:
    """
    Complete simulator configuration.

    Attributes:
        integrator: Integrator settings
        tci: TCI controller settings
        thresholds: Event thresholds watched on every run
        strict_plausibility: Raise instead of warn on implausible covariates
            and out-of-band ke0
        protocol: Protocol engine settings
        logging: Settings for configure_logging
    """
    integrator: IntegratorConfig = field(default_factory=IntegratorConfig)
    tci: TCIConfig = field(default_factory=TCIConfig)
    thresholds: Tuple[ThresholdSpec, ...] = DEFAULT_THRESHOLDS
    strict_plausibility: bool = False
    protocol: ProtocolSettings = field(default_factory=ProtocolSettings)
    logging: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'integrator': self.integrator.to_dict(),
            'tci': self.tci.to_dict(),
            'events': [
                {
                    'name': spec.name,
                    'threshold': spec.threshold,
                    'direction': spec.direction.value,
                    'variable': spec.variable,
                    'start_time': spec.start_time,
                }
                for spec in self.thresholds
            ],
            'model': {'strict_plausibility': self.strict_plausibility},
            'protocol': asdict(self.protocol),
            'logging': dict(self.logging),
        }


def _check_keys(section: str, values: Dict[str, Any], allowed) -> None:
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping, got {type(values).__name__}")
    unknown = sorted(set(values) - set(allowed))
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{section}': {', '.join(unknown)}")


def _build(section: str, cls, values: Optional[Dict[str, Any]]):
    values = values or {}
    _check_keys(section, values, [f.name for f in fields(cls) if f.init])
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid '{section}' settings: {e}") from e


def config_from_dict(raw: Optional[Dict[str, Any]]) -> SimulationConfig:
    """
    Convert a plain dictionary (e.g. parsed YAML) into a SimulationConfig.

    Raises:
        ConfigurationError: For unknown sections or keys and invalid values
    """
    raw = raw or {}
    _check_keys('root', raw, _SECTIONS)

    model = raw.get('model') or {}
    _check_keys('model', model, _MODEL_KEYS)
    logging_section = raw.get('logging') or {}
    _check_keys('logging', logging_section, LOGGING_KEYS)

    events = raw.get('events')
    if events is None:
        thresholds = DEFAULT_THRESHOLDS
    else:
        if not isinstance(events, list):
            raise ConfigurationError("Section 'events' must be a list of thresholds")
        thresholds = tuple(_build('events', ThresholdSpec, entry) for entry in events)

    return SimulationConfig(
        integrator=_build('integrator', IntegratorConfig, raw.get('integrator')),
        tci=_build('tci', TCIConfig, raw.get('tci')),
        thresholds=thresholds,
        strict_plausibility=bool(model.get('strict_plausibility', False)),
        protocol=_build('protocol', ProtocolSettings, raw.get('protocol')),
        logging=dict(logging_section),
    )


def load_config(path: Optional[Union[str, Path]] = None) -> SimulationConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: YAML file; the bundled config/simulation.yaml if None. When
            no path is given and the default file is missing, defaults are
            used.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            logger.debug("No default config at %s, using built-in defaults", DEFAULT_CONFIG_PATH)
            return SimulationConfig()
        path = DEFAULT_CONFIG_PATH

    path = Path(path)
    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    logger.debug("Loaded configuration from %s", path)
    return config_from_dict(raw)
