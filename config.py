import logging
import os

import yaml

from defaults import ReferenceData, load_reference_data
from logic import Calculator
from models import Estimate, EstimateResults, ShiftSettings
from utils import deep_merge

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.environ.get("PAVING_ESTIMATOR_CONFIG", "config.yaml")

DEFAULT_CONFIG = {
    'app': {
        'name': 'Paving Estimator',
        'version': '1.0.0',
        'environment': 'development',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
    'shift': {
        'std_shift': 8.0,
        'max_shift': 12.0,
        'min_days': 1,
    },
    'schedule': {
        'near_critical_threshold': 1.0,
    },
    'simulation': {
        'iterations': 1000,
        'bins': 20,
        'seed': None,
    },
    'trucking': {
        'rate': 0.0,   # $/truck-hour
    },
    'reference_overrides': {},
}


def load_config(path=None):
    """Read config.yaml over the defaults; a missing file falls back to the defaults."""
    path = path or DEFAULT_CONFIG_PATH
    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.info("No config file at %s, using defaults", path)
        loaded = {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Configuration in {path} must be a mapping, got {type(loaded).__name__}")
    return deep_merge(DEFAULT_CONFIG, loaded)


def configure_logging(config):
    log_cfg = config.get('logging', {})
    level_name = str(log_cfg.get('level', 'INFO')).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown logging level: {level_name}")
    logging.basicConfig(
        level=level,
        format=log_cfg.get('format', DEFAULT_CONFIG['logging']['format'])
    )


def shift_settings_from_config(config) -> ShiftSettings:
    shift = config.get('shift', {})
    settings = ShiftSettings(
        std_shift=float(shift.get('std_shift', 8.0)),
        max_shift=float(shift.get('max_shift', 12.0)),
        min_days=int(shift.get('min_days', 1)),
    )
    if settings.std_shift <= 0 or settings.max_shift < settings.std_shift:
        raise ValueError("Shift settings need 0 < std_shift <= max_shift")
    if settings.min_days < 1:
        raise ValueError("min_days must be at least 1")
    return settings


def reference_from_config(config) -> ReferenceData:
    return load_reference_data(config.get('reference_overrides') or {})


def calculator_from_config(config) -> Calculator:
    """Calculator wired with the configured reference overrides and near-critical threshold."""
    schedule = config.get('schedule', {})
    return Calculator(reference_from_config(config), float(schedule.get('near_critical_threshold', 1.0)))


def simulation_settings_from_config(config) -> dict:
    sim = config.get('simulation', {})
    iterations = int(sim.get('iterations', 1000))
    bins = int(sim.get('bins', 20))
    if iterations < 1 or bins < 1:
        raise ValueError("Simulation iterations and bins must be at least 1")
    return {'iterations': iterations, 'bins': bins, 'seed': sim.get('seed')}


def trucking_rate_from_config(config) -> float:
    rate = float(config.get('trucking', {}).get('rate', 0.0) or 0.0)
    if rate < 0:
        raise ValueError("trucking.rate must not be negative")
    return rate


def calculate_from_config(estimate: Estimate, config=None) -> EstimateResults:
    """Full estimate run with the reference data, threshold and trucking rate from config."""
    config = config if config is not None else load_config()
    calculator = calculator_from_config(config)
    rate = trucking_rate_from_config(config)
    results = calculator.calculate(estimate, rate)
    return calculator.apply_trucking_overrides(results, estimate, rate)
