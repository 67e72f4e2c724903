# src/bigdays/config.py
"""
Module: config.py
Responsibilities:
- Hold the default analysis settings for every pipeline step
- Load an optional YAML file and deep-merge it over the defaults
- Provide dotted-key access to nested settings
"""
import copy
import logging
import os
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

SPC_CATALOG_URL = "https://www.spc.noaa.gov/wcm/data/1950-2022_actual_tornadoes.csv"

NARR_URL_TEMPLATE = (
    "https://www.ncei.noaa.gov/data/north-american-regional-reanalysis/access/3-hourly/"
    "{time:%Y%m}/{time:%Y%m%d}/{filename}"
)
NARR_FILE_TEMPLATE = "narr-a_221_{time:%Y%m%d}_{time:%H}00_000.grb"

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    'catalog': {
        'url': SPC_CATALOG_URL,
        'start_year': 1994,
        'end_year': None,
        'excluded_states': ['AK', 'HI', 'PR', 'VI'],
        'min_magnitude': 0,
    },
    'events': {
        'min_tornadoes': 10,
        'hull_buffer_m': 0.0,
        'min_buffer_m': 10000.0,
        'equal_area_crs': 'EPSG:5070',
    },
    'reanalysis': {
        'url_template': NARR_URL_TEMPLATE,
        'file_template': NARR_FILE_TEMPLATE,
        'step_hours': 3,
        'time_rule': 'first',
        'fixed_hour': 21,
        'timeout': 120,
    },
    'environment': {
        'fields': {
            'cape': {'element': 'CAPE', 'level': '0-SFC', 'stat': 'max'},
            'cin': {'element': 'CIN', 'level': '0-SFC', 'stat': 'min'},
            'srh': {'element': 'HLCY', 'level': '3000-0-HTGL', 'stat': 'max'},
            'ustm': {'element': 'USTM', 'level': '6000-0-HTGL', 'stat': 'mean'},
            'vstm': {'element': 'VSTM', 'level': '6000-0-HTGL', 'stat': 'mean'},
        },
        'write_clips': False,
    },
    'contrast': {
        'per_event': 1,
        'seed': 2019,
        'max_tornadoes': 0,
        'match_month': True,
    },
    'model': {
        'reference_year': 1994,
        'groups': 'month',
        'reml': True,
        'contrast_variables': ['cape', 'srh', 'cin', 'ustm', 'vstm', 'storm_motion'],
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """
    Load analysis settings, optionally overridden by a YAML file.

    Parameters
    ----------
    path : str, optional
        YAML file whose top-level keys are sections of DEFAULT_CONFIG.

    Returns
    -------
    dict
        Full configuration (a fresh copy; safe to mutate)

    Raises
    ------
    FileNotFoundError
        If path is given but does not exist
    ValueError
        If the YAML document is not a mapping
    KeyError
        If the YAML names a section that does not exist
    """
    if path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    unknown = [k for k in data if k not in DEFAULT_CONFIG]
    if unknown:
        raise KeyError(f"Unknown config section(s) in {path}: {', '.join(unknown)}")

    for section, values in data.items():
        if values is not None and not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")

    config = _deep_merge(DEFAULT_CONFIG, {k: v for k, v in data.items() if v is not None})
    logger.info(f"Loaded config overrides from {path}: {', '.join(data.keys()) or 'none'}")
    return config


def get(config: Dict[str, Any], dotted_key: str, default: Any = None) -> Any:
    """Look up 'section.key.subkey' in a nested config dict."""
    node: Any = config
    for part in dotted_key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node
