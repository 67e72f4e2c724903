# src/bigdays/serialize.py
"""
Module: serialize.py
Responsibilities:
- Convert nested numpy/pandas results into JSON-safe Python objects
- Write result dictionaries to JSON
"""
import os
import json
import logging
from datetime import date, datetime

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def ensure_json_serializable(obj):
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    elif isinstance(obj, float):
        if np.isnan(obj) or np.isinf(obj):
            return None
        return obj
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        if np.isnan(obj) or np.isinf(obj):
            return None
        return float(obj)
    elif isinstance(obj, (pd.Timestamp, datetime, date)):
        if pd.isna(obj):
            return None
        return obj.isoformat()
    elif isinstance(obj, pd.Timedelta):
        return obj.total_seconds()
    elif isinstance(obj, np.ndarray):
        return [ensure_json_serializable(x) for x in obj.tolist()]
    elif isinstance(obj, (pd.Series, pd.Index)):
        return [ensure_json_serializable(x) for x in obj.tolist()]
    elif isinstance(obj, pd.DataFrame):
        return [ensure_json_serializable(r) for r in obj.to_dict(orient='records')]
    elif isinstance(obj, (list, tuple)):
        return [ensure_json_serializable(x) for x in obj]
    elif isinstance(obj, dict):
        return {str(k): ensure_json_serializable(v) for k, v in obj.items()}
    else:
        return str(obj)


class NumpyEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.bool_):
            return bool(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, pd.Timestamp):
            return obj.isoformat()
        return super(NumpyEncoder, self).default(obj)


def write_json(obj, path: str) -> str:
    """Write a result structure to JSON (indent 2), creating parent directories."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, 'w') as f:
        json.dump(ensure_json_serializable(obj), f, indent=2, cls=NumpyEncoder)
    logger.info(f"Saved results to {path}")
    return path
