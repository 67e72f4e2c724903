"""
Unit tests for serialize module.
"""

import json

import numpy as np
import pandas as pd

from bigdays.serialize import ensure_json_serializable, NumpyEncoder, write_json


def test_ensure_json_serializable():
    """Test numpy, pandas and non-finite values are converted."""
    obj = {
        "int": np.int64(3),
        "float": np.float32(1.5),
        "nan": float("nan"),
        "inf": np.inf,
        "bool": np.bool_(True),
        "array": np.array([1.0, np.nan]),
        "time": pd.Timestamp("1995-04-10 21:00"),
        "nat": pd.NaT,
        "delta": pd.Timedelta(hours=3),
        "frame": pd.DataFrame({"a": [1, 2]}),
        1: ("x", None),
    }
    out = ensure_json_serializable(obj)

    assert out["int"] == 3 and isinstance(out["int"], int)
    assert out["float"] == 1.5
    assert out["nan"] is None
    assert out["inf"] is None
    assert out["bool"] is True
    assert out["array"] == [1.0, None]
    assert out["time"] == "1995-04-10T21:00:00"
    assert out["nat"] is None
    assert out["delta"] == 10800.0
    assert out["frame"] == [{"a": 1}, {"a": 2}]
    assert out["1"] == ["x", None]
    json.dumps(out)


def test_numpy_encoder():
    """Test the encoder handles numpy scalars and arrays."""
    text = json.dumps({"a": np.int32(1), "b": np.arange(3)}, cls=NumpyEncoder)
    assert json.loads(text) == {"a": 1, "b": [0, 1, 2]}


def test_write_json(tmp_path):
    """Test writing a nested result."""
    path = tmp_path / "out" / "models.json"
    write_json({"trend": {"percent_per_year": np.float64(2.5)}, "p": np.nan}, str(path))

    with open(path) as f:
        data = json.load(f)
    assert data == {"trend": {"percent_per_year": 2.5}, "p": None}
