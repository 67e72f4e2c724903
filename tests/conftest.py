"""
Shared fixtures: a small synthetic SPC catalog and its derived tables.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Make the src/ layout importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def _row(om, date, time, mag=1, tz=3, st="OK", slat=35.0, slon=-97.5,
         elat=None, elon=None, length=5.0, width=100, inj=0, fat=0, sg=1):
    return {
        "om": om,
        "yr": int(date[:4]),
        "mo": int(date[5:7]),
        "dy": int(date[8:10]),
        "date": date,
        "time": time,
        "tz": tz,
        "st": st,
        "stf": 40,
        "stn": 0,
        "mag": mag,
        "inj": inj,
        "fat": fat,
        "loss": 0,
        "closs": 0,
        "slat": slat,
        "slon": slon,
        "elat": slat + 0.05 if elat is None else elat,
        "elon": slon + 0.05 if elon is None else elon,
        "len": length,
        "wid": width,
        "ns": 1,
        "sn": 1,
        "sg": sg,
    }


def make_catalog():
    """
    Synthetic catalog:

    - 1995-04-10 convective day: 12 afternoon tornadoes, one at 03:00 CST the
      next morning and one reported in GMT (14 total)
    - 1995-04-11 convective day: one tornado after 06:00 CST
    - 2000-05-03: 10 tornadoes
    - 2000-05-05: 3 tornadoes
    - rows removed by cleaning: 1990 record, unknown rating, Alaska,
      state segment, duplicate (yr, om)
    """
    rows = []
    mags_a = [0, 1, 2, 3, 1, 0, 2, 1, 4, 0, 1, 1]
    for i, mag in enumerate(mags_a):
        rows.append(_row(i + 1, "1995-04-10", f"{15 + i // 4:02d}:{(i % 4) * 15:02d}:00", mag=mag,
                         slat=34.0 + 0.2 * i, slon=-98.0 + 0.3 * (i % 5), inj=i % 3, fat=1 if mag == 4 else 0))
    rows.append(_row(13, "1995-04-11", "03:00:00", mag=2, slat=36.5, slon=-96.0))
    rows.append(_row(14, "1995-04-11", "01:00:00", mag=1, tz=9, slat=36.8, slon=-96.5))
    rows.append(_row(15, "1995-04-11", "07:00:00", mag=0, slat=33.0, slon=-95.0))

    for i in range(10):
        rows.append(_row(101 + i, "2000-05-03", f"{14 + i // 3:02d}:{(i % 3) * 20:02d}:00", mag=i % 3,
                         st="MS", slat=33.0 + 0.3 * (i % 4), slon=-90.0 + 0.4 * (i // 4)))
    for i in range(3):
        rows.append(_row(111 + i, "2000-05-05", "16:00:00", mag=0, st="AL", slat=33.0 + i, slon=-87.0))

    rows.append(_row(200, "1990-06-01", "12:00:00"))
    rows.append(_row(201, "1995-04-10", "18:00:00", mag=-9))
    rows.append(_row(202, "1995-04-10", "18:00:00", st="AK", slat=61.0, slon=-150.0))
    rows.append(_row(203, "1995-04-10", "18:00:00", sg=2))
    rows.append(_row(5, "1995-04-10", "19:30:00", mag=5))

    return pd.DataFrame(rows)


@pytest.fixture
def raw_catalog():
    """Synthetic raw catalog DataFrame."""
    return make_catalog()


@pytest.fixture
def catalog_csv(tmp_path):
    """Synthetic catalog written to CSV."""
    path = tmp_path / "1950-2022_actual_tornadoes.csv"
    make_catalog().to_csv(path, index=False)
    return path


@pytest.fixture
def tornadoes(raw_catalog):
    """Preprocessed tornado GeoDataFrame."""
    from bigdays.preprocess import preprocess_catalog
    return preprocess_catalog(raw_catalog, start_year=1994)


@pytest.fixture
def big_days(tornadoes):
    """Big days (>= 10 tornadoes) from the synthetic catalog."""
    from bigdays.events import aggregate_big_days
    return aggregate_big_days(tornadoes, min_tornadoes=10)


@pytest.fixture
def environment_table():
    """
    Synthetic big-day environment table with a known trend.

    ln(energy) = 20 + 0.03 * (year - 1994) + 0.8 * cape/1000 + 0.5 * srh/100 + noise
    """
    rng = np.random.default_rng(42)
    n = 240
    year = rng.integers(1994, 2022, n)
    month = rng.integers(3, 9, n)
    cape = rng.uniform(500, 4000, n)
    srh = rng.uniform(50, 500, n)
    cin = -rng.uniform(0, 200, n)
    ustm = rng.normal(8, 3, n)
    vstm = rng.normal(5, 3, n)
    month_effect = {m: e for m, e in zip(range(3, 9), rng.normal(0, 0.3, 6))}
    log_e = (20 + 0.03 * (year - 1994) + 0.8 * cape / 1000 + 0.5 * srh / 100
             + np.array([month_effect[m] for m in month]) + rng.normal(0, 0.5, n))

    return pd.DataFrame({
        "cdate": pd.to_datetime([f"{y}-{m:02d}-15" for y, m in zip(year, month)]),
        "n_tornadoes": rng.integers(10, 60, n),
        "total_energy": np.exp(log_e),
        "year": year,
        "month": month,
        "cape": cape,
        "srh": srh,
        "cin": cin,
        "ustm": ustm,
        "vstm": vstm,
        "storm_motion": np.hypot(ustm, vstm),
    })
