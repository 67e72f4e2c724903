# src/bigdays/preprocess.py
"""
Module: preprocess.py
Responsibilities:
- Filter the raw SPC catalog (years, magnitude, states, state segments, duplicates)
- Build local (CST), UTC and convective-day timestamps
- Convert units: length (mi→m), width (yd→m); derive path area and casualties
- Build track geometry (start→end LineString, or Point)
- Attach energy dissipation and return a GeoDataFrame ready for aggregation
"""
import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import LineString, Point

from bigdays.energy import energy_dissipation

logger = logging.getLogger(__name__)

# Constants
MILES_TO_M = 1609.34
YARDS_TO_M = 0.9144
CST_OFFSET = pd.Timedelta(hours=6)        # CST = UTC - 6 h
CONVECTIVE_DAY_SHIFT = pd.Timedelta(hours=6)  # convective day starts 6 AM CST (12 UTC)
TZ_CST = 3
TZ_GMT = 9
MISSING_MAGNITUDE = -9


def clean_catalog(
    df: pd.DataFrame,
    start_year: int = 1994,
    end_year: Optional[int] = None,
    excluded_states: Iterable[str] = ('AK', 'HI', 'PR', 'VI'),
    min_magnitude: int = 0
) -> pd.DataFrame:
    """
    Filter the raw catalog to the records used in the analysis.

    1. Keep years in [start_year, end_year]
    2. Drop unknown ratings (-9) and ratings below min_magnitude
    3. Drop state-segment rows (sg == 2) when the column is present
    4. Drop excluded states
    5. Drop duplicate (yr, om) records

    Parameters
    ----------
    df : pd.DataFrame
        Raw catalog from data_io.load_catalog
    start_year : int, default=1994
        First year kept
    end_year : int, optional
        Last year kept (None = no upper bound)
    excluded_states : iterable of str
        Two-letter state codes to drop
    min_magnitude : int, default=0
        Minimum EF rating kept

    Returns
    -------
    pd.DataFrame
        Filtered copy

    Raises
    ------
    ValueError
        If no records remain
    """
    if end_year is not None and end_year < start_year:
        raise ValueError(f"end_year ({end_year}) is before start_year ({start_year})")

    df = df.copy()
    n0 = len(df)

    keep = df['yr'] >= start_year
    if end_year is not None:
        keep &= df['yr'] <= end_year
    df = df[keep]
    logger.info(f"Year filter {start_year}-{end_year or 'present'}: {n0} → {len(df)}")

    n = len(df)
    df = df[(df['mag'] != MISSING_MAGNITUDE) & (df['mag'] >= min_magnitude)]
    logger.info(f"Magnitude filter (>= {min_magnitude}): {n} → {len(df)}")

    if 'sg' in df.columns:
        n = len(df)
        df = df[df['sg'] != 2]
        logger.info(f"Dropped {n - len(df)} state-segment records")

    excluded = {s.upper() for s in excluded_states}
    if excluded:
        n = len(df)
        df = df[~df['st'].astype(str).str.upper().isin(excluded)]
        logger.info(f"Dropped {n - len(df)} records in excluded states {sorted(excluded)}")

    n = len(df)
    df = df.drop_duplicates(subset=['yr', 'om'], keep='first')
    if n > len(df):
        logger.info(f"Dropped {n - len(df)} duplicate (yr, om) records")

    if df.empty:
        raise ValueError("No tornado records remain after filtering")

    return df.reset_index(drop=True)


def add_datetimes(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add local, UTC and convective-day time columns.

    Catalog times are CST (tz == 3) or GMT (tz == 9). The convective day runs
    from 6 AM to 6 AM CST (12 UTC to 12 UTC) and is labelled by the date on
    which it starts.

    Adds: datetime_local (naive CST), datetime_utc (naive UTC), cdate,
    year, month, hour.
    """
    df = df.copy()

    stamp = pd.to_datetime(
        df['date'].astype(str).str.strip() + ' ' + df['time'].astype(str).str.strip(),
        errors='coerce'
    )
    bad = stamp.isna()
    if bad.any():
        logger.warning(f"Dropping {int(bad.sum())} records with unparsable date/time")
        df = df[~bad].copy()
        stamp = stamp[~bad]

    tz = pd.to_numeric(df['tz'], errors='coerce')
    unknown_tz = ~tz.isin([TZ_CST, TZ_GMT])
    if unknown_tz.any():
        logger.warning(f"{int(unknown_tz.sum())} records have unknown time zone codes; assuming CST")

    is_gmt = (tz == TZ_GMT).to_numpy()
    local = stamp.where(~is_gmt, stamp - CST_OFFSET)

    df['datetime_local'] = local
    df['datetime_utc'] = local + CST_OFFSET
    df['cdate'] = (local - CONVECTIVE_DAY_SHIFT).dt.normalize()
    df['year'] = df['cdate'].dt.year
    df['month'] = df['cdate'].dt.month
    df['hour'] = df['datetime_local'].dt.hour

    return df


def convert_units(df: pd.DataFrame) -> pd.DataFrame:
    """
    Convert path dimensions to SI units and fill missing end points.

    Adds: length_m, width_m, path_area_m2, casualties.
    """
    df = df.copy()

    df['length_m'] = df['len'].astype(float) * MILES_TO_M
    df['width_m'] = df['wid'].astype(float) * YARDS_TO_M
    df['path_area_m2'] = df['length_m'] * df['width_m']
    df['casualties'] = df['inj'].fillna(0).astype(int) + df['fat'].fillna(0).astype(int)

    # End points recorded as 0 (or missing) mean "same as start"
    no_end = (df['elat'].fillna(0) == 0) | (df['elon'].fillna(0) == 0)
    if no_end.any():
        logger.info(f"Filling {int(no_end.sum())} missing end points with start points")
    df['elat'] = df['elat'].where(~no_end, df['slat'])
    df['elon'] = df['elon'].where(~no_end, df['slon'])

    return df


def to_tracks(df: pd.DataFrame, crs: str = 'EPSG:4326') -> gpd.GeoDataFrame:
    """
    Build track geometry from start and end coordinates.

    A LineString from (slon, slat) to (elon, elat), or a Point when the two
    coincide.
    """
    geoms = []
    for slon, slat, elon, elat in zip(df['slon'], df['slat'], df['elon'], df['elat']):
        if np.isclose(slon, elon) and np.isclose(slat, elat):
            geoms.append(Point(slon, slat))
        else:
            geoms.append(LineString([(slon, slat), (elon, elat)]))

    return gpd.GeoDataFrame(df.copy(), geometry=geoms, crs=crs)


def preprocess_catalog(
    df: pd.DataFrame,
    start_year: int = 1994,
    end_year: Optional[int] = None,
    excluded_states: Iterable[str] = ('AK', 'HI', 'PR', 'VI'),
    min_magnitude: int = 0,
    air_density: float = 1.0
) -> gpd.GeoDataFrame:
    """
    Clean the raw catalog and derive everything the aggregation step needs.

    Parameters
    ----------
    df : pd.DataFrame
        Raw catalog
    start_year, end_year, excluded_states, min_magnitude
        Passed to clean_catalog
    air_density : float, default=1.0
        Air density (kg m^-3) used for energy dissipation

    Returns
    -------
    gpd.GeoDataFrame
        One row per tornado, EPSG:4326 track geometry, with an 'energy' column (W)
    """
    logger.info(f"Preprocessing catalog ({len(df)} records)")
    df = clean_catalog(
        df,
        start_year=start_year,
        end_year=end_year,
        excluded_states=excluded_states,
        min_magnitude=min_magnitude
    )
    df = add_datetimes(df)
    df = convert_units(df)

    if df.empty:
        raise ValueError("No tornado records remain after preprocessing")

    df['energy'] = energy_dissipation(df['mag'].to_numpy(), df['path_area_m2'].to_numpy(), air_density)

    gdf = to_tracks(df)
    gdf = gdf.sort_values('datetime_utc').reset_index(drop=True)
    logger.info(
        f"Preprocessed {len(gdf)} tornadoes over {gdf['cdate'].nunique()} convective days; "
        f"total energy {gdf['energy'].sum() / 1e9:.1f} GW"
    )
    return gdf
