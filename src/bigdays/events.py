# src/bigdays/events.py
"""
Module: events.py
Responsibilities:
- Count tornadoes and energy per convective day
- Aggregate days with many tornadoes into "big day" events
- Build each event's spatial domain: the convex hull of its tornado tracks
- Rank events by size
"""
import logging

import numpy as np
import pandas as pd
import geopandas as gpd

logger = logging.getLogger(__name__)

# Constants
DEFAULT_MIN_TORNADOES = 10
DEFAULT_EQUAL_AREA_CRS = 'EPSG:5070'  # CONUS Albers
VIOLENT_EF = 4

BIG_DAY_COLUMNS = [
    'cdate', 'n_tornadoes', 'total_energy', 'mean_energy', 'max_energy',
    'max_ef', 'n_violent', 'casualties', 'fatalities',
    'first_utc', 'last_utc', 'duration_h', 'year', 'month',
    'hull_area_km2', 'centroid_lon', 'centroid_lat'
]


def daily_counts(tornadoes: pd.DataFrame) -> pd.DataFrame:
    """
    Tornado count and total energy for every convective day with at least one tornado.

    Parameters
    ----------
    tornadoes : pd.DataFrame
        Preprocessed tornadoes with 'cdate' and 'energy'

    Returns
    -------
    pd.DataFrame
        Columns: cdate, n_tornadoes, total_energy
    """
    if 'cdate' not in tornadoes.columns:
        raise KeyError("Tornado table missing 'cdate' column")

    daily = (
        pd.DataFrame(tornadoes)
        .groupby('cdate')
        .agg(n_tornadoes=('cdate', 'size'), total_energy=('energy', 'sum'))
        .reset_index()
        .sort_values('cdate')
        .reset_index(drop=True)
    )
    return daily


def _event_hull(geoms: gpd.GeoSeries, hull_buffer_m: float, min_buffer_m: float):
    hull = geoms.union_all().convex_hull
    if hull.area == 0:
        # All tracks collinear or a single point
        return hull.buffer(max(hull_buffer_m, min_buffer_m))
    if hull_buffer_m > 0:
        return hull.buffer(hull_buffer_m)
    return hull


def aggregate_big_days(
    tornadoes: gpd.GeoDataFrame,
    min_tornadoes: int = DEFAULT_MIN_TORNADOES,
    equal_area_crs: str = DEFAULT_EQUAL_AREA_CRS,
    hull_buffer_m: float = 0.0,
    min_buffer_m: float = 10000.0
) -> gpd.GeoDataFrame:
    """
    Aggregate tornadoes into big-day events.

    A big day is a convective day with at least ``min_tornadoes`` tornadoes.
    Its domain is the convex hull of all its tracks, computed in an
    equal-area projection so that buffers and areas are in metres.

    Parameters
    ----------
    tornadoes : gpd.GeoDataFrame
        Output of preprocess.preprocess_catalog
    min_tornadoes : int, default=10
        Minimum tornado count for a big day
    equal_area_crs : str, default='EPSG:5070'
        Projection for hull construction and area
    hull_buffer_m : float, default=0.0
        Buffer applied to every hull
    min_buffer_m : float, default=10000.0
        Buffer applied to degenerate (zero-area) hulls

    Returns
    -------
    gpd.GeoDataFrame
        One row per big day, hull geometry in EPSG:4326, sorted by cdate
    """
    if min_tornadoes < 1:
        raise ValueError(f"min_tornadoes must be >= 1, got {min_tornadoes}")
    if not isinstance(tornadoes, gpd.GeoDataFrame):
        raise TypeError("tornadoes must be a GeoDataFrame with track geometry")

    counts = tornadoes.groupby('cdate').size()
    big_dates = counts.index[counts >= min_tornadoes]
    logger.info(
        f"{len(big_dates)} of {len(counts)} convective days have >= {min_tornadoes} tornadoes"
    )

    if len(big_dates) == 0:
        empty = pd.DataFrame(columns=BIG_DAY_COLUMNS + ['geometry'])
        return gpd.GeoDataFrame(empty, geometry='geometry', crs='EPSG:4326')

    sub = tornadoes[tornadoes['cdate'].isin(big_dates)]
    projected = sub.to_crs(equal_area_crs)

    stats = pd.DataFrame(sub).groupby('cdate').agg(
        n_tornadoes=('cdate', 'size'),
        total_energy=('energy', 'sum'),
        mean_energy=('energy', 'mean'),
        max_energy=('energy', 'max'),
        max_ef=('mag', 'max'),
        n_violent=('mag', lambda m: int((m >= VIOLENT_EF).sum())),
        casualties=('casualties', 'sum'),
        fatalities=('fat', 'sum'),
        first_utc=('datetime_utc', 'min'),
        last_utc=('datetime_utc', 'max'),
    )
    stats['duration_h'] = (stats['last_utc'] - stats['first_utc']).dt.total_seconds() / 3600.0
    stats['year'] = stats.index.year
    stats['month'] = stats.index.month

    hull_by_day = {
        cdate: _event_hull(group.geometry, hull_buffer_m, min_buffer_m)
        for cdate, group in projected.groupby('cdate')
    }
    hulls = gpd.GeoSeries(
        [hull_by_day[d] for d in stats.index], index=stats.index, crs=equal_area_crs
    )

    stats['hull_area_km2'] = hulls.area.to_numpy() / 1e6
    centroids = hulls.centroid.to_crs('EPSG:4326')
    stats['centroid_lon'] = centroids.x.to_numpy()
    stats['centroid_lat'] = centroids.y.to_numpy()

    big = gpd.GeoDataFrame(
        stats.reset_index(),
        geometry=hulls.to_crs('EPSG:4326').to_numpy(),
        crs='EPSG:4326'
    )
    big = big.sort_values('cdate').reset_index(drop=True)

    logger.info(
        f"Big days: {len(big)} events, {int(big['n_tornadoes'].sum())} tornadoes, "
        f"median hull area {np.median(big['hull_area_km2']):.0f} km²"
    )
    return big[BIG_DAY_COLUMNS + ['geometry']]


def rank_big_days(big_days: pd.DataFrame, by: str = 'total_energy') -> pd.DataFrame:
    """
    Add a '<by>_rank' column (1 = largest).
    """
    if by not in big_days.columns:
        raise KeyError(f"Column '{by}' not found in big-day table")
    out = big_days.copy()
    out[f"{by}_rank"] = out[by].rank(ascending=False, method='min').astype(int)
    return out
