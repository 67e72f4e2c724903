# src/bigdays/contrast.py
"""
Module: contrast.py
Responsibilities:
- Build the pool of non-event convective days (few or no tornadoes)
- Draw a reproducible random sample of non-event days, paired with big days
- Give each sample its paired big day's hull and analysis-time offset, so that
  the contrast environment is measured over a comparable domain and hour
"""
import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd
import geopandas as gpd

from bigdays.reanalysis import assign_analysis_times

logger = logging.getLogger(__name__)

CONTRAST_COLUMNS = [
    'cdate', 'paired_cdate', 'year', 'month', 'n_tornadoes', 'analysis_time'
]


def candidate_days(
    daily: pd.DataFrame,
    start,
    end,
    max_tornadoes: int = 0,
    exclude: Optional[Iterable] = None
) -> pd.DatetimeIndex:
    """
    Convective dates in [start, end] with at most ``max_tornadoes`` tornadoes.

    Parameters
    ----------
    daily : pd.DataFrame
        Output of events.daily_counts (days absent from it had no tornadoes)
    start, end : datetime-like
        Inclusive date range
    max_tornadoes : int, default=0
        Largest tornado count a non-event day may have
    exclude : iterable of dates, optional
        Dates never returned (e.g. big days)

    Returns
    -------
    pd.DatetimeIndex
    """
    if max_tornadoes < 0:
        raise ValueError(f"max_tornadoes must be >= 0, got {max_tornadoes}")

    dates = pd.date_range(pd.Timestamp(start).normalize(), pd.Timestamp(end).normalize(), freq='D')
    counts = (
        daily.assign(cdate=pd.to_datetime(daily['cdate']))
        .set_index('cdate')['n_tornadoes']
        .reindex(dates, fill_value=0)
    )
    pool = dates[(counts <= max_tornadoes).to_numpy()]
    if exclude is not None:
        pool = pool.difference(pd.DatetimeIndex(pd.to_datetime(list(exclude))).normalize())
    return pool


def sample_non_event_days(
    big_days: gpd.GeoDataFrame,
    daily: pd.DataFrame,
    per_event: int = 1,
    seed: Optional[int] = 2019,
    match_month: bool = True,
    max_tornadoes: int = 0,
    start=None,
    end=None,
    rule: str = 'first',
    step_hours: int = 3,
    fixed_hour: int = 21
) -> gpd.GeoDataFrame:
    """
    Draw random non-event days paired with big days.

    For every big day, ``per_event`` dates are drawn without replacement from
    the non-event pool (restricted to the same calendar month when
    ``match_month``). No date is drawn twice across the whole sample. Each
    draw inherits the big day's hull and the offset of its analysis time from
    the start of its convective date.

    Parameters
    ----------
    big_days : gpd.GeoDataFrame
        Output of events.aggregate_big_days
    daily : pd.DataFrame
        Output of events.daily_counts
    per_event : int, default=1
        Non-event days per big day
    seed : int, optional
        Random seed
    match_month : bool, default=True
        Draw from the big day's calendar month
    max_tornadoes : int, default=0
        Largest tornado count a non-event day may have
    start, end : datetime-like, optional
        Sampling range (defaults to the full years spanned by big_days)
    rule, step_hours, fixed_hour
        Analysis-time rule applied to big days

    Returns
    -------
    gpd.GeoDataFrame
        One row per sampled day, hull geometry in big_days' CRS

    Raises
    ------
    ValueError
        If the pool cannot supply enough distinct days
    """
    if per_event < 1:
        raise ValueError(f"per_event must be >= 1, got {per_event}")
    if big_days.empty:
        raise ValueError("No big days to pair with")

    big = assign_analysis_times(big_days, rule=rule, step_hours=step_hours, fixed_hour=fixed_hour)
    big = big.sort_values('cdate').reset_index(drop=True)
    big_dates = pd.to_datetime(big['cdate']).dt.normalize()

    start = pd.Timestamp(start) if start is not None else pd.Timestamp(year=big_dates.min().year, month=1, day=1)
    end = pd.Timestamp(end) if end is not None else pd.Timestamp(year=big_dates.max().year, month=12, day=31)

    pool = candidate_days(daily, start, end, max_tornadoes=max_tornadoes, exclude=big_dates)
    logger.info(
        f"Non-event pool: {len(pool)} days between {start.date()} and {end.date()} "
        f"with <= {max_tornadoes} tornadoes"
    )

    counts = (
        daily.assign(cdate=pd.to_datetime(daily['cdate']))
        .set_index('cdate')['n_tornadoes']
    )

    rng = np.random.default_rng(seed)
    used = set()
    rows = []
    geoms = []

    for i, event in big.iterrows():
        cdate = big_dates.iloc[i]
        available = pool[pool.month == cdate.month] if match_month else pool
        available = available[~available.isin(list(used))]
        if len(available) < per_event:
            raise ValueError(
                f"Only {len(available)} non-event days left for the big day {cdate.date()}; "
                f"need {per_event}"
            )

        offset = pd.Timestamp(event['analysis_time']) - cdate
        picks = available[np.sort(rng.choice(len(available), size=per_event, replace=False))]
        for day in picks:
            used.add(day)
            rows.append({
                'cdate': day,
                'paired_cdate': cdate,
                'year': day.year,
                'month': day.month,
                'n_tornadoes': int(counts.get(day, 0)),
                'analysis_time': day + offset,
            })
            geoms.append(event[big.geometry.name])

    sample = gpd.GeoDataFrame(
        pd.DataFrame(rows, columns=CONTRAST_COLUMNS),
        geometry=geoms,
        crs=big_days.crs
    )
    sample = sample.sort_values('cdate').reset_index(drop=True)
    logger.info(f"Sampled {len(sample)} non-event days for {len(big)} big days")
    return sample
