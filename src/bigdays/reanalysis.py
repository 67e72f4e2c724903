# src/bigdays/reanalysis.py
"""
Module: reanalysis.py
Responsibilities:
- Choose the reanalysis analysis time for each event
- Build NARR-A (grid 221, 3-hourly) file names and URLs
- Plan the set of files an event table needs
- Download files sequentially, skipping those already on disk
"""
import os
import logging
from typing import Optional

import pandas as pd
import requests
from tqdm import tqdm

from bigdays.config import NARR_URL_TEMPLATE, NARR_FILE_TEMPLATE

logger = logging.getLogger(__name__)

VALID_TIME_RULES = ('first', 'fixed')


def analysis_time(
    first_utc,
    cdate,
    rule: str = 'first',
    step_hours: int = 3,
    fixed_hour: int = 21
) -> pd.Timestamp:
    """
    Reanalysis time used to characterise an event's environment.

    Parameters
    ----------
    first_utc : datetime-like
        UTC time of the event's first tornado
    cdate : datetime-like
        Convective date of the event
    rule : str, default='first'
        'first' → last synoptic time at or before the first tornado;
        'fixed' → ``fixed_hour`` UTC on the convective date
    step_hours : int, default=3
        Spacing of the reanalysis times
    fixed_hour : int, default=21
        Hour used by the 'fixed' rule; must be a multiple of step_hours

    Returns
    -------
    pd.Timestamp
        Naive UTC timestamp on the reanalysis time grid
    """
    if rule not in VALID_TIME_RULES:
        raise ValueError(f"Unknown time rule '{rule}'. Valid rules: {', '.join(VALID_TIME_RULES)}")
    if step_hours <= 0 or 24 % step_hours:
        raise ValueError(f"step_hours must divide 24, got {step_hours}")

    if rule == 'first':
        return pd.Timestamp(first_utc).floor(f"{step_hours}h")

    if fixed_hour % step_hours or not 0 <= fixed_hour < 24:
        raise ValueError(f"fixed_hour must be a multiple of {step_hours} in 0-23, got {fixed_hour}")
    return pd.Timestamp(cdate).normalize() + pd.Timedelta(hours=fixed_hour)


def narr_filename(time, template: str = NARR_FILE_TEMPLATE) -> str:
    """File name of the NARR analysis valid at ``time``."""
    return template.format(time=pd.Timestamp(time))


def narr_url(time, url_template: str = NARR_URL_TEMPLATE, file_template: str = NARR_FILE_TEMPLATE) -> str:
    """Download URL of the NARR analysis valid at ``time``."""
    t = pd.Timestamp(time)
    return url_template.format(time=t, filename=narr_filename(t, file_template))


def assign_analysis_times(
    events: pd.DataFrame,
    rule: str = 'first',
    step_hours: int = 3,
    fixed_hour: int = 21
) -> pd.DataFrame:
    """
    Add an 'analysis_time' column to an event table.

    Events that already carry 'analysis_time' (e.g. contrast days that inherit
    their paired event's hour) keep it.
    """
    out = events.copy()
    if 'analysis_time' in out.columns and out['analysis_time'].notna().all():
        out['analysis_time'] = pd.to_datetime(out['analysis_time'])
        return out

    if 'first_utc' not in out.columns or 'cdate' not in out.columns:
        raise KeyError("Event table needs 'first_utc' and 'cdate' columns")

    out['analysis_time'] = [
        analysis_time(f, c, rule=rule, step_hours=step_hours, fixed_hour=fixed_hour)
        for f, c in zip(pd.to_datetime(out['first_utc']), pd.to_datetime(out['cdate']))
    ]
    return out


def plan_downloads(
    events: pd.DataFrame,
    out_dir: str,
    rule: str = 'first',
    step_hours: int = 3,
    fixed_hour: int = 21,
    url_template: str = NARR_URL_TEMPLATE,
    file_template: str = NARR_FILE_TEMPLATE
) -> pd.DataFrame:
    """
    List the reanalysis files needed by an event table.

    Parameters
    ----------
    events : pd.DataFrame
        Big days or contrast days
    out_dir : str
        Directory where files are (or will be) stored

    Returns
    -------
    pd.DataFrame
        One row per unique analysis time: analysis_time, url, path, exists
    """
    timed = assign_analysis_times(events, rule=rule, step_hours=step_hours, fixed_hour=fixed_hour)
    times = sorted(pd.to_datetime(timed['analysis_time']).unique())

    rows = []
    for t in times:
        t = pd.Timestamp(t)
        path = os.path.join(out_dir, narr_filename(t, file_template))
        rows.append({
            'analysis_time': t,
            'url': narr_url(t, url_template, file_template),
            'path': path,
            'exists': os.path.exists(path),
        })

    plan = pd.DataFrame(rows, columns=['analysis_time', 'url', 'path', 'exists'])
    logger.info(
        f"Planned {len(plan)} reanalysis files for {len(events)} events "
        f"({int(plan['exists'].sum()) if len(plan) else 0} already on disk)"
    )
    return plan


def download_file(
    url: str,
    dest: str,
    timeout: int = 120,
    session: Optional[requests.Session] = None
) -> str:
    """
    Stream one file to disk via a '.part' file.

    Raises
    ------
    requests.HTTPError
        If the server returns an error status
    """
    os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
    http = session or requests
    tmp = dest + '.part'
    try:
        with http.get(url, stream=True, timeout=timeout) as r:
            r.raise_for_status()
            with open(tmp, 'wb') as f:
                for chunk in r.iter_content(chunk_size=1 << 20):
                    if chunk:
                        f.write(chunk)
        os.replace(tmp, dest)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)
    return dest


def download_fields(
    plan: pd.DataFrame,
    overwrite: bool = False,
    timeout: int = 120,
    session: Optional[requests.Session] = None
) -> pd.DataFrame:
    """
    Download every file in a plan, one after another.

    A failure on one file is logged and recorded; the loop continues.

    Returns
    -------
    pd.DataFrame
        The plan with 'status' and refreshed 'exists' columns
    """
    plan = plan.copy()
    statuses = []
    ok = skipped = failed = 0

    for row in tqdm(plan.itertuples(index=False), total=len(plan), desc="Downloading NARR"):
        name = os.path.basename(row.path)
        if os.path.exists(row.path) and not overwrite:
            statuses.append(f"[SKIP] {name} - already downloaded")
            skipped += 1
            continue
        try:
            download_file(row.url, row.path, timeout=timeout, session=session)
            statuses.append(f"[OK]   {name}")
            ok += 1
        except Exception as e:
            logger.error(f"Error downloading {row.url}: {type(e).__name__}: {e}")
            statuses.append(f"[ERR]  {name}: {type(e).__name__}: {e}")
            failed += 1

    plan['status'] = statuses
    plan['exists'] = [os.path.exists(p) for p in plan['path']]
    logger.info(f"Download complete: {ok} succeeded, {failed} failed, {skipped} skipped")
    return plan
