# src/bigdays/environment.py
"""
Module: environment.py
Responsibilities:
- Locate covariate bands (CAPE, CIN, helicity, storm motion) in reanalysis GRIB files
- Read them into an xarray Dataset on the native grid
- Rasterize each event's hull onto that grid
- Reduce each covariate over the hull (max / min / mean / median)
- Extract covariates for a whole event table, optionally writing clipped fields to NetCDF
"""
import os
import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd
import geopandas as gpd
import rasterio
import xarray as xr
from rasterio.features import geometry_mask
from rasterio.transform import Affine, rowcol
from tqdm import tqdm

from bigdays.config import DEFAULT_CONFIG
from bigdays.reanalysis import assign_analysis_times

logger = logging.getLogger(__name__)

DEFAULT_FIELDS: Dict[str, Dict[str, str]] = DEFAULT_CONFIG['environment']['fields']

STATISTICS = {
    'max': np.nanmax,
    'min': np.nanmin,
    'mean': np.nanmean,
    'median': np.nanmedian,
}


def validate_fields(fields: Dict[str, Dict[str, str]]) -> None:
    """
    Check a field table: every entry needs an 'element' and a known 'stat'.

    Raises
    ------
    ValueError
        If the table is empty or an entry is malformed
    """
    if not fields:
        raise ValueError("Field table is empty")
    for name, spec in fields.items():
        if 'element' not in spec:
            raise ValueError(f"Field '{name}' has no GRIB element")
        stat = spec.get('stat', 'mean')
        if stat not in STATISTICS:
            raise ValueError(
                f"Field '{name}' uses unknown statistic '{stat}'. "
                f"Valid: {', '.join(STATISTICS)}"
            )


def find_band(src, element: str, level: Optional[str] = None) -> int:
    """
    Index of the band whose GRIB_ELEMENT (and GRIB_SHORT_NAME, if given) match.

    Parameters
    ----------
    src : rasterio.DatasetReader
        Open raster
    element : str
        GRIB element, e.g. 'CAPE', 'HLCY'
    level : str, optional
        GRIB short name of the level, e.g. '0-SFC', '3000-0-HTGL'

    Returns
    -------
    int
        1-based band index

    Raises
    ------
    KeyError
        If no band matches
    """
    available = []
    for bidx in src.indexes:
        tags = src.tags(bidx)
        el = tags.get('GRIB_ELEMENT')
        short = tags.get('GRIB_SHORT_NAME')
        available.append(f"{el}@{short}")
        if el == element and (level is None or short == level):
            return bidx

    wanted = f"{element}@{level}" if level else element
    raise KeyError(
        f"No band {wanted} in {src.name}. Available: {', '.join(available[:40])}"
        + (" ..." if len(available) > 40 else "")
    )


def read_fields(path: str, fields: Optional[Dict[str, Dict[str, str]]] = None) -> xr.Dataset:
    """
    Read covariate bands into a Dataset on the raster's native grid.

    Parameters
    ----------
    path : str
        GRIB (or any GDAL raster with GRIB band tags)
    fields : dict, optional
        Covariate name → {'element', 'level', 'stat'}; defaults to DEFAULT_FIELDS

    Returns
    -------
    xr.Dataset
        Variables named after the fields, dims (y, x), cell-centre coordinates
        in the raster CRS; attrs carry 'crs' (WKT) and 'transform' (6 floats)
    """
    fields = fields or DEFAULT_FIELDS
    validate_fields(fields)

    with rasterio.open(path) as src:
        if src.crs is None:
            raise ValueError(f"Raster has no CRS: {path}")
        transform = src.transform
        height, width = src.height, src.width
        data_vars = {}
        for name, spec in fields.items():
            bidx = find_band(src, spec['element'], spec.get('level'))
            band = src.read(bidx, masked=True).astype('float64').filled(np.nan)
            data_vars[name] = (('y', 'x'), band, {
                'grib_element': spec['element'],
                'grib_level': spec.get('level') or '',
                'band': bidx,
            })
        crs_wkt = src.crs.to_wkt()

    xs = transform.c + (np.arange(width) + 0.5) * transform.a
    ys = transform.f + (np.arange(height) + 0.5) * transform.e

    ds = xr.Dataset(
        data_vars,
        coords={'y': ys, 'x': xs},
        attrs={
            'crs': crs_wkt,
            'transform': [float(v) for v in list(transform)[:6]],
            'source': os.path.basename(path),
        }
    )
    return ds


def _grid_transform(ds: xr.Dataset) -> Affine:
    return Affine(*ds.attrs['transform'][:6])


def domain_mask(ds: xr.Dataset, geometry, geometry_crs: str = 'EPSG:4326') -> np.ndarray:
    """
    Boolean grid mask of the cells touched by an event's hull.

    When the hull is too small to touch any cell centre or edge, the single
    cell containing its centroid is used.

    Raises
    ------
    ValueError
        If the hull lies entirely off the grid
    """
    geom = gpd.GeoSeries([geometry], crs=geometry_crs).to_crs(ds.attrs['crs']).iloc[0]
    transform = _grid_transform(ds)
    shape = (ds.sizes['y'], ds.sizes['x'])

    mask = geometry_mask(
        [geom], out_shape=shape, transform=transform, all_touched=True, invert=True
    )
    if mask.any():
        return mask

    centroid = geom.centroid
    row, col = rowcol(transform, centroid.x, centroid.y)
    if not (0 <= row < shape[0] and 0 <= col < shape[1]):
        raise ValueError("Event domain lies outside the reanalysis grid")
    mask[row, col] = True
    return mask


def summarize_domain(
    ds: xr.Dataset,
    mask: np.ndarray,
    fields: Optional[Dict[str, Dict[str, str]]] = None
) -> Dict[str, float]:
    """
    Reduce each covariate over the masked cells.

    NaN cells are ignored; a covariate with no finite cell in the mask is NaN.
    Adds 'storm_motion' (speed of the reduced u/v storm motion) when both
    'ustm' and 'vstm' are present, and 'n_cells'.
    """
    fields = fields or DEFAULT_FIELDS
    out: Dict[str, float] = {}

    for name, spec in fields.items():
        values = ds[name].values[mask]
        values = values[np.isfinite(values)]
        if values.size == 0:
            out[name] = np.nan
        else:
            out[name] = float(STATISTICS[spec.get('stat', 'mean')](values))

    if 'ustm' in out and 'vstm' in out:
        out['storm_motion'] = float(np.hypot(out['ustm'], out['vstm']))
    out['n_cells'] = int(mask.sum())
    return out


def clip_to_domain(ds: xr.Dataset, mask: np.ndarray) -> xr.Dataset:
    """Subset a Dataset to the bounding box of a mask, NaN outside the mask."""
    rows = np.where(mask.any(axis=1))[0]
    cols = np.where(mask.any(axis=0))[0]
    r0, r1, c0, c1 = rows[0], rows[-1] + 1, cols[0], cols[-1] + 1

    sub_mask = xr.DataArray(mask[r0:r1, c0:c1], dims=('y', 'x'))
    clip = ds.isel(y=slice(r0, r1), x=slice(c0, c1)).where(sub_mask)
    clip.attrs = dict(ds.attrs)
    clip.attrs['transform'] = [
        float(v) for v in list(_grid_transform(ds) * Affine.translation(int(c0), int(r0)))[:6]
    ]
    return clip


def extract_environment(
    events: gpd.GeoDataFrame,
    plan: pd.DataFrame,
    fields: Optional[Dict[str, Dict[str, str]]] = None,
    clip_dir: Optional[str] = None,
    rule: str = 'first',
    step_hours: int = 3,
    fixed_hour: int = 21
) -> pd.DataFrame:
    """
    Environmental covariates for every event.

    Each reanalysis file is opened once and serves every event sharing its
    analysis time. Events whose file is missing, or whose extraction fails,
    get NaN covariates and an explanatory 'status'.

    Parameters
    ----------
    events : gpd.GeoDataFrame
        Big days or contrast days, hull geometry
    plan : pd.DataFrame
        Output of reanalysis.plan_downloads / download_fields
    fields : dict, optional
        Field table (defaults to DEFAULT_FIELDS)
    clip_dir : str, optional
        If given, write each event's clipped fields to '<clip_dir>/<YYYYMMDD>.nc'
    rule, step_hours, fixed_hour
        Analysis-time rule for events without an 'analysis_time' column

    Returns
    -------
    pd.DataFrame
        Event attributes (no geometry) plus covariates, n_cells, status
    """
    fields = fields or DEFAULT_FIELDS
    validate_fields(fields)

    timed = assign_analysis_times(events, rule=rule, step_hours=step_hours, fixed_hour=fixed_hour)
    paths = dict(zip(pd.to_datetime(plan['analysis_time']), plan['path']))
    crs = events.crs.to_string() if events.crs is not None else 'EPSG:4326'

    covariates = list(fields) + (['storm_motion'] if {'ustm', 'vstm'} <= set(fields) else [])
    records = {}
    ok = failed = 0

    if clip_dir:
        os.makedirs(clip_dir, exist_ok=True)

    for t, group in tqdm(timed.groupby('analysis_time'), desc="Extracting environment"):
        path = paths.get(pd.Timestamp(t))
        if path is None or not os.path.exists(path):
            for idx in group.index:
                records[idx] = {'status': f"[ERR]  missing reanalysis file for {pd.Timestamp(t)}"}
            failed += len(group)
            logger.warning(f"No reanalysis file for {pd.Timestamp(t)} ({len(group)} events)")
            continue

        try:
            ds = read_fields(path, fields)
        except Exception as e:
            logger.error(f"Error reading {path}: {type(e).__name__}: {e}")
            for idx in group.index:
                records[idx] = {'status': f"[ERR]  {type(e).__name__}: {e}"}
            failed += len(group)
            continue

        for idx, event in group.iterrows():
            try:
                mask = domain_mask(ds, event[timed.geometry.name], crs)
                summary = summarize_domain(ds, mask, fields)
                summary['status'] = "[OK]"
                if clip_dir:
                    clip = clip_to_domain(ds, mask)
                    clip.attrs['cdate'] = str(pd.Timestamp(event['cdate']).date())
                    clip.attrs['analysis_time'] = str(pd.Timestamp(t))
                    clip.to_netcdf(os.path.join(clip_dir, f"{pd.Timestamp(event['cdate']):%Y%m%d}.nc"))
                records[idx] = summary
                ok += 1
            except Exception as e:
                logger.error(f"Error extracting event {event['cdate']}: {type(e).__name__}: {e}")
                records[idx] = {'status': f"[ERR]  {type(e).__name__}: {e}"}
                failed += 1

        ds.close()

    env = pd.DataFrame.from_dict(records, orient='index').reindex(timed.index)
    for col in covariates + ['n_cells', 'status']:
        if col not in env.columns:
            env[col] = np.nan

    base = pd.DataFrame(timed.drop(columns=timed.geometry.name))
    out = pd.concat([base, env[covariates + ['n_cells', 'status']]], axis=1)

    logger.info(f"Environment extraction complete: {ok} succeeded, {failed} failed")
    return out.reset_index(drop=True)
