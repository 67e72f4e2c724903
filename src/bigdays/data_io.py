# src/bigdays/data_io.py
"""
Module: data_io.py
Responsibilities:
- Validate input paths
- Download the SPC tornado catalog CSV
- Load the catalog into a pandas DataFrame and check its columns
- Save/load intermediate tables (Parquet, GeoPackage, CSV, NetCDF)
"""
import os
import logging
from typing import Optional

import pandas as pd
import geopandas as gpd
import pyarrow.parquet as pq
import requests
import xarray as xr

logger = logging.getLogger(__name__)

# Columns of the SPC "actual tornadoes" CSV used downstream
REQUIRED_COLUMNS = [
    'om', 'yr', 'mo', 'dy', 'date', 'time', 'tz', 'st', 'mag',
    'inj', 'fat', 'slat', 'slon', 'elat', 'elon', 'len', 'wid'
]


def validate_path(path: str, kind: str = 'file') -> bool:
    """
    Ensure a file or directory exists and is readable.

    Parameters
    ----------
    path : str
        Path to check
    kind : str, default='file'
        'file' or 'dir'

    Returns
    -------
    bool
        True if the path is valid, raises otherwise

    Raises
    ------
    FileNotFoundError
        If a file doesn't exist
    NotADirectoryError
        If a directory doesn't exist or is not a directory
    PermissionError
        If the path exists but isn't readable
    """
    if kind not in ('file', 'dir'):
        raise ValueError(f"kind must be 'file' or 'dir', got {kind!r}")

    if kind == 'file':
        if not os.path.isfile(path):
            raise FileNotFoundError(f"File not found: {path}")
    else:
        if not os.path.isdir(path):
            raise NotADirectoryError(f"Directory not found: {path}")

    if not os.access(path, os.R_OK):
        raise PermissionError(f"Path is not readable: {path}")

    logger.info(f"Verified {kind}: {path}")
    return True


def download_catalog(
    url: str,
    dest: str,
    overwrite: bool = False,
    timeout: int = 60,
    session: Optional[requests.Session] = None
) -> str:
    """
    Download the tornado catalog CSV.

    The response is streamed into ``dest + '.part'`` and renamed on success,
    so an interrupted transfer never leaves a truncated catalog at ``dest``.
    The partial file is removed on failure.

    Parameters
    ----------
    url : str
        Catalog URL
    dest : str
        Local file path
    overwrite : bool, default=False
        Re-download even if dest exists
    timeout : int, default=60
        Request timeout in seconds
    session : requests.Session, optional
        Session to use (a plain requests call if None)

    Returns
    -------
    str
        Path of the local catalog

    Raises
    ------
    requests.HTTPError
        If the server returns an error status
    """
    if os.path.exists(dest) and not overwrite:
        logger.info(f"Catalog already present at {dest}, skipping download")
        return dest

    os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
    http = session or requests
    tmp = dest + '.part'

    logger.info(f"Downloading tornado catalog from {url}")
    try:
        with http.get(url, stream=True, timeout=timeout) as r:
            r.raise_for_status()
            with open(tmp, 'wb') as f:
                for chunk in r.iter_content(chunk_size=1 << 16):
                    if chunk:
                        f.write(chunk)
        os.replace(tmp, dest)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)

    logger.info(f"  Saved catalog → {dest} ({os.path.getsize(dest)} bytes)")
    return dest


def load_catalog(path: str) -> pd.DataFrame:
    """
    Load the SPC tornado catalog CSV.

    Parameters
    ----------
    path : str
        Path to the catalog CSV

    Returns
    -------
    pd.DataFrame
        Raw catalog with lower-cased column names

    Raises
    ------
    ValueError
        If the file is empty or cannot be parsed
    KeyError
        If required columns are missing
    """
    validate_path(path, 'file')

    try:
        df = pd.read_csv(path, dtype={'date': str, 'time': str, 'st': str})
    except pd.errors.EmptyDataError:
        raise ValueError(f"Catalog file is empty: {path}")
    except pd.errors.ParserError as e:
        raise ValueError(f"Error parsing catalog file: {e}")

    if df.empty:
        raise ValueError(f"Catalog file contains no data: {path}")

    df.columns = [str(c).strip().lower() for c in df.columns]

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"Catalog missing required columns: {', '.join(missing)}")

    if 'sg' not in df.columns:
        logger.warning("Catalog has no 'sg' column; state segments cannot be removed")

    logger.info(f"Loaded catalog: {len(df)} records, years {df['yr'].min()}-{df['yr'].max()}")
    return df


def _is_geoparquet(path: str) -> bool:
    metadata = pq.read_schema(path).metadata or {}
    return b'geo' in metadata


def save_table(df, path: str) -> str:
    """
    Save a (Geo)DataFrame or xarray Dataset, choosing the format from the extension.

    Supported: .parquet, .gpkg, .csv, .nc
    """
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    ext = os.path.splitext(path)[1].lower()

    if ext == '.nc':
        if not isinstance(df, xr.Dataset):
            raise TypeError("NetCDF output requires an xarray Dataset")
        df.to_netcdf(path)
    elif ext == '.parquet':
        df.to_parquet(path)
    elif ext == '.gpkg':
        if not isinstance(df, gpd.GeoDataFrame):
            raise TypeError("GeoPackage output requires a GeoDataFrame")
        if os.path.exists(path):
            os.remove(path)
        df.to_file(path, driver='GPKG')
    elif ext == '.csv':
        out = df
        if isinstance(df, gpd.GeoDataFrame):
            out = pd.DataFrame(df.drop(columns=df.geometry.name))
        out.to_csv(path, index=False)
    else:
        raise ValueError(f"Unsupported table format: {ext}")

    logger.info(f"Saved {len(df)} rows → {path}" if not isinstance(df, xr.Dataset) else f"Saved dataset → {path}")
    return path


def _parse_dates(df, columns: Optional[list]):
    # All times are naive UTC; GeoPackage readers may hand them back tz-aware
    for col in columns or []:
        if col in df.columns:
            values = pd.to_datetime(df[col])
            if values.dt.tz is not None:
                values = values.dt.tz_convert('UTC').dt.tz_localize(None)
            df[col] = values
    return df


def load_table(path: str, parse_dates: Optional[list] = None):
    """
    Load a table written by save_table.

    Parameters
    ----------
    path : str
        Input path (.parquet, .gpkg, .csv, .nc)
    parse_dates : list, optional
        Columns to parse as datetimes (CSV and GeoPackage only)
    """
    validate_path(path, 'file')
    ext = os.path.splitext(path)[1].lower()

    if ext == '.nc':
        return xr.open_dataset(path)
    if ext == '.parquet':
        if _is_geoparquet(path):
            return gpd.read_parquet(path)
        return pd.read_parquet(path)
    if ext == '.gpkg':
        return _parse_dates(gpd.read_file(path), parse_dates)
    if ext == '.csv':
        return _parse_dates(pd.read_csv(path), parse_dates)

    raise ValueError(f"Unsupported table format: {ext}")
