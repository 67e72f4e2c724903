# src/bigdays/cli.py

"""
CLI wrapper for the big tornado day toolkit.

Sub-commands:
  ingest   : Load (optionally download) the SPC catalog and preprocess it
  bigdays  : Aggregate tornadoes into big days with convex-hull domains
  contrast : Sample non-event days paired with the big days
  download : Download the NARR analyses needed by big days and contrast days
  extract  : Extract environmental covariates over each event domain
  model    : Fit mixed-effects models and compare environments
  plot     : Produce the standard figures
  run      : Run every step in order
"""

import argparse
import json
import os
import sys
import logging
from typing import Any, Dict, Optional

import pandas as pd

from bigdays.config import get, load_config
from bigdays.data_io import download_catalog, load_catalog, load_table, save_table
from bigdays.preprocess import preprocess_catalog
from bigdays.events import aggregate_big_days, daily_counts, rank_big_days
from bigdays.contrast import sample_non_event_days
from bigdays.reanalysis import VALID_TIME_RULES, assign_analysis_times, plan_downloads, download_fields
from bigdays.environment import extract_environment
from bigdays.models import prepare_model_frame, run_models, compare_environments
from bigdays.serialize import write_json
from bigdays.viz import create_figures

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)

# Output file names, relative to --output-dir
TORNADOES_FILE = 'tornadoes.parquet'
BIG_DAYS_FILE = 'big_days.gpkg'
BIG_DAYS_CSV = 'big_days.csv'
DAILY_FILE = 'daily_counts.csv'
CONTRAST_FILE = 'contrast_days.gpkg'
MANIFEST_FILE = 'download_manifest.csv'
BIG_ENV_FILE = 'big_days_env.csv'
CONTRAST_ENV_FILE = 'contrast_env.csv'
MODELS_FILE = 'models.json'
ENV_CONTRAST_FILE = 'environment_contrast.csv'

EVENT_DATES = ['cdate', 'first_utc', 'last_utc', 'analysis_time', 'paired_cdate']


def setup_logging(output_dir: str, level: str = 'INFO') -> str:
    """
    Configure console logging and a log file under '<output_dir>/logs/'.

    Returns
    -------
    str
        Path of the log file
    """
    log_dir = os.path.join(output_dir, 'logs')
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, 'bigdays.log')

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format=LOG_FORMAT, force=True)
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return log_file


def _path(output_dir: str, name: str) -> str:
    return os.path.join(output_dir, name)


def _load_events(path: str):
    return load_table(path, parse_dates=EVENT_DATES)


def _read_json(path: str):
    with open(path, "r") as f:
        return json.load(f)


def _time_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'rule': get(config, 'reanalysis.time_rule', 'first'),
        'step_hours': get(config, 'reanalysis.step_hours', 3),
        'fixed_hour': get(config, 'reanalysis.fixed_hour', 21),
    }


def run_ingest(
    config: Dict[str, Any],
    output_dir: str,
    catalog: Optional[str] = None,
    download: bool = False
) -> str:
    """
    Preprocess the tornado catalog and save it as GeoParquet.

    Parameters
    ----------
    config : dict
        Loaded configuration
    output_dir : str
        Output directory
    catalog : str, optional
        Catalog CSV path (defaults to '<output_dir>/raw/<catalog file name>')
    download : bool, default=False
        Download the catalog first if it is not on disk
    """
    cat = config['catalog']
    if catalog is None:
        catalog = os.path.join(output_dir, 'raw', os.path.basename(cat['url']))
    if download:
        download_catalog(cat['url'], catalog)

    raw = load_catalog(catalog)
    tornadoes = preprocess_catalog(
        raw,
        start_year=cat['start_year'],
        end_year=cat['end_year'],
        excluded_states=cat['excluded_states'],
        min_magnitude=cat['min_magnitude']
    )
    return save_table(tornadoes, _path(output_dir, TORNADOES_FILE))


def run_bigdays(config: Dict[str, Any], output_dir: str) -> str:
    """
    Aggregate preprocessed tornadoes into big days and daily counts.

    Each big day is saved with its analysis time. Later steps (contrast,
    download, extract) read that column instead of re-applying the rule, so
    the whole run uses one set of analysis times.
    """
    ev = config['events']
    tornadoes = load_table(_path(output_dir, TORNADOES_FILE))

    daily = daily_counts(tornadoes)
    save_table(daily, _path(output_dir, DAILY_FILE))

    big = aggregate_big_days(
        tornadoes,
        min_tornadoes=ev['min_tornadoes'],
        equal_area_crs=ev['equal_area_crs'],
        hull_buffer_m=ev['hull_buffer_m'],
        min_buffer_m=ev['min_buffer_m']
    )
    if big.empty:
        raise ValueError(f"No convective day has >= {ev['min_tornadoes']} tornadoes")

    times = _time_settings(config)
    big = assign_analysis_times(rank_big_days(big), **times)
    logger.info(f"Analysis times for {len(big)} big days use the '{times['rule']}' rule")
    save_table(big, _path(output_dir, BIG_DAYS_CSV))
    return save_table(big, _path(output_dir, BIG_DAYS_FILE))


def run_contrast(config: Dict[str, Any], output_dir: str) -> str:
    """Sample non-event days paired with the big days."""
    co = config['contrast']
    big = _load_events(_path(output_dir, BIG_DAYS_FILE))
    daily = load_table(_path(output_dir, DAILY_FILE), parse_dates=['cdate'])

    sample = sample_non_event_days(
        big,
        daily,
        per_event=co['per_event'],
        seed=co['seed'],
        match_month=co['match_month'],
        max_tornadoes=co['max_tornadoes'],
        **_time_settings(config)
    )
    return save_table(sample, _path(output_dir, CONTRAST_FILE))


def _event_tables(output_dir: str) -> Dict[str, Any]:
    tables = {'big_days': _load_events(_path(output_dir, BIG_DAYS_FILE))}
    contrast_path = _path(output_dir, CONTRAST_FILE)
    if os.path.exists(contrast_path):
        tables['contrast'] = _load_events(contrast_path)
    else:
        logger.info(f"No contrast days at {contrast_path}; using big days only")
    return tables


def _plan(config: Dict[str, Any], output_dir: str, narr_dir: Optional[str] = None) -> pd.DataFrame:
    narr = config['reanalysis']
    narr_dir = narr_dir or _path(output_dir, 'narr')
    plans = [
        plan_downloads(
            events, narr_dir,
            url_template=narr['url_template'],
            file_template=narr['file_template'],
            **_time_settings(config)
        )
        for events in _event_tables(output_dir).values()
    ]
    plan = pd.concat(plans, ignore_index=True)
    return plan.drop_duplicates('analysis_time').sort_values('analysis_time').reset_index(drop=True)


def run_download(
    config: Dict[str, Any],
    output_dir: str,
    narr_dir: Optional[str] = None,
    overwrite: bool = False
) -> str:
    """Download the NARR analyses for all events and write the manifest."""
    plan = _plan(config, output_dir, narr_dir)
    plan = download_fields(plan, overwrite=overwrite, timeout=config['reanalysis']['timeout'])

    failed = plan['status'].str.startswith('[ERR]')
    for status in plan.loc[failed, 'status']:
        print(status)
    return save_table(plan, _path(output_dir, MANIFEST_FILE))


def run_extract(
    config: Dict[str, Any],
    output_dir: str,
    narr_dir: Optional[str] = None
) -> Dict[str, str]:
    """Extract covariates for big days and (when sampled) contrast days."""
    env_cfg = config['environment']

    manifest_path = _path(output_dir, MANIFEST_FILE)
    if os.path.exists(manifest_path):
        plan = load_table(manifest_path, parse_dates=['analysis_time'])
    else:
        logger.info("No download manifest; planning from files on disk")
        plan = _plan(config, output_dir, narr_dir)

    outputs = {}
    targets = {'big_days': BIG_ENV_FILE, 'contrast': CONTRAST_ENV_FILE}
    for name, events in _event_tables(output_dir).items():
        clip_dir = _path(output_dir, os.path.join('clips', name)) if env_cfg['write_clips'] else None
        env = extract_environment(
            events, plan,
            fields=env_cfg['fields'],
            clip_dir=clip_dir,
            **_time_settings(config)
        )
        outputs[name] = save_table(env, _path(output_dir, targets[name]))
    return outputs


def run_model(config: Dict[str, Any], output_dir: str) -> str:
    """Fit the mixed-effects models and compare big-day and non-event environments."""
    mc = config['model']
    big_env = load_table(_path(output_dir, BIG_ENV_FILE), parse_dates=['cdate'])

    frame = prepare_model_frame(big_env, reference_year=mc['reference_year'])
    results = run_models(frame, groups=mc['groups'], reml=mc['reml'])

    contrast_path = _path(output_dir, CONTRAST_ENV_FILE)
    if os.path.exists(contrast_path):
        contrast_env = load_table(contrast_path, parse_dates=['cdate'])
        table = compare_environments(big_env, contrast_env, mc['contrast_variables'])
        save_table(table, _path(output_dir, ENV_CONTRAST_FILE))
        results['environment_contrast'] = table
    else:
        logger.info(f"No contrast environments at {contrast_path}; skipping comparison")

    for name, trend in results['trend_percent_per_year'].items():
        logger.info(
            f"Trend ({name}): {trend['percent_per_year']:+.1f}% per year "
            f"[{trend['ci_lower']:+.1f}, {trend['ci_upper']:+.1f}]"
        )
    return write_json(results, _path(output_dir, MODELS_FILE))


def run_plot(output_dir: str) -> Dict[str, str]:
    """Produce every figure whose inputs exist."""
    def _maybe(name, loader):
        path = _path(output_dir, name)
        return loader(path) if os.path.exists(path) else None

    big_days = _maybe(BIG_DAYS_FILE, _load_events)
    big_env = _maybe(BIG_ENV_FILE, load_table)
    contrast_env = _maybe(CONTRAST_ENV_FILE, load_table)
    model_results = _maybe(MODELS_FILE, _read_json)

    return create_figures(
        _path(output_dir, 'figures'),
        big_days=big_days,
        big_env=big_env,
        contrast_env=contrast_env,
        model_results=model_results
    )


def run_all(
    config: Dict[str, Any],
    output_dir: str,
    catalog: Optional[str] = None,
    download: bool = False,
    narr_dir: Optional[str] = None
) -> None:
    """Run the whole pipeline, catalog to figures."""
    steps = [
        ('ingest', lambda: run_ingest(config, output_dir, catalog=catalog, download=download)),
        ('bigdays', lambda: run_bigdays(config, output_dir)),
        ('contrast', lambda: run_contrast(config, output_dir)),
        ('download', lambda: run_download(config, output_dir, narr_dir=narr_dir)),
        ('extract', lambda: run_extract(config, output_dir, narr_dir=narr_dir)),
        ('model', lambda: run_model(config, output_dir)),
        ('plot', lambda: run_plot(output_dir)),
    ]
    for i, (name, step) in enumerate(steps):
        print(f"[{i+1}/{len(steps)}] {name}")
        step()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='bigdays',
        description='Big tornado days: energy, environment and trends'
    )
    parser.add_argument('--config', default=None,
                        help='YAML file overriding the default settings')
    parser.add_argument('--output-dir', default='outputs',
                        help='Directory for all inputs and outputs of the pipeline')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    sub = parser.add_subparsers(dest='command', required=True)

    # ingest sub-command
    p_ingest = sub.add_parser('ingest', help='Preprocess the SPC tornado catalog')
    p_ingest.add_argument('--catalog', default=None,
                          help='Path to the catalog CSV (default: <output-dir>/raw/)')
    p_ingest.add_argument('--download', action='store_true',
                          help='Download the catalog if it is not on disk')

    # bigdays sub-command
    p_big = sub.add_parser('bigdays', help='Aggregate tornadoes into big days')
    p_big.add_argument('--min-tornadoes', type=int, default=None,
                       help='Minimum tornadoes for a big day (overrides config)')
    p_big.add_argument('--time-rule', choices=list(VALID_TIME_RULES), default=None,
                       help='Analysis-time rule saved with each big day (overrides config)')

    # contrast sub-command
    p_con = sub.add_parser('contrast', help='Sample non-event days paired with big days')
    p_con.add_argument('--seed', type=int, default=None,
                       help='Random seed (overrides config)')
    p_con.add_argument('--per-event', type=int, default=None,
                       help='Non-event days per big day (overrides config)')

    # download sub-command
    p_dl = sub.add_parser('download', help='Download NARR analyses for all events')
    p_dl.add_argument('--narr-dir', default=None,
                      help='Directory for NARR files (default: <output-dir>/narr)')
    p_dl.add_argument('--overwrite', action='store_true',
                      help='Re-download files already on disk')

    # extract sub-command
    p_ex = sub.add_parser('extract', help='Extract environmental covariates')
    p_ex.add_argument('--narr-dir', default=None,
                      help='Directory for NARR files (default: <output-dir>/narr)')
    p_ex.add_argument('--write-clips', action='store_true',
                      help='Write clipped fields to NetCDF')

    # model sub-command
    sub.add_parser('model', help='Fit mixed-effects models and compare environments')

    # plot sub-command
    sub.add_parser('plot', help='Produce the standard figures')

    # run sub-command
    p_run = sub.add_parser('run', help='Run every step in order')
    p_run.add_argument('--catalog', default=None,
                       help='Path to the catalog CSV (default: <output-dir>/raw/)')
    p_run.add_argument('--download', action='store_true',
                       help='Download the catalog if it is not on disk')
    p_run.add_argument('--narr-dir', default=None,
                       help='Directory for NARR files (default: <output-dir>/narr)')
    p_run.add_argument('--time-rule', choices=list(VALID_TIME_RULES), default=None,
                       help='Analysis-time rule for every event (overrides config)')

    return parser


def apply_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Copy command-line overrides into the loaded configuration."""
    overrides = {
        'min_tornadoes': ('events', 'min_tornadoes'),
        'seed': ('contrast', 'seed'),
        'per_event': ('contrast', 'per_event'),
        'time_rule': ('reanalysis', 'time_rule'),
    }
    for arg, (section, key) in overrides.items():
        value = getattr(args, arg, None)
        if value is not None:
            config[section][key] = value
    if getattr(args, 'write_clips', False):
        config['environment']['write_clips'] = True
    return config


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        log_file = setup_logging(args.output_dir, args.log_level)
        logger.info(f"Command '{args.command}', output dir {args.output_dir}, log {log_file}")
        config = apply_overrides(load_config(args.config), args)

        if args.command == 'ingest':
            run_ingest(config, args.output_dir, catalog=args.catalog, download=args.download)
        elif args.command == 'bigdays':
            run_bigdays(config, args.output_dir)
        elif args.command == 'contrast':
            run_contrast(config, args.output_dir)
        elif args.command == 'download':
            run_download(config, args.output_dir, narr_dir=args.narr_dir, overwrite=args.overwrite)
        elif args.command == 'extract':
            run_extract(config, args.output_dir, narr_dir=args.narr_dir)
        elif args.command == 'model':
            run_model(config, args.output_dir)
        elif args.command == 'plot':
            run_plot(args.output_dir)
        elif args.command == 'run':
            run_all(config, args.output_dir, catalog=args.catalog,
                    download=args.download, narr_dir=args.narr_dir)
    except Exception as e:
        logger.error(f"{args.command} failed: {type(e).__name__}: {e}")
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
