# scripts/01_top_big_days.py

import os
import sys
import logging
import argparse
from datetime import datetime

import pandas as pd

# Add the src directory to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from bigdays.data_io import load_table, save_table
from bigdays.energy import power_gw
from bigdays.events import rank_big_days

# Set up logging
log_dir = 'logs'
os.makedirs(log_dir, exist_ok=True)
log_file = os.path.join(log_dir, f'top_big_days_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_file),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger('top_big_days')

TABLE_COLUMNS = ['total_energy_rank', 'cdate', 'n_tornadoes', 'power_gw', 'max_ef',
                 'n_violent', 'fatalities', 'hull_area_km2']


def decade_summary(big_days):
    """Big-day count, median tornado count and median power per decade."""
    df = big_days.assign(decade=(big_days['year'] // 10) * 10)
    return df.groupby('decade').agg(
        n_big_days=('cdate', 'size'),
        median_tornadoes=('n_tornadoes', 'median'),
        median_power_gw=('power_gw', 'median'),
    ).reset_index()


def main():
    """List the most energetic big days and summarise them by decade."""
    parser = argparse.ArgumentParser(description='Rank big tornado days by energy dissipation')
    parser.add_argument('--output-dir', default='outputs',
                        help='Pipeline output directory containing big_days.gpkg')
    parser.add_argument('--top', type=int, default=20,
                        help='Number of big days to list')
    args = parser.parse_args()

    big = load_table(os.path.join(args.output_dir, 'big_days.gpkg'), parse_dates=['cdate'])
    big = rank_big_days(pd.DataFrame(big.drop(columns='geometry')))
    big['power_gw'] = power_gw(big['total_energy'])
    logger.info(f"Loaded {len(big)} big days ({big['year'].min()}-{big['year'].max()})")

    top = big.sort_values('total_energy_rank').head(args.top)[TABLE_COLUMNS]
    print(top.to_string(index=False, float_format=lambda v: f"{v:,.1f}"))
    save_table(top, os.path.join(args.output_dir, 'top_big_days.csv'))

    decades = decade_summary(big)
    for row in decades.itertuples(index=False):
        logger.info(f"  {row.decade}s: {row.n_big_days} big days, "
                    f"median {row.median_tornadoes:.0f} tornadoes, "
                    f"median power {row.median_power_gw:,.1f} GW")
    save_table(decades, os.path.join(args.output_dir, 'big_days_by_decade.csv'))


if __name__ == "__main__":
    main()
