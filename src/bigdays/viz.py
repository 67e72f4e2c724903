# src/bigdays/viz.py
"""
Visualization utilities for big tornado day analysis.

This module provides a consistent figure style and the standard figures of the
analysis: annual big-day counts, the energy trend, the environmental contrast
between big days and non-event days, event hull maps, and fixed-effect
coefficient plots.
"""
import os
import logging
from typing import Dict, Iterable, Optional, Any

import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib.pyplot as plt
import seaborn as sns

logger = logging.getLogger(__name__)

# Standard figure sizes (in inches)
FIG_SIZES = {
    'small': (6, 4),
    'medium': (8, 6),
    'wide': (12, 6),
    'map': (12, 8),
}

VARIABLE_LABELS = {
    'cape': 'CAPE (J kg$^{-1}$)',
    'srh': 'Storm-relative helicity (m$^2$ s$^{-2}$)',
    'cin': 'CIN (J kg$^{-1}$)',
    'ustm': 'u storm motion (m s$^{-1}$)',
    'vstm': 'v storm motion (m s$^{-1}$)',
    'storm_motion': 'Storm motion speed (m s$^{-1}$)',
}

GROUP_PALETTE = {'Big day': '#B2182B', 'Non-event day': '#2166AC'}


def set_publication_style():
    """Set matplotlib parameters for publication-quality figures."""
    sns.set_theme(style='whitegrid')
    plt.rcParams['figure.figsize'] = FIG_SIZES['medium']
    plt.rcParams['savefig.dpi'] = 300
    plt.rcParams['font.size'] = 12
    plt.rcParams['axes.titlesize'] = 14
    plt.rcParams['axes.labelsize'] = 12
    plt.rcParams['legend.fontsize'] = 10
    plt.rcParams['grid.linewidth'] = 0.5
    plt.rcParams['grid.alpha'] = 0.3


def save_figure(fig, filename, dpi=300, bbox_inches='tight', **kwargs):
    """
    Save a figure, adding .png when no extension is given.

    Parameters
    ----------
    fig : matplotlib.figure.Figure
        Figure to save
    filename : str
        Output filename
    dpi : int, optional
        Resolution (dots per inch)
    """
    if not os.path.splitext(filename)[1]:
        filename = f"{filename}.png"
    os.makedirs(os.path.dirname(os.path.abspath(filename)), exist_ok=True)
    fig.savefig(filename, dpi=dpi, bbox_inches=bbox_inches, **kwargs)
    logger.info(f"Figure saved to {filename}")
    return filename


def _finish(fig, show: bool):
    fig.tight_layout()
    if show:
        plt.show()
    return fig


def plot_annual_big_days(big_days: pd.DataFrame, show: bool = False):
    """Bar chart of the number of big days per year (years without any shown as zero)."""
    counts = big_days.groupby('year').size()
    if len(counts):
        years = np.arange(counts.index.min(), counts.index.max() + 1)
        counts = counts.reindex(years, fill_value=0)

    fig, ax = plt.subplots(figsize=FIG_SIZES['wide'])
    ax.bar(counts.index, counts.values, color='#4393C3', edgecolor='white')
    ax.set_xlabel('Year')
    ax.set_ylabel('Number of big days')
    ax.set_title('Big tornado days per year')
    return _finish(fig, show)


def plot_energy_trend(big_days: pd.DataFrame, show: bool = False):
    """
    Scatter of big-day total energy (log scale) against year with an OLS trend line.
    """
    df = big_days[big_days['total_energy'] > 0]
    years = df['year'].to_numpy(dtype=float)
    log_e = np.log10(df['total_energy'].to_numpy(dtype=float))

    fig, ax = plt.subplots(figsize=FIG_SIZES['medium'])
    ax.scatter(years, log_e, s=18 + 2 * df['n_tornadoes'].clip(upper=100),
               alpha=0.6, color='#D6604D', edgecolor='k', linewidth=0.3)

    if len(df) >= 2 and np.ptp(years) > 0:
        slope, intercept = np.polyfit(years, log_e, 1)
        xx = np.array([years.min(), years.max()])
        ax.plot(xx, intercept + slope * xx, color='k', lw=1.5,
                label=f"OLS: {100 * (10 ** slope - 1):+.1f}% per year")
        ax.legend(loc='upper left')

    ax.set_xlabel('Year')
    ax.set_ylabel('log$_{10}$ total energy (W)')
    ax.set_title('Energy dissipation of big tornado days')
    return _finish(fig, show)


def plot_environment_contrast(
    big_env: pd.DataFrame,
    contrast_env: pd.DataFrame,
    variables: Iterable[str] = ('cape', 'srh', 'cin', 'storm_motion'),
    show: bool = False
):
    """Boxplots of each covariate on big days versus non-event days."""
    variables = [v for v in variables if v in big_env.columns and v in contrast_env.columns]
    if not variables:
        raise ValueError("No common covariates to plot")

    long = pd.concat([
        big_env[variables].assign(group='Big day'),
        contrast_env[variables].assign(group='Non-event day'),
    ]).melt(id_vars='group', var_name='variable', value_name='value')

    fig, axes = plt.subplots(1, len(variables), figsize=(4 * len(variables), 5), squeeze=False)
    for ax, var in zip(axes[0], variables):
        sub = long[long['variable'] == var]
        sns.boxplot(data=sub, x='group', y='value', hue='group', palette=GROUP_PALETTE,
                    ax=ax, legend=False)
        ax.set_xlabel('')
        ax.set_ylabel(VARIABLE_LABELS.get(var, var))
    fig.suptitle('Environment on big days and non-event days')
    return _finish(fig, show)


def plot_hulls(
    big_days: gpd.GeoDataFrame,
    column: Optional[str] = 'total_energy',
    crs: str = 'EPSG:5070',
    show: bool = False
):
    """Map of event hulls, coloured by ``column`` (log10 when it is energy)."""
    gdf = big_days.to_crs(crs)
    fig, ax = plt.subplots(figsize=FIG_SIZES['map'])

    if column and column in gdf.columns:
        values = gdf[column].astype(float)
        if column.endswith('energy'):
            values = np.log10(values.where(values > 0))
        gdf = gdf.assign(_value=values)
        gdf.plot(ax=ax, column='_value', cmap='magma_r', alpha=0.35, edgecolor='k',
                 linewidth=0.3, legend=True,
                 legend_kwds={'label': f"log$_{{10}}$ {column}" if column.endswith('energy') else column,
                              'shrink': 0.6})
    else:
        gdf.plot(ax=ax, facecolor='none', edgecolor='k', linewidth=0.4)

    ax.set_axis_off()
    ax.set_title(f"Big-day tornado hulls (n = {len(gdf)})")
    return _finish(fig, show)


def plot_fixed_effects(model_summary: Dict[str, Any], show: bool = False):
    """Coefficient plot (estimate ± 95% CI) for one summarised model, intercept omitted."""
    fixed = model_summary['fixed_effects']
    terms = [t for t in fixed if t != 'Intercept']
    if not terms:
        raise ValueError("Model has no fixed effects besides the intercept")

    coef = np.array([fixed[t]['coef'] for t in terms])
    lo = np.array([fixed[t]['ci_lower'] for t in terms])
    hi = np.array([fixed[t]['ci_upper'] for t in terms])
    pos = np.arange(len(terms))

    fig, ax = plt.subplots(figsize=(7, 1 + 0.6 * len(terms)))
    ax.errorbar(coef, pos, xerr=[coef - lo, hi - coef], fmt='o', color='k', capsize=3)
    ax.axvline(0, color='grey', ls='--', lw=1)
    ax.set_yticks(pos)
    ax.set_yticklabels(terms)
    ax.invert_yaxis()
    ax.set_xlabel('Effect on ln(total energy)')
    ax.set_title(model_summary.get('formula', ''))
    return _finish(fig, show)


def create_figures(
    output_dir: str,
    big_days: Optional[gpd.GeoDataFrame] = None,
    big_env: Optional[pd.DataFrame] = None,
    contrast_env: Optional[pd.DataFrame] = None,
    model_results: Optional[Dict[str, Any]] = None
) -> Dict[str, str]:
    """
    Produce every figure the available inputs allow and save them under output_dir.

    Returns
    -------
    dict
        figure name → saved path
    """
    set_publication_style()
    saved = {}

    def _save(name, fig):
        saved[name] = save_figure(fig, os.path.join(output_dir, name))
        plt.close(fig)

    if big_days is not None and len(big_days):
        _save('annual_big_days.png', plot_annual_big_days(big_days))
        _save('energy_trend.png', plot_energy_trend(big_days))
        _save('hulls_map.png', plot_hulls(big_days))

    if big_env is not None and contrast_env is not None:
        _save('environment_contrast.png', plot_environment_contrast(big_env, contrast_env))

    if model_results:
        for name, summary in model_results.get('models', {}).items():
            try:
                _save(f"fixed_effects_{name}.png", plot_fixed_effects(summary))
            except ValueError as e:
                logger.warning(f"Skipping coefficient plot for {name}: {e}")

    logger.info(f"Created {len(saved)} figures in {output_dir}")
    return saved
