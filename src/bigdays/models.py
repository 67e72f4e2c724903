# src/bigdays/models.py
"""
Module: models.py
Responsibilities:
- Build the modelling frame from big-day environments (log energy, scaled covariates, trend)
- Fit linear mixed-effects models with a random intercept per group (month by default)
- Summarise fits and compare nested models with likelihood-ratio tests
- Express the trend as a percentage change per year
- Contrast big-day and non-event environments with rank-sum tests
"""
import logging
import warnings
from typing import Dict, Iterable, List, Optional, Any

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy.stats import chi2, mannwhitneyu, norm
from statsmodels.tools.sm_exceptions import ConvergenceWarning

logger = logging.getLogger(__name__)

MODEL_FORMULAS = {
    'trend': 'log_energy ~ year_c',
    'environment': 'log_energy ~ cape_k + srh_h + cin_h + ustm + vstm',
    'full': 'log_energy ~ year_c + cape_k + srh_h + cin_h + ustm + vstm',
}

# (full, reduced) pairs tested by compare_models
NESTED_TESTS = [('full', 'trend'), ('full', 'environment')]

REQUIRED_COLUMNS = ['total_energy', 'n_tornadoes', 'year', 'month', 'cape', 'srh', 'cin', 'ustm', 'vstm']
MODEL_COLUMNS = ['log_energy', 'log_count', 'year_c', 'cape_k', 'srh_h', 'cin_h', 'ustm', 'vstm']
MIN_GROUPS = 2


def prepare_model_frame(events_env: pd.DataFrame, reference_year: int = 1994) -> pd.DataFrame:
    """
    Add model variables to a big-day environment table.

    - log_energy : ln(total_energy), energy in W
    - log_count  : ln(n_tornadoes)
    - year_c     : year - reference_year
    - cape_k     : CAPE / 1000 (J/kg)
    - srh_h      : storm-relative helicity / 100 (m²/s²)
    - cin_h      : CIN / 100 (J/kg)
    - month      : categorical grouping variable

    Rows with a non-finite model variable are dropped.

    Raises
    ------
    KeyError
        If required columns are missing
    ValueError
        If no rows remain
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in events_env.columns]
    if missing:
        raise KeyError(f"Environment table missing columns: {', '.join(missing)}")

    frame = events_env.copy()
    with np.errstate(divide='ignore', invalid='ignore'):
        frame['log_energy'] = np.log(frame['total_energy'].astype(float))
        frame['log_count'] = np.log(frame['n_tornadoes'].astype(float))
    frame['year_c'] = frame['year'].astype(int) - reference_year
    frame['cape_k'] = frame['cape'].astype(float) / 1000.0
    frame['srh_h'] = frame['srh'].astype(float) / 100.0
    frame['cin_h'] = frame['cin'].astype(float) / 100.0
    frame['ustm'] = frame['ustm'].astype(float)
    frame['vstm'] = frame['vstm'].astype(float)

    finite = np.isfinite(frame[MODEL_COLUMNS].to_numpy(dtype=float)).all(axis=1)
    n_drop = int((~finite).sum())
    if n_drop:
        logger.warning(f"Dropping {n_drop} of {len(frame)} events with missing or non-finite model variables")
    frame = frame[finite].reset_index(drop=True)

    if frame.empty:
        raise ValueError("No events with complete model variables")

    frame['month'] = frame['month'].astype(int).astype('category')
    return frame


def _n_fixed_effects(formula: str) -> int:
    rhs = formula.split('~', 1)[1]
    terms = [t.strip() for t in rhs.split('+') if t.strip() and t.strip() != '1']
    return len(terms) + 1


def fit_mixed_model(
    frame: pd.DataFrame,
    formula: str,
    groups: str = 'month',
    reml: bool = True
):
    """
    Fit a linear mixed-effects model with a random intercept per group.

    Parameters
    ----------
    frame : pd.DataFrame
        Output of prepare_model_frame
    formula : str
        Patsy formula for the fixed effects
    groups : str, default='month'
        Grouping column for the random intercept
    reml : bool, default=True
        Restricted maximum likelihood (False → ML, needed for LR tests)

    Returns
    -------
    statsmodels MixedLMResults

    Raises
    ------
    KeyError
        If the grouping column is missing
    ValueError
        If there are too few groups or observations
    """
    if groups not in frame.columns:
        raise KeyError(f"Grouping column '{groups}' not found")

    n_groups = frame[groups].nunique()
    if n_groups < MIN_GROUPS:
        raise ValueError(f"Need at least {MIN_GROUPS} groups for a random intercept, got {n_groups}")

    n_params = _n_fixed_effects(formula)
    if len(frame) < n_params + 2:
        raise ValueError(
            f"Insufficient observations ({len(frame)}) for {n_params} fixed effects. "
            f"Minimum required: {n_params + 2}"
        )

    logger.info(f"Fitting mixed model ({'REML' if reml else 'ML'}): {formula} | {groups} "
                f"[n={len(frame)}, groups={n_groups}]")

    model = smf.mixedlm(formula, data=frame, groups=frame[groups].astype(str))
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always', ConvergenceWarning)
        result = model.fit(reml=reml)
    for w in caught:
        if issubclass(w.category, ConvergenceWarning):
            logger.warning(f"Convergence warning for '{formula}': {w.message}")

    return result


def summarize_model(result) -> Dict[str, Any]:
    """
    JSON-ready summary of a MixedLMResults object.
    """
    fe = result.fe_params
    bse = result.bse_fe
    z = fe / bse
    p = pd.Series(2 * norm.sf(np.abs(z.to_numpy())), index=fe.index)
    ci = result.conf_int().loc[fe.index]

    fixed = {}
    for term in fe.index:
        fixed[term] = {
            'coef': float(fe[term]),
            'se': float(bse[term]),
            'z': float(z[term]),
            'p_value': float(p[term]),
            'ci_lower': float(ci.loc[term, 0]),
            'ci_upper': float(ci.loc[term, 1]),
        }

    return {
        'formula': result.model.formula,
        'method': 'REML' if result.model.reml else 'ML',
        'fixed_effects': fixed,
        'group_variance': float(np.asarray(result.cov_re)[0, 0]),
        'residual_variance': float(result.scale),
        'log_likelihood': float(result.llf),
        'aic': float(result.aic),
        'bic': float(result.bic),
        'n_obs': int(result.nobs),
        'n_groups': int(len(result.model.group_labels)),
        'converged': bool(result.converged),
    }


def compare_models(
    frame: pd.DataFrame,
    groups: str = 'month',
    formulas: Optional[Dict[str, str]] = None,
    tests: Optional[List[tuple]] = None
) -> Dict[str, Any]:
    """
    Fit every formula by ML and run likelihood-ratio tests of nested pairs.

    Returns
    -------
    dict
        {'models': {name: {log_likelihood, aic, bic, n_fixed}},
         'tests': [{full, reduced, chi2, df, p_value}]}
    """
    formulas = formulas or MODEL_FORMULAS
    tests = tests if tests is not None else NESTED_TESTS

    fits = {name: fit_mixed_model(frame, f, groups=groups, reml=False) for name, f in formulas.items()}

    models = {
        name: {
            'log_likelihood': float(res.llf),
            'aic': float(res.aic),
            'bic': float(res.bic),
            'n_fixed': int(len(res.fe_params)),
        }
        for name, res in fits.items()
    }

    results = []
    for full, reduced in tests:
        if full not in fits or reduced not in fits:
            logger.warning(f"Skipping LR test {full} vs {reduced}: model not fitted")
            continue
        df = len(fits[full].fe_params) - len(fits[reduced].fe_params)
        stat = max(0.0, 2.0 * (fits[full].llf - fits[reduced].llf))
        results.append({
            'full': full,
            'reduced': reduced,
            'chi2': float(stat),
            'df': int(df),
            'p_value': float(chi2.sf(stat, df)) if df > 0 else float('nan'),
        })
        logger.info(f"LR test {full} vs {reduced}: chi2={stat:.2f}, df={df}")

    return {'models': models, 'tests': results}


def percent_change_per_year(result, term: str = 'year_c') -> Dict[str, float]:
    """
    Trend in energy as % change per year: 100 * (exp(beta) - 1), with its 95% CI.
    """
    if term not in result.fe_params.index:
        raise KeyError(f"Term '{term}' not in model")
    beta = float(result.fe_params[term])
    lo, hi = result.conf_int().loc[term]
    return {
        'percent_per_year': 100.0 * np.expm1(beta),
        'ci_lower': 100.0 * np.expm1(float(lo)),
        'ci_upper': 100.0 * np.expm1(float(hi)),
    }


def run_models(
    frame: pd.DataFrame,
    groups: str = 'month',
    reml: bool = True,
    formulas: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """
    Fit and summarise all models, compare them and report the trend.
    """
    formulas = formulas or MODEL_FORMULAS
    summaries = {}
    trend = {}
    for name, formula in formulas.items():
        result = fit_mixed_model(frame, formula, groups=groups, reml=reml)
        summaries[name] = summarize_model(result)
        if 'year_c' in result.fe_params.index:
            trend[name] = percent_change_per_year(result)

    return {
        'n_events': int(len(frame)),
        'groups': groups,
        'models': summaries,
        'trend_percent_per_year': trend,
        'comparison': compare_models(frame, groups=groups, formulas=formulas),
    }


def compare_environments(
    big_env: pd.DataFrame,
    contrast_env: pd.DataFrame,
    variables: Iterable[str] = ('cape', 'srh', 'cin', 'ustm', 'vstm', 'storm_motion')
) -> pd.DataFrame:
    """
    Compare covariate distributions on big days and non-event days.

    Uses a two-sided Mann-Whitney U test. Variables with fewer than three
    finite values on either side get NaN statistics.

    Returns
    -------
    pd.DataFrame
        variable, n_big, n_contrast, median_big, median_contrast,
        mean_big, mean_contrast, u_statistic, p_value
    """
    rows = []
    for var in variables:
        if var not in big_env.columns or var not in contrast_env.columns:
            logger.warning(f"Variable {var} missing from one of the environment tables")
            continue
        a = pd.to_numeric(big_env[var], errors='coerce').to_numpy(dtype=float)
        b = pd.to_numeric(contrast_env[var], errors='coerce').to_numpy(dtype=float)
        a = a[np.isfinite(a)]
        b = b[np.isfinite(b)]

        row = {
            'variable': var,
            'n_big': int(a.size),
            'n_contrast': int(b.size),
            'median_big': float(np.median(a)) if a.size else np.nan,
            'median_contrast': float(np.median(b)) if b.size else np.nan,
            'mean_big': float(np.mean(a)) if a.size else np.nan,
            'mean_contrast': float(np.mean(b)) if b.size else np.nan,
            'u_statistic': np.nan,
            'p_value': np.nan,
        }
        if a.size >= 3 and b.size >= 3:
            res = mannwhitneyu(a, b, alternative='two-sided')
            row['u_statistic'] = float(res.statistic)
            row['p_value'] = float(res.pvalue)
        else:
            logger.warning(f"Too few values to test {var} (big={a.size}, contrast={b.size})")
        rows.append(row)

    return pd.DataFrame(rows)
