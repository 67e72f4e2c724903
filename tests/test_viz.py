"""
Unit tests for viz module.
"""

import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pytest

from bigdays.viz import (
    save_figure, set_publication_style, plot_annual_big_days, plot_energy_trend,
    plot_environment_contrast, plot_hulls, plot_fixed_effects, create_figures
)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


def _summary():
    return {
        "formula": "log_energy ~ year_c + cape_k",
        "fixed_effects": {
            "Intercept": {"coef": 20.0, "ci_lower": 19.5, "ci_upper": 20.5},
            "year_c": {"coef": 0.03, "ci_lower": 0.01, "ci_upper": 0.05},
            "cape_k": {"coef": 0.8, "ci_lower": 0.6, "ci_upper": 1.0},
        },
    }


def test_save_figure(tmp_path):
    """Test saving adds .png and creates directories."""
    set_publication_style()
    fig, ax = plt.subplots()
    ax.plot([0, 1], [0, 1])
    path = save_figure(fig, str(tmp_path / "figs" / "line"))
    assert path.endswith("line.png")
    assert (tmp_path / "figs" / "line.png").exists()


def test_plot_annual_big_days(big_days):
    """Test one bar per year, gap years included."""
    fig = plot_annual_big_days(big_days)
    bars = fig.axes[0].patches
    assert len(bars) == 2000 - 1995 + 1


def test_plot_energy_trend(big_days):
    """Test the scatter and trend line are drawn."""
    fig = plot_energy_trend(big_days)
    ax = fig.axes[0]
    assert len(ax.collections) == 1
    assert len(ax.lines) == 1


def test_plot_environment_contrast(environment_table):
    """Test one panel per shared covariate."""
    contrast = environment_table.drop(columns=["cin"])
    fig = plot_environment_contrast(environment_table, contrast)
    assert len(fig.axes) == 3

    with pytest.raises(ValueError):
        plot_environment_contrast(environment_table, contrast, variables=["cin"])


def test_plot_hulls(big_days):
    """Test the hull map renders with and without a colour column."""
    assert plot_hulls(big_days) is not None
    assert plot_hulls(big_days, column=None) is not None


def test_plot_fixed_effects():
    """Test the coefficient plot omits the intercept."""
    fig = plot_fixed_effects(_summary())
    labels = [t.get_text() for t in fig.axes[0].get_yticklabels()]
    assert labels == ["year_c", "cape_k"]

    with pytest.raises(ValueError):
        plot_fixed_effects({"fixed_effects": {"Intercept": {"coef": 1, "ci_lower": 0, "ci_upper": 2}}})


def test_create_figures(tmp_path, big_days, environment_table):
    """Test every available figure is written."""
    saved = create_figures(
        str(tmp_path),
        big_days=big_days,
        big_env=environment_table,
        contrast_env=environment_table,
        model_results={"models": {"full": _summary()}},
    )
    assert set(saved) == {
        "annual_big_days.png", "energy_trend.png", "hulls_map.png",
        "environment_contrast.png", "fixed_effects_full.png",
    }
    for path in saved.values():
        assert (tmp_path / path.split("/")[-1]).exists()
