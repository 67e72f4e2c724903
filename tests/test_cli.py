"""
Unit tests for cli module.
"""

import json
import os

import matplotlib
matplotlib.use("Agg")

import pandas as pd
import pytest

from bigdays import cli
from bigdays.config import load_config
from test_environment import write_fake_narr


@pytest.fixture
def output_dir(tmp_path):
    out = tmp_path / "outputs"
    out.mkdir()
    return out


def test_parser_setup():
    """Test sub-commands and global options."""
    parser = cli.build_parser()

    args = parser.parse_args(["--output-dir", "out", "ingest", "--catalog", "c.csv", "--download"])
    assert args.command == "ingest"
    assert args.output_dir == "out"
    assert args.catalog == "c.csv"
    assert args.download

    args = parser.parse_args(["bigdays", "--time-rule", "fixed"])
    assert args.time_rule == "fixed"

    args = parser.parse_args(["extract", "--write-clips"])
    assert args.write_clips
    assert args.output_dir == "outputs"
    assert args.log_level == "INFO"

    for command in ["bigdays", "contrast", "download", "model", "plot", "run"]:
        assert parser.parse_args([command]).command == command

    with pytest.raises(SystemExit):
        parser.parse_args([])
    with pytest.raises(SystemExit):
        parser.parse_args(["bigdays", "--time-rule", "nearest"])
    with pytest.raises(SystemExit):
        parser.parse_args(["extract", "--time-rule", "fixed"])


def test_apply_overrides():
    """Test command-line values override the config."""
    parser = cli.build_parser()
    config = cli.apply_overrides(load_config(), parser.parse_args(["bigdays", "--min-tornadoes", "5"]))
    assert config["events"]["min_tornadoes"] == 5

    config = cli.apply_overrides(load_config(), parser.parse_args(["extract", "--write-clips"]))
    assert config["environment"]["write_clips"] is True
    assert config["reanalysis"]["time_rule"] == "first"

    config = cli.apply_overrides(load_config(), parser.parse_args(["run", "--time-rule", "fixed"]))
    assert config["reanalysis"]["time_rule"] == "fixed"


def test_error_handling(output_dir, capsys):
    """Test a missing input gives exit code 1 and a message on stderr."""
    code = cli.main(["--output-dir", str(output_dir), "ingest", "--catalog", str(output_dir / "missing.csv")])
    assert code == 1
    assert "Error: FileNotFoundError" in capsys.readouterr().err
    assert (output_dir / "logs" / "bigdays.log").exists()


def test_pipeline_to_extract(output_dir, catalog_csv):
    """Test ingest, bigdays, contrast and extract on synthetic inputs."""
    out = str(output_dir)

    assert cli.main(["--output-dir", out, "ingest", "--catalog", str(catalog_csv)]) == 0
    assert (output_dir / "tornadoes.parquet").exists()

    assert cli.main(["--output-dir", out, "bigdays"]) == 0
    big = pd.read_csv(output_dir / "big_days.csv")
    assert big["n_tornadoes"].tolist() == [14, 10]
    assert "total_energy_rank" in big.columns
    assert (output_dir / "big_days.gpkg").exists()
    assert (output_dir / "daily_counts.csv").exists()

    assert cli.main(["--output-dir", out, "contrast"]) == 0
    assert (output_dir / "contrast_days.gpkg").exists()

    # Stand in for downloaded NARR files
    plan = cli._plan(load_config(), out)
    assert len(plan) == 4
    for path in plan["path"]:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        write_fake_narr(path)

    assert cli.main(["--output-dir", out, "extract", "--write-clips"]) == 0
    big_env = pd.read_csv(output_dir / "big_days_env.csv")
    contrast_env = pd.read_csv(output_dir / "contrast_env.csv")
    assert (big_env["status"] == "[OK]").all()
    assert (contrast_env["status"] == "[OK]").all()
    assert big_env["storm_motion"].tolist() == pytest.approx([5.0, 5.0])
    assert (output_dir / "clips" / "big_days" / "19950410.nc").exists()


def test_model_and_plot(output_dir, environment_table):
    """Test the model and plot commands on a prepared environment table."""
    out = str(output_dir)
    environment_table.to_csv(output_dir / "big_days_env.csv", index=False)
    environment_table.assign(cape=environment_table["cape"] / 3).to_csv(
        output_dir / "contrast_env.csv", index=False
    )

    assert cli.main(["--output-dir", out, "model"]) == 0
    with open(output_dir / "models.json") as f:
        results = json.load(f)
    assert set(results["models"]) == {"trend", "environment", "full"}
    assert results["trend_percent_per_year"]["full"]["percent_per_year"] == pytest.approx(3.0, abs=1.6)
    assert len(results["environment_contrast"]) == 6
    assert (output_dir / "environment_contrast.csv").exists()

    assert cli.main(["--output-dir", out, "plot"]) == 0
    figures = os.listdir(output_dir / "figures")
    assert "environment_contrast.png" in figures
    assert "fixed_effects_full.png" in figures


def test_fixed_time_rule_pairs_contrast_hours(output_dir, catalog_csv):
    """Test big days keep their analysis times and contrast days share their hour."""
    out = str(output_dir)
    assert cli.main(["--output-dir", out, "ingest", "--catalog", str(catalog_csv)]) == 0
    assert cli.main(["--output-dir", out, "bigdays", "--time-rule", "fixed"]) == 0

    big = pd.read_csv(output_dir / "big_days.csv", parse_dates=["cdate", "analysis_time"])
    assert (big["analysis_time"] == big["cdate"] + pd.Timedelta(hours=21)).all()

    # Later steps run with the default rule and must not recompute the times
    assert cli.main(["--output-dir", out, "contrast"]) == 0
    plan = cli._plan(load_config(), out)
    assert (plan["analysis_time"].dt.hour == 21).all()
    for path in plan["path"]:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        write_fake_narr(path)

    assert cli.main(["--output-dir", out, "extract"]) == 0
    big_env = pd.read_csv(output_dir / "big_days_env.csv", parse_dates=["analysis_time"])
    contrast_env = pd.read_csv(output_dir / "contrast_env.csv", parse_dates=["analysis_time"])
    assert (big_env["status"] == "[OK]").all()
    assert (contrast_env["status"] == "[OK]").all()
    assert (big_env["analysis_time"].dt.hour == 21).all()
    assert (contrast_env["analysis_time"].dt.hour == 21).all()
