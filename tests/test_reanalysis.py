"""
Unit tests for reanalysis module.
"""

import os

import pandas as pd
import pytest
import requests

from bigdays.reanalysis import (
    analysis_time, narr_filename, narr_url, assign_analysis_times,
    plan_downloads, download_file, download_fields
)


class FakeResponse:
    """Minimal stand-in for a streamed requests.Response."""

    def __init__(self, content=b"", status=200):
        self.content = content
        self.status_code = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]


class FakeSession:
    """Serves canned responses by URL and records requests."""

    def __init__(self, responses):
        self.responses = responses
        self.requested = []

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        return self.responses.get(url, FakeResponse(status=404))


def test_analysis_time_first_rule():
    """Test the first-tornado rule floors to the 3-hourly grid."""
    t = analysis_time(pd.Timestamp("1995-04-10 21:40"), pd.Timestamp("1995-04-10"))
    assert t == pd.Timestamp("1995-04-10 21:00")

    t = analysis_time(pd.Timestamp("1995-04-11 02:59"), pd.Timestamp("1995-04-10"))
    assert t == pd.Timestamp("1995-04-11 00:00")


def test_analysis_time_fixed_rule():
    """Test the fixed-hour rule uses the convective date."""
    t = analysis_time(pd.Timestamp("1995-04-11 02:59"), pd.Timestamp("1995-04-10"), rule="fixed")
    assert t == pd.Timestamp("1995-04-10 21:00")

    t = analysis_time(None, pd.Timestamp("1995-04-10"), rule="fixed", fixed_hour=18)
    assert t == pd.Timestamp("1995-04-10 18:00")


def test_analysis_time_errors():
    """Test invalid rules and hours."""
    with pytest.raises(ValueError):
        analysis_time(pd.Timestamp("1995-04-10"), pd.Timestamp("1995-04-10"), rule="nearest")
    with pytest.raises(ValueError):
        analysis_time(pd.Timestamp("1995-04-10"), pd.Timestamp("1995-04-10"), step_hours=5)
    with pytest.raises(ValueError):
        analysis_time(None, pd.Timestamp("1995-04-10"), rule="fixed", fixed_hour=20)


def test_narr_names():
    """Test NARR file names and URLs."""
    t = pd.Timestamp("1995-04-10 21:00")
    assert narr_filename(t) == "narr-a_221_19950410_2100_000.grb"
    assert narr_url(t) == (
        "https://www.ncei.noaa.gov/data/north-american-regional-reanalysis/access/3-hourly/"
        "199504/19950410/narr-a_221_19950410_2100_000.grb"
    )


def test_assign_analysis_times(big_days):
    """Test analysis times are added, and kept when already present."""
    timed = assign_analysis_times(big_days)
    assert timed["analysis_time"].tolist() == [
        pd.Timestamp("1995-04-10 21:00"), pd.Timestamp("2000-05-03 18:00")
    ]
    assert "analysis_time" not in big_days.columns

    preset = big_days.assign(analysis_time=pd.Timestamp("2001-01-01 06:00"))
    kept = assign_analysis_times(preset)
    assert (kept["analysis_time"] == pd.Timestamp("2001-01-01 06:00")).all()

    with pytest.raises(KeyError):
        assign_analysis_times(pd.DataFrame({"cdate": [pd.Timestamp("2000-01-01")]}))


def test_plan_downloads(big_days, tmp_path):
    """Test one plan row per unique analysis time."""
    existing = tmp_path / "narr-a_221_19950410_2100_000.grb"
    existing.write_bytes(b"x")

    doubled = pd.concat([big_days, big_days], ignore_index=True)
    plan = plan_downloads(doubled, str(tmp_path))

    assert list(plan.columns) == ["analysis_time", "url", "path", "exists"]
    assert len(plan) == 2
    assert plan["exists"].tolist() == [True, False]
    assert plan["path"].iloc[0] == str(existing)


def test_download_file(tmp_path):
    """Test a successful download lands at the destination without a .part file."""
    url = "https://example.test/file.grb"
    session = FakeSession({url: FakeResponse(b"GRIB" * 1000)})
    dest = tmp_path / "sub" / "file.grb"

    download_file(url, str(dest), session=session)

    assert dest.read_bytes() == b"GRIB" * 1000
    assert not os.path.exists(str(dest) + ".part")


def test_download_file_http_error(tmp_path):
    """Test an HTTP error leaves nothing on disk."""
    dest = tmp_path / "file.grb"
    with pytest.raises(requests.HTTPError):
        download_file("https://example.test/missing.grb", str(dest), session=FakeSession({}))
    assert not dest.exists()
    assert not os.path.exists(str(dest) + ".part")


def test_download_fields(big_days, tmp_path):
    """Test sequential downloads with skip, success and failure statuses."""
    plan = plan_downloads(big_days, str(tmp_path))
    first, second = plan["url"].tolist()
    (tmp_path / os.path.basename(plan["path"].iloc[0])).write_bytes(b"old")

    session = FakeSession({first: FakeResponse(b"new")})
    result = download_fields(plan, session=session)

    assert result["status"].iloc[0].startswith("[SKIP]")
    assert result["status"].iloc[1].startswith("[ERR]")
    assert result["exists"].tolist() == [True, False]
    assert session.requested == [second]

    result = download_fields(plan, overwrite=True, session=session)
    assert result["status"].iloc[0].startswith("[OK]")
    assert open(plan["path"].iloc[0], "rb").read() == b"new"
