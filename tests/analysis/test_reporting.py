import pytest

from quickfit.analysis.reporting import (
    ENDC,
    FAIL,
    OKGREEN,
    Stopwatch,
    failure_banner,
    format_parameter,
    format_summary,
    format_timing,
    results_table,
    status_label,
)
from quickfit.models import ArgSet, RealVar, Workspace


@pytest.fixture
def fitted_pois():
    ws = Workspace("ws")
    mu = ws.import_var(RealVar("mu", 1.25, 0.0, 5.0, error=0.5))
    mu.set_asym_error(-0.4, 0.6)
    ws.import_var(RealVar("mu_fixed", 3.0, constant=True))
    return ArgSet(ws, ["mu", "mu_fixed"])


def test_status_label_is_coloured():
    assert status_label(0) == f"{OKGREEN} STATUS OK {ENDC}"
    assert status_label(3) == f"{FAIL} STATUS FAILED {ENDC}"


def test_format_parameter_prefers_asymmetric_errors():
    var = RealVar("mu", 1.0, 0.0, 5.0, error=0.25)

    assert format_parameter(var) == "RealVar::mu = 1 +/- 0.25  L(0 - 5)"
    var.set_asym_error(-0.2, 0.3)
    assert format_parameter(var) == "RealVar::mu = 1 (-0.2, +0.3)  L(0 - 5)"


def test_summary_skips_constant_pois(fitted_pois):
    summary = format_summary(fitted_pois, 0)

    assert "Fit Summary of POIs" in summary
    assert "RealVar::mu =" in summary
    assert "mu_fixed" not in summary
    assert "WARNING: Fit status failed." not in summary


def test_summary_appends_banner_on_failure(fitted_pois):
    summary = format_summary(fitted_pois, 1)

    assert summary.endswith(failure_banner())
    assert "WARNING: Fit status failed." in summary


def test_format_timing_uses_two_decimals():
    assert format_timing(0.5, 1.254) == "\nAll fits done in 0.50 min (cpu), 1.25 min (real)"


def test_stopwatch_reports_minutes():
    cpu, real = Stopwatch().stop()

    assert cpu >= 0.0
    assert 0.0 <= real < 1.0


def test_results_table_columns(fitted_pois):
    plain = results_table(fitted_pois)
    detailed = results_table(fitted_pois, save_errors=True)

    assert list(plain.columns) == ["name", "value"]
    assert plain.to_dict(orient="records") == [{"name": "mu", "value": 1.25}]
    assert list(detailed.columns) == ["name", "value", "error", "error_lo", "error_hi"]
    assert detailed.iloc[0]["error_hi"] == pytest.approx(0.6)
