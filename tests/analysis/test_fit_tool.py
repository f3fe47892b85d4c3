import math

import pytest

from quickfit.analysis.fit_tool import FitConfig, FitTool, TOLERANCE_UNIT, aggregate_status
from quickfit.analysis.preparation import ParameterPreparer
from quickfit.models import BINNED_LIKELIHOOD


class FakeMinimizer:
    """Minimizer double returning preset stage statuses."""

    statuses = {"minimize": 0, "hesse": 0, "minos": 0, "simplex": 0}
    instances = []

    def __init__(self, nll, logger=None):
        self.nll = nll
        self.calls = []
        self.settings = {}
        FakeMinimizer.instances.append(self)

    def set_strategy(self, strategy):
        self.settings["strategy"] = strategy

    def set_print_level(self, level):
        self.settings["print_level"] = level

    def set_profile(self, flag=True):
        self.settings["profile"] = flag

    def set_eps(self, eps):
        self.settings["eps"] = eps

    def optimize_const(self, level):
        self.settings["optimize_const"] = level

    def minimize(self, algorithm="Minuit2"):
        self.calls.append(("minimize", algorithm))
        return self.statuses["minimize"]

    def simplex(self):
        self.calls.append(("simplex",))
        return self.statuses["simplex"]

    def hesse(self):
        self.calls.append(("hesse",))
        return self.statuses["hesse"]

    def minos(self, params=None):
        self.calls.append(("minos", list(params)))
        return self.statuses["minos"]


@pytest.fixture
def fake_minimizer(monkeypatch):
    FakeMinimizer.instances = []
    monkeypatch.setattr(FakeMinimizer, "statuses", dict(FakeMinimizer.statuses))
    return FakeMinimizer


def test_aggregate_status_is_bitwise_and_in_order():
    assert aggregate_status([4]) == 4
    assert aggregate_status([3, 1]) == 1
    assert aggregate_status([3, 1, 0]) == 0
    assert aggregate_status([0, 5, 5]) == 0
    with pytest.raises(ValueError):
        aggregate_status([])


def test_fit_config_validates_settings():
    assert FitConfig(tolerance=0.01).eps == pytest.approx(0.01 / TOLERANCE_UNIT)
    with pytest.raises(ValueError):
        FitConfig(algorithm="Genetic")
    with pytest.raises(ValueError):
        FitConfig(n_cpu=0)


def test_stage_statuses_are_combined_with_and(binned_ws, fake_minimizer):
    fake_minimizer.statuses.update(minimize=3, hesse=1, minos=5)
    tool = FitTool(FitConfig(), minimizer_factory=fake_minimizer)

    status = tool.profile_to_data(binned_ws.obj("ModelConfig"), binned_ws.data("combData"))

    assert status == 3 & 1 & 5
    assert tool.stage_statuses == {"minimize": 3, "hesse": 1, "minos": 5}
    calls = fake_minimizer.instances[0].calls
    assert calls == [("minimize", "Minuit2"), ("hesse",), ("minos", ["mu"])]


def test_only_primary_stage_gives_its_status(binned_ws, fake_minimizer):
    fake_minimizer.statuses.update(minimize=4, simplex=7)
    config = FitConfig(use_hesse=False, use_minos=False, use_simplex=True, tolerance=0.01,
                       strategy=2, print_level=3, optimize_const=2)
    tool = FitTool(config, minimizer_factory=fake_minimizer)

    assert tool.profile_to_data(binned_ws.obj("ModelConfig"), binned_ws.data("combData")) == 4
    assert tool.simplex_status == 7
    minimizer = fake_minimizer.instances[0]
    assert minimizer.calls == [("simplex",), ("minimize", "Minuit2")]
    assert minimizer.settings == {
        "strategy": 2, "print_level": 2, "profile": True, "eps": pytest.approx(10.0), "optimize_const": 2,
    }


def test_binned_pdfs_are_marked_for_binned_likelihood(binned_ws, fake_minimizer):
    FitTool(minimizer_factory=fake_minimizer).profile_to_data(binned_ws.obj("ModelConfig"), binned_ws.data("combData"))

    assert binned_ws.pdf("channel").get_attribute(BINNED_LIKELIHOOD)
    assert not binned_ws.pdf("alpha_constraint").get_attribute(BINNED_LIKELIHOOD)


def test_missing_dataset_is_a_precondition_failure(binned_ws):
    with pytest.raises(ValueError):
        FitTool().profile_to_data(binned_ws.obj("ModelConfig"), None)


def test_full_fit_of_counting_experiment(binned_ws):
    model = binned_ws.obj("ModelConfig")
    ParameterPreparer(binned_ws, model).prepare()

    tool = FitTool(FitConfig(strategy=1, optimize_const=2))
    status = tool.profile_to_data(model, binned_ws.data("combData"))

    assert status == 0
    mu = binned_ws.var("mu")
    assert mu.value == pytest.approx(2.0, abs=1e-3)
    assert mu.error == pytest.approx(math.sqrt(0.26), rel=1e-2)
    assert mu.has_asym_error
    assert mu.error_lo < 0 < mu.error_hi
