import pytest

from quickfit.data_loaders.workspace_loader import save_workspace_file
from quickfit.models import (
    BinnedSumPdf,
    Dataset,
    GaussianPdf,
    ModelConfig,
    ProductPdf,
    RealVar,
    ShapeSystematic,
    TemplateSample,
    Workspace,
)

GAUSSIAN_DATA = [-1.0, 0.0, 1.0, 2.0, 3.0]


def build_gaussian_workspace():
    """Unbinned Gaussian in x with floating mean mu and unit width."""
    ws = Workspace("combWS")
    ws.import_var(RealVar("x", 0.0, -10.0, 10.0))
    ws.import_var(RealVar("mu", 0.0, -10.0, 10.0))
    ws.import_var(RealVar("sigma", 1.0, 0.1, 10.0, constant=True))
    ws.import_pdf(GaussianPdf("model", "x", "mu", "sigma"))
    ws.import_data(Dataset("combData", {"x": GAUSSIAN_DATA}))
    ws.import_obj(ModelConfig(
        "ModelConfig", ws, pdf="model", observables=["x"], parameters_of_interest=["mu"],
    ))
    return ws


def build_binned_workspace():
    """One-bin counting experiment: 10 mu signal + 5 background events, 25 observed.

    The background carries a shape systematic alpha with a unit Gaussian
    constraint around the global observable nom_alpha, so the best fit is
    mu = 2 and alpha = 0.
    """
    ws = Workspace("combWS")
    ws.import_var(RealVar("obs_x", 0.5, 0.0, 1.0))
    ws.import_var(RealVar("mu", 1.0, 0.0, 10.0))
    ws.import_var(RealVar("alpha", 0.0, -5.0, 5.0))
    ws.import_var(RealVar("nom_alpha", 0.0, -10.0, 10.0, constant=True))
    ws.import_var(RealVar("one", 1.0, constant=True))
    samples = [
        TemplateSample("signal", [10.0], norm_factors=["mu"]),
        TemplateSample("background", [5.0], shape_systematics=[ShapeSystematic("alpha", [6.0], [4.0])]),
    ]
    ws.import_pdf(BinnedSumPdf("channel", "obs_x", [0.0, 1.0], samples))
    ws.import_pdf(GaussianPdf("alpha_constraint", "nom_alpha", "alpha", "one"))
    ws.import_pdf(ProductPdf("simPdf", ["channel", "alpha_constraint"]))
    ws.import_data(Dataset("combData", {"obs_x": [0.5]}, weights=[25.0]))
    ws.import_obj(ModelConfig(
        "ModelConfig",
        ws,
        pdf="simPdf",
        observables=["obs_x"],
        parameters_of_interest=["mu"],
        nuisance_parameters=["alpha"],
        global_observables=["nom_alpha"],
    ))
    return ws


@pytest.fixture
def gaussian_ws():
    return build_gaussian_workspace()


@pytest.fixture
def binned_ws():
    return build_binned_workspace()


@pytest.fixture
def gaussian_file(tmp_path):
    return save_workspace_file(tmp_path / "gaussian.json", {"combWS": build_gaussian_workspace()})


@pytest.fixture
def binned_file(tmp_path):
    return save_workspace_file(tmp_path / "binned.json", {"combWS": build_binned_workspace()})
