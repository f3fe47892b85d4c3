import numpy as np
import pytest

from quickfit.models import BinnedSumPdf, Dataset, RealVar, ShapeSystematic, TemplateSample, Workspace


def test_names_are_unique_across_variables_and_pdfs(binned_ws):
    with pytest.raises(ValueError):
        binned_ws.import_var(RealVar("channel"))


def test_dependency_graph(binned_ws):
    assert binned_ws.depends_on("simPdf", "alpha")
    assert binned_ws.depends_on("simPdf", "nom_alpha")
    assert not binned_ws.depends_on("channel", "nom_alpha")
    assert binned_ws.leaf_parameters("simPdf", exclude=["obs_x"]) == ["mu", "alpha", "nom_alpha", "one"]


def test_snapshots_restore_parameter_state(binned_ws):
    model = binned_ws.obj("ModelConfig")
    binned_ws.save_snapshot("original", model.collect_everything())
    binned_ws.var("mu").set_value(7.0)
    binned_ws.var("alpha").set_constant(True)

    assert binned_ws.load_snapshot("original")
    assert binned_ws.var("mu").value == 1.0
    assert not binned_ws.var("alpha").constant
    assert not binned_ws.load_snapshot("missing")


def test_collect_everything_covers_pdf_and_partitions(binned_ws):
    names = binned_ws.obj("ModelConfig").collect_everything().names

    assert set(names) == {"obs_x", "mu", "alpha", "nom_alpha", "one"}


def test_serialisation_round_trip_keeps_model(binned_ws):
    binned_ws.save_snapshot("fit", ["mu"])
    copy = Workspace.from_dict("combWS", binned_ws.to_dict())

    assert copy.to_dict() == binned_ws.to_dict()
    model = copy.obj("ModelConfig")
    assert model.pdf.name == "simPdf"
    assert model.nuisance_parameters.names == ["alpha"]
    assert copy.data("combData").sum_weights == 25.0


def test_unknown_references_are_rejected(binned_ws):
    payload = binned_ws.to_dict()
    payload["pdfs"][0]["observable"] = "nowhere"

    with pytest.raises(KeyError):
        Workspace.from_dict("combWS", payload)


def test_template_yields_interpolate_shape_systematics():
    ws = Workspace("ws")
    ws.import_var(RealVar("x", 0.5, 0.0, 2.0))
    ws.import_var(RealVar("k", 2.0))
    ws.import_var(RealVar("alpha", 0.0, -5.0, 5.0))
    sample = TemplateSample("bkg", [10.0, 20.0], ["k"], [ShapeSystematic("alpha", [12.0, 25.0], [9.0, 10.0])])
    pdf = ws.import_pdf(BinnedSumPdf("sum", "x", [0.0, 1.0, 2.0], [sample]))

    assert pdf.expected_yields(ws) == pytest.approx([20.0, 40.0])
    ws.var("alpha").set_value(1.0)
    assert pdf.expected_yields(ws) == pytest.approx([24.0, 50.0])
    ws.var("alpha").set_value(-0.5)
    assert pdf.expected_yields(ws) == pytest.approx([19.0, 30.0])
    assert np.exp(pdf.log_pdf(ws, {"x": np.array([0.5, 1.5])})) == pytest.approx([19.0 / 49.0, 30.0 / 49.0])


def test_binned_sum_rejects_inconsistent_templates():
    with pytest.raises(ValueError):
        BinnedSumPdf("sum", "x", [0.0, 1.0], [TemplateSample("s", [1.0, 2.0])])
    with pytest.raises(ValueError):
        BinnedSumPdf("sum", "x", [1.0, 0.0], [TemplateSample("s", [1.0])])


def test_dataset_histogram_uses_weights():
    data = Dataset("d", {"x": [0.5, 1.5, 1.7, 3.0]}, weights=[2.0, 1.0, 1.0, 5.0])

    assert data.histogram("x", [0.0, 1.0, 2.0]).tolist() == [2.0, 2.0]
    assert data.sum_weights == 9.0
    with pytest.raises(ValueError):
        Dataset("bad", {"x": [1.0, 2.0]}, weights=[1.0])
