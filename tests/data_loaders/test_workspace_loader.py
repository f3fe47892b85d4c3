import json

import pytest
import yaml

from quickfit.data_loaders import (
    ObjectNotFoundError,
    SnapshotNotFoundError,
    WorkspaceFile,
    WorkspaceFileNotFoundError,
    WorkspaceFormatError,
    WorkspaceLoadError,
    load_inputs,
    save_output,
    save_workspace_file,
)


def test_load_inputs_returns_workspace_model_and_data(binned_file):
    workspace, model, data = load_inputs(binned_file, "combWS", "ModelConfig", "combData")

    assert workspace.name == "combWS"
    assert model.pdf.name == "simPdf"
    assert data.n_entries == 1


def test_missing_file(tmp_path):
    with pytest.raises(WorkspaceFileNotFoundError, match="was not found"):
        load_inputs(tmp_path / "absent.json", "combWS", "ModelConfig", "combData")


@pytest.mark.parametrize(
    "names, kind",
    [
        (("otherWS", "ModelConfig", "combData"), "Workspace"),
        (("combWS", "OtherConfig", "combData"), "ModelConfig"),
        (("combWS", "ModelConfig", "asimovData"), "Dataset"),
    ],
)
def test_missing_objects_are_typed(binned_file, names, kind):
    with pytest.raises(ObjectNotFoundError) as excinfo:
        load_inputs(binned_file, *names)

    assert excinfo.value.kind == kind
    assert isinstance(excinfo.value, WorkspaceLoadError)


def test_snapshot_is_loaded_or_reported(binned_ws, tmp_path):
    binned_ws.var("mu").set_value(3.0)
    binned_ws.save_snapshot("fitted", ["mu"])
    binned_ws.var("mu").set_value(1.0)
    path = save_workspace_file(tmp_path / "ws.json", {"combWS": binned_ws})

    workspace, _, _ = load_inputs(path, "combWS", "ModelConfig", "combData", snapshot="fitted")
    assert workspace.var("mu").value == 3.0
    with pytest.raises(SnapshotNotFoundError):
        load_inputs(path, "combWS", "ModelConfig", "combData", snapshot="missing")


def test_yaml_workspace_files_are_read(binned_file, tmp_path):
    document = json.loads(binned_file.read_text())
    yaml_path = tmp_path / "ws.yaml"
    yaml_path.write_text(yaml.safe_dump(document))

    assert WorkspaceFile(yaml_path).names() == ["combWS"]


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"workspaces": {"combWS": {"pdfs": [{"type": "Nope"}]}}}'])
def test_malformed_documents(tmp_path, content):
    path = tmp_path / "bad.json"
    path.write_text(content)

    with pytest.raises(WorkspaceFormatError):
        load_inputs(path, "combWS", "ModelConfig", "combData")


def test_save_output_creates_parent_directories(tmp_path):
    path = save_output(tmp_path / "out" / "result.json", {"status": 0, "rows": [{"value": 1.5}]})

    assert json.loads(path.read_text()) == {"status": 0, "rows": [{"value": 1.5}]}
