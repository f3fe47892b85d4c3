import json
import math

import pytest

from quickfit.data_loaders import save_workspace_file
from quickfit.main import OPTION_PARSE_EXIT, cli, main
from quickfit.models import RealVar


@pytest.fixture(autouse=True)
def run_in_tmp(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


def test_help_and_missing_input_exit_zero(capsys):
    assert main(["--help"]) == 0
    assert main([]) == 0
    assert "--inputFile" in capsys.readouterr().out


def test_unknown_option_exits_with_parse_code(capsys):
    assert main(["--bogus", "1"]) == OPTION_PARSE_EXIT
    assert main(["-f", "ws.json", "--hesse", "maybe"]) == OPTION_PARSE_EXIT
    assert "Invalid options" in capsys.readouterr().out


def test_load_failures_exit_zero(tmp_path, binned_file, capsys):
    assert main(["-f", str(tmp_path / "missing.json")]) == 0
    assert main(["-f", str(binned_file), "-w", "otherWS"]) == 0
    assert main(["-f", str(binned_file), "-s", "nosnapshot"]) == 0
    output = capsys.readouterr().out
    assert "was not found" in output
    assert "Workspace 'otherWS' does not exist in the file." in output
    assert "Unable to load snapshot nosnapshot" in output


def test_fit_writes_results_and_workspace(tmp_path, binned_file, capsys):
    output = tmp_path / "out" / "result.json"

    code = main([
        "-f", str(binned_file), "-o", str(output), "-p", "mu=1_0_10",
        "--hesse", "1", "--minos", "1", "--saveErrors", "1", "--saveWS", "1", "--checkWS", "1",
    ])

    assert code == 1
    result = json.loads(output.read_text())
    assert result["status"] == 0
    assert set(result["stage_statuses"]) == {"minimize", "hesse", "minos"}
    (row,) = result["fit_results"]
    assert row["name"] == "mu"
    assert row["value"] == pytest.approx(2.0, abs=1e-3)
    assert row["error"] == pytest.approx(math.sqrt(0.26), rel=1e-2)
    assert row["error_lo"] < 0 < row["error_hi"]
    snapshots = result["workspaces"]["combWS"]["snapshots"]
    assert snapshots["ucmles"]["mu"]["value"] == pytest.approx(2.0, abs=1e-3)
    assert snapshots["original"]["mu"]["value"] == 1.0
    printed = capsys.readouterr().out
    assert "Sanity checks on the model: OK" in printed
    assert "All fits done in" in printed
    assert "STATUS OK" in printed
    (run_dir,) = (tmp_path / "results" / "runs").iterdir()
    metadata = json.loads((run_dir / "run_metadata.json").read_text())
    assert metadata["stage_statuses"] == result["stage_statuses"]
    assert (run_dir / "fit_results.csv").exists()


def test_fixed_nuisance_parameter_stays_put(tmp_path, binned_file):
    output = tmp_path / "fixed.json"

    assert main(["-f", str(binned_file), "-o", str(output), "-n", "alpha*", "--saveWS", "1"]) == 1

    snapshot = json.loads(output.read_text())["workspaces"]["combWS"]["snapshots"]["ucmles"]
    assert snapshot["alpha"]["constant"] is True
    assert snapshot["alpha"]["value"] == 0.0
    assert snapshot["mu"]["value"] == pytest.approx(2.0, abs=1e-3)


def test_config_file_sets_defaults(tmp_path, gaussian_file):
    config = tmp_path / "quickfit.yaml"
    config.write_text(
        "run:\n  log_dir: logs\n  run_id: configured\nfit:\n  hesse: true\n  save_errors: true\n"
    )
    output = tmp_path / "gauss.json"

    assert main(["--config", str(config), "-f", str(gaussian_file), "-o", str(output)]) == 1

    (row,) = json.loads(output.read_text())["fit_results"]
    assert row["value"] == pytest.approx(1.0, abs=1e-3)
    assert row["error"] == pytest.approx(1.0 / math.sqrt(5.0), rel=1e-3)
    assert (tmp_path / "logs" / "configured" / "events.jsonl").exists()


def test_broken_config_exits_two(tmp_path, gaussian_file):
    config = tmp_path / "broken.yaml"
    config.write_text("fit:\n  unknown_option: 1\n")

    with pytest.raises(SystemExit) as excinfo:
        cli(["--config", str(config), "-f", str(gaussian_file)])
    assert excinfo.value.code == 2


def test_invalid_model_is_fatal_with_check(binned_ws, tmp_path, capsys):
    binned_ws.import_var(RealVar("other", 1.0))
    binned_ws.obj("ModelConfig").parameters_of_interest.add("other")
    path = save_workspace_file(tmp_path / "invalid.json", {"combWS": binned_ws})

    with pytest.raises(SystemExit) as excinfo:
        cli(["-f", str(path), "--checkWS", "1"])
    assert excinfo.value.code == 1
    assert "FATAL ERROR" in capsys.readouterr().out
