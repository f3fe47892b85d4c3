import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from quickfit.models import ArgSet, RealVar, Workspace
from quickfit.utils.logging_config import StructuredLogger, build_run_metadata, compute_sha256, to_json_value
from quickfit.utils.validation import ConfigValidationError, require_existing_file, require_mapping


def test_events_are_written_as_json_lines(tmp_path, capsys):
    logger = StructuredLogger(run_id="run1", base_dir=tmp_path)

    logger.log_event("fit.start", {"values": np.array([1.0, 2.0]), "n": np.int64(3)}, message="Starting fit...")
    logger.log_event("fit.debug", {}, level=logging.DEBUG, message="hidden")

    lines = (tmp_path / "run1" / "events.jsonl").read_text().splitlines()
    first = json.loads(lines[0])
    assert first["event"] == "fit.start"
    assert first["payload"] == {"values": [1.0, 2.0], "n": 3}
    assert json.loads(lines[1])["level"] == "DEBUG"
    output = capsys.readouterr().out
    assert "Starting fit..." in output
    assert "hidden" not in output


def test_run_metadata_records_checksums_and_environment(tmp_path):
    logger = StructuredLogger(run_id="run2", base_dir=tmp_path)
    source = tmp_path / "input.json"
    source.write_text("{}")

    metadata = build_run_metadata(
        logger,
        arguments={"poi": "mu"},
        config_snapshot={},
        checksums={"input": compute_sha256(source), "missing": compute_sha256(tmp_path / "nope")},
        fit_status=0,
        stage_statuses={"minimize": 0, "hesse": 1},
        timing_minutes={"cpu": np.float64(0.5), "real": 0.25},
    )
    path = logger.save_json("run_metadata.json", metadata)

    saved = json.loads(path.read_text())
    assert saved["run_id"] == "run2"
    assert set(saved["checksums"]) == {"input"}
    assert saved["stage_statuses"] == {"minimize": 0, "hesse": 1}
    assert saved["timing_minutes"] == {"cpu": 0.5, "real": 0.25}
    assert "numpy_version" in saved["environment"]


def test_configuration_helpers(tmp_path):
    assert require_mapping(None, "section") == {}
    with pytest.raises(ConfigValidationError):
        require_mapping([1, 2], "section")
    with pytest.raises(ConfigValidationError):
        require_existing_file(tmp_path / "absent.yaml")
    config = tmp_path / "config.yaml"
    config.write_text("fit: {}\n")
    assert require_existing_file("config.yaml", base_dir=tmp_path) == str(config.resolve())


def test_fit_objects_are_converted_to_json_values():
    ws = Workspace("combWS")
    ws.import_var(RealVar("mu", 1.5, 0.0, 5.0))
    ws.import_var(RealVar("alpha", 0.0, -5.0, 5.0))
    table = pd.DataFrame([{"name": "mu", "value": 1.5, "error": np.nan}])

    assert to_json_value(ArgSet(ws, ["alpha", "mu"])) == ["alpha", "mu"]
    assert to_json_value(ws.var("mu"))["value"] == 1.5
    assert to_json_value(table) == [{"name": "mu", "value": 1.5, "error": None}]
    assert to_json_value({"path": Path("results") / "runs", "n": np.int32(2)}) == {"path": "results/runs", "n": 2}


def test_results_table_is_saved_as_csv(tmp_path):
    logger = StructuredLogger(run_id="table", base_dir=tmp_path)
    table = pd.DataFrame([{"name": "mu", "value": 2.0}])

    path = logger.save_results_table("fit_results.csv", table)

    assert path == tmp_path / "table" / "fit_results.csv"
    assert pd.read_csv(path).to_dict(orient="records") == [{"name": "mu", "value": 2.0}]
