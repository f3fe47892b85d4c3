import pytest

from quickfit.utils.command_set import CommandSet
from quickfit.utils.logging_config import StructuredLogger


def test_stages_run_in_registration_order(tmp_path):
    logger = StructuredLogger(run_id="stages", base_dir=tmp_path)
    order = []
    stages = CommandSet("fit", logger)
    stages.register("minimize", lambda: order.append("minimize") or 3, description="Starting fit...")
    stages.register("hesse", lambda: order.append("hesse") or 1, enabled=False)
    stages.register("minos", lambda: order.append("minos") or 0)

    outputs = stages.execute()

    assert order == ["minimize", "minos"]
    assert outputs == {"minimize": 3, "minos": 0}
    assert stages.skipped == ["hesse"]
    assert set(stages.timings) == {"minimize", "minos"}
    events = [event["event"] for event in logger.read_events()]
    assert events == ["fit.minimize.start", "fit.minimize.complete", "fit.hesse.skipped", "fit.minos.complete"]


def test_duplicate_stage_names_are_rejected():
    stages = CommandSet()
    stages.register("minimize", lambda: 0)

    with pytest.raises(ValueError):
        stages.register("minimize", lambda: 1)


def test_failing_stage_is_logged_and_reraised(tmp_path):
    logger = StructuredLogger(run_id="failure", base_dir=tmp_path)
    stages = CommandSet("fit", logger)

    def broken():
        raise RuntimeError("no curvature")

    stages.register("hesse", broken)
    with pytest.raises(RuntimeError, match="no curvature"):
        stages.execute()
    assert logger.read_events()[-1]["event"] == "fit.hesse.error"
