from unittest.mock import MagicMock, patch

import pytest

from devengine.__main__ import build_parser, load_collaborators, main
from devengine.errors import InvalidTransitionError, InvalidStageError


@patch("devengine.jobs.auto_run.AutoRunOrchestrator")
@patch("devengine.__main__.load_collaborators")
def test_start_passes_options_through(mock_load, MockOrchestrator, capsys):
    orchestrator = MockOrchestrator.return_value
    orchestrator.start.return_value = {"id": 1, "status": "running"}

    code = main(["start", "proj-1", "--mode", "fast", "--target-document", "treatment", "--format", "film"])

    assert code == 0
    orchestrator.start.assert_called_once_with(
        "proj-1", mode="fast", start_document="idea", target_document="treatment", fmt="film"
    )
    assert '"status": "running"' in capsys.readouterr().out


@patch("devengine.jobs.auto_run.AutoRunOrchestrator")
@patch("devengine.__main__.load_collaborators")
def test_resume_pinned_disables_follow_latest(mock_load, MockOrchestrator):
    orchestrator = MockOrchestrator.return_value
    orchestrator.resume.return_value = None

    assert main(["resume", "proj-1", "--pinned"]) == 0
    orchestrator.resume.assert_called_once_with("proj-1", follow_latest=False)


@patch("devengine.jobs.auto_run.AutoRunOrchestrator")
@patch("devengine.__main__.load_collaborators")
def test_drift_acknowledge_routes_to_acknowledge(mock_load, MockOrchestrator):
    orchestrator = MockOrchestrator.return_value
    orchestrator.acknowledge_drift.return_value = None

    assert main(["drift", "proj-1", "acknowledge", "--event-id", "4"]) == 0
    orchestrator.acknowledge_drift.assert_called_once_with("proj-1", 4)
    orchestrator.resolve_drift.assert_not_called()


@patch("devengine.jobs.auto_run.AutoRunOrchestrator")
@patch("devengine.__main__.load_collaborators")
def test_errors_map_to_exit_codes(mock_load, MockOrchestrator):
    orchestrator = MockOrchestrator.return_value
    orchestrator.set_stage.side_effect = InvalidStageError("pilot", ["idea"])
    orchestrator.pause.side_effect = InvalidTransitionError("Job is completed", code="JOB_TERMINAL")

    assert main(["set-stage", "proj-1", "pilot"]) == 2
    assert main(["pause", "proj-1"]) == 1


def test_approve_rejects_unknown_choice():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["approve", "proj-1", "maybe"])


def test_load_collaborators_requires_factory_path(monkeypatch):
    monkeypatch.delenv("DEVENGINE_COLLABORATORS", raising=False)
    with pytest.raises(SystemExit):
        load_collaborators()


def test_load_collaborators_calls_factory():
    sentinel = MagicMock()
    module = MagicMock(build=MagicMock(return_value=sentinel))
    with patch("devengine.__main__.importlib.import_module", return_value=module) as mock_import:
        assert load_collaborators("acme.devengine:build") is sentinel
    mock_import.assert_called_once_with("acme.devengine")


@patch("devengine.jobs.auto_run.AutoRunOrchestrator")
@patch("devengine.__main__.load_collaborators")
def test_drift_events_lists_unresolved(mock_load, MockOrchestrator, capsys):
    orchestrator = MockOrchestrator.return_value
    orchestrator.get_drift_events.return_value = []

    assert main(["drift-events", "proj-1", "--unresolved"]) == 0
    orchestrator.get_drift_events.assert_called_once_with("proj-1", unresolved_only=True)
    assert capsys.readouterr().out.strip() == "[]"
