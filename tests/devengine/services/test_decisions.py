import pytest

from devengine.db.models import AutoRunJob
from devengine.errors import InputValidationError
from devengine.services.decisions import DecisionRegistry, decisions_from_notes

NOTES = [
    {
        "note_id": "n1",
        "severity": "blocker",
        "note": "The midpoint twist contradicts the setup",
        "options": [
            {"option_id": "a", "title": "Cut the twist", "what_changes": ["Remove scene 14", "Seed doubt earlier"]},
            {"option_id": "b", "title": "Move the twist to act three"},
        ],
        "recommended_option_id": "a",
    },
    {"note_id": "n2", "severity": "high", "note": "Villain is thin", "options": [{"option_id": "x", "title": "Give a backstory"}]},
    {"note_id": "n3", "severity": "blocker", "note": "No options, plain fix"},
    {"note_id": "n4", "severity": "low", "note": "Typo", "options": [{"option_id": "y", "title": "Fix"}]},
    {"note_id": "n5", "severity": "high", "options": [{"title": "missing option id"}]},
]


@pytest.fixture
def job(session_factory):
    session = session_factory()
    job = AutoRunJob(
        project_id="p", mode="balanced", ladder=["idea"], start_document="idea",
        current_document="idea", target_document="idea", max_total_steps=12, max_stage_loops=2,
        approved_stages=[], pending_decisions=[], last_risk_flags=[], last_notes=[], last_protect=[],
        analysis_version_id="v1",
    )
    session.add(job)
    session.flush()
    yield session, job
    session.close()


def test_only_blocker_and_high_notes_with_options_become_decisions():
    assert [d.note_id for d in decisions_from_notes(NOTES)] == ["n1", "n2"]


def test_projection_skips_resolved_notes(job):
    session, job = job
    job.pending_decisions = DecisionRegistry.project_pending(session, job, "v1", NOTES)
    DecisionRegistry.resolve(session, job, "n1", "a")
    session.flush()
    assert [d["note_id"] for d in DecisionRegistry.project_pending(session, job, "v1", NOTES)] == ["n2"]
    # A new version starts with a clean slate
    assert len(DecisionRegistry.project_pending(session, job, "v2", NOTES)) == 2


def test_blocking_policy_by_mode():
    high_only = [{"note_id": "n2", "severity": "high"}]
    blocker = [{"note_id": "n1", "severity": "blocker"}]
    assert DecisionRegistry.blocks_auto_advance(blocker, "fast", ["premium"])
    assert not DecisionRegistry.blocks_auto_advance(high_only, "balanced", ["premium"])
    assert DecisionRegistry.blocks_auto_advance(high_only, "premium", ["premium"])
    assert not DecisionRegistry.blocks_auto_advance([], "premium", ["premium"])


def test_invalid_resolutions_do_not_mutate(job):
    session, job = job
    job.pending_decisions = DecisionRegistry.project_pending(session, job, "v1", NOTES)
    before = list(job.pending_decisions)

    with pytest.raises(InputValidationError) as exc:
        DecisionRegistry.resolve(session, job, "n1", "zzz")
    assert exc.value.code == "UNKNOWN_OPTION"
    with pytest.raises(InputValidationError) as exc:
        DecisionRegistry.resolve(session, job, "n1", "other", "   ")
    assert exc.value.code == "MISSING_CUSTOM_TEXT"
    with pytest.raises(InputValidationError) as exc:
        DecisionRegistry.resolve(session, job, "nope", "a")
    assert exc.value.code == "UNKNOWN_DECISION"

    assert job.pending_decisions == before
    assert DecisionRegistry.outstanding(session, job.id) == []


def test_directives_are_consumed_once(job):
    session, job = job
    job.pending_decisions = DecisionRegistry.project_pending(session, job, "v1", NOTES)
    DecisionRegistry.resolve(session, job, "n1", "a")
    DecisionRegistry.resolve(session, job, "n2", "other", "Make the villain her brother")
    session.flush()

    directives = DecisionRegistry.consume(session, job.id, step_index=7)
    assert directives == [
        "Cut the twist: Remove scene 14; Seed doubt earlier",
        "Villain is thin -> Make the villain her brother",
    ]
    session.flush()
    assert DecisionRegistry.consume(session, job.id, step_index=8) == []
    assert job.pending_decisions == []
