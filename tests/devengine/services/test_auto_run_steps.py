import pytest

from devengine.services.auto_run_jobs import AutoRunJobService
from devengine.services.auto_run_steps import AutoRunStepService, call_key


def _job(session):
    return AutoRunJobService.create_job(
        session,
        project_id="p",
        mode="balanced",
        fmt="film",
        ladder=["idea", "concept_brief"],
        start_document="idea",
        target_document="concept_brief",
        max_total_steps=12,
        max_stage_loops=2,
    )


def test_call_key_is_stable_across_retries():
    assert call_key(1, 3, "rewrite", "v2") == call_key(1, 3, "rewrite", "v2")
    assert call_key(1, 3, "rewrite", "v2") != call_key(1, 4, "rewrite", "v2")
    assert call_key(1, 3, "rewrite", "v2") != call_key(1, 3, "rewrite", "v1")
    assert call_key(1, 0, "generate", None).endswith(":generate:-")


def test_log_step_keys(session_factory):
    with session_factory() as session:
        job = _job(session)
        first = AutoRunStepService.log_step(session, job_id=job.id, action="start", summary="Started")
        key = call_key(job.id, 0, "rewrite", "v1")
        second = AutoRunStepService.log_step(
            session, job_id=job.id, action="rewrite", summary="Rewrote",
            output_ref={"doc_id": "doc-idea", "version_id": "v2"}, key=key,
        )

        assert first.idempotency_key == f"{job.id}:1:start"
        assert second.step_index == 2
        assert AutoRunStepService.find_by_key(session, key).output_ref["version_id"] == "v2"
        assert AutoRunStepService.find_by_key(session, call_key(job.id, 1, "rewrite", "v1")) is None


def test_unknown_action_rejected(session_factory):
    with session_factory() as session:
        job = _job(session)
        with pytest.raises(ValueError):
            AutoRunStepService.log_step(session, job_id=job.id, action="approve", summary="?")
