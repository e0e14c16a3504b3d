"""Auto-run orchestrator: advances one development job a single step at a time."""
from __future__ import annotations

import argparse
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

# Load env immediately to ensure DATABASE_URL is set for DB base
load_dotenv()

from devengine.collaborators.base import AnalysisResult, Collaborators, DocumentVersion
from devengine.config import Settings, load_settings
from devengine.db.base import SessionLocal
from devengine.db.models import AutoRunJob, AutoRunStep, DriftEvent
from devengine.errors import (
    AutoRunError,
    CollaboratorError,
    InputValidationError,
    InvalidTransitionError,
    InvariantViolation,
    JobAlreadyActiveError,
    JobNotFoundError,
    StepInFlightError,
)
from devengine.ladders import (
    approval_type_for,
    doc_type_label,
    format_to_lane,
    is_approval_required,
    ladder_for,
    next_stage,
    normalize_doc_type,
    previous_stage,
    stage_index,
)
from devengine.qualifications import changed_fields, is_stale
from devengine.services.auto_run_jobs import AutoRunJobService, is_terminal
from devengine.services.auto_run_steps import AutoRunStepService, call_key
from devengine.services.decisions import DecisionRegistry
from devengine.services.drift import DriftDetector, DriftService
from devengine.services.promotion import compute_promotion, hard_gates

PREVIEW_CHARS = 4000
STALE_CHOICES = ("regenerate", "continue", "review_criteria")
APPROVAL_CHOICES = ("approve", "revise", "stop")
REALIGN_DIRECTIVE = "Realign the document with the project's current qualifications"
REVISE_DIRECTIVE = "Revise the document before it is approved"

Steps = AutoRunStepService


class Action(str, Enum):
    """Everything a single run-next call can decide to do."""

    REVIEW = "review"
    REWRITE = "rewrite"
    GENERATE = "generate"
    PROMOTE = "promotion_check"
    APPROVAL_REQUIRED = "approval_required"
    COMPLETE = "complete"
    PAUSE = "pause"
    STOP = "stop"

    @property
    def is_external(self) -> bool:
        return self in (Action.REVIEW, Action.REWRITE, Action.GENERATE, Action.PROMOTE)


@dataclass
class Plan:
    action: Action
    stage: str
    version: Optional[DocumentVersion] = None
    target_stage: Optional[str] = None
    source: Optional[DocumentVersion] = None
    directives: List[str] = field(default_factory=list)
    protect: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    pause_reason: Optional[str] = None
    approval_type: Optional[str] = None
    regeneration_event_id: Optional[int] = None
    exclude_version_id: Optional[str] = None
    forced: bool = False
    key: Optional[str] = None
    reuse_ref: Optional[Dict[str, Any]] = None


@dataclass
class Outcome:
    analysis: Optional[AnalysisResult] = None
    ancestor: Optional[DocumentVersion] = None
    produced: Optional[DocumentVersion] = None
    reused: bool = False


@dataclass
class _Guard:
    """Job state an in-flight result must still match to be applied."""

    job_id: int
    step_count: int
    current_document: str
    step_index: int


@dataclass
class StepSnapshot:
    step_index: int
    action: str
    document: Optional[str]
    summary: str
    readiness: Optional[int] = None
    confidence: Optional[int] = None
    ci: Optional[int] = None
    gp: Optional[int] = None
    gap: Optional[int] = None
    risk_flags: List[str] = field(default_factory=list)
    output_ref: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_step(cls, step: AutoRunStep) -> "StepSnapshot":
        return cls(
            step_index=step.step_index,
            action=step.action,
            document=step.document,
            summary=step.summary,
            readiness=step.readiness,
            confidence=step.confidence,
            ci=step.ci,
            gp=step.gp,
            gap=step.gap,
            risk_flags=list(step.risk_flags or []),
            output_ref=step.output_ref,
            created_at=step.created_at,
        )


@dataclass
class DriftEventSnapshot:
    event_id: int
    doc_type: str
    document_version_id: str
    ancestor_version_id: Optional[str]
    drift_level: str
    drifted_fields: List[str]
    drift_items: List[Dict[str, Any]]
    acknowledged: bool
    resolved: bool
    resolution_type: Optional[str]
    created_at: Optional[datetime] = None

    @classmethod
    def from_event(cls, event: DriftEvent, drifted_fields: List[str]) -> "DriftEventSnapshot":
        return cls(
            event_id=event.id,
            doc_type=event.doc_type,
            document_version_id=event.document_version_id,
            ancestor_version_id=event.ancestor_version_id,
            drift_level=event.drift_level,
            drifted_fields=list(drifted_fields),
            drift_items=[dict(i) for i in event.drift_items or []],
            acknowledged=event.acknowledged,
            resolved=event.resolved,
            resolution_type=event.resolution_type,
            created_at=event.created_at,
        )


@dataclass
class JobSnapshot:
    """Read-only copy of a job handed back to callers."""

    job_id: int
    project_id: str
    status: str
    mode: str
    ladder: List[str]
    start_document: str
    current_document: Optional[str]
    target_document: str
    step_count: int
    max_total_steps: int
    stage_loop_count: int
    max_stage_loops: int
    awaiting_approval: bool
    approval_type: Optional[str]
    pending_doc_id: Optional[str]
    pending_version_id: Optional[str]
    pending_doc_type: Optional[str]
    pending_next_doc_type: Optional[str]
    approved_stages: List[str]
    pending_decisions: List[Dict[str, Any]]
    follow_latest: bool
    resume_document_id: Optional[str]
    resume_version_id: Optional[str]
    last_ci: Optional[int]
    last_gp: Optional[int]
    last_gap: Optional[int]
    last_readiness: Optional[int]
    last_confidence: Optional[int]
    last_risk_flags: List[str]
    stop_reason: Optional[str]
    pause_reason: Optional[str]
    error: Optional[str]
    next_action_hint: str

    @classmethod
    def from_job(cls, job: AutoRunJob) -> "JobSnapshot":
        return cls(
            job_id=job.id,
            project_id=job.project_id,
            status=job.status,
            mode=job.mode,
            ladder=list(job.ladder or []),
            start_document=job.start_document,
            current_document=job.current_document,
            target_document=job.target_document,
            step_count=job.step_count,
            max_total_steps=job.max_total_steps,
            stage_loop_count=job.stage_loop_count,
            max_stage_loops=job.max_stage_loops,
            awaiting_approval=job.awaiting_approval,
            approval_type=job.approval_type,
            pending_doc_id=job.pending_doc_id,
            pending_version_id=job.pending_version_id,
            pending_doc_type=job.pending_doc_type,
            pending_next_doc_type=job.pending_next_doc_type,
            approved_stages=list(job.approved_stages or []),
            pending_decisions=[dict(d) for d in job.pending_decisions or []],
            follow_latest=job.follow_latest,
            resume_document_id=job.resume_document_id,
            resume_version_id=job.resume_version_id,
            last_ci=job.last_ci,
            last_gp=job.last_gp,
            last_gap=job.last_gap,
            last_readiness=job.last_readiness,
            last_confidence=job.last_confidence,
            last_risk_flags=list(job.last_risk_flags or []),
            stop_reason=job.stop_reason,
            pause_reason=job.pause_reason,
            error=job.error,
            next_action_hint=next_action_hint(job),
        )


def next_action_hint(job: AutoRunJob) -> str:
    """What a caller driving the job should do next."""
    if is_terminal(job):
        return "none"
    if job.awaiting_approval:
        return "awaiting-approval"
    if job.pending_decisions and job.status == "paused":
        return "approve-decision"
    if job.status == "running":
        return "run-next"
    return "resume"


class JobLockRegistry:
    """Process-local, non-blocking per-job locks."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def acquire(self, job_id: int) -> bool:
        with self._guard:
            lock = self._locks.setdefault(job_id, threading.Lock())
        return lock.acquire(blocking=False)

    def release(self, job_id: int) -> None:
        with self._guard:
            lock = self._locks.get(job_id)
        if lock is not None and lock.locked():
            lock.release()

    def is_held(self, job_id: int) -> bool:
        with self._guard:
            lock = self._locks.get(job_id)
        return lock is not None and lock.locked()


STEP_LOCKS = JobLockRegistry()


class AutoRunOrchestrator:
    """Owns every auto-run job mutation.

    `run_next` executes at most one action per call. External collaborator
    calls happen with no database session open; their results are applied
    in a fresh session only if the job still matches the state they were
    planned against, otherwise they are discarded.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        settings: Optional[Settings] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        locks: Optional[JobLockRegistry] = None,
    ):
        self.collaborators = collaborators
        self.settings = settings or load_settings()
        self.session_factory = session_factory
        self.locks = locks or STEP_LOCKS
        self.drift = DriftService(DriftDetector(self.settings.drift))

        self._executors = {
            Action.REVIEW: self._execute_review,
            Action.REWRITE: self._execute_rewrite,
            Action.GENERATE: self._execute_generate,
            Action.PROMOTE: self._execute_generate,
        }
        self._appliers = {
            Action.REVIEW: self._apply_review,
            Action.REWRITE: self._apply_rewrite,
            Action.GENERATE: self._apply_generate,
            Action.PROMOTE: self._apply_promote,
            Action.APPROVAL_REQUIRED: self._apply_approval_required,
            Action.COMPLETE: self._apply_complete,
            Action.PAUSE: self._apply_pause,
            Action.STOP: self._apply_stop,
        }

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_job(self, project_id: str) -> Optional[JobSnapshot]:
        with self.session_factory() as session:
            job = AutoRunJobService.get_latest_job(session, project_id)
            return JobSnapshot.from_job(job) if job else None

    def get_steps(self, project_id: str, limit: Optional[int] = None) -> List[StepSnapshot]:
        with self.session_factory() as session:
            job = AutoRunJobService.get_latest_job(session, project_id)
            if not job:
                return []
            return [StepSnapshot.from_step(s) for s in Steps.list_steps(session, job.id, limit=limit)]

    def get_drift_events(self, project_id: str, unresolved_only: bool = False) -> List[DriftEventSnapshot]:
        """Drift events of the project, newest first. Event ids feed resolve/acknowledge."""
        with self.session_factory() as session:
            return [
                DriftEventSnapshot.from_event(e, self.drift.drifted_fields(e))
                for e in self.drift.list_events(session, project_id, unresolved_only=unresolved_only)
            ]

    def get_pending_doc(self, project_id: str) -> Optional[Dict[str, Any]]:
        """Preview of the document waiting for approval, if any."""
        with self.session_factory() as session:
            job = self._require_job(session, project_id, active_only=False)
            if not job.awaiting_approval:
                return None
            pending = {
                "doc_id": job.pending_doc_id,
                "version_id": job.pending_version_id,
                "doc_type": job.pending_doc_type,
                "next_doc_type": job.pending_next_doc_type,
                "approval_type": job.approval_type,
            }
        version = self._call(
            "documents",
            self.collaborators.documents.fetch_document,
            document_id=pending["doc_id"],
            version_id=pending["version_id"],
        )
        text = version.text if version else ""
        pending["label"] = doc_type_label(pending["doc_type"]) if pending["doc_type"] else None
        pending["preview"] = text[:PREVIEW_CHARS]
        pending["truncated"] = len(text) > PREVIEW_CHARS
        return pending

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    def start(
        self,
        project_id: str,
        mode: Optional[str] = None,
        start_document: str = "idea",
        target_document: Optional[str] = None,
        fmt: Optional[str] = None,
        ladder: Optional[List[str]] = None,
    ) -> JobSnapshot:
        mode = mode or self.settings.default_mode
        if mode not in self.settings.modes:
            raise InputValidationError(f"Unknown mode: {mode}", code="INVALID_MODE")
        if fmt is None and ladder is None:
            qualifications = self._call(
                "qualifications",
                self.collaborators.qualifications.get_canonical_qualifications,
                project_id,
            )
            fmt = qualifications.get("format")

        lane = format_to_lane(fmt)
        stages = [normalize_doc_type(s, lane) for s in ladder] if ladder else ladder_for(fmt)
        start = normalize_doc_type(start_document, lane)
        target = normalize_doc_type(target_document, lane) if target_document else stages[-1]
        if stage_index(stages, target) < stage_index(stages, start):
            raise InputValidationError(
                f"Target {target} comes before start {start} on the ladder", code="INVALID_TARGET"
            )

        budget = self.settings.mode_config(mode)
        with self.session_factory() as session:
            active = AutoRunJobService.get_active_job(session, project_id)
            if active:
                raise JobAlreadyActiveError(project_id, active.id, active.status)
            job = AutoRunJobService.create_job(
                session,
                project_id=project_id,
                mode=mode,
                fmt=fmt,
                ladder=stages,
                start_document=start,
                target_document=target,
                max_total_steps=budget.max_total_steps,
                max_stage_loops=budget.max_stage_loops,
            )
            Steps.log_step(
                session,
                job_id=job.id,
                action=Steps.ACTION_START,
                document=start,
                summary=f"Started {mode} run: {doc_type_label(start)} -> {doc_type_label(target)}",
            )
            session.commit()
            return JobSnapshot.from_job(job)

    def pause(self, project_id: str) -> JobSnapshot:
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            if job.status != "running":
                return JobSnapshot.from_job(job)
            self._set_status(job, "paused", pause_reason="user_pause", reason="Paused by user")
            session.commit()
            return JobSnapshot.from_job(job)

    def resume(self, project_id: str, follow_latest: bool = True) -> JobSnapshot:
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            if job.awaiting_approval:
                raise InvalidTransitionError(
                    f"Job {job.id} is awaiting approval; use approve_next", code="AWAITING_APPROVAL"
                )
            if not job.current_document:
                raise InvariantViolation(f"Job {job.id} has no current document to resume from")
            if job.status == "running":
                return JobSnapshot.from_job(job)
            if job.step_count >= job.max_total_steps:
                raise InvalidTransitionError(
                    f"Job {job.id} has used its {job.max_total_steps} steps; extend the budget first",
                    code="STEP_BUDGET_EXHAUSTED",
                )

            if follow_latest:
                self._release_pin(job)
            else:
                job.follow_latest = not (job.resume_document_id or job.resume_version_id)

            if job.pause_reason == "loop_limit":
                job.stage_loop_count = 0
            if job.pause_reason == "hard_gate":
                # Forces the re-analysis that may clear the gate
                job.analysis_version_id = None

            previous = job.status
            job.error = None
            self._set_status(job, "running")
            logger.info(f"[AUTORUN] Job {job.id} resumed from {previous} (follow_latest={job.follow_latest})")
            session.commit()
            return JobSnapshot.from_job(job)

    def set_resume_source(self, project_id: str, document_id: str, version_id: str) -> JobSnapshot:
        version = self._call(
            "documents",
            self.collaborators.documents.fetch_document,
            document_id=document_id,
            version_id=version_id,
        )
        if version is None:
            raise InputValidationError(f"Unknown document version {document_id}/{version_id}", code="UNKNOWN_VERSION")
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            if version.doc_type != job.current_document:
                raise InputValidationError(
                    f"Version {version_id} is a {version.doc_type}, job is on {job.current_document}",
                    code="WRONG_DOCUMENT",
                )
            job.follow_latest = False
            job.resume_document_id = document_id
            job.resume_version_id = version_id
            logger.info(f"[AUTORUN] Job {job.id} pinned to {document_id}/{version_id}")
            session.commit()
            return JobSnapshot.from_job(job)

    def stop(self, project_id: str) -> JobSnapshot:
        """Hard stop. Any in-flight result is discarded when it lands."""
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            self._clear_approval(job)
            self._set_status(job, "stopped", pause_reason="user_stop", reason="Stopped by user")
            Steps.log_step(
                session, job_id=job.id, action=Steps.ACTION_STOP,
                document=job.current_document, summary="Stopped by user",
            )
            session.commit()
            return JobSnapshot.from_job(job)

    def clear(self, project_id: str) -> None:
        with self.session_factory() as session:
            for job in AutoRunJobService.list_jobs(session, project_id, limit=1000):
                if self.locks.is_held(job.id):
                    raise StepInFlightError(job.id)
            AutoRunJobService.delete_jobs(session, project_id)
            session.commit()

    def approve_next(self, project_id: str, decision: str) -> JobSnapshot:
        if decision not in APPROVAL_CHOICES:
            raise InputValidationError(f"Unknown approval decision: {decision}", code="INVALID_APPROVAL")
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            if not job.awaiting_approval:
                raise InvalidTransitionError(f"Job {job.id} is not awaiting approval", code="NOT_AWAITING_APPROVAL")

            stage = job.pending_doc_type
            if decision == "approve":
                if stage and stage not in (job.approved_stages or []):
                    job.approved_stages = list(job.approved_stages or []) + [stage]
                summary = f"Approved {doc_type_label(stage)} ({job.approval_type})"
                self._clear_approval(job)
                self._set_status(job, "running")
            elif decision == "revise":
                summary = f"Revision requested for {doc_type_label(stage)}"
                self._clear_approval(job)
                job.revise_requested = True
                self._set_status(job, "running")
            else:
                summary = f"Stopped at approval of {doc_type_label(stage)}"
                self._clear_approval(job)
                self._set_status(job, "stopped", pause_reason="user_stop", reason=summary)

            Steps.log_step(
                session,
                job_id=job.id,
                action=Steps.ACTION_APPROVAL_DECISION,
                document=stage,
                summary=summary,
            )
            logger.info(f"[AUTORUN] Job {job.id}: {summary}")
            session.commit()
            return JobSnapshot.from_job(job)

    def approve_decision(
        self,
        project_id: str,
        decision_id: str,
        option_id: str,
        custom_text: Optional[str] = None,
    ) -> JobSnapshot:
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            resolution = DecisionRegistry.resolve(session, job, decision_id, option_id, custom_text)
            Steps.log_step(
                session,
                job_id=job.id,
                action=Steps.ACTION_DECISION_APPLIED,
                document=job.current_document,
                summary=f"Decision {decision_id}: {resolution.directive}",
            )
            if job.pause_reason == "pending_decisions" and not DecisionRegistry.blocks_auto_advance(
                job.pending_decisions, job.mode, self.settings.high_decisions_block_modes
            ):
                job.stop_reason = "Decisions resolved; resume to apply them"
            session.commit()
            return JobSnapshot.from_job(job)

    def set_stage(self, project_id: str, stage: str) -> JobSnapshot:
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            stage = self._ladder_stage(job, stage)
            previous = job.current_document
            self._move_to(job, stage)
            self._clear_approval(job)
            self._release_pin(job)
            job.error = None
            self._set_status(job, "running")
            Steps.log_step(
                session, job_id=job.id, action=Steps.ACTION_SET_STAGE, document=stage,
                summary=f"Stage set: {doc_type_label(previous)} -> {doc_type_label(stage)}",
            )
            session.commit()
            return JobSnapshot.from_job(job)

    def restart_from_stage(self, project_id: str, stage: str) -> JobSnapshot:
        """Destructive restart: step and loop counters start over at `stage`."""
        with self.session_factory() as session:
            job = self._require_job(session, project_id, active_only=False)
            if is_terminal(job):
                raise InvalidTransitionError(f"Job {job.id} is completed; start a new run", code="JOB_COMPLETED")
            if self.locks.is_held(job.id):
                raise StepInFlightError(job.id)
            stage = self._ladder_stage(job, stage)
            index = stage_index(job.ladder, stage)

            self._move_to(job, stage)
            self._clear_approval(job)
            self._release_pin(job)
            job.step_count = 0
            job.max_total_steps = self.settings.mode_config(job.mode).max_total_steps
            job.approved_stages = [s for s in job.approved_stages or [] if stage_index(job.ladder, s) < index]
            job.force_promote_once = False
            job.revise_requested = False
            job.regenerate_requested = False
            job.stale_ack_version_id = None
            job.error = None
            self._set_status(job, "running")
            Steps.log_step(
                session, job_id=job.id, action=Steps.ACTION_SET_STAGE, document=stage,
                summary=f"Restarted from {doc_type_label(stage)}",
            )
            session.commit()
            return JobSnapshot.from_job(job)

    def force_promote(self, project_id: str) -> JobSnapshot:
        """Skip promotion gating once on the next run-next."""
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            if job.awaiting_approval:
                raise InvalidTransitionError(
                    f"Job {job.id} is awaiting approval; use approve_next", code="AWAITING_APPROVAL"
                )
            job.force_promote_once = True
            job.error = None
            self._set_status(job, "running")
            Steps.log_step(
                session,
                job_id=job.id,
                action=Steps.ACTION_FORCE_PROMOTE,
                document=job.current_document,
                summary=f"Force promote requested at {doc_type_label(job.current_document)}",
                risk_flags=list(job.last_risk_flags or []),
            )
            logger.warning(f"[AUTORUN] Job {job.id}: force promote at {job.current_document}")
            session.commit()
            return JobSnapshot.from_job(job)

    def resolve_drift(self, project_id: str, resolution_type: str, event_id: Optional[int] = None) -> JobSnapshot:
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            event = self._drift_event(session, job, event_id)
            self.drift.resolve(session, event, resolution_type)
            if job.pause_reason == "drift":
                job.stop_reason = f"Drift resolved ({resolution_type}); resume to continue"
            session.commit()
            return JobSnapshot.from_job(job)

    def acknowledge_drift(self, project_id: str, event_id: Optional[int] = None) -> JobSnapshot:
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            event = self._drift_event(session, job, event_id)
            self.drift.acknowledge(session, event)
            session.commit()
            return JobSnapshot.from_job(job)

    def resolve_stale(self, project_id: str, choice: str) -> JobSnapshot:
        """Answer a stale pause: regenerate, continue as-is, or keep paused to review criteria."""
        if choice not in STALE_CHOICES:
            raise InputValidationError(f"Unknown stale choice: {choice}", code="INVALID_STALE_CHOICE")
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            if job.pause_reason != "stale":
                raise InvalidTransitionError(f"Job {job.id} is not paused on a stale document", code="NOT_STALE")
            if choice == "review_criteria":
                job.stop_reason = "Waiting for qualification review; resume once criteria are updated"
            elif choice == "regenerate":
                job.regenerate_requested = True
                self._set_status(job, "running")
            else:
                version = self._source_version(job)
                job.stale_ack_version_id = version.version_id if version else None
                self._set_status(job, "running")
            logger.info(f"[AUTORUN] Job {job.id}: stale document, choice={choice}")
            session.commit()
            return JobSnapshot.from_job(job)

    def extend_budget(self, project_id: str, steps: Optional[int] = None) -> JobSnapshot:
        extra = steps if steps is not None else self.settings.step_limit_extension
        if extra <= 0:
            raise InputValidationError("Budget extension must be positive", code="INVALID_EXTENSION")
        with self.session_factory() as session:
            job = self._require_job(session, project_id)
            job.max_total_steps += extra
            if job.pause_reason == "step_limit":
                job.stop_reason = f"Step budget extended to {job.max_total_steps}; resume to continue"
            logger.info(f"[AUTORUN] Job {job.id}: step budget +{extra} -> {job.max_total_steps}")
            session.commit()
            return JobSnapshot.from_job(job)

    # ------------------------------------------------------------------
    # Run next
    # ------------------------------------------------------------------

    def run_next(self, project_id: str, expected_step_count: Optional[int] = None) -> JobSnapshot:
        """Advance the project's job by exactly one action.

        A call that carries a stale `expected_step_count` is a replay and
        returns the current snapshot without acting.
        """
        with self.session_factory() as session:
            job = self._require_job(session, project_id, active_only=False)
            job_id = job.id

        if not self.locks.acquire(job_id):
            raise StepInFlightError(job_id)
        try:
            with self.session_factory() as session:
                job = AutoRunJobService.get_job(session, job_id)
                if expected_step_count is not None and job.step_count != expected_step_count:
                    logger.info(f"[AUTORUN] Job {job_id}: replayed run-next ignored (step {expected_step_count} != {job.step_count})")
                    return JobSnapshot.from_job(job)
                if job.status != "running" or job.awaiting_approval:
                    return JobSnapshot.from_job(job)

                if job.step_count >= job.max_total_steps:
                    plan = self._plan_without_budget(session, job)
                else:
                    try:
                        plan = self._plan(session, job)
                    except CollaboratorError as exc:
                        self._fail(session, job, "plan", exc)
                        session.commit()
                        return JobSnapshot.from_job(job)

                if not plan.action.is_external:
                    self._appliers[plan.action](session, job, plan, None)
                    session.commit()
                    return JobSnapshot.from_job(job)

                guard = _Guard(
                    job_id=job.id,
                    step_count=job.step_count,
                    current_document=job.current_document,
                    step_index=Steps.next_step_index(session, job.id),
                )
                subject = plan.version or plan.source
                key = call_key(job.id, job.step_count, plan.action.value, subject.version_id if subject else None)
                recorded = Steps.find_by_key(session, key)
                if recorded is None:
                    plan.key = key
                elif recorded.output_ref:
                    plan.reuse_ref = dict(recorded.output_ref)
                logger.info(f"[AUTORUN] Job {job_id}: {plan.action.value} {plan.target_stage or plan.stage} ({plan.reason})")

            try:
                outcome = self._reuse(plan) if plan.reuse_ref else None
                if outcome is None:
                    outcome = self._executors[plan.action](project_id, plan)
                error = None
            except CollaboratorError as exc:
                logger.exception(f"[AUTORUN] Job {job_id}: {plan.action.value} failed: {exc}")
                outcome, error = None, exc

            with self.session_factory() as session:
                job = AutoRunJobService.get_job(session, job_id)
                if job is None:
                    raise JobNotFoundError(project_id)
                if not self._guard_holds(session, job, guard):
                    logger.warning(f"[AUTORUN] Job {job_id}: discarding late {plan.action.value} result (status={job.status})")
                    self._record_discarded(session, job, plan, outcome)
                    session.commit()
                    return JobSnapshot.from_job(job)
                if error is not None:
                    self._fail(session, job, plan.action.value, error)
                    session.commit()
                    return JobSnapshot.from_job(job)

                self._appliers[plan.action](session, job, plan, outcome)
                job.step_count += 1
                if job.status == "running" and job.step_count >= job.max_total_steps:
                    follow_up = self._plan_without_budget(session, job)
                    self._appliers[follow_up.action](session, job, follow_up, None)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.warning(f"[AUTORUN] Job {job_id}: step {guard.step_index} already written, result discarded")
                    job = AutoRunJobService.get_job(session, job_id)
                return JobSnapshot.from_job(job)
        finally:
            self.locks.release(job_id)

    def run_until_idle(self, project_id: str, max_calls: int = 100) -> JobSnapshot:
        """Call run_next until the job stops asking for it."""
        snapshot = self.get_job(project_id)
        for _ in range(max_calls):
            if snapshot is None or snapshot.next_action_hint != "run-next":
                break
            snapshot = self.run_next(project_id, expected_step_count=snapshot.step_count)
        return snapshot

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(self, session: Session, job: AutoRunJob) -> Plan:
        """Decide the single next action. Reads only; never mutates the job."""
        stage = job.current_document
        if not stage or stage not in (job.ladder or []):
            raise InvariantViolation(f"Job {job.id} current document {stage!r} is not on its ladder")
        label = doc_type_label(stage)
        prev = previous_stage(job.ladder, stage)
        version = self._source_version(job)

        if version is None:
            if prev is None:
                return Plan(Action.PAUSE, stage, pause_reason="missing_seed",
                            reason=f"No {label} document to start from")
            source = self._latest(job.project_id, prev)
            if source is None:
                return Plan(Action.PAUSE, stage, pause_reason="missing_seed",
                            reason=f"Missing {doc_type_label(prev)} to generate {label} from")
            return Plan(Action.GENERATE, stage, target_stage=stage, source=source,
                        protect=list(job.last_protect or []), reason=f"No {label} yet")

        # Scheduled regeneration answers a drift or stale pause, so it runs before those gates
        event = self.drift.event_for_version(session, version.version_id)
        if event is not None and event.regeneration_scheduled:
            ancestor = None
            if event.ancestor_version_id:
                ancestor = self._call("documents", self.collaborators.documents.fetch_document,
                                      version_id=event.ancestor_version_id)
            if ancestor is not None:
                return Plan(Action.GENERATE, stage, version=version, target_stage=stage, source=ancestor,
                            regeneration_event_id=event.id, exclude_version_id=version.version_id,
                            reason="Reseed from ancestor")
        if job.regenerate_requested:
            source = self._latest(job.project_id, prev) if prev else None
            if source is None:
                return Plan(Action.REWRITE, stage, version=version, directives=[REALIGN_DIRECTIVE],
                            protect=list(job.last_protect or []), reason="Regenerate requested")
            return Plan(Action.GENERATE, stage, version=version, target_stage=stage, source=source,
                        exclude_version_id=version.version_id, reason="Regenerate requested")

        current_hash = self._call("qualifications",
                                  self.collaborators.qualifications.compute_qualification_hash,
                                  job.project_id)
        if is_stale(version.depends_on_resolver_hash, current_hash) and job.stale_ack_version_id != version.version_id:
            current = self._call("qualifications",
                                 self.collaborators.qualifications.get_canonical_qualifications,
                                 job.project_id)
            fields = changed_fields(version.metadata.get("qualifications"), current)
            detail = ", ".join(fields) if fields else "qualification hash changed"
            return Plan(Action.PAUSE, stage, version=version, pause_reason="stale",
                        reason=f"Document stale vs current criteria: {detail}")

        outstanding = [r.directive for r in DecisionRegistry.outstanding(session, job.id)]
        if job.revise_requested:
            return Plan(Action.REWRITE, stage, version=version,
                        directives=outstanding + [REVISE_DIRECTIVE],
                        protect=list(job.last_protect or []), reason="Revision requested at approval")

        fresh = job.analysis_version_id == version.version_id
        forced = job.force_promote_once
        if fresh and not forced:
            gates = hard_gates(list(job.last_risk_flags or []))
            if gates:
                return Plan(Action.PAUSE, stage, version=version, pause_reason="hard_gate",
                            reason=f"Hard gate on {label}: {', '.join(gates)}")
            if DecisionRegistry.blocks_auto_advance(
                job.pending_decisions or [], job.mode, self.settings.high_decisions_block_modes
            ):
                return Plan(Action.PAUSE, stage, version=version, pause_reason="pending_decisions",
                            reason=f"{len(job.pending_decisions)} decision(s) need a choice on {label}")
        if not fresh and not forced:
            return Plan(Action.REVIEW, stage, version=version, reason=f"No fresh analysis of {label}")

        if forced or (self._converged(job) and not outstanding):
            if self.drift.blocks_promotion(event):
                drifted = ", ".join(self.drift.drifted_fields(event))
                return Plan(Action.PAUSE, stage, version=version, pause_reason="drift",
                            reason=f"Unresolved major drift on {label}: {drifted}")
            at_target = stage == job.target_document
            if is_approval_required(stage, self.settings.approval_stages) and stage not in (job.approved_stages or []):
                return Plan(Action.APPROVAL_REQUIRED, stage, version=version,
                            approval_type="final" if at_target else "promote",
                            reason=f"{label} needs approval before {'completion' if at_target else 'promotion'}")
            if at_target:
                return Plan(Action.COMPLETE, stage, version=version, forced=forced,
                            reason=f"Reached target {label}")
            return Plan(Action.PROMOTE, stage, version=version, target_stage=next_stage(job.ladder, stage),
                        source=version, protect=list(job.last_protect or []), forced=forced,
                        reason="Forced promotion" if forced else f"Converged at readiness {job.last_readiness}")

        if job.stage_loop_count >= job.max_stage_loops:
            return Plan(Action.STOP, stage, version=version, pause_reason="loop_limit",
                        reason=f"{label} did not converge in {job.max_stage_loops} loop(s)")
        return Plan(Action.REWRITE, stage, version=version,
                    directives=outstanding + self._note_directives(job),
                    protect=list(job.last_protect or []),
                    reason=f"Readiness {job.last_readiness} below threshold")

    def _plan_without_budget(self, session: Session, job: AutoRunJob) -> Plan:
        """With the step budget spent, only actions that make no external call may still run."""
        try:
            plan = self._plan(session, job)
        except CollaboratorError as exc:
            logger.warning(f"[AUTORUN] Job {job.id}: planning at the step limit failed: {exc}")
            plan = None
        if plan is not None and not plan.action.is_external:
            return plan
        return Plan(
            Action.STOP, job.current_document, pause_reason="step_limit",
            reason=f"Step limit reached ({job.step_count}/{job.max_total_steps})",
        )

    def _converged(self, job: AutoRunJob) -> bool:
        budget = self.settings.mode_config(job.mode)
        threshold = max(self.settings.promote_threshold, budget.require_readiness or 0)
        if job.last_recommendation != "promote" or (job.last_readiness or 0) < threshold:
            return False
        if hard_gates(list(job.last_risk_flags or [])):
            return False
        return not DecisionRegistry.has_blockers(job.pending_decisions or [])

    @staticmethod
    def _note_directives(job: AutoRunJob) -> List[str]:
        directives = []
        for note in job.last_notes or []:
            if note.get("severity") in ("blocker", "high") and not note.get("options"):
                text = note.get("fix") or note.get("note") or note.get("text")
                if text:
                    directives.append(text)
        return directives

    # ------------------------------------------------------------------
    # External execution (no session open)
    # ------------------------------------------------------------------

    def _execute_review(self, project_id: str, plan: Plan) -> Outcome:
        qualifications = self._call(
            "qualifications", self.collaborators.qualifications.get_canonical_qualifications, project_id
        )
        context = {
            "project_id": project_id,
            "doc_type": plan.stage,
            "qualifications": qualifications,
        }
        analysis = self._call("engine", self.collaborators.engine.analyze, plan.version, context)
        return Outcome(analysis=analysis, ancestor=self._ancestor(project_id, plan))

    def _execute_rewrite(self, project_id: str, plan: Plan) -> Outcome:
        produced = self._call("engine", self.collaborators.engine.rewrite,
                              plan.version, plan.directives, plan.protect)
        return Outcome(produced=produced)

    def _execute_generate(self, project_id: str, plan: Plan) -> Outcome:
        existing = self._latest(project_id, plan.target_stage)
        if (
            existing is not None
            and plan.source is not None
            and existing.source_version_id == plan.source.version_id
            and existing.version_id != plan.exclude_version_id
        ):
            logger.info(f"[AUTORUN] Reusing {plan.target_stage} {existing.version_id} built from {plan.source.version_id}")
            return Outcome(produced=existing, reused=True)
        produced = self._call("engine", self.collaborators.engine.generate,
                              plan.target_stage, plan.source, plan.protect)
        return Outcome(produced=produced)

    def _reuse(self, plan: Plan) -> Optional[Outcome]:
        """Output an earlier attempt of the same call already produced, if it still exists."""
        if plan.action == Action.REVIEW:
            return None
        produced = self._call(
            "documents",
            self.collaborators.documents.fetch_document,
            document_id=plan.reuse_ref.get("doc_id"),
            version_id=plan.reuse_ref.get("version_id"),
        )
        if produced is None:
            return None
        logger.info(f"[AUTORUN] Reusing {produced.doc_type} {produced.version_id} from an earlier {plan.action.value} attempt")
        return Outcome(produced=produced, reused=True)

    def _ancestor(self, project_id: str, plan: Plan) -> Optional[DocumentVersion]:
        version = plan.version
        if version.source_version_id:
            ancestor = self._call("documents", self.collaborators.documents.fetch_document,
                                  version_id=version.source_version_id)
            if ancestor is not None and ancestor.doc_type != version.doc_type:
                return ancestor
        return None

    # ------------------------------------------------------------------
    # Applying results
    # ------------------------------------------------------------------

    def _apply_review(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Outcome) -> None:
        analysis = outcome.analysis or AnalysisResult()
        version = plan.version
        notes = list(analysis.notes or [])
        resolved = DecisionRegistry.resolved_note_ids(session, job.id, version.version_id)
        blockers = [n for n in notes if n.get("severity") == "blocker" and n.get("note_id", n.get("id")) not in resolved]
        high = [n for n in notes if n.get("severity") == "high"]

        promotion = compute_promotion(
            ci=analysis.ci or 0,
            gp=analysis.gp or 0,
            gap=analysis.gap or 0,
            trajectory=analysis.convergence,
            doc_type=plan.stage,
            blockers_count=len(blockers),
            high_impact_count=len(high),
            iteration_count=job.stage_loop_count + 1,
            promote_threshold=self.settings.promote_threshold,
            stabilise_threshold=self.settings.stabilise_threshold,
            readiness_override=analysis.readiness,
            confidence_override=analysis.confidence,
        )
        flags = list(dict.fromkeys(list(analysis.risk_flags or []) + promotion.risk_flags))

        summary = analysis.summary or (
            f"Reviewed {doc_type_label(plan.stage)}: readiness {promotion.readiness} ({promotion.recommendation})"
        )
        if outcome.ancestor is not None:
            event = self.drift.record(session, job.project_id, version, outcome.ancestor)
            if event.drift_level != "none" and not event.resolved:
                flags.append(f"drift:{event.drift_level}")
                summary += (
                    f"; {event.drift_level} drift in {', '.join(self.drift.drifted_fields(event))}"
                    f" (drift event {event.id})"
                )

        job.last_ci = _score(analysis.ci)
        job.last_gp = _score(analysis.gp)
        job.last_gap = _score(analysis.gap)
        job.last_readiness = promotion.readiness
        job.last_confidence = promotion.confidence
        job.last_recommendation = promotion.recommendation
        job.last_risk_flags = flags
        job.last_notes = notes
        job.last_protect = list(analysis.protect or [])
        job.analysis_version_id = version.version_id
        job.pending_decisions = DecisionRegistry.project_pending(session, job, version.version_id, notes)

        Steps.log_step(
            session,
            job_id=job.id,
            action=Steps.ACTION_REVIEW,
            document=plan.stage,
            summary=summary,
            ci=analysis.ci,
            gp=analysis.gp,
            gap=analysis.gap,
            readiness=promotion.readiness,
            confidence=promotion.confidence,
            risk_flags=flags,
            output_ref=version.ref(),
            key=plan.key,
        )

    def _apply_rewrite(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Outcome) -> None:
        step_index = Steps.next_step_index(session, job.id)
        consumed = DecisionRegistry.consume(session, job.id, step_index)
        produced = outcome.produced
        Steps.log_step(
            session,
            job_id=job.id,
            action=Steps.ACTION_REWRITE,
            step_index=step_index,
            document=plan.stage,
            summary=f"{'Reused rewrite of' if outcome.reused else 'Rewrote'} {doc_type_label(plan.stage)}"
                    f" with {len(plan.directives)} directive(s)"
                    + (f", {len(consumed)} from decisions" if consumed else ""),
            output_text="\n".join(plan.directives) or None,
            output_ref=produced.ref() if produced else None,
            key=plan.key,
        )
        job.stage_loop_count += 1
        job.revise_requested = False
        job.regenerate_requested = False
        self._release_pin(job)

    def _apply_generate(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Outcome) -> None:
        produced = outcome.produced
        ref = produced.ref() if produced else None
        if plan.regeneration_event_id is not None:
            event = self.drift.get_event(session, plan.regeneration_event_id)
            if event is not None:
                self.drift.complete_regeneration(event, ref)
        Steps.log_step(
            session,
            job_id=job.id,
            action=Steps.ACTION_GENERATE,
            document=plan.target_stage,
            summary=f"{'Reused' if outcome.reused else 'Generated'} {doc_type_label(plan.target_stage)}"
                    + (f" from {doc_type_label(plan.source.doc_type)}" if plan.source else ""),
            output_ref=ref,
            key=plan.key,
        )
        job.regenerate_requested = False
        self._release_pin(job)

    def _apply_promote(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Outcome) -> None:
        Steps.log_step(
            session,
            job_id=job.id,
            action=Steps.ACTION_PROMOTION_CHECK,
            document=plan.stage,
            summary=f"{doc_type_label(plan.stage)} -> {doc_type_label(plan.target_stage)}: {plan.reason}",
            ci=job.last_ci,
            gp=job.last_gp,
            gap=job.last_gap,
            readiness=job.last_readiness,
            confidence=job.last_confidence,
            risk_flags=list(job.last_risk_flags or []),
        )
        upstream_event = self.drift.event_for_version(session, plan.version.version_id) if plan.version else None
        self._apply_generate(session, job, plan, outcome)
        self._move_to(job, plan.target_stage)
        job.force_promote_once = False

        produced = outcome.produced
        approval_type = None
        if upstream_event is not None and upstream_event.downstream_review_required:
            approval_type = "drift_review"
        elif is_approval_required(plan.target_stage, self.settings.approval_stages):
            approval_type = approval_type_for(plan.target_stage)
        if approval_type and produced is not None:
            self._apply_approval_required(session, job, Plan(
                Action.APPROVAL_REQUIRED, plan.target_stage, version=produced, approval_type=approval_type,
                reason=f"{doc_type_label(plan.target_stage)} needs {approval_type} approval",
            ), None)

    def _apply_approval_required(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Optional[Outcome]) -> None:
        version = plan.version
        job.awaiting_approval = True
        job.approval_type = plan.approval_type
        job.pending_doc_id = version.document_id if version else None
        job.pending_version_id = version.version_id if version else None
        job.pending_doc_type = plan.stage
        job.pending_next_doc_type = next_stage(job.ladder, plan.stage)
        self._set_status(job, "paused", pause_reason="awaiting_approval", reason=plan.reason)
        Steps.log_step(
            session,
            job_id=job.id,
            action=Steps.ACTION_APPROVAL_REQUIRED,
            document=plan.stage,
            summary=plan.reason,
            output_ref=version.ref() if version else None,
        )

    def _apply_complete(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Optional[Outcome]) -> None:
        job.force_promote_once = False
        job.completed_at = datetime.now(timezone.utc)
        self._set_status(job, "completed", reason=plan.reason)
        Steps.log_step(
            session,
            job_id=job.id,
            action=Steps.ACTION_STOP,
            document=plan.stage,
            summary=f"Completed: {plan.reason}",
            readiness=job.last_readiness,
            confidence=job.last_confidence,
            output_ref=plan.version.ref() if plan.version else None,
        )

    def _apply_pause(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Optional[Outcome]) -> None:
        self._set_status(job, "paused", pause_reason=plan.pause_reason, reason=plan.reason)
        Steps.log_step(
            session, job_id=job.id, action=Steps.ACTION_STOP, document=plan.stage,
            summary=plan.reason, risk_flags=list(job.last_risk_flags or []),
        )

    def _apply_stop(self, session: Session, job: AutoRunJob, plan: Plan, outcome: Optional[Outcome]) -> None:
        self._set_status(job, "stopped", pause_reason=plan.pause_reason, reason=plan.reason)
        Steps.log_step(session, job_id=job.id, action=Steps.ACTION_STOP, document=plan.stage, summary=plan.reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_job(self, session: Session, project_id: str, active_only: bool = True) -> AutoRunJob:
        job = AutoRunJobService.get_latest_job(session, project_id)
        if job is None:
            raise JobNotFoundError(project_id)
        if active_only and is_terminal(job):
            raise InvalidTransitionError(f"Job {job.id} is completed; start a new run", code="JOB_TERMINAL")
        return job

    def _ladder_stage(self, job: AutoRunJob, stage: str) -> str:
        stage = normalize_doc_type(stage, format_to_lane(job.format))
        stage_index(job.ladder, stage)
        return stage

    def _call(self, collaborator: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return fn(*args, **kwargs)
        except AutoRunError:
            raise
        except Exception as exc:
            raise CollaboratorError(str(exc), code="COLLABORATOR_FAILED", collaborator=collaborator) from exc

    def _latest(self, project_id: str, doc_type: str) -> Optional[DocumentVersion]:
        return self._call("documents", self.collaborators.documents.latest_version, project_id, doc_type)

    def _source_version(self, job: AutoRunJob) -> Optional[DocumentVersion]:
        """Pinned version when the job does not follow latest, else the newest one."""
        if not job.follow_latest and (job.resume_document_id or job.resume_version_id):
            return self._call(
                "documents",
                self.collaborators.documents.fetch_document,
                document_id=job.resume_document_id,
                version_id=job.resume_version_id,
            )
        return self._latest(job.project_id, job.current_document)

    def _drift_event(self, session: Session, job: AutoRunJob, event_id: Optional[int]):
        if event_id is not None:
            event = self.drift.get_event(session, event_id)
        else:
            version = self._source_version(job)
            event = self.drift.event_for_version(session, version.version_id) if version else None
        if event is None or event.project_id != job.project_id:
            raise InputValidationError("No drift event to resolve for this job", code="UNKNOWN_DRIFT_EVENT")
        return event

    def _guard_holds(self, session: Session, job: Optional[AutoRunJob], guard: _Guard) -> bool:
        if job is None or job.status != "running" or job.awaiting_approval:
            return False
        if job.step_count != guard.step_count or job.current_document != guard.current_document:
            return False
        return Steps.next_step_index(session, job.id) == guard.step_index

    @staticmethod
    def _record_discarded(session: Session, job: AutoRunJob, plan: Plan, outcome: Optional[Outcome]) -> None:
        """Keep the call key and output of a discarded document so a retry reuses it."""
        produced = outcome.produced if outcome else None
        if produced is None or plan.key is None:
            return
        action = Steps.ACTION_REWRITE if plan.action == Action.REWRITE else Steps.ACTION_GENERATE
        Steps.log_step(
            session,
            job_id=job.id,
            action=action,
            document=produced.doc_type,
            summary=f"Discarded late {plan.action.value} result {produced.version_id} (job {job.status})",
            output_ref=produced.ref(),
            key=plan.key,
        )

    def _fail(self, session: Session, job: AutoRunJob, action: str, exc: CollaboratorError) -> None:
        job.error = str(exc)
        self._set_status(job, "failed", reason=f"{action} failed ({exc.collaborator}): {exc}")
        Steps.log_step(
            session, job_id=job.id, action=Steps.ACTION_STOP, document=job.current_document,
            summary=f"Failed during {action}: {exc}",
        )

    @staticmethod
    def _set_status(
        job: AutoRunJob,
        status: str,
        pause_reason: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        old = job.status
        job.status = status
        job.pause_reason = pause_reason
        job.stop_reason = reason
        if old != status or reason:
            logger.info(f"[AUTORUN] Job {job.id}: {old} -> {status}" + (f" ({reason})" if reason else ""))

    @staticmethod
    def _move_to(job: AutoRunJob, stage: str) -> None:
        job.current_document = stage
        job.stage_loop_count = 0
        job.analysis_version_id = None
        job.pending_decisions = []
        job.stale_ack_version_id = None

    @staticmethod
    def _clear_approval(job: AutoRunJob) -> None:
        job.awaiting_approval = False
        job.approval_type = None
        job.pending_doc_id = None
        job.pending_version_id = None
        job.pending_doc_type = None
        job.pending_next_doc_type = None

    @staticmethod
    def _release_pin(job: AutoRunJob) -> None:
        job.follow_latest = True
        job.resume_document_id = None
        job.resume_version_id = None


def _score(value: Optional[float]) -> Optional[int]:
    return None if value is None else int(round(value))


def main(argv: Optional[List[str]] = None) -> None:
    from devengine.__main__ import load_collaborators

    parser = argparse.ArgumentParser(description="Auto-run job runner")
    parser.add_argument("--project-id", required=True, help="Project whose job to advance")
    parser.add_argument("--max-steps", type=int, default=100, help="Maximum run-next calls per pass")
    parser.add_argument("--loop", action="store_true", help="Keep polling after the job goes idle")
    parser.add_argument("--interval", type=int, default=60, help="Seconds between polling passes")

    args = parser.parse_args(argv)

    orchestrator = AutoRunOrchestrator(load_collaborators())

    if args.loop:
        logger.info("Starting polling loop...")
        while True:
            snapshot = orchestrator.run_until_idle(args.project_id, max_calls=args.max_steps)
            if snapshot is not None and snapshot.next_action_hint == "none":
                break
            time.sleep(args.interval)
    else:
        snapshot = orchestrator.run_until_idle(args.project_id, max_calls=args.max_steps)
    if snapshot is not None:
        logger.info(f"[AUTORUN] Job {snapshot.job_id}: {snapshot.status} at {snapshot.current_document} ({snapshot.stop_reason or snapshot.next_action_hint})")


if __name__ == "__main__":
    main()
