"""Service for the append-only auto-run step log."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from devengine.db.models import AutoRunStep


def idempotency_key(job_id: int, step_index: int, action: str) -> str:
    return f"{job_id}:{step_index}:{action}"


def call_key(job_id: int, step_count: int, action: str, version_id: Optional[str]) -> str:
    """Key of one external call; a retry of the same planned call gets the same key."""
    return f"{job_id}:call:{step_count}:{action}:{version_id or '-'}"


class AutoRunStepService:
    """Appends and reads rows of the auto_run_steps table. Rows are never updated."""

    # Step actions
    ACTION_START = "start"
    ACTION_REVIEW = "review"
    ACTION_REWRITE = "rewrite"
    ACTION_GENERATE = "generate"
    ACTION_PROMOTION_CHECK = "promotion_check"
    ACTION_APPROVAL_REQUIRED = "approval_required"
    ACTION_APPROVAL_DECISION = "approval_decision"
    ACTION_STOP = "stop"
    ACTION_FORCE_PROMOTE = "force_promote"
    ACTION_SET_STAGE = "set_stage"
    ACTION_DECISION_APPLIED = "decision_applied"

    ACTIONS = (
        ACTION_START, ACTION_REVIEW, ACTION_REWRITE, ACTION_GENERATE,
        ACTION_PROMOTION_CHECK, ACTION_APPROVAL_REQUIRED, ACTION_APPROVAL_DECISION, ACTION_STOP,
        ACTION_FORCE_PROMOTE, ACTION_SET_STAGE, ACTION_DECISION_APPLIED,
    )

    @staticmethod
    def next_step_index(session: Session, job_id: int) -> int:
        current = session.execute(
            select(func.max(AutoRunStep.step_index)).where(AutoRunStep.job_id == job_id)
        ).scalar()
        return (current or 0) + 1

    @staticmethod
    def log_step(
        session: Session,
        *,
        job_id: int,
        action: str,
        summary: str,
        document: Optional[str] = None,
        step_index: Optional[int] = None,
        ci: Optional[float] = None,
        gp: Optional[float] = None,
        gap: Optional[float] = None,
        readiness: Optional[float] = None,
        confidence: Optional[float] = None,
        risk_flags: Optional[List[str]] = None,
        output_text: Optional[str] = None,
        output_ref: Optional[Dict[str, Any]] = None,
        key: Optional[str] = None,
    ) -> AutoRunStep:
        """Append a step. The caller owns the transaction.

        `key` overrides the default step key with the key of the external call
        that produced the step.
        """
        if action not in AutoRunStepService.ACTIONS:
            raise ValueError(f"Unknown step action: {action}")
        if step_index is None:
            step_index = AutoRunStepService.next_step_index(session, job_id)

        step = AutoRunStep(
            job_id=job_id,
            step_index=step_index,
            idempotency_key=key or idempotency_key(job_id, step_index, action),
            action=action,
            document=document,
            summary=summary,
            ci=_score(ci),
            gp=_score(gp),
            gap=_score(gap),
            readiness=_score(readiness),
            confidence=_score(confidence),
            risk_flags=list(risk_flags or []),
            output_text=output_text,
            output_ref=output_ref,
        )
        session.add(step)
        session.flush()
        return step

    @staticmethod
    def find_by_key(session: Session, key: str) -> Optional[AutoRunStep]:
        return session.execute(
            select(AutoRunStep).where(AutoRunStep.idempotency_key == key)
        ).scalar_one_or_none()

    @staticmethod
    def list_steps(session: Session, job_id: int, limit: Optional[int] = None) -> List[AutoRunStep]:
        query = (
            select(AutoRunStep)
            .where(AutoRunStep.job_id == job_id)
            .order_by(AutoRunStep.step_index.asc())
        )
        if limit:
            query = query.limit(limit)
        return list(session.execute(query).scalars().all())

    @staticmethod
    def last_step(session: Session, job_id: int, action: Optional[str] = None) -> Optional[AutoRunStep]:
        query = select(AutoRunStep).where(AutoRunStep.job_id == job_id)
        if action:
            query = query.where(AutoRunStep.action == action)
        query = query.order_by(AutoRunStep.step_index.desc()).limit(1)
        return session.execute(query).scalar_one_or_none()


def _score(value: Optional[float]) -> Optional[int]:
    return None if value is None else int(round(value))
