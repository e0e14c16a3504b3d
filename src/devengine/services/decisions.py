"""Decision registry: blocking/high-impact notes awaiting a human choice."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from devengine.db.models import AutoRunJob, DecisionResolution
from devengine.errors import InputValidationError

OTHER_OPTION = "other"
DECISION_SEVERITIES = ("blocker", "high")


class DecisionOption(BaseModel):
    option_id: str
    title: str
    what_changes: List[str] = Field(default_factory=list)
    tradeoffs: Optional[str] = None
    creative_risk: Literal["low", "med", "high"] = "med"
    commercial_lift: Optional[float] = None


class Decision(BaseModel):
    note_id: str
    severity: Literal["blocker", "high"]
    note: str
    options: List[DecisionOption]
    recommended_option_id: Optional[str] = None

    def option(self, option_id: str) -> Optional[DecisionOption]:
        for opt in self.options:
            if opt.option_id == option_id:
                return opt
        return None


def note_id_of(note: Dict[str, Any]) -> Optional[str]:
    return note.get("note_id") or note.get("id")


def decisions_from_notes(notes: Iterable[Dict[str, Any]]) -> List[Decision]:
    """Notes with resolution options and blocker/high severity, in analyzer order."""
    decisions: List[Decision] = []
    for note in notes:
        if note.get("severity") not in DECISION_SEVERITIES or not note.get("options"):
            continue
        try:
            decisions.append(Decision(
                note_id=note_id_of(note),
                severity=note["severity"],
                note=note.get("note") or note.get("text") or "",
                options=note["options"],
                recommended_option_id=note.get("recommended_option_id"),
            ))
        except ValidationError as exc:
            # Malformed notes stay in last_notes as plain blockers
            logger.warning(f"[DECISIONS] Skipping malformed decision note {note_id_of(note)}: {exc}")
    return decisions


def directive_for(decision: Decision, option_id: str, custom_text: Optional[str]) -> str:
    if option_id == OTHER_OPTION:
        return f"{decision.note} -> {custom_text.strip()}"
    option = decision.option(option_id)
    changes = "; ".join(option.what_changes) if option.what_changes else option.title
    return f"{option.title}: {changes}"


class DecisionRegistry:
    """Projection of unresolved decisions plus their stored resolutions."""

    @staticmethod
    def resolved_note_ids(session: Session, job_id: int, version_id: Optional[str]) -> set:
        if not version_id:
            return set()
        rows = session.execute(
            select(DecisionResolution.note_id).where(
                DecisionResolution.job_id == job_id,
                DecisionResolution.version_id == version_id,
            )
        ).scalars().all()
        return set(rows)

    @staticmethod
    def project_pending(
        session: Session,
        job: AutoRunJob,
        version_id: Optional[str],
        notes: Iterable[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """pending_decisions = decision notes without a stored resolution for this version."""
        resolved = DecisionRegistry.resolved_note_ids(session, job.id, version_id)
        return [
            d.model_dump() for d in decisions_from_notes(notes)
            if d.note_id not in resolved
        ]

    @staticmethod
    def has_blockers(pending: Iterable[Dict[str, Any]]) -> bool:
        return any(d.get("severity") == "blocker" for d in pending)

    @staticmethod
    def blocks_auto_advance(
        pending: List[Dict[str, Any]],
        mode: str,
        high_block_modes: Iterable[str],
    ) -> bool:
        if DecisionRegistry.has_blockers(pending):
            return True
        return bool(pending) and mode in set(high_block_modes)

    @staticmethod
    def resolve(
        session: Session,
        job: AutoRunJob,
        decision_id: str,
        option_id: str,
        custom_text: Optional[str] = None,
    ) -> DecisionResolution:
        """Record a resolution and drop the decision from the job's pending set.

        Input is validated before anything is written.
        """
        pending = list(job.pending_decisions or [])
        raw = next((d for d in pending if d.get("note_id") == decision_id), None)
        if raw is None:
            raise InputValidationError(f"Decision {decision_id} not found in pending_decisions", code="UNKNOWN_DECISION")
        decision = Decision.model_validate(raw)

        if option_id == OTHER_OPTION:
            if not custom_text or not custom_text.strip():
                raise InputValidationError("Custom text is required when choosing 'other'", code="MISSING_CUSTOM_TEXT")
        elif decision.option(option_id) is None:
            raise InputValidationError(
                f"Unknown option {option_id} for decision {decision_id}", code="UNKNOWN_OPTION"
            )
        if not job.analysis_version_id:
            raise InputValidationError("Decision has no analyzed version to attach to", code="NO_ANALYSIS")

        resolution = DecisionResolution(
            job_id=job.id,
            version_id=job.analysis_version_id,
            note_id=decision.note_id,
            severity=decision.severity,
            selected_option_id=option_id,
            custom_text=custom_text if option_id == OTHER_OPTION else None,
            directive=directive_for(decision, option_id, custom_text),
        )
        session.add(resolution)
        job.pending_decisions = [d for d in pending if d.get("note_id") != decision_id]
        logger.info(f"[DECISIONS] Job {job.id}: {decision_id} resolved with {option_id}")
        return resolution

    @staticmethod
    def outstanding(session: Session, job_id: int) -> List[DecisionResolution]:
        return list(session.execute(
            select(DecisionResolution)
            .where(DecisionResolution.job_id == job_id, DecisionResolution.consumed_at.is_(None))
            .order_by(DecisionResolution.id.asc())
        ).scalars().all())

    @staticmethod
    def consume(session: Session, job_id: int, step_index: int) -> List[str]:
        """Mark every outstanding directive as consumed by a rewrite step."""
        now = datetime.now(timezone.utc)
        directives = []
        for resolution in DecisionRegistry.outstanding(session, job_id):
            resolution.consumed_at = now
            resolution.consumed_step_index = step_index
            directives.append(resolution.directive)
        return directives
