"""Narrative drift detection and resolution."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from devengine.collaborators.base import DocumentVersion
from devengine.config import DriftConfig
from devengine.db.models import DriftBaseline, DriftEvent
from devengine.errors import InputValidationError

CORE_FIELDS = ("protagonist", "stakes", "tone", "world_rules", "comparables")
RESOLUTION_TYPES = ("accept_drift", "intentional_pivot", "reseed")

SimilarityFn = Callable[[str, str], int]

_TOKEN_RE = re.compile(r"[a-z0-9']+")
_LABEL_RE = re.compile(r"^\s*(?:[#*\-]+\s*)?([A-Za-z][A-Za-z _]+?)\s*:\s*(.+?)\s*$")


def token_similarity(a: str, b: str) -> int:
    """Jaccard overlap of lowercase word tokens, 0-100. Symmetric and deterministic."""
    left = set(_TOKEN_RE.findall((a or "").lower()))
    right = set(_TOKEN_RE.findall((b or "").lower()))
    if not left and not right:
        return 100
    if not left or not right:
        return 0
    return round(100 * len(left & right) / len(left | right))


def extract_core_fields(version: DocumentVersion) -> Dict[str, str]:
    """Structured core fields win; otherwise parse `Label: value` lines from the text."""
    values: Dict[str, str] = {}
    for name in CORE_FIELDS:
        value = (version.core_fields or {}).get(name)
        if value:
            values[name] = value
    if len(values) == len(CORE_FIELDS):
        return values

    for line in (version.text or "").splitlines():
        match = _LABEL_RE.match(line)
        if not match:
            continue
        key = match.group(1).strip().lower().replace(" ", "_")
        if key == "world":
            key = "world_rules"
        if key in CORE_FIELDS and key not in values:
            values[key] = match.group(2)
    return values


def classify(similarities: Mapping[str, int], config: DriftConfig) -> str:
    below_safe = [f for f, score in similarities.items() if score < config.safe_threshold]
    if not below_safe:
        return "none"
    if any(similarities[f] < config.pivot_threshold for f in below_safe):
        return "major"
    if len(below_safe) >= config.major_quorum:
        return "major"
    return "minor"


class DriftDetector:
    """Compares a version's core narrative fields with what it inherited."""

    def __init__(self, config: Optional[DriftConfig] = None, similarity: Optional[SimilarityFn] = None):
        self.config = config or DriftConfig()
        self.similarity = similarity or token_similarity

    def compare(self, inherited: Mapping[str, str], current: Mapping[str, str]) -> tuple:
        items: List[Dict[str, object]] = []
        scores: Dict[str, int] = {}
        for name in CORE_FIELDS:
            if not inherited.get(name):
                # Nothing inherited for this field, nothing to drift from
                continue
            score = int(self.similarity(inherited[name], current.get(name, "")))
            scores[name] = score
            items.append({
                "field": name,
                "similarity": score,
                "inherited": inherited[name],
                "current": current.get(name, ""),
            })
        return classify(scores, self.config), items


class DriftService:
    """Persists drift events and applies their resolutions."""

    def __init__(self, detector: Optional[DriftDetector] = None):
        self.detector = detector or DriftDetector()

    @staticmethod
    def get_baseline(session: Session, project_id: str) -> Optional[DriftBaseline]:
        return session.execute(
            select(DriftBaseline).where(DriftBaseline.project_id == project_id)
        ).scalar_one_or_none()

    @staticmethod
    def event_for_version(session: Session, version_id: str) -> Optional[DriftEvent]:
        return session.execute(
            select(DriftEvent).where(DriftEvent.document_version_id == version_id)
        ).scalar_one_or_none()

    @staticmethod
    def list_events(session: Session, project_id: str, unresolved_only: bool = False, limit: int = 50) -> List[DriftEvent]:
        query = select(DriftEvent).where(DriftEvent.project_id == project_id)
        if unresolved_only:
            query = query.where(DriftEvent.resolved.is_(False))
        return list(session.execute(query.order_by(DriftEvent.id.desc()).limit(limit)).scalars().all())

    @staticmethod
    def get_event(session: Session, event_id: int) -> Optional[DriftEvent]:
        return session.get(DriftEvent, event_id)

    def inherited_values(
        self,
        session: Session,
        project_id: str,
        ancestor: DocumentVersion,
    ) -> Dict[str, str]:
        values = extract_core_fields(ancestor)
        baseline = self.get_baseline(session, project_id)
        if baseline:
            values.update({k: v for k, v in (baseline.core_values or {}).items() if v})
        return values

    def record(
        self,
        session: Session,
        project_id: str,
        version: DocumentVersion,
        ancestor: DocumentVersion,
    ) -> DriftEvent:
        """Emit the single drift event for `version`; an existing one is returned unchanged."""
        existing = self.event_for_version(session, version.version_id)
        if existing:
            return existing

        inherited = self.inherited_values(session, project_id, ancestor)
        current = extract_core_fields(version)
        level, items = self.detector.compare(inherited, current)
        event = DriftEvent(
            project_id=project_id,
            document_id=version.document_id,
            document_version_id=version.version_id,
            doc_type=version.doc_type,
            ancestor_version_id=ancestor.version_id,
            drift_level=level,
            drift_items=items,
            inherited_values=inherited,
            current_values=current,
        )
        session.add(event)
        session.flush()
        if level != "none":
            drifted = ", ".join(self.drifted_fields(event))
            logger.warning(f"[DRIFT] {version.doc_type} {version.version_id}: {level} drift ({drifted})")
        return event

    def drifted_fields(self, event: DriftEvent) -> List[str]:
        safe = self.detector.config.safe_threshold
        return [i["field"] for i in event.drift_items or [] if i.get("similarity", 100) < safe]

    @staticmethod
    def acknowledge(session: Session, event: DriftEvent) -> DriftEvent:
        event.acknowledged = True
        return event

    def resolve(self, session: Session, event: DriftEvent, resolution_type: str) -> DriftEvent:
        if resolution_type not in RESOLUTION_TYPES:
            raise InputValidationError(f"Unknown drift resolution: {resolution_type}", code="INVALID_RESOLUTION")
        if event.resolved:
            raise InputValidationError(f"Drift event {event.id} is already resolved", code="ALREADY_RESOLVED")

        event.resolved = True
        event.acknowledged = True
        event.resolution_type = resolution_type
        event.resolved_at = datetime.now(timezone.utc)

        if resolution_type == "accept_drift":
            baseline = self.get_baseline(session, event.project_id)
            values = dict(event.current_values or {})
            if baseline is None:
                session.add(DriftBaseline(
                    project_id=event.project_id,
                    core_values=values,
                    source_version_id=event.document_version_id,
                ))
            else:
                baseline.core_values = {**(baseline.core_values or {}), **values}
                baseline.source_version_id = event.document_version_id
        elif resolution_type == "intentional_pivot":
            event.downstream_review_required = True
        else:
            event.regeneration_scheduled = True

        logger.info(f"[DRIFT] Event {event.id} resolved: {resolution_type}")
        return event

    @staticmethod
    def complete_regeneration(event: DriftEvent, output_ref: Dict[str, object]) -> None:
        event.regeneration_scheduled = False
        event.regeneration_ref = output_ref

    @staticmethod
    def blocks_promotion(event: Optional[DriftEvent]) -> bool:
        return event is not None and event.drift_level == "major" and not event.resolved
