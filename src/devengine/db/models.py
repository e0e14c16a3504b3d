"""ORM models for the auto-run orchestrator."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    JSON,
    func
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from devengine.db.base import Base

# Utility for cross-dialect JSON support (JSONB on Postgres, JSON on SQLite)
JSON_VARIANT = JSON().with_variant(JSONB, "postgresql")


class AutoRunJob(Base):
    """One auto-run job per project: the orchestrator's state."""

    __tablename__ = "auto_run_jobs"

    __table_args__ = (
        Index("idx_auto_run_jobs_project_created", "project_id", "created_at"),
        Index("idx_auto_run_jobs_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="queued", nullable=False)
    mode: Mapped[str] = mapped_column(String(20), default="balanced", nullable=False)
    format: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ladder: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)

    start_document: Mapped[str] = mapped_column(String(50), nullable=False)
    current_document: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    target_document: Mapped[str] = mapped_column(String(50), nullable=False)

    step_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_loop_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_stage_loops: Mapped[int] = mapped_column(Integer, nullable=False)

    # Approval gate
    awaiting_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approval_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    pending_doc_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pending_version_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pending_doc_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    pending_next_doc_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    approved_stages: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)

    # Decision registry projection
    pending_decisions: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)

    # Resume source policy
    follow_latest: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    resume_document_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resume_version_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Latest review
    analysis_version_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_ci: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_gp: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_gap: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_readiness: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_risk_flags: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)
    last_recommendation: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_notes: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)
    last_protect: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)

    # Scheduling flags consumed by the next run-next
    force_promote_once: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revise_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    regenerate_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stale_ack_version_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Diagnostics
    stop_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pause_reason: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    steps: Mapped[List["AutoRunStep"]] = relationship(
        back_populates="job", cascade="all, delete-orphan", order_by="AutoRunStep.step_index"
    )
    resolutions: Mapped[List["DecisionResolution"]] = relationship(
        back_populates="job", cascade="all, delete-orphan"
    )


class AutoRunStep(Base):
    """Append-only audit log of every orchestrator action."""

    __tablename__ = "auto_run_steps"

    __table_args__ = (
        UniqueConstraint("job_id", "step_index", name="uq_auto_run_steps_job_index"),
        Index("idx_auto_run_steps_action_created", "action", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("auto_run_jobs.id"), nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    action: Mapped[str] = mapped_column(String(30), nullable=False)
    document: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False)

    ci: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gp: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gap: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    readiness: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    risk_flags: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)

    output_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    output_ref: Mapped[Optional[dict]] = mapped_column(JSON_VARIANT, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    job: Mapped["AutoRunJob"] = relationship(back_populates="steps")


class DecisionResolution(Base):
    """A human resolution of a pending decision, consumed by the next rewrite."""

    __tablename__ = "auto_run_decision_resolutions"

    __table_args__ = (
        UniqueConstraint("job_id", "version_id", "note_id", name="uq_decision_resolution_note"),
        Index("idx_decision_resolutions_job_consumed", "job_id", "consumed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("auto_run_jobs.id"), nullable=False)
    version_id: Mapped[str] = mapped_column(String(100), nullable=False)
    note_id: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)

    selected_option_id: Mapped[str] = mapped_column(String(100), nullable=False)
    custom_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    directive: Mapped[str] = mapped_column(Text, nullable=False)

    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    consumed_step_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    job: Mapped["AutoRunJob"] = relationship(back_populates="resolutions")


class DriftEvent(Base):
    """Core-narrative comparison of one version against its upstream ancestor."""

    __tablename__ = "drift_events"

    __table_args__ = (
        Index("idx_drift_events_project_created", "project_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), nullable=False)
    document_id: Mapped[str] = mapped_column(String(100), nullable=False)
    document_version_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    doc_type: Mapped[str] = mapped_column(String(50), nullable=False)
    ancestor_version_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    drift_level: Mapped[str] = mapped_column(String(10), nullable=False)
    drift_items: Mapped[list] = mapped_column(JSON_VARIANT, default=list, nullable=False)
    inherited_values: Mapped[dict] = mapped_column(JSON_VARIANT, default=dict, nullable=False)
    current_values: Mapped[dict] = mapped_column(JSON_VARIANT, default=dict, nullable=False)

    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolution_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    regeneration_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    regeneration_ref: Mapped[Optional[dict]] = mapped_column(JSON_VARIANT, nullable=True)
    downstream_review_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class DriftBaseline(Base):
    """Accepted core narrative values for a project."""

    __tablename__ = "drift_baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    core_values: Mapped[dict] = mapped_column(JSON_VARIANT, default=dict, nullable=False)
    source_version_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
