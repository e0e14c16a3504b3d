"""Service for the auto-run job store (one active job per project)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from devengine.db.models import AutoRunJob

ACTIVE_STATUSES = ("queued", "running", "paused", "stopped", "failed")


def is_terminal(job: AutoRunJob) -> bool:
    """Only a completed job never runs again; stopped and failed jobs can be resumed."""
    return job.status == "completed"


class AutoRunJobService:
    """Service for reading and writing auto_run_jobs rows."""

    @staticmethod
    def get_job(session: Session, job_id: int) -> Optional[AutoRunJob]:
        return session.get(AutoRunJob, job_id)

    @staticmethod
    def get_latest_job(session: Session, project_id: str) -> Optional[AutoRunJob]:
        return session.execute(
            select(AutoRunJob)
            .where(AutoRunJob.project_id == project_id)
            .order_by(desc(AutoRunJob.created_at), desc(AutoRunJob.id))
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def get_active_job(session: Session, project_id: str) -> Optional[AutoRunJob]:
        """The project's not-yet-completed job, stopped and failed ones included."""
        return session.execute(
            select(AutoRunJob)
            .where(AutoRunJob.project_id == project_id, AutoRunJob.status.in_(ACTIVE_STATUSES))
            .order_by(desc(AutoRunJob.id))
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def create_job(
        session: Session,
        *,
        project_id: str,
        mode: str,
        fmt: Optional[str],
        ladder: List[str],
        start_document: str,
        target_document: str,
        max_total_steps: int,
        max_stage_loops: int,
    ) -> AutoRunJob:
        job = AutoRunJob(
            project_id=project_id,
            status="running",
            mode=mode,
            format=fmt,
            ladder=list(ladder),
            start_document=start_document,
            current_document=start_document,
            target_document=target_document,
            step_count=0,
            max_total_steps=max_total_steps,
            stage_loop_count=0,
            max_stage_loops=max_stage_loops,
            approved_stages=[],
            pending_decisions=[],
            last_risk_flags=[],
            last_notes=[],
            follow_latest=True,
            started_at=datetime.now(timezone.utc),
        )
        session.add(job)
        session.flush()
        logger.info(f"[AUTORUN] Created job {job.id} for project {project_id} ({mode}: {start_document} -> {target_document})")
        return job

    @staticmethod
    def list_jobs(session: Session, project_id: str, limit: int = 20) -> List[AutoRunJob]:
        return list(session.execute(
            select(AutoRunJob)
            .where(AutoRunJob.project_id == project_id)
            .order_by(desc(AutoRunJob.id))
            .limit(limit)
        ).scalars().all())

    @staticmethod
    def delete_jobs(session: Session, project_id: str) -> int:
        """Remove every job of a project together with its steps and resolutions."""
        jobs = AutoRunJobService.list_jobs(session, project_id, limit=1000)
        for job in jobs:
            session.delete(job)
        if jobs:
            logger.info(f"[AUTORUN] Cleared {len(jobs)} job(s) for project {project_id}")
        return len(jobs)
