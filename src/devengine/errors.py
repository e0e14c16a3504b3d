"""Exception types raised by the auto-run orchestrator and its services."""

from __future__ import annotations

from typing import Optional


class AutoRunError(Exception):
    def __init__(self, msg: str, code: Optional[str] = None):
        super().__init__(msg)
        self.code = code


class CollaboratorError(AutoRunError):
    """An external analyzer/generator/document call failed."""

    def __init__(self, msg: str, code: Optional[str] = None, collaborator: Optional[str] = None):
        super().__init__(msg, code=code)
        self.collaborator = collaborator


class InvariantViolation(AutoRunError):
    """Programming error: the job is in a state the orchestrator cannot reason about."""


class InputValidationError(AutoRunError):
    """Caller input rejected before any state was mutated."""


class InvalidStageError(InputValidationError):
    def __init__(self, stage: Optional[str], ladder: Optional[list] = None):
        detail = f" (ladder: {', '.join(ladder)})" if ladder else ""
        super().__init__(f"Invalid stage: {stage}{detail}", code="INVALID_STAGE")
        self.stage = stage


class InvalidTransitionError(AutoRunError):
    """The requested operation is not allowed from the job's current status."""


class JobNotFoundError(AutoRunError):
    def __init__(self, project_id: str):
        super().__init__(f"No auto-run job for project {project_id}", code="JOB_NOT_FOUND")
        self.project_id = project_id


class JobAlreadyActiveError(AutoRunError):
    def __init__(self, project_id: str, job_id: int, status: str):
        super().__init__(
            f"Project {project_id} already has an active auto-run job {job_id} ({status})",
            code="JOB_ALREADY_ACTIVE",
        )
        self.job_id = job_id


class StepInFlightError(AutoRunError):
    def __init__(self, job_id: int):
        super().__init__(f"A step is already in flight for job {job_id}", code="STEP_IN_FLIGHT")
        self.job_id = job_id
