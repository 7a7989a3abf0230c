"""
Domain errors raised by the job store, synchronizer and orchestrator.

Each carries the HTTP status the API layer answers with, so routers don't
need a try/except per endpoint (see the handler registered in api/main.py).
"""

from typing import Any, Optional


class JobError(Exception):
    status_code = 400

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class JobNotFound(JobError):
    status_code = 404


class BatchNotFound(JobError):
    status_code = 404


class DuplicateExternalJobId(JobError):
    """The external job id is already tracked. Treat as 'already tracked', not as a dispatch failure."""
    status_code = 409

    def __init__(self, external_job_id: str, existing_job_id: Optional[str] = None):
        super().__init__(
            f"External job {external_job_id} is already tracked",
            details={"external_job_id": external_job_id, "job_id": existing_job_id},
        )
        self.external_job_id = external_job_id
        self.existing_job_id = existing_job_id


class InvalidTransition(JobError):
    status_code = 409


class ConcurrentUpdate(JobError):
    """Another session changed the job between our read and our write. Nothing was written."""
    status_code = 409


class NotFailed(JobError):
    status_code = 409


class NotCompleted(JobError):
    status_code = 409


class AlreadyDelivered(JobError):
    status_code = 409


class NotCancellable(JobError):
    status_code = 409


class DeliveryInProgress(JobError):
    status_code = 409


class MissingDestination(JobError):
    status_code = 422


class MissingOutput(JobError):
    status_code = 422


class ValidationFailed(JobError):
    """The input image failed pre-flight validation. No job was created."""
    status_code = 422


class DispatchFailed(JobError):
    """The job API refused or could not take the submission. No job was created/changed."""
    status_code = 502
