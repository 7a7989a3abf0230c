"""
Client for the external AI job API.

Two calls matter to this service:

    POST /api/jobs/dispatch   → submit work, get back the external job id
    GET  /api/jobs/{id}       → current status / progress / output of that job

Responses are wrapped as {"success": bool, "data": {...}}. The API has used
two status vocabularies over time; both are normalised to ExternalJobStatus.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from clients.errors import (
    JobApiRejected,
    JobApiUnavailable,
    is_retryable_status,
)
from config.settings import settings
from models.enums import ExternalJobStatus, JobPriority

logger = logging.getLogger(__name__)

# Older deployments report the local-style vocabulary
_STATUS_ALIASES = {
    "pending": ExternalJobStatus.QUEUED,
    "processing": ExternalJobStatus.RUNNING,
    "completed": ExternalJobStatus.SUCCEEDED,
    "failed": ExternalJobStatus.ERROR,
}


def parse_external_status(raw: Any) -> ExternalJobStatus:
    value = str(raw or "").strip().lower()
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return ExternalJobStatus(value)
    except ValueError:
        raise JobApiRejected(f"Unknown job status from job API: {raw!r}")


def _optional_int(data: dict, key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise JobApiRejected(
            f"Job API returned a non-numeric {key}: {value!r}", details=data
        ) from None


@dataclass
class ExternalJobState:
    """Snapshot of one external job, as reported by the job API."""
    external_job_id: str
    status: ExternalJobStatus
    progress: Optional[int] = None
    output_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    credits_used: Optional[int] = None
    processing_time_ms: Optional[int] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_payload(cls, external_job_id: str, data: dict) -> "ExternalJobState":
        return cls(
            external_job_id=str(data.get("id") or external_job_id),
            status=parse_external_status(data.get("status", "")),
            progress=_optional_int(data, "progress"),
            output_url=data.get("output_image_url") or data.get("output_url"),
            thumbnail_url=data.get("thumbnail_url"),
            error_message=data.get("error_message") or data.get("error"),
            credits_used=_optional_int(data, "credits_used"),
            processing_time_ms=_optional_int(data, "processing_time_ms"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


class JobApiClient:

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        self._http = http
        self._base_url = (base_url or settings.JOB_API_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.JOB_API_KEY

    async def submit(
        self,
        tool_id: str,
        input_url: str,
        parameters: Optional[dict[str, Any]] = None,
        priority: JobPriority = JobPriority.NORMAL,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Submit one unit of work. Returns the externally-assigned job id."""
        body = {
            "tool_id": tool_id,
            "input_image_url": input_url,
            "parameters": parameters or {},
            "priority": JobPriority(priority).value,
            "metadata": metadata or {},
        }
        data = await self._request("POST", "/api/jobs/dispatch", json=body)
        external_id = data.get("id")
        if not external_id:
            raise JobApiRejected("Job API accepted dispatch but returned no job id", details=data)
        logger.info(f"Dispatched {tool_id} to job API as {external_id}")
        return str(external_id)

    async def get_status(self, external_job_id: str) -> ExternalJobState:
        data = await self._request("GET", f"/api/jobs/{external_job_id}")
        return ExternalJobState.from_payload(external_job_id, data)

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            response = await self._http.request(
                method, f"{self._base_url}{path}", headers=headers, **kwargs
            )
        except httpx.TransportError as e:
            raise JobApiUnavailable(f"Job API unreachable: {e}") from e

        if is_retryable_status(response.status_code):
            raise JobApiUnavailable(
                f"Job API returned {response.status_code} for {method} {path}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"data": payload}

        if response.is_error or not payload.get("success", False):
            message = (
                payload.get("message")
                or payload.get("error")
                or f"Job API returned {response.status_code} for {method} {path}"
            )
            raise JobApiRejected(
                str(message), status_code=response.status_code, details=payload
            )

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise JobApiRejected(
                f"Job API returned an unexpected body for {method} {path}",
                status_code=response.status_code,
                details=payload,
            )
        return data
