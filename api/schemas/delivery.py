"""
Pydantic schemas for delivery results and the /uploads endpoints.

POST /uploads/ pushes any image URL into a product's gallery without a job
behind it; POST /jobs/{id}/deliver returns the same UploadResultResponse.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, HttpUrl

from delivery.types import BatchUploadResult, UploadResult


class UploadRequestBody(BaseModel):
    destination_id: str = Field(..., min_length=1, examples=["gid://shopify/Product/123"])
    source_url: HttpUrl
    alt_text: Optional[str] = Field(default=None, max_length=512)
    replace_media_id: Optional[str] = None
    set_primary: bool = False
    position: Optional[int] = Field(default=None, ge=0)


class BatchUploadRequestBody(BaseModel):
    uploads: list[UploadRequestBody] = Field(..., min_length=1, max_length=50)


class UploadResultResponse(BaseModel):
    success: bool
    media_id: Optional[str] = None
    media_url: Optional[str] = None
    error: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadResultResponse":
        return cls(
            success=result.success,
            media_id=result.media_id,
            media_url=result.media_url,
            error=result.error,
            warnings=result.warnings,
            details=result.details,
        )


class BatchUploadResultResponse(BaseModel):
    success: bool
    succeeded: int
    failed: int
    results: list[UploadResultResponse]

    @classmethod
    def from_result(cls, result: BatchUploadResult) -> "BatchUploadResultResponse":
        succeeded = sum(1 for r in result.results if r.success)
        return cls(
            success=result.success,
            succeeded=succeeded,
            failed=len(result.results) - succeeded,
            results=[UploadResultResponse.from_result(r) for r in result.results],
        )
