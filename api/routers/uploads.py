"""
Direct upload endpoints: push any image URL into a product gallery.

POST /uploads/       → one upload; 200 on success, 400 with the failing step
POST /uploads/batch  → many uploads concurrently; 200 if all succeeded,
                       207 (multi-status) if any failed

No job is involved, so nothing is recorded in the jobs table.
"""

from fastapi import APIRouter, Depends, Response, status

from api.dependencies import get_shop, get_uploader
from api.schemas.delivery import (
    BatchUploadRequestBody,
    BatchUploadResultResponse,
    UploadRequestBody,
    UploadResultResponse,
)
from delivery.staged_upload import StagedUploadClient
from delivery.types import UploadRequest

router = APIRouter(prefix="/uploads", tags=["uploads"])


def _to_request(body: UploadRequestBody) -> UploadRequest:
    return UploadRequest(
        destination_id=body.destination_id,
        source_url=str(body.source_url),
        alt_text=body.alt_text,
        replace_media_id=body.replace_media_id,
        set_primary=body.set_primary,
        position=body.position,
    )


@router.post("/", response_model=UploadResultResponse)
async def upload_image(
    body: UploadRequestBody,
    response: Response,
    shop: str = Depends(get_shop),
    uploader: StagedUploadClient = Depends(get_uploader),
) -> UploadResultResponse:
    result = await uploader.upload(_to_request(body))
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return UploadResultResponse.from_result(result)


@router.post("/batch", response_model=BatchUploadResultResponse)
async def upload_images(
    body: BatchUploadRequestBody,
    response: Response,
    shop: str = Depends(get_shop),
    uploader: StagedUploadClient = Depends(get_uploader),
) -> BatchUploadResultResponse:
    result = await uploader.upload_many([_to_request(u) for u in body.uploads])
    if not result.success:
        response.status_code = status.HTTP_207_MULTI_STATUS
    return BatchUploadResultResponse.from_result(result)
