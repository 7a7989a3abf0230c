"""
Staged upload client — delivers an image into the catalog.

The catalog does not accept image bytes directly. Delivery is three ordered,
dependent steps, each wrapped in its own RetryPolicy run:

    1. create upload target   catalog → {url, resource_url, form parameters}
    2. transfer bytes         multipart POST of parameters + file to url
    3. attach                 catalog registers resource_url on the product → media id

and then, only if asked and only after step 3 returned a media id:

    replace       detach the old media (never before the new one is attached,
                  so the product is never left without the image)
    set primary   reorder so the new media comes first

Replace and reorder failures do not undo the attach. They are returned as
warnings on an otherwise successful UploadResult.

upload() never raises for a remote failure; it returns UploadResult(success=False).
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from clients.catalog import CatalogClient, StagedTarget
from clients.errors import ClientError, TransferError, TransientError, is_retryable_status
from clients.retry import RetryPolicy
from delivery.types import BatchUploadResult, UploadProgress, UploadRequest, UploadResult
from delivery.validator import ImageValidator, extension_for
from models.enums import UploadStep

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]


class StagedUploadClient:

    def __init__(
        self,
        http: httpx.AsyncClient,
        catalog: CatalogClient,
        validator: Optional[ImageValidator] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._http = http
        self._catalog = catalog
        self._validator = validator or ImageValidator(http)
        self._retry = retry_policy or RetryPolicy.from_settings()

    async def upload(
        self,
        request: UploadRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        def report(step: UploadStep, percent: int, message: str) -> None:
            if on_progress is not None:
                on_progress(UploadProgress(step=step, percent=percent, message=message))

        step = UploadStep.VALIDATING
        try:
            # ── Validate ────────────────────────────────────────
            report(step, 10, "Validating image...")
            validation = await self._validator.validate(request.source_url)
            if not validation.valid:
                return self._failure(step, validation.reason or "Invalid image")

            content = await self._retry.run(
                lambda: self._download(request.source_url), "download source image"
            )
            checked = self._validator.check_content(content)
            if not checked.valid:
                return self._failure(step, checked.reason or "Invalid image")
            mime_type = checked.mime_type
            filename = f"edited-image-{int(time.time() * 1000)}.{extension_for(mime_type)}"

            # ── Step 1: create upload target ────────────────────
            step = UploadStep.STAGING
            report(step, 30, "Creating staged upload...")
            target = await self._retry.run(
                lambda: self._catalog.create_upload_target(filename, mime_type, len(content)),
                "create upload target",
            )

            # ── Step 2: transfer bytes ──────────────────────────
            step = UploadStep.TRANSFERRING
            report(step, 50, "Uploading image...")
            await self._retry.run(
                lambda: self._transfer(target, content, filename, mime_type),
                "transfer bytes",
            )

            # ── Step 3: attach to product ───────────────────────
            step = UploadStep.ATTACHING
            report(step, 70, "Attaching to product...")
            media = await self._retry.run(
                lambda: self._catalog.attach_media(
                    request.destination_id, target.resource_url, request.alt_text
                ),
                "attach media",
            )
        except ClientError as e:
            logger.warning(f"Upload to {request.destination_id} failed at {step.value}: {e}")
            return self._failure(
                step, e.message, status_code=e.status_code, errors=e.details
            )
        except httpx.HTTPError as e:
            logger.warning(f"Upload to {request.destination_id} failed at {step.value}: {e}")
            return self._failure(step, str(e))

        # ── Optional follow-ups, strictly after attach ──────────
        warnings: list[str] = []

        if request.replace_media_id:
            try:
                await self._retry.run(
                    lambda: self._catalog.detach_media(
                        request.destination_id, [request.replace_media_id]
                    ),
                    "detach replaced media",
                )
            except (ClientError, httpx.HTTPError) as e:
                logger.warning(f"Could not remove replaced media {request.replace_media_id}: {e}")
                warnings.append(f"Failed to remove replaced media {request.replace_media_id}: {e}")

        position = 0 if request.set_primary else request.position
        if position is not None:
            report(UploadStep.ATTACHING, 85, "Setting image position...")
            try:
                await self._retry.run(
                    lambda: self._catalog.reorder_media(
                        request.destination_id, media.media_id, position
                    ),
                    "reorder media",
                )
            except (ClientError, httpx.HTTPError) as e:
                logger.warning(f"Could not move media {media.media_id} to position {position}: {e}")
                warnings.append(f"Failed to move media to position {position}: {e}")

        report(UploadStep.COMPLETE, 100, "Upload complete!")
        logger.info(f"Delivered {request.source_url} to {request.destination_id} as {media.media_id}")
        return UploadResult(
            success=True,
            media_id=media.media_id,
            media_url=media.url,
            details={"warnings": warnings} if warnings else {},
        )

    async def upload_many(
        self,
        requests: list[UploadRequest],
        on_progress: Optional[Callable[[int, UploadProgress], None]] = None,
    ) -> BatchUploadResult:
        """Run every request independently and concurrently. One failure never aborts the rest."""

        def progress_for(index: int) -> Optional[ProgressCallback]:
            if on_progress is None:
                return None
            return lambda progress: on_progress(index, progress)

        outcomes = await asyncio.gather(
            *(self.upload(req, progress_for(i)) for i, req in enumerate(requests)),
            return_exceptions=True,
        )

        results: list[UploadResult] = []
        for req, outcome in zip(requests, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Upload to {req.destination_id} raised unexpectedly: {outcome!r}",
                    exc_info=outcome,
                )
                outcome = UploadResult(success=False, error=str(outcome) or type(outcome).__name__)
            results.append(outcome)

        return BatchUploadResult(success=all(r.success for r in results), results=results)

    # ── Network helpers ─────────────────────────────────────────

    async def _download(self, url: str) -> bytes:
        try:
            response = await self._http.get(url, follow_redirects=True)
        except httpx.TransportError as e:
            raise TransientError(f"Failed to download image: {e}") from e
        if response.is_error:
            error_cls = TransientError if is_retryable_status(response.status_code) else ClientError
            raise error_cls(
                f"Failed to download image: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.content

    async def _transfer(
        self, target: StagedTarget, content: bytes, filename: str, mime_type: str
    ) -> None:
        # Target parameters first, in the order the catalog gave them, then the file.
        # Field names are unique; CatalogClient rejects targets that repeat one.
        form = dict(target.parameters)
        try:
            response = await self._http.post(
                target.url,
                data=form,
                files={"file": (filename, content, mime_type)},
            )
        except httpx.TransportError as e:
            raise TransferError(f"Failed to upload to staged URL: {e}") from e
        if not response.is_success:
            raise TransferError(
                f"Failed to upload to staged URL: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

    @staticmethod
    def _failure(step: UploadStep, error: str, **extra) -> UploadResult:
        details = {"step": step.value}
        details.update({k: v for k, v in extra.items() if v is not None})
        return UploadResult(success=False, error=error, details=details)
