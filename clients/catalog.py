"""
Client for the destination catalog's GraphQL admin API.

Only the media-related mutations used by the staged upload protocol:

    stagedUploadsCreate   → pre-authorized upload URL + opaque form fields
    productCreateMedia    → attach an uploaded resource to a product
    productDeleteMedia    → detach a resource from a product
    productReorderMedia   → move a resource to a new position

Failure classification:
    transport error / 5xx / 429 / THROTTLED   → CatalogUnavailable (transient)
    userErrors / mediaUserErrors               → CatalogUserError (rejection)
    any other GraphQL or 4xx error             → CatalogError (rejection)
    a body that is not the expected JSON shape → CatalogError (rejection)
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from clients.errors import (
    CatalogError,
    CatalogUnavailable,
    CatalogUserError,
    is_retryable_status,
)
from config.settings import settings

logger = logging.getLogger(__name__)


STAGED_UPLOADS_CREATE = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters { name value }
    }
    userErrors { field message }
  }
}
"""

PRODUCT_CREATE_MEDIA = """
mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {
  productCreateMedia(productId: $productId, media: $media) {
    media {
      ... on MediaImage {
        id
        alt
        image { url }
      }
    }
    mediaUserErrors { field message }
  }
}
"""

PRODUCT_DELETE_MEDIA = """
mutation productDeleteMedia($productId: ID!, $mediaIds: [ID!]!) {
  productDeleteMedia(productId: $productId, mediaIds: $mediaIds) {
    deletedMediaIds
    mediaUserErrors { field message }
  }
}
"""

PRODUCT_REORDER_MEDIA = """
mutation productReorderMedia($id: ID!, $moves: [MoveInput!]!) {
  productReorderMedia(id: $id, moves: $moves) {
    job { id }
    userErrors { field message }
  }
}
"""


@dataclass
class StagedTarget:
    """Where and how to POST the bytes. parameters are replayed verbatim, in order; names are unique."""
    url: str
    resource_url: str
    parameters: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class AttachedMedia:
    media_id: str
    url: Optional[str] = None


class CatalogClient:

    def __init__(
        self,
        http: httpx.AsyncClient,
        graphql_url: Optional[str] = None,
        access_token: Optional[str] = None,
        token_header: Optional[str] = None,
    ):
        self._http = http
        self._graphql_url = graphql_url or settings.CATALOG_GRAPHQL_URL
        self._access_token = (
            access_token if access_token is not None else settings.CATALOG_ACCESS_TOKEN
        )
        self._token_header = token_header or settings.CATALOG_TOKEN_HEADER

    async def create_upload_target(
        self, filename: str, mime_type: str, file_size: int
    ) -> StagedTarget:
        data = await self._execute(
            "stagedUploadsCreate",
            STAGED_UPLOADS_CREATE,
            {
                "input": [{
                    "resource": "PRODUCT_IMAGE",
                    "filename": filename,
                    "mimeType": mime_type,
                    "fileSize": str(file_size),
                    "httpMethod": "POST",
                }]
            },
        )
        result = data["stagedUploadsCreate"]
        self._raise_user_errors("stagedUploadsCreate", result.get("userErrors"))

        targets = result.get("stagedTargets") or []
        if not targets:
            raise CatalogError("stagedUploadsCreate returned no upload target")
        try:
            target = targets[0]
            staged = StagedTarget(
                url=target["url"],
                resource_url=target["resourceUrl"],
                parameters=[(p["name"], p["value"]) for p in target.get("parameters") or []],
            )
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise CatalogError(
                f"stagedUploadsCreate returned a malformed upload target: {e!r}", details=targets
            ) from None

        names = [name for name, _ in staged.parameters]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            # the transfer form is keyed by field name
            raise CatalogError(
                f"stagedUploadsCreate returned repeated form fields: {', '.join(duplicates)}",
                details=targets,
            )
        return staged

    async def attach_media(
        self, product_id: str, resource_url: str, alt_text: Optional[str] = None
    ) -> AttachedMedia:
        data = await self._execute(
            "productCreateMedia",
            PRODUCT_CREATE_MEDIA,
            {
                "productId": product_id,
                "media": [{
                    "originalSource": resource_url,
                    "alt": alt_text or "",
                    "mediaContentType": "IMAGE",
                }],
            },
        )
        result = data["productCreateMedia"]
        self._raise_user_errors("productCreateMedia", result.get("mediaUserErrors"))

        media = [m for m in result.get("media") or [] if isinstance(m, dict) and m.get("id")]
        if not media:
            raise CatalogError("productCreateMedia returned no media")
        image = media[0].get("image")
        url = image.get("url") if isinstance(image, dict) else None
        return AttachedMedia(media_id=media[0]["id"], url=url)

    async def detach_media(self, product_id: str, media_ids: list[str]) -> list[str]:
        data = await self._execute(
            "productDeleteMedia",
            PRODUCT_DELETE_MEDIA,
            {"productId": product_id, "mediaIds": media_ids},
        )
        result = data["productDeleteMedia"]
        self._raise_user_errors("productDeleteMedia", result.get("mediaUserErrors"))
        return result.get("deletedMediaIds") or []

    async def reorder_media(self, product_id: str, media_id: str, position: int) -> None:
        data = await self._execute(
            "productReorderMedia",
            PRODUCT_REORDER_MEDIA,
            {"id": product_id, "moves": [{"id": media_id, "newPosition": str(position)}]},
        )
        self._raise_user_errors(
            "productReorderMedia", data["productReorderMedia"].get("userErrors")
        )

    # ── Transport ───────────────────────────────────────────────

    async def _execute(self, operation: str, query: str, variables: dict) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers[self._token_header] = self._access_token

        try:
            response = await self._http.post(
                self._graphql_url,
                json={"query": query, "variables": variables},
                headers=headers,
            )
        except httpx.TransportError as e:
            raise CatalogUnavailable(f"{operation}: catalog unreachable: {e}") from e

        if is_retryable_status(response.status_code):
            raise CatalogUnavailable(
                f"{operation}: catalog returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.is_error:
            raise CatalogError(
                f"{operation}: catalog returned {response.status_code}",
                status_code=response.status_code,
                details=response.text,
            )

        try:
            payload = response.json()
        except ValueError:
            raise CatalogError(
                f"{operation}: catalog returned a non-JSON body",
                status_code=response.status_code,
                details=response.text[:500],
            ) from None
        if not isinstance(payload, dict):
            raise CatalogError(f"{operation}: unexpected response from catalog", details=payload)

        errors = payload.get("errors")
        if errors:
            if not isinstance(errors, list):
                errors = [errors]
            errors = [e if isinstance(e, dict) else {"message": str(e)} for e in errors]
            codes = {(e.get("extensions") or {}).get("code") for e in errors}
            message = f"{operation}: {errors[0].get('message', 'GraphQL error')}"
            if "THROTTLED" in codes:
                raise CatalogUnavailable(message, details=errors)
            raise CatalogError(message, details=errors)

        data = payload.get("data") or {}
        if not isinstance(data, dict) or not isinstance(data.get(operation), dict):
            raise CatalogError(f"{operation}: empty response from catalog", details=payload)
        return data

    @staticmethod
    def _raise_user_errors(operation: str, user_errors: Optional[list]) -> None:
        if user_errors:
            raise CatalogUserError(operation, user_errors)
