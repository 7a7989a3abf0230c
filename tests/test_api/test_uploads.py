"""API integration tests for /uploads endpoints."""

import pytest

PRODUCT = "gid://shopify/Product/1"


@pytest.mark.asyncio
async def test_single_upload(client, source_image):
    response = await client.post("/uploads/", json={
        "destination_id": PRODUCT,
        "source_url": source_image,
        "alt_text": "Front",
    })

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["media_id"] == "gid://shopify/MediaImage/1"
    assert data["warnings"] == []


@pytest.mark.asyncio
async def test_single_upload_failure(client, remote):
    url = remote.add_image("bad.gif", b"GIF89a", content_type="image/gif")

    response = await client.post("/uploads/", json={"destination_id": PRODUCT, "source_url": url})

    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert data["details"]["step"] == "validating"


@pytest.mark.asyncio
async def test_batch_upload_all_succeed(client, source_image):
    response = await client.post("/uploads/batch", json={"uploads": [
        {"destination_id": PRODUCT, "source_url": source_image},
        {"destination_id": "gid://shopify/Product/2", "source_url": source_image},
    ]})

    assert response.status_code == 200
    assert response.json()["succeeded"] == 2


@pytest.mark.asyncio
async def test_batch_upload_partial_is_multi_status(client, remote, source_image):
    bad = remote.add_image("bad.gif", b"GIF89a", content_type="image/gif")

    response = await client.post("/uploads/batch", json={"uploads": [
        {"destination_id": PRODUCT, "source_url": source_image},
        {"destination_id": PRODUCT, "source_url": bad},
    ]})

    assert response.status_code == 207
    data = response.json()
    assert data["success"] is False
    assert data["succeeded"] == 1
    assert data["failed"] == 1
    assert [r["success"] for r in data["results"]] == [True, False]
