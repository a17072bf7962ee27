"""Integration tests for the HTTP API.

Tests cover:
- POST /api/generate/{job_type} - key resolution, output shapes, error mapping
- POST /api/analyze - light operation on the platform key
- POST /api/describe and /api/suggest/* - structured text suggestions
- POST /api/user/api-key - encrypted key storage
- Bearer token authentication and /health
"""

import base64

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from visioncore.app import create_app
from visioncore.services.generation.service import GenerationService
from visioncore.services.generation.video_poller import VideoPoller
from visioncore.services.identity import issue_token
from visioncore.services.key_resolver import KeyResolver

IMAGE_DATA_URL = "data:image/jpeg;base64," + base64.b64encode(b"product-photo").decode()


@pytest.fixture
def auth_headers(test_settings):
    token = issue_token("user-1", test_settings.identity_token_secret)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(test_settings, session_factory, uow_factory, vault, fake_client, no_sleep):
    """App with services wired directly into app.state (lifespan is not run)."""
    app = create_app(test_settings)
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.vault = vault
    app.state.key_resolver = KeyResolver(test_settings, uow_factory, vault)
    app.state.generation_service = GenerationService(
        test_settings,
        client_factory=lambda key: fake_client,
        poller=VideoPoller(poll_interval=1, max_wait=30, sleep=no_sleep),
        sleep=no_sleep,
    )
    return app


@pytest_asyncio.fixture
async def test_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def save_key(test_client, auth_headers, api_key="AIza-user-key"):
    return await test_client.post(
        "/api/user/api-key", json={"apiKey": api_key}, headers=auth_headers
    )


@pytest.mark.asyncio
async def test_generate_requires_bearer_token(test_client):
    response = await test_client.post("/api/generate/studio", json={"payload": {}})

    assert response.status_code == 401
    assert response.json() == {"error": "UNAUTHORIZED"}


@pytest.mark.asyncio
async def test_generate_rejects_invalid_token(test_client):
    token = issue_token("user-1", "some-other-secret")

    response = await test_client.post(
        "/api/generate/studio",
        json={"payload": {}},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 403
    assert response.json() == {"error": "INVALID_TOKEN"}


@pytest.mark.asyncio
async def test_heavy_generation_without_user_key_returns_key_missing(
    test_client, auth_headers, fake_client
):
    response = await test_client.post(
        "/api/generate/studio",
        json={
            "payload": {"angle": "Top-Down"},
            "imageBase64": IMAGE_DATA_URL,
            "model": "gemini-2.5-flash-image",
        },
        headers=auth_headers,
    )

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "KEY_MISSING"
    assert "Heavy Production" in body["message"]
    assert fake_client.content_calls == []


@pytest.mark.asyncio
async def test_heavy_generation_with_saved_key_returns_image(
    test_client, auth_headers, fake_client
):
    assert (await save_key(test_client, auth_headers)).status_code == 200
    fake_client.content_image = b"png-bytes"

    response = await test_client.post(
        "/api/generate/studio",
        json={
            "payload": {"angle": "Top-Down", "bgColor": "White"},
            "imageBase64": IMAGE_DATA_URL,
            "model": "gemini-2.5-flash-image",
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {
        "imageUrl": "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()
    }
    call = fake_client.content_calls[0]
    assert "Top-Down" in call["prompt"]
    assert call["sources"][0].data == b"product-photo"


@pytest.mark.asyncio
async def test_reference_image_follows_primary_image(test_client, auth_headers, fake_client):
    await save_key(test_client, auth_headers)
    fake_client.content_image = b"png-bytes"
    reference = "data:image/png;base64," + base64.b64encode(b"layout-reference").decode()

    response = await test_client.post(
        "/api/generate/ad",
        json={
            "payload": {"adType": "REVIEW", "referenceImage": reference},
            "imageBase64": IMAGE_DATA_URL,
            "model": "gemini-2.5-flash-image",
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    sources = fake_client.content_calls[0]["sources"]
    assert [s.data for s in sources] == [b"product-photo", b"layout-reference"]
    assert sources[1].mime_type == "image/png"


@pytest.mark.asyncio
async def test_light_generation_uses_platform_key_and_returns_text(
    test_client, auth_headers, fake_client
):
    response = await test_client.post(
        "/api/generate/listing",
        json={"payload": {"description": "ceramic mug"}, "model": "gemini-3-flash-preview"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"text": "analysis result"}


@pytest.mark.asyncio
async def test_video_generation_returns_signed_url(test_client, auth_headers, fake_client):
    await save_key(test_client, auth_headers, api_key="video-key")

    response = await test_client.post(
        "/api/generate/video",
        json={
            "payload": {"style": "Clean Studio", "angles": ["Front", "Orbit"]},
            "imageBase64": IMAGE_DATA_URL,
            "model": "veo-3.1-fast-generate-preview",
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"videoUrl": f"{fake_client.video_uri}&key=video-key"}


@pytest.mark.asyncio
async def test_unknown_kind_returns_bad_request(test_client, auth_headers):
    response = await test_client.post(
        "/api/generate/hologram",
        json={"payload": {}, "model": "gemini-3-flash-preview"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "GENERATION_FAILED"


@pytest.mark.asyncio
async def test_invalid_image_returns_bad_request(test_client, auth_headers):
    response = await test_client.post(
        "/api/generate/studio",
        json={"payload": {}, "imageBase64": "data:image/jpeg;base64,%%%", "model": "x-image"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "GENERATION_FAILED"


@pytest.mark.asyncio
async def test_remote_failure_returns_generation_failed(test_client, auth_headers, fake_client):
    await save_key(test_client, auth_headers)
    fake_client.content_image = None
    fake_client.text = ""

    async def broken(*args, **kwargs):
        raise RuntimeError("upstream exploded")

    fake_client.generate_content = broken

    response = await test_client.post(
        "/api/generate/studio",
        json={"payload": {}, "imageBase64": IMAGE_DATA_URL, "model": "gemini-2.5-flash-image"},
        headers=auth_headers,
    )

    assert response.status_code == 500
    assert response.json() == {"error": "GENERATION_FAILED", "message": "upstream exploded"}


@pytest.mark.asyncio
async def test_analyze_returns_text(test_client, auth_headers, fake_client):
    response = await test_client.post(
        "/api/analyze",
        json={"systemInstruction": "You are a marketer", "prompt": "Who buys this mug?"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"text": "analysis result"}
    assert fake_client.text_calls[0]["system_instruction"] == "You are a marketer"


@pytest.mark.asyncio
async def test_save_api_key_stores_encrypted_value(test_client, auth_headers, uow_factory, vault):
    response = await save_key(test_client, auth_headers, api_key="AIza-user-key")

    assert response.status_code == 200
    assert response.json() == {"success": True}

    async with await uow_factory() as uow:
        credential = await uow.credentials.get_by_user_id("user-1")

    assert credential is not None
    assert "AIza-user-key" not in credential.encrypted_key
    assert vault.decrypt(credential.encrypted_key) == "AIza-user-key"


@pytest.mark.asyncio
async def test_save_empty_api_key_is_rejected(test_client, auth_headers):
    response = await save_key(test_client, auth_headers, api_key="  ")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_save_api_key_without_vault_returns_vault_write_error(app, test_client, auth_headers):
    app.state.vault = None

    response = await save_key(test_client, auth_headers)

    assert response.status_code == 500
    assert response.json() == {"error": "VAULT_WRITE_ERROR"}


@pytest.mark.asyncio
async def test_health_check(test_client):
    response = await test_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_describe_returns_product_description(test_client, auth_headers, fake_client):
    fake_client.text = "Matte ceramic mug."

    response = await test_client.post(
        "/api/describe", json={"imageBase64": IMAGE_DATA_URL}, headers=auth_headers
    )

    assert response.status_code == 200
    assert response.json() == {"text": "Matte ceramic mug."}
    assert fake_client.text_calls[0]["sources"][0].data == b"product-photo"


@pytest.mark.asyncio
async def test_suggest_themes_returns_structured_list(test_client, auth_headers, fake_client):
    fake_client.text = '[{"title": "Nature Sunlight", "prompt": "mossy rock at dawn"}]'

    response = await test_client.post(
        "/api/suggest/themes",
        json={"imageBase64": IMAGE_DATA_URL, "description": "ceramic mug", "category": "Home"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {
        "themes": [{"title": "Nature Sunlight", "prompt": "mossy rock at dawn"}]
    }
    assert "category Home" in fake_client.text_calls[0]["prompt"]


@pytest.mark.asyncio
async def test_suggest_scenes_returns_empty_list_on_unparseable_answer(
    test_client, auth_headers, fake_client
):
    fake_client.text = "not json"

    response = await test_client.post(
        "/api/suggest/scenes",
        json={"imageBase64": IMAGE_DATA_URL, "description": "steel bottle"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"scenes": []}


@pytest.mark.asyncio
async def test_suggest_scenes_requires_description(test_client, auth_headers):
    response = await test_client.post(
        "/api/suggest/scenes", json={"imageBase64": IMAGE_DATA_URL}, headers=auth_headers
    )

    assert response.status_code == 422
