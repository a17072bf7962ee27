"""Generation service tests: model selection, image/video/text paths."""

import base64

import pytest

from visioncore.models.generation import (
    AdParams,
    FashionParams,
    GenerationJob,
    InfluencerScene,
    RelocateParams,
    SourceAsset,
    StudioParams,
    VideoParams,
)
from visioncore.services.exceptions import (
    GenerationError,
    UnknownTemplateKind,
    ValidationError,
)
from visioncore.services.generation.service import GenerationService
from visioncore.services.generation.video_poller import VideoPoller

SOURCE = SourceAsset(data=b"product-photo", mime_type="image/jpeg")


@pytest.fixture
def service(test_settings, fake_client, no_sleep):
    poller = VideoPoller(poll_interval=1, max_wait=30, sleep=no_sleep)
    return GenerationService(
        test_settings,
        client_factory=lambda key: fake_client,
        poller=poller,
        sleep=no_sleep,
        rng=lambda: 0.0,
    )


def test_model_selection_per_kind(service, test_settings):
    studio = GenerationJob(params=StudioParams(), sources=(SOURCE,))
    fashion = GenerationJob(params=FashionParams(), sources=(SOURCE,))
    video = GenerationJob(params=VideoParams(), sources=(SOURCE,))
    override = GenerationJob(params=StudioParams(), sources=(SOURCE,), model="custom-image")

    assert service.model_for(studio) == test_settings.image_model
    assert service.model_for(fashion) == test_settings.pro_image_model
    assert service.model_for(video) == test_settings.video_model
    assert service.model_for(override) == "custom-image"


@pytest.mark.asyncio
async def test_generate_image_returns_data_url(service, fake_client):
    job = GenerationJob(
        params=StudioParams(angle="Top-Down", aspect_ratio="4:5"),
        sources=(SOURCE,),
        refinement="warmer light",
    )

    artifact = await service.generate(job, "user-key")

    expected = base64.b64encode(fake_client.image_bytes).decode()
    assert artifact.media_type == "image"
    assert artifact.url == f"data:image/png;base64,{expected}"
    call = fake_client.image_calls[0]
    assert call["aspect_ratio"] == "4:5"
    assert "Top-Down" in call["prompt"]
    assert call["prompt"].endswith("Refinement: warmer light.")
    assert call["sources"] == (SOURCE,)


@pytest.mark.asyncio
async def test_generate_without_source_is_rejected_before_remote_call(service, fake_client):
    job = GenerationJob(params=StudioParams(), sources=())

    with pytest.raises(ValidationError):
        await service.generate(job, "user-key")

    assert fake_client.image_calls == []


@pytest.mark.asyncio
async def test_generate_video_returns_unsigned_uri(service, fake_client):
    """The key is only appended for HTTP callers, never kept in the artifact."""
    job = GenerationJob(params=VideoParams(style="Clean Studio"), sources=(SOURCE,))

    artifact = await service.generate(job, "user-key")

    assert artifact.media_type == "video"
    assert artifact.url == fake_client.video_uri
    assert "user-key" not in artifact.url
    assert artifact.data is None
    assert fake_client.video_calls[0]["aspect_ratio"] == "16:9"
    assert fake_client.video_calls[0]["resolution"] == "720p"
    assert fake_client.video_calls[0]["source"] == SOURCE
    assert fake_client.polls == fake_client.video_polls_until_done


@pytest.mark.asyncio
async def test_run_request_returns_image_url_for_image_models(service, fake_client):
    fake_client.content_image = b"png-bytes"

    body = await service.run_request(
        "studio", {"angle": "Side"}, [SOURCE], "gemini-2.5-flash-image", "user-key"
    )

    assert body == {"imageUrl": f"data:image/png;base64,{base64.b64encode(b'png-bytes').decode()}"}
    assert fake_client.content_calls[0]["aspect_ratio"] == "1:1"


@pytest.mark.asyncio
async def test_run_request_returns_text_for_text_models(service, fake_client):
    body = await service.run_request(
        "listing", {"description": "ceramic mug"}, [], "gemini-3-flash-preview", "platform-key"
    )

    assert body == {"text": "analysis result"}
    assert fake_client.content_calls[0]["aspect_ratio"] is None


@pytest.mark.asyncio
async def test_run_request_video_model_returns_video_url(service, fake_client):
    body = await service.run_request(
        "video", {"motion": "Orbit"}, [SOURCE], "veo-3.1-fast-generate-preview", "user-key"
    )

    assert body == {"videoUrl": f"{fake_client.video_uri}&key=user-key"}


@pytest.mark.asyncio
async def test_run_request_video_model_rejects_image_kind(service):
    with pytest.raises(ValidationError):
        await service.run_request(
            "studio", {}, [SOURCE], "veo-3.1-fast-generate-preview", "user-key"
        )


@pytest.mark.asyncio
async def test_run_request_heavy_model_requires_source(service, fake_client):
    with pytest.raises(ValidationError):
        await service.run_request("studio", {}, [], "gemini-2.5-flash-image", "user-key")

    assert fake_client.content_calls == []


@pytest.mark.asyncio
async def test_run_request_unknown_kind(service):
    with pytest.raises(UnknownTemplateKind):
        await service.run_request("hologram", {}, [SOURCE], "gemini-2.5-flash-image", "k")


@pytest.mark.asyncio
async def test_generation_error_is_not_retried(service, fake_client, no_sleep):
    fake_client.image_failures = {0: GenerationError("no image")}
    job = GenerationJob(params=StudioParams(), sources=(SOURCE,))

    with pytest.raises(GenerationError):
        await service.generate(job, "user-key")

    assert len(fake_client.image_calls) == 1
    assert no_sleep.delays == []


@pytest.mark.asyncio
async def test_analyze_uses_text_model(service, fake_client, test_settings):
    text = await service.analyze(
        "Describe the audience", "platform-key", system_instruction="Be brief"
    )

    assert text == "analysis result"
    assert fake_client.text_calls[0]["model"] == test_settings.text_model
    assert fake_client.text_calls[0]["system_instruction"] == "Be brief"


@pytest.mark.asyncio
async def test_generate_video_downloads_bytes_when_enabled(
    test_settings, fake_client, scripted_poller
):
    service = GenerationService(
        test_settings,
        client_factory=lambda key: fake_client,
        poller=scripted_poller,
        download_videos=True,
    )
    job = GenerationJob(params=VideoParams(), sources=(SOURCE,))

    artifact = await service.generate(job, "user-key")

    assert artifact.data == scripted_poller.video_bytes
    assert scripted_poller.downloads == [(fake_client.video_uri, "user-key")]
    assert "user-key" not in artifact.url


@pytest.mark.asyncio
async def test_reference_image_is_sent_after_sources(service, fake_client):
    reference = SourceAsset(data=b"layout", mime_type="image/png")
    job = GenerationJob(
        params=AdParams(ad_type="REVIEW"), sources=(SOURCE,), reference=reference
    )

    await service.generate(job, "user-key")

    assert fake_client.image_calls[0]["sources"] == (SOURCE, reference)


@pytest.mark.asyncio
async def test_relocate_job_uses_image_model(service, fake_client, test_settings):
    job = GenerationJob(params=RelocateParams(product_color="Navy"), sources=(SOURCE,))

    artifact = await service.generate(job, "user-key")

    assert artifact.media_type == "image"
    assert fake_client.image_calls[0]["model"] == test_settings.image_model
    assert "Product Color: Navy." in fake_client.image_calls[0]["prompt"]


@pytest.mark.asyncio
async def test_describe_product_sends_image_to_text_model(service, fake_client, test_settings):
    fake_client.text = "  Matte ceramic mug with a curved handle.  "

    text = await service.describe_product(SOURCE, "platform-key")

    assert text == "Matte ceramic mug with a curved handle."
    call = fake_client.text_calls[0]
    assert call["model"] == test_settings.text_model
    assert call["sources"] == (SOURCE,)
    assert "Max 50 words" in call["prompt"]


@pytest.mark.asyncio
async def test_describe_product_falls_back_on_empty_answer(service, fake_client):
    fake_client.text = ""

    assert await service.describe_product(SOURCE, "platform-key") == "Professional product shoot."


@pytest.mark.asyncio
async def test_suggest_themes_parses_structured_output(service, fake_client):
    fake_client.text = (
        '[{"title": "Minimalist Studio", "prompt": "white seamless"},'
        ' {"title": "Industrial Loft", "prompt": "exposed brick"}]'
    )

    themes = await service.suggest_themes(SOURCE, "platform-key", description="ceramic mug")

    assert [t.title for t in themes] == ["Minimalist Studio", "Industrial Loft"]
    assert themes[1].prompt == "exposed brick"
    call = fake_client.text_calls[0]
    assert call["response_schema"] is not None
    assert "ceramic mug" in call["prompt"]


@pytest.mark.asyncio
async def test_suggest_themes_unparseable_answer_returns_empty_list(service, fake_client):
    fake_client.text = "Here are some ideas: loft, beach"

    assert await service.suggest_themes(SOURCE, "platform-key") == []


@pytest.mark.asyncio
async def test_suggest_scenes_sends_first_image_only(service, fake_client):
    second = SourceAsset(data=b"other-photo", mime_type="image/png")
    fake_client.text = (
        '[{"title": "Morning chai", "description": "unboxing at breakfast",'
        ' "persona": "Student", "setting": "Balcony"}]'
    )

    scenes = await service.suggest_scenes(
        [SOURCE, second], "platform-key", description="steel bottle", gender="Male"
    )

    assert scenes == [
        InfluencerScene(
            title="Morning chai",
            description="unboxing at breakfast",
            persona="Student",
            setting="Balcony",
        )
    ]
    call = fake_client.text_calls[0]
    assert call["sources"] == (SOURCE,)
    assert "Targeting Male influencer" in call["prompt"]


@pytest.mark.asyncio
async def test_suggest_scenes_requires_an_image(service):
    with pytest.raises(ValidationError):
        await service.suggest_scenes([], "platform-key", description="steel bottle")
