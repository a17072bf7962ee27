"""pytest fixtures for VisionCore tests.

Provides:
- test_settings: Settings for the test environment (no .env, fixed secrets)
- engine / session / uow_factory: Temporary SQLite database per test
- vault: KeyVault with a fixed 32-byte secret
- fake_client: In-process stand-in for the remote generation API
- no_sleep: Recording sleep that returns immediately
- scripted_poller: Video poller with instant polls and scripted downloads
"""

import os

os.environ.setdefault("APP_ENV", "test")

from types import SimpleNamespace  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession  # noqa: E402

from visioncore.core.config import Settings  # noqa: E402
from visioncore.core.database import create_engine, create_tables, setup_db_session  # noqa: E402
from visioncore.services.crypto.vault import KeyVault  # noqa: E402
from visioncore.services.generation.video_poller import VideoPoller  # noqa: E402
from visioncore.uow import create_uow_factory  # noqa: E402

TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
TEST_TOKEN_SECRET = "test-identity-secret"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with every credential explicit so the host environment cannot leak in."""
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        APP_ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        API_KEY="",
        OPERATOR_KEY_OVERRIDE=True,
        PLATFORM_GEMINI_KEY="platform-key",
        SERVER_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        IDENTITY_TOKEN_SECRET=TEST_TOKEN_SECRET,
        INTER_UNIT_DELAY_SECONDS=0,
        VIDEO_POLL_INTERVAL_SECONDS=1,
        VIDEO_MAX_WAIT_SECONDS=30,
        HISTORY_DIR=str(tmp_path / "history"),
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Provide an engine on a fresh SQLite file with all tables created."""
    engine = create_engine(test_settings.database_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    session_factory = setup_db_session(engine)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    return setup_db_session(engine)


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def vault() -> KeyVault:
    return KeyVault(TEST_ENCRYPTION_KEY)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


class FakeGeminiClient:
    """Stand-in for GeminiClient.

    ``image_failures`` maps a 0-based generate_image call number to the
    exception raised by that call. Video operations finish after
    ``video_polls_until_done`` refreshes.
    """

    def __init__(self):
        self.image_calls: list[dict] = []
        self.content_calls: list[dict] = []
        self.text_calls: list[dict] = []
        self.video_calls: list[dict] = []
        self.image_failures: dict[int, Exception] = {}
        self.image_bytes = b"\x89PNG fake image"
        self.content_image: bytes | None = None
        self.text = "analysis result"
        self.video_polls_until_done = 2
        self.video_uri = "https://files.example.com/v1/files/abc:download?alt=media"
        self.polls = 0

    async def generate_image(self, model, prompt, sources, aspect_ratio):
        call_number = len(self.image_calls)
        self.image_calls.append(
            {"model": model, "prompt": prompt, "sources": sources, "aspect_ratio": aspect_ratio}
        )
        if call_number in self.image_failures:
            raise self.image_failures[call_number]
        return self.image_bytes

    async def generate_content(
        self, model, prompt, sources=(), aspect_ratio=None, system_instruction=None
    ):
        self.content_calls.append(
            {"model": model, "prompt": prompt, "sources": sources, "aspect_ratio": aspect_ratio}
        )
        parts = []
        if self.content_image is not None:
            parts.append(SimpleNamespace(inline_data=SimpleNamespace(data=self.content_image)))
        return SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
            text=None if self.content_image is not None else self.text,
        )

    async def generate_text(
        self, model, prompt, sources=(), system_instruction=None, response_schema=None
    ):
        self.text_calls.append(
            {
                "model": model,
                "prompt": prompt,
                "sources": sources,
                "system_instruction": system_instruction,
                "response_schema": response_schema,
            }
        )
        return self.text

    async def submit_video(self, model, prompt, source, aspect_ratio, resolution="720p"):
        self.video_calls.append(
            {
                "model": model,
                "prompt": prompt,
                "source": source,
                "aspect_ratio": aspect_ratio,
                "resolution": resolution,
            }
        )
        return self._operation(done=False)

    async def get_operation(self, operation):
        self.polls += 1
        return self._operation(done=self.polls >= self.video_polls_until_done)

    def _operation(self, done: bool):
        response = None
        if done:
            response = SimpleNamespace(
                generated_videos=[SimpleNamespace(video=SimpleNamespace(uri=self.video_uri))]
            )
        return SimpleNamespace(name="operations/video-1", done=done, error=None, response=response)


@pytest.fixture
def fake_client() -> FakeGeminiClient:
    return FakeGeminiClient()


class ScriptedDownloadPoller(VideoPoller):
    """VideoPoller with zero-length poll waits and in-memory downloads.

    ``download_failures`` maps a 0-based download number to the exception
    raised by that download.
    """

    def __init__(self, sleep):
        super().__init__(poll_interval=0, max_wait=30, sleep=sleep)
        self.downloads: list[tuple[str, str]] = []
        self.download_failures: dict[int, Exception] = {}
        self.video_bytes = b"mp4 fake video"

    async def download(self, uri: str, api_key: str) -> bytes:
        call_number = len(self.downloads)
        self.downloads.append((uri, api_key))
        if call_number in self.download_failures:
            raise self.download_failures[call_number]
        return self.video_bytes


@pytest.fixture
def scripted_poller(no_sleep) -> ScriptedDownloadPoller:
    return ScriptedDownloadPoller(no_sleep)
