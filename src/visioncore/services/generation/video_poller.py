"""Long-running video job poller.

State machine: submitted → polling → done | failed.

The remote API returns an operation handle for video generation; the poller
refreshes it on a fixed interval until it reports completion, bounded by a
maximum wait and interruptible through a CancellationToken.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from visioncore.services.exceptions import (
    AuthError,
    GenerationError,
    PollTimeoutError,
    QuotaError,
)
from visioncore.services.generation.cancellation import CancellationToken

logger = structlog.get_logger(__name__)


class PollStatus(str, Enum):
    """Video operation lifecycle status."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"


def signed_url(uri: str, api_key: str) -> str:
    """Append the credential to an artifact URI as the ``key`` query parameter."""
    return str(httpx.URL(uri).copy_merge_params({"key": api_key}))


def extract_video_uri(operation: Any) -> str:
    """Return the first generated video's URI from a finished operation.

    Raises:
        GenerationError: If the operation failed or produced no video
    """
    error = getattr(operation, "error", None)
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise GenerationError(f"Video generation failed: {message}")

    response = getattr(operation, "response", None) or getattr(operation, "result", None)
    videos = getattr(response, "generated_videos", None) or []
    if not videos or videos[0].video is None or not videos[0].video.uri:
        raise GenerationError("Video generation failed: operation returned no video")
    return videos[0].video.uri


class VideoPoller:
    """Polls a video operation until completion with a hard time limit."""

    def __init__(
        self,
        poll_interval: float = 10.0,
        max_wait: float = 600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize poller.

        Args:
            poll_interval: Seconds between status refreshes
            max_wait: Maximum seconds to wait for completion
            sleep: Sleep coroutine used when no cancellation token is given
            clock: Monotonic clock used for the deadline
        """
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.sleep = sleep
        self.clock = clock

    async def submit(
        self,
        client: Any,
        *,
        model: str,
        prompt: str,
        source: Any,
        aspect_ratio: str,
        resolution: str,
    ) -> Any:
        """Start a video operation and return its handle."""
        operation = await client.submit_video(model, prompt, source, aspect_ratio, resolution)
        logger.info(
            "video.submitted",
            model=model,
            operation=getattr(operation, "name", None),
            status=PollStatus.SUBMITTED.value,
        )
        return operation

    async def poll_until_done(
        self,
        client: Any,
        operation: Any,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """Wait for a submitted operation and return the artifact URI.

        Args:
            client: Object exposing ``get_operation(operation)`` (GeminiClient)
            operation: Operation handle returned by the submit call
            cancel_token: Optional cancellation signal

        Returns:
            Remote URI of the generated video (unsigned)

        Raises:
            PollTimeoutError: Operation still running after max_wait seconds
            JobCancelledError: Token cancelled while waiting
            GenerationError: Operation finished without a usable video
        """
        started = self.clock()
        deadline = started + self.max_wait
        status = PollStatus.SUBMITTED
        polls = 0

        while not getattr(operation, "done", False):
            remaining = deadline - self.clock()
            if remaining <= 0:
                logger.error(
                    "video.poll.timeout",
                    operation=getattr(operation, "name", None),
                    polls=polls,
                    max_wait_seconds=self.max_wait,
                )
                raise PollTimeoutError(
                    f"Video generation did not finish within {self.max_wait:.0f}s"
                )

            wait = min(self.poll_interval, remaining)
            if cancel_token is not None:
                await cancel_token.sleep(wait)
            else:
                await self.sleep(wait)

            status = PollStatus.POLLING
            operation = await client.get_operation(operation)
            polls += 1
            logger.debug(
                "video.poll",
                operation=getattr(operation, "name", None),
                status=status.value,
                polls=polls,
                done=bool(getattr(operation, "done", False)),
            )

        try:
            uri = extract_video_uri(operation)
        except GenerationError:
            logger.error(
                "video.poll.finished",
                status=PollStatus.FAILED.value,
                polls=polls,
            )
            raise

        logger.info(
            "video.poll.finished",
            status=PollStatus.DONE.value,
            polls=polls,
            duration_seconds=round(self.clock() - started, 3),
        )
        return uri

    async def download(self, uri: str, api_key: str) -> bytes:
        """Fetch the generated video bytes from its signed URL.

        Raises:
            AuthError: 401/403 from the file endpoint
            QuotaError: 429 from the file endpoint
            GenerationError: Any other HTTP or network failure
        """
        try:
            async with httpx.AsyncClient(timeout=120.0, follow_redirects=True) as http:
                response = await http.get(signed_url(uri, api_key))

                if response.status_code in (401, 403):
                    raise AuthError(f"Video download unauthorized ({response.status_code})")
                elif response.status_code == 429:
                    raise QuotaError("Video download rate limited (429)")

                response.raise_for_status()
                return response.content

        except httpx.HTTPStatusError as e:
            raise GenerationError(f"Video download failed: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Video download network error: {e}") from e
