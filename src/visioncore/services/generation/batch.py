"""Batch generation orchestrator.

Expands a job template over its source images and variant axes, then runs the
units one at a time. Execution order is the nested cross-product (outer axis =
source image, then the declared axes in order), so identical plans always
produce results in identical order.

Failure handling per unit:
    - AuthError / QuotaError (after retries): abort, state ``error``, error
      re-raised to the iterating caller
    - Anything else: recorded as skipped and the run continues (policy
      ``skip``), or abort as above (policy ``abort``)
    - Cancellation: run stops, state ``cancelled``
    - Consumer stops iterating early (``aclose``): state ``cancelled``

Partial results are kept in every case.
"""

import asyncio
import itertools
import math
import time
from dataclasses import dataclass
from typing import (
    Any,
    AsyncGenerator,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterator,
    Optional,
    Protocol,
)

import structlog
from pydantic import ValidationError as PydanticValidationError

from visioncore.core.config import Settings, UnitFailurePolicy
from visioncore.models.generation import (
    BatchState,
    GenerationJob,
    GenerationResult,
    SourceAsset,
)
from visioncore.services.exceptions import (
    AuthError,
    JobCancelledError,
    QuotaError,
    ValidationError,
)
from visioncore.services.generation.cancellation import CancellationToken
from visioncore.services.generation.retry import classify_error
from visioncore.services.generation.service import Artifact
from visioncore.services.history import HistoryStore

logger = structlog.get_logger(__name__)


class UnitGenerator(Protocol):
    async def generate(
        self,
        job: GenerationJob,
        api_key: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Artifact: ...


CredentialProvider = Callable[[], Awaitable[str]]

# Persists a unit's artifact and returns the reference stored in its result
ArtifactSink = Callable[[GenerationResult, Artifact], Awaitable[str]]


@dataclass(frozen=True)
class VariantAxis:
    """One independently configurable dimension of a batch (e.g. angle)."""

    name: str  # parameter field of the job's kind
    values: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True)
class BatchUnit:
    """One scheduled generation call within a batch."""

    index: int
    source_index: int
    source: SourceAsset
    variant: dict[str, str]
    job: GenerationJob

    @property
    def label(self) -> str:
        if not self.variant:
            return self.job.kind.value.title()
        return " | ".join(self.variant.values())


@dataclass(frozen=True)
class SkippedUnit:
    """A unit whose failure was tolerated under the ``skip`` policy."""

    index: int
    label: str
    error: str


def _with_variant(params: Any, variant: dict[str, str]) -> Any:
    """Rebuild a parameter record with ``variant`` applied, re-running validation.

    Raises:
        ValidationError: A variant value does not fit the field's type
    """
    try:
        return type(params).model_validate({**params.model_dump(), **variant})
    except PydanticValidationError as e:
        fields = ", ".join(f"{name}={value!r}" for name, value in variant.items())
        raise ValidationError(
            f"Invalid variant value for the {params.kind.value} kind ({fields}): "
            f"{e.errors()[0]['msg']}"
        ) from e


class BatchPlan:
    """Ordered cross-product of a job template over sources and variant axes."""

    def __init__(
        self,
        template: GenerationJob,
        axes: tuple[VariantAxis, ...] | list[VariantAxis] = (),
    ):
        """Validate and freeze the plan.

        Args:
            template: Job carrying the source images and the shared parameters
            axes: Variant axes in nesting order (outermost first)

        Raises:
            ValidationError: No source image, an empty axis, a repeated axis,
                an axis that is not a parameter of the template's kind, or a
                value the parameter does not accept
        """
        if not template.sources:
            raise ValidationError("At least one source image is required")

        fields = type(template.params).model_fields
        seen: set[str] = set()
        for axis in axes:
            if axis.name == "kind" or axis.name not in fields:
                raise ValidationError(
                    f"'{axis.name}' is not a parameter of the {template.kind.value} kind"
                )
            if axis.name in seen:
                raise ValidationError(f"Variant axis '{axis.name}' is declared twice")
            if not axis.values:
                raise ValidationError(f"Variant axis '{axis.name}' has no values")
            for value in axis.values:
                _with_variant(template.params, {axis.name: value})
            seen.add(axis.name)

        self.template = template
        self.axes = tuple(axes)

    @property
    def total_units(self) -> int:
        return len(self.template.sources) * math.prod(len(axis.values) for axis in self.axes)

    def units(self) -> Iterator[BatchUnit]:
        """Yield units in nested order: source, then each axis as declared."""
        names = [axis.name for axis in self.axes]
        sources = list(enumerate(self.template.sources))
        combos = itertools.product(sources, *(axis.values for axis in self.axes))

        for index, (source_entry, *values) in enumerate(combos):
            source_index, source = source_entry
            variant = dict(zip(names, values))
            params = _with_variant(self.template.params, variant)
            job = self.template.model_copy(update={"params": params, "sources": (source,)})
            yield BatchUnit(
                index=index,
                source_index=source_index,
                source=source,
                variant=variant,
                job=job,
            )


class BatchRun:
    """Observable, single-use async iterator over one batch execution.

    Iterate it (``async for result in run``) or call ``collect()`` to drive the
    run; the public attributes reflect progress while it executes.
    """

    def __init__(
        self,
        orchestrator: "BatchOrchestrator",
        plan: BatchPlan,
        cancel_token: CancellationToken,
    ):
        self._orchestrator = orchestrator
        self.plan = plan
        self.cancel_token = cancel_token
        self.state = BatchState.IDLE
        self.total_units = plan.total_units
        self.completed_units = 0
        self.results: list[GenerationResult] = []
        self.skipped: list[SkippedUnit] = []
        self.error: Optional[BaseException] = None
        self._consumed = False
        self._iterator: Optional[AsyncGenerator[GenerationResult, None]] = None

    @property
    def progress(self) -> int:
        if self.total_units == 0:
            return 0
        return round(self.completed_units / self.total_units * 100)

    @property
    def estimated_seconds(self) -> float:
        return self.total_units * self._orchestrator.per_unit_estimate

    @property
    def seconds_remaining(self) -> float:
        remaining = self.total_units - self.completed_units
        return max(0.0, remaining * self._orchestrator.per_unit_estimate)

    def __aiter__(self) -> AsyncIterator[GenerationResult]:
        if self._consumed:
            raise RuntimeError("BatchRun can only be iterated once; start a new run")
        self._consumed = True
        self._iterator = self._execute()
        return self._iterator

    async def collect(self) -> list[GenerationResult]:
        """Drive the run to the end and return its results."""
        async for _ in self:
            pass
        return list(self.results)

    async def aclose(self) -> None:
        """Stop an iteration the caller left early; the run ends ``cancelled``."""
        if self._iterator is not None:
            await self._iterator.aclose()

    def _fail(self, error: BaseException, unit: BatchUnit) -> None:
        self.state = BatchState.ERROR
        self.error = error
        logger.error(
            "batch.aborted",
            unit_index=unit.index,
            error_type=type(error).__name__,
            error_message=str(error),
            completed_units=self.completed_units,
            results=len(self.results),
        )

    def _build_result(self, unit: BatchUnit, artifact: Artifact) -> GenerationResult:
        kind = unit.job.kind
        epoch_ms = int(self._orchestrator.clock() * 1000)
        return GenerationResult(
            id=f"{kind.value}_{epoch_ms}_{unit.index}",
            kind=kind,
            artifact_url=artifact.url,
            label=unit.label,
            description=f"{kind.value.title()} shot of SKU {unit.source_index + 1} ({unit.label})",
            source_index=unit.source_index,
            variant=unit.variant,
        )

    async def _execute(self) -> AsyncGenerator[GenerationResult, None]:
        orchestrator = self._orchestrator
        token = self.cancel_token
        self.state = BatchState.GENERATING
        started = time.monotonic()
        logger.info(
            "batch.started",
            kind=self.plan.template.kind.value,
            total_units=self.total_units,
            estimated_seconds=self.estimated_seconds,
            failure_policy=orchestrator.failure_policy.value,
        )

        try:
            for unit in self.plan.units():
                token.raise_if_cancelled()

                try:
                    api_key = await orchestrator.credential_provider()
                    artifact = await orchestrator.generator.generate(unit.job, api_key, token)
                    result = self._build_result(unit, artifact)
                    if orchestrator.artifact_sink is not None:
                        reference = await orchestrator.artifact_sink(result, artifact)
                        result = result.model_copy(update={"artifact_url": reference})
                except JobCancelledError:
                    raise
                except Exception as exc:
                    error = classify_error(exc)
                    fatal = isinstance(error, (AuthError, QuotaError))
                    if fatal or orchestrator.failure_policy == UnitFailurePolicy.ABORT:
                        self.completed_units += 1
                        self._fail(error, unit)
                        if error is exc:
                            raise
                        raise error from exc

                    self.skipped.append(SkippedUnit(unit.index, unit.label, str(error)))
                    self.completed_units += 1
                    logger.warning(
                        "batch.unit.skipped",
                        unit_index=unit.index,
                        label=unit.label,
                        error_type=type(error).__name__,
                        error_message=str(error),
                        progress=self.progress,
                    )
                else:
                    self.results.append(result)
                    self.completed_units += 1
                    orchestrator.record(result)
                    logger.info(
                        "batch.unit.succeeded",
                        unit_index=unit.index,
                        label=unit.label,
                        progress=self.progress,
                    )
                    yield result

                if self.completed_units < self.total_units:
                    await orchestrator.pause(token)

        except JobCancelledError as e:
            self.state = BatchState.CANCELLED
            self.error = e
            logger.info(
                "batch.cancelled",
                reason=str(e),
                completed_units=self.completed_units,
                results=len(self.results),
            )
            return
        except (asyncio.CancelledError, GeneratorExit):
            # Task cancelled, or the consumer stopped iterating before the end
            self.state = BatchState.CANCELLED
            logger.info(
                "batch.abandoned",
                completed_units=self.completed_units,
                results=len(self.results),
            )
            raise

        self.state = BatchState.COMPLETE
        logger.info(
            "batch.completed",
            results=len(self.results),
            skipped=len(self.skipped),
            duration_seconds=round(time.monotonic() - started, 3),
        )


class BatchOrchestrator:
    """Runs batch plans sequentially with pacing, failure policy and history."""

    def __init__(
        self,
        generator: UnitGenerator,
        credential_provider: CredentialProvider,
        *,
        history: Optional[HistoryStore] = None,
        on_usage: Optional[Callable[[GenerationResult], Any]] = None,
        artifact_sink: Optional[ArtifactSink] = None,
        failure_policy: UnitFailurePolicy = UnitFailurePolicy.SKIP,
        inter_unit_delay: float = 4.5,
        per_unit_estimate: float = 6.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize orchestrator.

        Args:
            generator: Executes one job (GenerationService or a test double)
            credential_provider: Coroutine returning the API key for a unit
            history: Capped history receiving every successful result
            on_usage: Called once per successful result (usage counter)
            artifact_sink: Persists each artifact inside the unit, so a failed
                write follows the failure policy; its return value replaces
                the result's artifact_url
            failure_policy: What to do with non-auth, non-quota unit failures
            inter_unit_delay: Seconds to wait between units
            per_unit_estimate: Seconds per unit used for time estimates
            sleep: Sleep coroutine for the inter-unit delay; when omitted the
                delay waits on the cancellation token so cancel wakes it early
            clock: Wall clock (seconds) used for result ids
        """
        self.generator = generator
        self.credential_provider = credential_provider
        self.history = history
        self.on_usage = on_usage
        self.artifact_sink = artifact_sink
        self.failure_policy = UnitFailurePolicy(failure_policy)
        self.inter_unit_delay = inter_unit_delay
        self.per_unit_estimate = per_unit_estimate
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        generator: UnitGenerator,
        credential_provider: CredentialProvider,
        **kwargs: Any,
    ) -> "BatchOrchestrator":
        return cls(
            generator,
            credential_provider,
            failure_policy=settings.on_unit_failure,
            inter_unit_delay=settings.inter_unit_delay_seconds,
            per_unit_estimate=settings.per_unit_estimate_seconds,
            **kwargs,
        )

    def start(self, plan: BatchPlan, cancel_token: Optional[CancellationToken] = None) -> BatchRun:
        """Create a fresh run for ``plan``. Nothing executes until it is iterated."""
        return BatchRun(self, plan, cancel_token or CancellationToken())

    async def pause(self, token: CancellationToken) -> None:
        if self.inter_unit_delay <= 0:
            token.raise_if_cancelled()
            return
        if self.sleep is None:
            await token.sleep(self.inter_unit_delay)
            return
        await self.sleep(self.inter_unit_delay)
        token.raise_if_cancelled()

    def record(self, result: GenerationResult) -> None:
        if self.history is not None:
            self.history.add(result)
        if self.on_usage is not None:
            self.on_usage(result)
