"""CLI command for running a generation batch from local image files.

Usage:
    python -m visioncore.cli batch --kind KIND --image PATH [OPTIONS]

Examples:
    # Studio shots of two products, two angles, two backdrops (8 units)
    python -m visioncore.cli batch --kind studio \\
        --image shoe.jpg --image bag.jpg \\
        --axis angle=Top-Down,Eye-Level --axis bg_color=White,Black

    # Listing image with a fixed theme, abort on the first failed unit
    python -m visioncore.cli batch --kind listing --image mug.png \\
        --param theme_prompt="Cozy kitchen" --on-unit-failure abort

    # Listing shots over model-suggested themes, description from the photo
    python -m visioncore.cli batch --kind listing --image mug.png --describe --suggest-themes

    # Same scene replicated in three product colors
    python -m visioncore.cli batch --kind relocate --image scene.jpg \\
        --axis product_color=Red,Navy,Olive

    # Product video, written to ./out
    python -m visioncore.cli batch --kind video --image watch.jpg -o out
"""

import asyncio
import mimetypes
import signal
import sys
from argparse import Namespace, _SubParsersAction
from pathlib import Path

import structlog

from visioncore.core.config import Settings, UnitFailurePolicy, configure_logging
from visioncore.models.generation import (
    BatchState,
    GenerationJob,
    GenerationResult,
    JobKind,
    SourceAsset,
)
from visioncore.services.exceptions import (
    AuthError,
    GenerationError,
    QuotaError,
    ServiceError,
    ValidationError,
)
from visioncore.services.generation.batch import BatchOrchestrator, BatchPlan, VariantAxis
from visioncore.services.generation.cancellation import CancellationToken
from visioncore.services.generation.prompts import parse_params
from visioncore.services.generation.service import (
    DEFAULT_DESCRIPTION,
    Artifact,
    GenerationService,
)
from visioncore.services.history import HistoryStore, JsonFileKeyValueStore
from visioncore.services.key_resolver import resolve_local_key

logger = structlog.get_logger()

FALLBACK_THEME = "Professional high-end commercial photography"
FALLBACK_SETTING = "Natural"


def add_parser(subparsers: _SubParsersAction) -> None:
    """Register the ``batch`` command."""
    parser = subparsers.add_parser(
        "batch",
        help="Run a generation batch over local images",
        description="Expand a job over source images and variant axes and run it",
    )
    parser.add_argument(
        "--kind",
        required=True,
        choices=[kind.value for kind in JobKind],
        help="Job kind (prompt template)",
    )
    parser.add_argument(
        "--image",
        action="append",
        required=True,
        dest="images",
        metavar="PATH",
        help="Source image file (repeatable; outer batch axis)",
    )
    parser.add_argument(
        "--axis",
        action="append",
        default=[],
        dest="axes",
        metavar="NAME=V1,V2",
        help="Variant axis over a parameter field (repeatable, nested in order)",
    )
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        dest="params",
        metavar="NAME=VALUE",
        help="Fixed parameter value shared by every unit (repeatable)",
    )
    parser.add_argument(
        "--reference",
        metavar="PATH",
        help="Secondary image sent with every unit (ad layout, replacement product)",
    )
    parser.add_argument("--refinement", help="Extra instruction appended to every prompt")
    parser.add_argument("--model", help="Override the kind's default model")
    parser.add_argument(
        "-o",
        "--output",
        default="output",
        help="Directory for generated files (default: output)",
    )
    parser.add_argument(
        "--on-unit-failure",
        choices=[policy.value for policy in UnitFailurePolicy],
        help="Override ON_UNIT_FAILURE for this run",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Describe the product from the first image (fills the listing description)",
    )
    parser.add_argument(
        "--suggest-themes",
        action="store_true",
        help="Add a theme_prompt axis of model-suggested themes (listing)",
    )
    parser.add_argument(
        "--suggest-scenes",
        action="store_true",
        help="Add a setting axis of model-suggested UGC scenes (influencer)",
    )
    parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Skip the pause between units (may hit rate limits)",
    )
    parser.set_defaults(handler=handle)


def parse_assignment(value: str) -> tuple[str, str]:
    """Split ``name=value``.

    Raises:
        ValidationError: If there is no ``=`` or the name is empty
    """
    name, sep, rest = value.partition("=")
    if not sep or not name.strip():
        raise ValidationError(f"Expected NAME=VALUE, got '{value}'")
    return name.strip(), rest.strip()


def parse_axis(value: str) -> VariantAxis:
    """Parse ``name=v1,v2,...`` into a variant axis."""
    name, raw_values = parse_assignment(value)
    values = tuple(v.strip() for v in raw_values.split(",") if v.strip())
    return VariantAxis(name=name, values=values)


def load_source(path: Path, max_bytes: int) -> SourceAsset:
    """Read an image file into a source asset."""
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ValidationError(f"Cannot read source image {path}: {e}") from e
    mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return SourceAsset.from_bytes(data, max_bytes, mime_type=mime_type)


def build_template(args: Namespace, settings: Settings) -> GenerationJob:
    """Build the shared job template from command-line arguments."""
    payload: dict = dict(parse_assignment(p) for p in args.params)
    params = parse_params(args.kind, payload)
    sources = tuple(load_source(Path(p), settings.max_asset_bytes) for p in args.images)
    reference = None
    if args.reference:
        reference = load_source(Path(args.reference), settings.max_asset_bytes)
    return GenerationJob(
        params=params,
        sources=sources,
        reference=reference,
        refinement=args.refinement,
        model=args.model,
    )


async def apply_suggestions(
    args: Namespace, template: GenerationJob, service: GenerationService, api_key: str
) -> tuple[GenerationJob, list[VariantAxis]]:
    """Fill the description and suggested axes the text model proposes.

    Suggestions are computed from the first source image.

    Raises:
        ValidationError: A suggestion flag that does not apply to the job kind
    """
    kind = template.kind
    if args.suggest_themes and kind != JobKind.LISTING:
        raise ValidationError("--suggest-themes only applies to the listing kind")
    if args.suggest_scenes and kind != JobKind.INFLUENCER:
        raise ValidationError("--suggest-scenes only applies to the influencer kind")

    params = template.params
    description = getattr(params, "description", None)
    if args.describe and not description:
        description = await service.describe_product(template.sources[0], api_key)
        print(f"Description: {description}")
        if "description" in type(params).model_fields:
            params = params.model_copy(update={"description": description})

    axes: list[VariantAxis] = []
    if args.suggest_themes:
        themes = await service.suggest_themes(
            template.sources[0], api_key, description=description
        )
        prompts = tuple(t.prompt for t in themes) or (FALLBACK_THEME,)
        axes.append(VariantAxis("theme_prompt", prompts))
    if args.suggest_scenes:
        scenes = await service.suggest_scenes(
            template.sources,
            api_key,
            description=description or DEFAULT_DESCRIPTION,
            gender=getattr(params, "gender", None) or "Female",
        )
        settings_axis = tuple(dict.fromkeys(s.setting for s in scenes)) or (FALLBACK_SETTING,)
        axes.append(VariantAxis("setting", settings_axis))

    return template.model_copy(update={"params": params}), axes


class ArtifactWriter:
    """Writes each unit's artifact to the output directory.

    Runs inside the unit, so a failed write is handled by the failure policy.
    The file path becomes the result's artifact reference.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir

    async def __call__(self, result: GenerationResult, artifact: Artifact) -> str:
        if artifact.data is None:
            raise GenerationError(f"No {artifact.media_type} content to write for {result.id}")
        extension = ".mp4" if artifact.media_type == "video" else ".png"
        path = self.output_dir / f"{result.id}{extension}"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(artifact.data)
        except OSError as e:
            raise GenerationError(f"Cannot write {path}: {e}") from e
        return str(path)


async def run_batch(args: Namespace, settings: Settings) -> int:
    """Execute the batch and print a summary. Returns the process exit code."""
    store = JsonFileKeyValueStore(settings.history_dir)
    template = build_template(args, settings)
    axes = [parse_axis(a) for a in args.axes]
    BatchPlan(template, axes)  # reject bad axes before any remote call
    kind = template.kind

    api_key = resolve_local_key(settings, store)

    async def credential_provider() -> str:
        return api_key

    usage = {"count": 0}

    def count_usage(_result: GenerationResult) -> None:
        usage["count"] += 1

    service = GenerationService(settings, download_videos=True)
    template, suggested_axes = await apply_suggestions(args, template, service, api_key)
    plan = BatchPlan(template, axes + suggested_axes)

    orchestrator = BatchOrchestrator.from_settings(
        settings,
        service,
        credential_provider,
        history=HistoryStore.for_kind(store, kind, settings.history_cap),
        on_usage=count_usage,
        artifact_sink=ArtifactWriter(Path(args.output)),
    )
    if args.on_unit_failure:
        orchestrator.failure_policy = UnitFailurePolicy(args.on_unit_failure)
    if args.no_delay:
        orchestrator.inter_unit_delay = 0

    cancel_token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_token.cancel, "interrupted by user")
    except (NotImplementedError, RuntimeError):
        # Signal handlers are unavailable on some platforms; Ctrl+C then raises KeyboardInterrupt
        pass

    run = orchestrator.start(plan, cancel_token)
    print(
        f"Running {run.total_units} {kind.value} unit(s), "
        f"estimated {run.estimated_seconds:.0f}s"
    )

    try:
        async for result in run:
            print(f"[{run.progress:3d}%] {result.label} -> {result.artifact_url}")
    except (AuthError, QuotaError) as e:
        print(f"\nError: {e}", file=sys.stderr)
    except ServiceError as e:
        print(f"\nBatch aborted: {e}", file=sys.stderr)
    finally:
        await run.aclose()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    print("\n" + "=" * 60)
    print("Batch Summary")
    print("=" * 60)
    print(f"State: {run.state.value}")
    print(f"Units attempted: {run.completed_units}/{run.total_units}")
    print(f"Results: {len(run.results)}")
    print(f"Skipped: {len(run.skipped)}")
    for skipped in run.skipped[:5]:
        print(f"  - #{skipped.index + 1} {skipped.label}: {skipped.error}")
    if len(run.skipped) > 5:
        print(f"  ... and {len(run.skipped) - 5} more")
    print("=" * 60 + "\n")

    logger.info(
        "cli.batch.finished",
        state=run.state.value,
        results=len(run.results),
        skipped=len(run.skipped),
        usage=usage["count"],
    )

    if run.state == BatchState.COMPLETE:
        return 0 if not run.skipped else 2
    if run.state == BatchState.CANCELLED:
        return 130
    return 1


def handle(args: Namespace) -> int:
    """Synchronous handler for the ``batch`` command."""
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    try:
        return asyncio.run(run_batch(args, settings))
    except ServiceError as e:
        logger.error("cli.batch.rejected", error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nBatch interrupted by user", file=sys.stderr)
        return 130
