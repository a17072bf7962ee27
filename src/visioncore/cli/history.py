"""CLI command for inspecting or clearing the local generation history.

Usage:
    python -m visioncore.cli history [--kind KIND] [--clear]
"""

from argparse import Namespace, _SubParsersAction

from visioncore.core.config import Settings
from visioncore.models.generation import JobKind
from visioncore.services.history import HistoryStore, JsonFileKeyValueStore


def add_parser(subparsers: _SubParsersAction) -> None:
    """Register the ``history`` command."""
    parser = subparsers.add_parser(
        "history",
        help="Show or clear recent results",
        description="Show or clear the capped history of recent results per kind",
    )
    parser.add_argument(
        "--kind",
        choices=[kind.value for kind in JobKind],
        help="Only this kind (default: all kinds)",
    )
    parser.add_argument("--clear", action="store_true", help="Clear the selected history")
    parser.set_defaults(handler=handle)


def handle(args: Namespace) -> int:
    """Synchronous handler for the ``history`` command."""
    settings = Settings()  # type: ignore[call-arg]
    store = JsonFileKeyValueStore(settings.history_dir)
    kinds = [JobKind(args.kind)] if args.kind else list(JobKind)

    for kind in kinds:
        history = HistoryStore.for_kind(store, kind, settings.history_cap)
        if args.clear:
            history.clear()
            print(f"{kind.value}: cleared")
            continue

        items = history.items
        if not items and args.kind is None:
            continue
        print(f"{kind.value} ({len(items)})")
        for item in items:
            created = item.created_at.strftime("%Y-%m-%d %H:%M:%S")
            print(f"  {created}  {item.id}  {item.label}")

    return 0
