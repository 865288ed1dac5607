"""SmartTime diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from smarttime.config import SmartTimeSettings, load_settings
from smarttime.errors import SettingsLoadError
from smarttime.operations import OperationStore
from smarttime.operations.models import describe_request
from smarttime.storage import BatchRepository, FileLock, QueueRepository


def load_config(args: argparse.Namespace) -> SmartTimeSettings:
    try:
        return load_settings(getattr(args, "config", None))
    except SettingsLoadError as exc:
        print(f"Settings unavailable: {exc}")
        raise SystemExit(1)


def load_store(settings: SmartTimeSettings) -> OperationStore:
    return OperationStore(settings.operation_queue, settings.operation_queue_backup)


def cmd_pending(args: argparse.Namespace) -> None:
    store = load_store(load_config(args))
    pending = store.list_pending()
    if args.json:
        print(
            json.dumps(
                [{"file": name, **request.model_dump(mode="json", exclude_none=True)} for name, request in pending],
                indent=2,
            )
        )
    else:
        for name, request in pending:
            print(f"{name} [{describe_request(request)}]")


def cmd_quarantined(args: argparse.Namespace) -> None:
    store = load_store(load_config(args))
    names = store.list_quarantined()
    if args.limit is not None and args.limit > 0:
        names = names[-args.limit :]
    print(json.dumps(names, indent=2))


def cmd_requeue(args: argparse.Namespace) -> None:
    store = load_store(load_config(args))
    available = set(store.list_quarantined())
    targets = sorted(available) if args.all else args.files
    missing = [name for name in targets if name not in available]
    if missing:
        print(f"Not quarantined: {', '.join(missing)}")
        raise SystemExit(1)
    for name in targets:
        store.requeue(name)
        print(f"requeued {name}")


def cmd_status(args: argparse.Namespace) -> None:
    settings = load_config(args)
    store = load_store(settings)
    queue = QueueRepository(settings.queue, settings.queue_batch, settings.queue_backup)
    batches = BatchRepository(settings.batches)
    lock = FileLock(settings.data, max_age_seconds=settings.lock_max_age_seconds)

    type_counts: dict[str, int] = {}
    for _, request in store.list_pending():
        type_counts[request.type] = type_counts.get(request.type, 0) + 1

    def _count(directory) -> int:
        try:
            return sum(1 for path in directory.iterdir() if path.is_file())
        except FileNotFoundError:
            return 0

    status = {
        "root": str(settings.root),
        "pending_requests": sum(type_counts.values()),
        "pending_by_type": type_counts,
        "quarantined_requests": len(store.list_quarantined()),
        "queued_touch_events": _count(queue.queue_dir),
        "staged_touch_events": _count(queue.staging_dir),
        "transient_batches": len(batches.list_transient()),
        "lock_holder": lock.read_holder(),
    }
    print(json.dumps(status, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SmartTime diagnostics")
    parser.add_argument("--config", default=None, help="Optional YAML settings file")
    sub = parser.add_subparsers(dest="cmd")

    p_status = sub.add_parser("status", help="Show queue, staging, archive and lock state")
    p_status.set_defaults(func=cmd_status)

    p_pending = sub.add_parser("pending", help="List pending operation requests")
    p_pending.add_argument("--json", action="store_true", help="Output JSON")
    p_pending.set_defaults(func=cmd_pending)

    p_quarantined = sub.add_parser("quarantined", help="List quarantined operation requests")
    p_quarantined.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N requests",
    )
    p_quarantined.set_defaults(func=cmd_quarantined)

    p_requeue = sub.add_parser("requeue", help="Move quarantined requests back to the live queue")
    p_requeue.add_argument("files", nargs="*", help="Request file names to requeue")
    p_requeue.add_argument("--all", action="store_true", help="Requeue every quarantined request")
    p_requeue.set_defaults(func=cmd_requeue)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
