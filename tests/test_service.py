from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

from smarttime.config import load_settings
from smarttime.git import FakeGitCommitter
from smarttime.operations import BatchTrigger, OperationStore, ProcessBatchRequest
from smarttime.scheduling import IntervalTimer
from smarttime.service import BatchCollectionJob, create_service, initialize_storage, serve
from smarttime.storage import BatchRepository, QueueRepository


def _queue(tmp_path: Path) -> QueueRepository:
    return QueueRepository(tmp_path / "queue", tmp_path / "queue_batch", tmp_path / "queue_backup")


def test_trigger_enqueues_only_when_queue_has_files(tmp_path: Path) -> None:
    queue = _queue(tmp_path)
    store = OperationStore(tmp_path / "operation_queue", tmp_path / "operation_queue_backup")
    trigger = BatchTrigger(queue, store, interval_seconds=60)

    assert asyncio.run(trigger.tick()) is None
    assert store.list_pending() == []

    queue.add_entry("/w", "a.ts", "main")
    filename = asyncio.run(trigger.tick())

    pending = store.list_pending()
    assert [name for name, _ in pending] == [filename]
    assert isinstance(pending[0][1], ProcessBatchRequest)


def test_collection_job_commits_only_when_something_was_collected(tmp_path: Path) -> None:
    batches = BatchRepository(tmp_path / "batches")
    committer = FakeGitCommitter()
    job = BatchCollectionJob(batches, committer, interval_seconds=3600)

    first = asyncio.run(job.run_once())
    assert first is not None and not first.collected
    assert committer.commits == []

    stamp = int((datetime.now(timezone.utc) - timedelta(days=2)).timestamp() * 1000)
    batches.save_batch({"main": {"/w": [{"File": "a.ts", "Timestamp": stamp}]}}, f"batch_{stamp}.json")

    second = asyncio.run(job.run_once())
    assert second is not None and second.collected
    assert second.files_processed == 1
    assert committer.commits == ["housekeeping: batch collection"]


def test_collection_job_swallows_commit_errors(tmp_path: Path) -> None:
    batches = BatchRepository(tmp_path / "batches")
    committer = FakeGitCommitter(failures=[RuntimeError("git exploded")])
    stamp = int((datetime.now(timezone.utc) - timedelta(days=2)).timestamp() * 1000)
    batches.save_batch({"main": {"/w": [{"File": "a.ts", "Timestamp": stamp}]}}, f"batch_{stamp}.json")

    assert asyncio.run(BatchCollectionJob(batches, committer).run_once()) is None


def test_interval_timer_ticks_until_stopped() -> None:
    calls: list[int] = []

    async def callback() -> None:
        calls.append(1)

    async def scenario() -> tuple[bool, bool]:
        timer = IntervalTimer(callback, 0.01, name="test timer")
        timer.start()
        running = timer.running
        await asyncio.sleep(0.1)
        await timer.stop()
        return running, timer.running

    running, after_stop = asyncio.run(scenario())

    assert running is True
    assert after_stop is False
    assert calls


def test_interval_timer_survives_failing_callback() -> None:
    calls: list[int] = []

    async def callback() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    async def scenario() -> None:
        timer = IntervalTimer(callback, 0.01, name="failing timer")
        timer.start()
        await asyncio.sleep(0.1)
        await timer.stop()

    asyncio.run(scenario())

    assert len(calls) > 1


def test_create_service_wires_components_from_settings(tmp_path: Path) -> None:
    settings = load_settings(root=str(tmp_path), max_failures=3, lock_timeout_ms=250)
    committer = FakeGitCommitter()

    service = create_service(settings, committer=committer)

    assert service.committer is committer
    assert service.store.directory == settings.operation_queue
    assert service.store.backup_directory == settings.operation_queue_backup
    assert service.queue.queue_dir == settings.queue
    assert service.batches.batches_dir == settings.batches
    assert service.processor.store is service.store


def test_initialize_storage_creates_directories(tmp_path: Path) -> None:
    settings = load_settings(root=str(tmp_path / "root"))

    initialize_storage(settings)

    for directory in settings.directories():
        assert Path(directory).is_dir()


def test_serve_processes_requests_until_stopped(tmp_path: Path) -> None:
    settings = load_settings(root=str(tmp_path), queue_interval_seconds=0.01)
    committer = FakeGitCommitter()
    service = create_service(settings, committer=committer)

    async def scenario() -> None:
        stop_event = asyncio.Event()
        runner = asyncio.create_task(serve(service, stop_event))
        await asyncio.sleep(0)
        service.queue.add_entry("/w", "a.ts", "main")
        service.store.add(ProcessBatchRequest())
        for _ in range(200):
            await asyncio.sleep(0.01)
            if committer.commits:
                break
        stop_event.set()
        await runner

    asyncio.run(scenario())

    assert committer.initialized
    assert len(committer.commits) == 1
    assert committer.commits[0].startswith("processBatch: batches/batch_")
    assert service.store.list_pending() == []
