"""
Tests for windowed validation and the result artifact store.
"""

import json
from unittest.mock import Mock

import pytest

from mailbox_migration.core.exceptions import ConfigurationError, ValidationCancelledError
from mailbox_migration.execution.artifacts import ResultArtifactStore
from mailbox_migration.execution.batch_executor import BatchValidationExecutor
from mailbox_migration.models.config import ValidationDepth
from mailbox_migration.models.results import OverallStatus, ValidationResult
from mailbox_migration.monitoring.progress import ProgressEventType, ProgressReporter
from mailbox_migration.validation.runner import CheckRunner

IDENTITIES = [f"user{i}@contoso.com" for i in range(5)]


@pytest.fixture
def populated_gateway(gateway, make_mailbox):
    for identity in IDENTITIES:
        gateway.add_mailbox(make_mailbox(identity))
    gateway.latency = 0.01
    return gateway


@pytest.fixture
def store(tmp_path):
    return ResultArtifactStore(tmp_path / "work")


@pytest.fixture
def validator(populated_gateway, executor, store):
    runner = CheckRunner(populated_gateway, executor)
    return BatchValidationExecutor(runner, store, depth=ValidationDepth.BASIC)


def ready(identity):
    result = ValidationResult(identity=identity)
    result.finalize()
    return result


class TestBatchValidationExecutor:
    """Test cases for BatchValidationExecutor."""

    @pytest.mark.asyncio
    async def test_validates_every_identity_in_windows(self, validator, store):
        path = await validator.validate_all(iter(IDENTITIES), window_size=2, concurrency=2, total=5)

        results = store.load_results(path)
        assert [r.identity for r in results] == IDENTITIES
        assert all(r.overall_status == OverallStatus.READY for r in results)
        assert validator.stats.processed == 5
        assert validator.stats.windows_processed == 3
        assert validator.stats.peak_in_flight <= 2

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, validator, populated_gateway):
        await validator.validate_all(IDENTITIES, window_size=5, concurrency=3)

        assert 1 < validator.stats.peak_in_flight <= 3
        assert populated_gateway.peak_in_flight <= 3

    @pytest.mark.asyncio
    async def test_window_files_are_removed_after_combining(self, validator, store):
        path = await validator.validate_all(IDENTITIES, window_size=2, concurrency=2)

        assert path == store.combined_path
        assert not store.windows_dir.exists()
        assert len(json.loads(path.read_text(encoding="utf-8"))) == 5

    @pytest.mark.asyncio
    async def test_crashing_mailbox_gets_synthetic_failure(self, validator, store):
        original = validator.runner.validate_mailbox

        async def validate_mailbox(identity, depth):
            if identity == "user2@contoso.com":
                raise RuntimeError("worker exploded")
            return await original(identity, depth)

        validator.runner.validate_mailbox = validate_mailbox
        path = await validator.validate_all(IDENTITIES, window_size=2, concurrency=2)

        results = {r.identity: r for r in store.load_results(path)}
        assert len(results) == 5
        assert results["user2@contoso.com"].overall_status == OverallStatus.FAILED
        assert results["user2@contoso.com"].errors[0].code == "VALIDATION_CRASHED"
        assert results["user3@contoso.com"].overall_status == OverallStatus.READY
        assert validator.stats.crashed == 1

    @pytest.mark.asyncio
    async def test_persisted_windows_are_reused(self, validator, store, populated_gateway):
        store.save_manifest({"window_size": 2, "depth": ValidationDepth.BASIC.value})
        store.save_window(0, [ready(IDENTITIES[0]), ready(IDENTITIES[1])])

        await validator.validate_all(IDENTITIES, window_size=2, concurrency=2)

        assert validator.stats.windows_reused == 1
        assert validator.stats.windows_processed == 2
        assert populated_gateway.call_count("get_mailbox", IDENTITIES[0]) == 0
        assert populated_gateway.call_count("get_mailbox", IDENTITIES[2]) == 1

    @pytest.mark.asyncio
    async def test_window_for_other_identities_is_not_reused(self, validator, store):
        store.save_manifest({"window_size": 2, "depth": ValidationDepth.BASIC.value})
        store.save_window(0, [ready("someone@contoso.com"), ready("else@contoso.com")])

        path = await validator.validate_all(IDENTITIES, window_size=2, concurrency=2)

        assert validator.stats.windows_reused == 0
        assert [r.identity for r in store.load_results(path)] == IDENTITIES

    @pytest.mark.asyncio
    async def test_manifest_mismatch_discards_windows(self, validator, store):
        store.save_manifest({"window_size": 3, "depth": ValidationDepth.BASIC.value})
        store.save_window(0, [ready(IDENTITIES[0]), ready(IDENTITIES[1])])

        await validator.validate_all(IDENTITIES, window_size=2, concurrency=2)

        assert validator.stats.windows_reused == 0

    @pytest.mark.asyncio
    async def test_cancel_stops_at_window_boundary(self, validator, store):
        def cancel_after_first_window(event):
            if event.event_type == ProgressEventType.PROGRESS:
                validator.cancel()

        validator.progress.add_callback(cancel_after_first_window)

        with pytest.raises(ValidationCancelledError) as exc_info:
            await validator.validate_all(IDENTITIES, window_size=2, concurrency=2)

        assert exc_info.value.windows_completed == 1
        assert store.list_windows() == [0]
        assert not store.combined_path.exists()

    @pytest.mark.asyncio
    async def test_reports_progress(self, populated_gateway, executor, store):
        events = []
        progress = ProgressReporter(run_id="run_1")
        progress.add_callback(events.append)
        validator = BatchValidationExecutor(
            CheckRunner(populated_gateway, executor), store, ValidationDepth.BASIC, progress=progress
        )

        await validator.validate_all(IDENTITIES, window_size=2, concurrency=2, total=5)

        assert [e.event_type for e in events] == [
            ProgressEventType.STARTED,
            ProgressEventType.PROGRESS,
            ProgressEventType.PROGRESS,
            ProgressEventType.PROGRESS,
            ProgressEventType.COMPLETED,
        ]
        assert [e.current for e in events[1:4]] == [2, 4, 5]
        assert events[-1].percentage == 100.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrency,window_size", [(0, 10), (21, 10), (5, 0)])
    async def test_rejects_invalid_settings(self, validator, concurrency, window_size):
        with pytest.raises(ConfigurationError):
            await validator.validate_all(IDENTITIES, window_size=window_size, concurrency=concurrency)

    @pytest.mark.asyncio
    async def test_identities_are_consumed_lazily(self, validator):
        consumed = []

        def stream():
            for identity in IDENTITIES:
                consumed.append(identity)
                yield identity

        window_sizes = []
        original = validator._run_window

        async def run_window(window, concurrency):
            window_sizes.append((len(window), len(consumed)))
            return await original(window, concurrency)

        validator._run_window = run_window
        await validator.validate_all(stream(), window_size=2, concurrency=1)

        assert window_sizes == [(2, 2), (2, 4), (1, 5)]


class TestResultArtifactStore:
    """Test cases for ResultArtifactStore."""

    def test_window_round_trip(self, store):
        store.save_window(3, [ready("a@contoso.com")])

        assert store.list_windows() == [3]
        assert [r.identity for r in store.load_window(3)] == ["a@contoso.com"]
        assert store.load_window(4) is None

    def test_corrupt_window_is_discarded(self, store):
        store.window_path(0).parent.mkdir(parents=True)
        store.window_path(0).write_text("[{\"identity\": ", encoding="utf-8")
        assert store.load_window(0) is None

    def test_combine_requires_every_window(self, store):
        store.save_window(0, [ready("a@contoso.com")])
        with pytest.raises(FileNotFoundError):
            store.combine(2)

    def test_combine_empty_run(self, store):
        path = store.combine(0)
        assert store.load_results(path) == []

    def test_results_exist(self, store):
        assert not store.results_exist()
        store.save_window(0, [ready("a@contoso.com")])
        store.combine(1)
        assert store.results_exist()

    def test_no_temporary_files_left_behind(self, store):
        store.save_window(0, [ready("a@contoso.com")])
        store.combine(1)
        store.remove_windows()
        assert [p.name for p in store.work_dir.iterdir()] == ["validation_results.json"]

    def test_failed_write_keeps_previous_file(self, store, monkeypatch):
        store.save_window(0, [ready("a@contoso.com")])
        broken = Mock(side_effect=TypeError("not serializable"))
        monkeypatch.setattr("mailbox_migration.execution.artifacts.json.dumps", broken)

        with pytest.raises(TypeError):
            store.combine(1)
        assert not store.combined_path.exists()
        assert [p.name for p in store.work_dir.iterdir()] == ["windows"]
