"""
Tests for batch decisions and migration batch creation.
"""

from unittest.mock import Mock

import pytest

from mailbox_migration.batch.creator import BatchCreator
from mailbox_migration.batch.decision import (
    ClassifiedResults,
    classify_results,
    recommend_tolerance,
    resolve_inclusion_policy,
    select_identities,
    tolerance_overrides,
)
from mailbox_migration.core.exceptions import (
    BatchAlreadyExistsError,
    BatchCreationAbortedError,
    BatchCreationError,
    ErrorKind,
    GatewayError,
)
from mailbox_migration.models.batch import (
    BatchOutcomeStatus,
    BatchStrategy,
    InclusionPolicy,
    MigrationBatchDescriptor,
    RiskLevel,
)
from mailbox_migration.models.results import OverallStatus, ValidationResult


def result_with(identity, status=OverallStatus.READY, item_count=0, deep=False):
    result = ValidationResult(identity=identity, item_count=item_count, has_deep_folder_hierarchy=deep)
    if status == OverallStatus.FAILED:
        result.add_error("NO_EXCHANGE_LICENSE", "No license")
    elif status == OverallStatus.WARNING:
        result.add_warning("Mailbox auditing is disabled")
    if status != OverallStatus.UNKNOWN:
        result.finalize()
    return result


@pytest.fixture
def classified():
    """Three Ready, two Warning and one Failed mailbox."""
    return classify_results([
        result_with("r1@contoso.com"),
        result_with("w1@contoso.com", OverallStatus.WARNING),
        result_with("r2@contoso.com"),
        result_with("f1@contoso.com", OverallStatus.FAILED),
        result_with("w2@contoso.com", OverallStatus.WARNING),
        result_with("r3@contoso.com"),
    ])


def descriptor(mailboxes, name="Wave1", **kwargs):
    return MigrationBatchDescriptor(
        name=name,
        source_endpoint="OnPremEndpoint",
        target_delivery_domain="contoso.onmicrosoft.com",
        mailboxes=mailboxes,
        **kwargs
    )


class TestClassification:
    """Test cases for classifying results."""

    def test_groups_by_status_in_order(self, classified):
        assert classified.ready == ["r1@contoso.com", "r2@contoso.com", "r3@contoso.com"]
        assert classified.warning == ["w1@contoso.com", "w2@contoso.com"]
        assert classified.failed == ["f1@contoso.com"]
        assert classified.total == 6
        assert classified.counts() == {"Ready": 3, "Warning": 2, "Failed": 1}

    def test_unknown_counts_as_failed(self):
        classified = classify_results([result_with("u@contoso.com", OverallStatus.UNKNOWN)])
        assert classified.failed == ["u@contoso.com"]


class TestInclusionPolicy:
    """Test cases for the inclusion policy."""

    def test_force_includes_warnings(self, classified):
        prompt = Mock()
        assert resolve_inclusion_policy(classified, force=True, prompt=prompt) == InclusionPolicy.READY_AND_WARNING
        prompt.assert_not_called()

    def test_no_warnings_needs_no_decision(self):
        prompt = Mock()
        only_ready = ClassifiedResults(ready=["a@contoso.com"])
        assert resolve_inclusion_policy(only_ready, prompt=prompt) == InclusionPolicy.READY_ONLY
        prompt.assert_not_called()

    def test_prompt_decides(self, classified):
        prompt = Mock(return_value=InclusionPolicy.ABORT)
        assert resolve_inclusion_policy(classified, prompt=prompt) == InclusionPolicy.ABORT
        prompt.assert_called_once_with(classified)

    def test_without_prompt_only_ready(self, classified):
        assert resolve_inclusion_policy(classified) == InclusionPolicy.READY_ONLY

    def test_ready_and_warning_selects_five(self, classified):
        selected = select_identities(classified, InclusionPolicy.READY_AND_WARNING)
        assert len(selected) == 5
        assert "f1@contoso.com" not in selected

    def test_ready_only(self, classified):
        assert select_identities(classified, InclusionPolicy.READY_ONLY) == classified.ready

    def test_abort(self, classified):
        with pytest.raises(BatchCreationAbortedError):
            select_identities(classified, InclusionPolicy.ABORT)


class TestTolerance:
    """Test cases for bad-item limit recommendations."""

    @pytest.mark.parametrize("item_count,limit,risk", [
        (150_000, 100, RiskLevel.HIGH),
        (60_000, 30, RiskLevel.MEDIUM),
        (1_000, 10, RiskLevel.LOW),
        (500_000, 100, RiskLevel.HIGH),
        (100_000, 50, RiskLevel.MEDIUM),
        (50_000, 10, RiskLevel.LOW),
    ])
    def test_limits_by_item_count(self, item_count, limit, risk):
        recommendation = recommend_tolerance(result_with("a@contoso.com", item_count=item_count))
        assert recommendation.bad_item_limit == limit
        assert recommendation.risk_level == risk

    def test_deep_hierarchy_is_high_risk(self):
        recommendation = recommend_tolerance(result_with("a@contoso.com", item_count=10, deep=True))
        assert recommendation.bad_item_limit == 10
        assert recommendation.risk_level == RiskLevel.HIGH

    def test_high_risk_mailbox_stays_ready(self):
        result = result_with("a@contoso.com", item_count=150_000)
        assert recommend_tolerance(result).risk_level == RiskLevel.HIGH
        assert result.overall_status == OverallStatus.READY

    def test_overrides_cover_selected_identities(self):
        results = [
            result_with("a@contoso.com", item_count=150_000),
            result_with("b@contoso.com", item_count=60_000),
            result_with("c@contoso.com", item_count=1_000),
        ]
        assert tolerance_overrides(results, ["a@contoso.com", "b@contoso.com"]) == {
            "a@contoso.com": 100,
            "b@contoso.com": 30,
        }


@pytest.fixture
def creator(gateway, executor, fake_sleep):
    now = [0.0]

    async def sleep(delay):
        now[0] += delay
        await fake_sleep(delay)

    return BatchCreator(gateway, executor, poll_timeout=30, poll_interval=5, sleep=sleep, clock=lambda: now[0])


class TestBatchCreator:
    """Test cases for BatchCreator."""

    @pytest.mark.asyncio
    async def test_bulk_creation(self, creator, gateway):
        recorded = []
        mailboxes = ["alice@contoso.com", "bob@contoso.com", "carol@contoso.com"]

        outcome = await creator.create(descriptor(mailboxes), on_submitted=recorded.append)

        assert outcome.status == BatchOutcomeStatus.CREATED
        assert outcome.submitted == mailboxes
        assert outcome.batch_id == gateway.batches["Wave1"]["id"]
        assert recorded == [outcome.batch_id]
        assert outcome.confirmed
        assert outcome.final_status == "Syncing"
        assert gateway.call_count("create_migration_batch") == 1
        assert set(gateway.batch_members["Wave1"]) == set(mailboxes)

    @pytest.mark.asyncio
    async def test_nothing_eligible(self, creator, gateway):
        outcome = await creator.create(descriptor([]))

        assert outcome.status == BatchOutcomeStatus.NOTHING_ELIGIBLE
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_existing_batch_is_a_conflict(self, creator, gateway):
        await creator.create(descriptor(["alice@contoso.com"]))

        with pytest.raises(BatchAlreadyExistsError):
            await creator.create(descriptor(["bob@contoso.com"]))
        assert gateway.call_count("create_migration_batch") == 1

    @pytest.mark.asyncio
    async def test_known_batch_is_adopted(self, creator, gateway):
        first = await creator.create(descriptor(["alice@contoso.com"]))

        again = await creator.create(descriptor(["alice@contoso.com"]), known_batch_id=first.batch_id)

        assert again.adopted
        assert again.batch_id == first.batch_id
        assert gateway.call_count("create_migration_batch") == 1

    @pytest.mark.asyncio
    async def test_interrupted_submission_is_not_duplicated(self, creator, gateway):
        original = gateway.create_migration_batch

        async def create_then_drop(batch_descriptor, auto_start=True):
            await original(batch_descriptor, auto_start=auto_start)
            raise GatewayError("Connection reset by peer", kind=ErrorKind.TRANSIENT)

        gateway.create_migration_batch = create_then_drop
        outcome = await creator.create(descriptor(["alice@contoso.com"]))

        assert outcome.status == BatchOutcomeStatus.CREATED
        assert outcome.batch_id == gateway.batches["Wave1"]["id"]
        assert len(gateway.batches) == 1

    @pytest.mark.asyncio
    async def test_bulk_failure_is_wrapped(self, creator, gateway):
        with pytest.raises(BatchCreationError) as exc_info:
            await creator.create(descriptor(["nobody@contoso.com"]))
        assert "nobody@contoso.com" in exc_info.value.details["failed"]

    @pytest.mark.asyncio
    async def test_per_mailbox_creation(self, creator, gateway):
        recorded = []
        overrides = {"alice@contoso.com": 100, "bob@contoso.com": 10}

        outcome = await creator.create(
            descriptor(["alice@contoso.com", "bob@contoso.com"], tolerance_overrides=overrides),
            strategy=BatchStrategy.PER_MAILBOX,
            on_submitted=recorded.append,
        )

        assert outcome.strategy == BatchStrategy.PER_MAILBOX
        assert outcome.submitted == ["alice@contoso.com", "bob@contoso.com"]
        assert gateway.batch_members["Wave1"] == overrides
        assert recorded == [outcome.batch_id]
        assert outcome.confirmed

    @pytest.mark.asyncio
    async def test_per_mailbox_partial_failure(self, creator, gateway):
        outcome = await creator.create(
            descriptor(["alice@contoso.com", "ghost@contoso.com"]),
            strategy=BatchStrategy.PER_MAILBOX,
        )

        assert outcome.submitted == ["alice@contoso.com"]
        assert list(outcome.failed) == ["ghost@contoso.com"]

    @pytest.mark.asyncio
    async def test_per_mailbox_with_no_success_fails(self, creator):
        with pytest.raises(BatchCreationError):
            await creator.create(descriptor(["ghost@contoso.com"]), strategy=BatchStrategy.PER_MAILBOX)

    @pytest.mark.asyncio
    async def test_unconfirmed_batch_is_reported(self, gateway, executor, creator):
        gateway.batch_status_sequence = []

        outcome = await creator.create(descriptor(["alice@contoso.com"]))

        assert outcome.status == BatchOutcomeStatus.CREATED
        assert not outcome.confirmed
        assert outcome.final_status == "Starting"
        assert "did not leave status 'Starting'" in outcome.confirmation_warning
        assert gateway.call_count("get_migration_batch_status") == 7

    @pytest.mark.asyncio
    async def test_per_mailbox_batch_id_is_recorded_before_start(self, creator, gateway):
        recorded = []
        gateway.inject_failure(
            "start_migration_batch", GatewayError("Service unavailable", kind=ErrorKind.TRANSIENT), times=3
        )

        with pytest.raises(BatchCreationError, match="could not be started"):
            await creator.create(
                descriptor(["alice@contoso.com"]),
                strategy=BatchStrategy.PER_MAILBOX,
                on_submitted=recorded.append,
            )

        assert recorded == [gateway.batches["Wave1"]["id"]]

    @pytest.mark.asyncio
    async def test_unstarted_per_mailbox_batch_is_completed_on_adoption(self, creator, gateway):
        overrides = {"alice@contoso.com": 100, "bob@contoso.com": 10}
        wave = descriptor(["alice@contoso.com", "bob@contoso.com"], tolerance_overrides=overrides)
        recorded = []
        unavailable = GatewayError("Service unavailable", kind=ErrorKind.TRANSIENT)
        gateway.inject_failure("add_mailbox_to_batch", unavailable, identity="bob@contoso.com", times=3)
        gateway.inject_failure("start_migration_batch", unavailable, times=3)
        with pytest.raises(BatchCreationError):
            await creator.create(wave, strategy=BatchStrategy.PER_MAILBOX, on_submitted=recorded.append)
        assert gateway.batch_members["Wave1"] == {"alice@contoso.com": 100}

        outcome = await creator.create(wave, strategy=BatchStrategy.PER_MAILBOX, known_batch_id=recorded[0])

        assert outcome.adopted
        assert outcome.batch_id == recorded[0]
        assert outcome.submitted == ["alice@contoso.com", "bob@contoso.com"]
        assert gateway.batch_members["Wave1"] == overrides
        assert gateway.call_count("add_mailbox_to_batch", "alice@contoso.com") == 1
        assert gateway.call_count("create_migration_batch") == 1
        assert outcome.confirmed

    @pytest.mark.asyncio
    async def test_running_batch_is_confirmed_on_adoption(self, creator, gateway):
        first = await creator.create(descriptor(["alice@contoso.com"]))
        assert gateway.batches["Wave1"]["status"] == "Syncing"
        polls = gateway.call_count("get_migration_batch_status")

        again = await creator.create(descriptor(["alice@contoso.com"]), known_batch_id=first.batch_id)

        assert again.adopted
        assert again.confirmed
        assert again.final_status == "Syncing"
        assert again.confirmation_warning is None
        assert gateway.call_count("get_migration_batch_status") == polls
