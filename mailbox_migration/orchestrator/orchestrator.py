"""
Main orchestrator for a mailbox migration run.

This module provides the MailboxMigrationOrchestrator class that wires the
gateway, session, retry executor, validation pipeline, report generator
and batch creator into the stage handlers of the run state machine.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from mailbox_migration.batch.creator import BatchCreator
from mailbox_migration.batch.decision import (
    ClassifiedResults,
    PolicyPrompt,
    classify_results,
    resolve_inclusion_policy,
    select_identities,
    tolerance_overrides,
)
from mailbox_migration.core.exceptions import ConfigurationError, GatewayError
from mailbox_migration.core.retry import RetryConfig, RetryExecutor
from mailbox_migration.core.session import SessionManager
from mailbox_migration.execution.artifacts import ResultArtifactStore
from mailbox_migration.execution.batch_executor import BatchValidationExecutor
from mailbox_migration.execution.input_reader import MailboxInputReader
from mailbox_migration.gateway.base import DirectoryGateway
from mailbox_migration.gateway.factory import GatewayFactory
from mailbox_migration.models.batch import (
    BatchCreationOutcome,
    BatchStrategy,
    MigrationBatchDescriptor,
)
from mailbox_migration.models.config import RunConfig
from mailbox_migration.models.state import MigrationRunState, RunStage
from mailbox_migration.monitoring.progress import ProgressReporter
from mailbox_migration.monitoring.report_generator import ReadinessReport, ReadinessReportGenerator
from mailbox_migration.orchestrator.state_machine import RunStateMachine, StageHandler
from mailbox_migration.orchestrator.state_store import RunStateStore
from mailbox_migration.utils.helpers import default_batch_name, generate_run_id
from mailbox_migration.utils.logging import RunLogger
from mailbox_migration.validation.registry import CheckRegistry
from mailbox_migration.validation.runner import CheckRunner

logger = logging.getLogger(__name__)


class MailboxMigrationOrchestrator:
    """
    Coordinates one migration run from input file to submitted batch.
    """

    def __init__(
        self,
        config: RunConfig,
        gateway: Optional[DirectoryGateway] = None,
        prompt: Optional[PolicyPrompt] = None,
        registry: Optional[CheckRegistry] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration
            gateway: Directory gateway (built from the config when omitted)
            prompt: Asks the operator for the inclusion policy
            registry: Check registry (defaults to the built-in checks)
            sleep: Awaitable sleep used for retries and polling
        """
        self.config = config
        self.gateway = gateway or GatewayFactory.create_gateway(config.gateway.type, config.gateway.options)
        self.prompt = prompt

        self.session = SessionManager(
            self.gateway,
            lifetime=timedelta(minutes=config.session.lifetime_minutes),
            refresh_margin=timedelta(minutes=config.session.refresh_margin_minutes),
        )
        self.executor = RetryExecutor(
            session=self.session,
            config=RetryConfig(
                max_retries=config.retry.max_retries,
                base_delay=config.retry.base_delay,
                max_delay=config.retry.max_delay,
            ),
            sleep=sleep,
        )
        self.store = RunStateStore(config.state_file)
        self.artifacts = ResultArtifactStore(config.work_dir)
        self.progress = ProgressReporter()
        self.runner = CheckRunner(
            self.gateway,
            self.executor,
            registry=registry,
            thresholds=config.thresholds,
        )
        self.validator = BatchValidationExecutor(
            self.runner,
            self.artifacts,
            depth=config.validation.depth,
            progress=self.progress,
        )
        self.reports = ReadinessReportGenerator(str(config.report_dir))
        self.batch_creator = BatchCreator(
            self.gateway,
            self.executor,
            poll_timeout=config.batch.poll_timeout_seconds,
            poll_interval=config.batch.poll_interval_seconds,
            sleep=sleep,
        )

        self.report: Optional[ReadinessReport] = None
        self.outcome: Optional[BatchCreationOutcome] = None
        self._reader: Optional[MailboxInputReader] = None

    def stage_handlers(self) -> Dict[RunStage, StageHandler]:
        return {
            RunStage.INITIALIZING: self._initialize,
            RunStage.CHECKING_DEPENDENCIES: self._check_dependencies,
            RunStage.CONNECTING_SERVICES: self._connect_services,
            RunStage.VALIDATING_MAILBOXES: self._validate_mailboxes,
            RunStage.GENERATING_REPORT: self._generate_report,
            RunStage.PREPARE_FOR_BATCH_CREATION: self._prepare_batch,
            RunStage.CREATING_BATCH: self._create_batch,
        }

    def new_state(self, input_file: str) -> MigrationRunState:
        run_id = generate_run_id()
        state = MigrationRunState(
            run_id=run_id,
            batch_name=self.config.batch.name or default_batch_name(run_id),
            source_file_path=str(Path(input_file).resolve()),
            dry_run=self.config.dry_run,
        )
        state.stage_history[RunStage.INITIALIZING.value] = state.created_at
        return state

    def load_or_create_state(self, input_file: Optional[str], resume: bool = False) -> MigrationRunState:
        """
        The state to run: a resumed one, or a new run for ``input_file``.

        Raises:
            ConfigurationError: If an unfinished run would be overwritten or
                the resumed run belongs to another input file
        """
        if resume:
            state = self.store.load()
            if state is not None:
                if input_file and Path(input_file).resolve() != Path(state.source_file_path):
                    raise ConfigurationError(
                        f"Run state {self.store.path} belongs to input {state.source_file_path}, "
                        f"not {input_file}"
                    )
                state.dry_run = self.config.dry_run
                return state
            logger.info("No resumable run state found; starting a new run")
        elif self.store.exists():
            existing = self.store.load()
            if existing is not None and not existing.is_terminal:
                raise ConfigurationError(
                    f"An unfinished run ({existing.run_id}) is recorded in {self.store.path}; "
                    f"resume it or choose another state file"
                )

        if not input_file:
            raise ConfigurationError("An input file is required to start a new run")
        return self.new_state(input_file)

    async def run(self, input_file: Optional[str] = None, resume: bool = False) -> MigrationRunState:
        """
        Execute a run to completion.

        Args:
            input_file: Mailbox input file (optional when resuming)
            resume: Continue the run recorded in the state file

        Returns:
            The final run state

        Raises:
            ConfigurationError: If the run cannot be started, or a dry run
                would resume a run that already began creating its batch
            StageExecutionError: If a stage fails
        """
        state = self.load_or_create_state(input_file, resume=resume)
        machine = RunStateMachine(self.store, self.stage_handlers(), RunLogger(state.run_id))

        if resume and state.current_stage != RunStage.INITIALIZING:
            if state.dry_run and machine.resume_stage(state) == RunStage.CREATING_BATCH:
                raise ConfigurationError(
                    f"Run {state.run_id} stopped while creating batch {state.batch_name}; "
                    f"it cannot be resumed as a dry run"
                )
            state = machine.prepare_resume(state)
        if state.current_stage == RunStage.COMPLETED:
            logger.info(f"Run {state.run_id} is already completed")
            return state

        self.progress.run_id = state.run_id
        logger.info(f"Starting run {state.run_id} at stage {state.current_stage.value}")
        async with self.session:
            return await machine.run(state)

    def cancel(self) -> None:
        """Stop validation at the next window boundary."""
        self.validator.cancel()

    def _input_reader(self, state: MigrationRunState) -> MailboxInputReader:
        if self._reader is None:
            self._reader = MailboxInputReader(
                state.source_file_path,
                identity_column=self.config.validation.identity_column,
            ).open()
        return self._reader

    # Stage handlers

    async def _initialize(self, state: MigrationRunState) -> None:
        reader = self._input_reader(state)
        state.total_mailboxes = reader.count()
        self.config.work_dir.mkdir(parents=True, exist_ok=True)
        self.config.report_dir.mkdir(parents=True, exist_ok=True)
        logger.info(
            f"Run {state.run_id}: {state.total_mailboxes} mailboxes, batch {state.batch_name}, "
            f"depth {self.config.validation.depth.value}"
        )

    async def _check_dependencies(self, state: MigrationRunState) -> None:
        missing = await self.gateway.check_prerequisites()
        if missing:
            raise ConfigurationError(
                f"Gateway prerequisites are missing: {', '.join(missing)}",
                details={"missing": missing}
            )
        if not self.config.batch.target_delivery_domain:
            raise ConfigurationError("Target delivery domain is not configured")
        if not state.dry_run and not self.config.batch.source_endpoint:
            raise ConfigurationError("Source migration endpoint is not configured")

    async def _connect_services(self, state: MigrationRunState) -> None:
        await self.executor.execute_with_retry(self.session.connect, operation="connect")

        domains = await self.executor.call(self.gateway.get_accepted_domains, operation="get_accepted_domains")
        self.runner.accepted_domains = domains
        target = self.config.batch.target_delivery_domain.lower()
        if target not in {d.lower() for d in domains}:
            raise ConfigurationError(f"Target delivery domain {target} is not an accepted domain of the tenant")

        if state.dry_run:
            return
        endpoint = self.config.batch.source_endpoint
        try:
            await self.executor.call(
                lambda: self.gateway.get_migration_endpoint(endpoint),
                operation=f"get_migration_endpoint({endpoint})"
            )
        except GatewayError as e:
            if e.is_not_found:
                raise ConfigurationError(f"Migration endpoint {endpoint} does not exist") from e
            raise

    async def _validate_mailboxes(self, state: MigrationRunState) -> None:
        reader = self._input_reader(state)
        if not state.total_mailboxes:
            state.total_mailboxes = reader.count()

        path = await self.validator.validate_all(
            reader.iter_identities(),
            window_size=self.config.validation.window_size,
            concurrency=self.config.validation.concurrency,
            total=state.total_mailboxes,
        )
        state.validation_results_location = str(path)
        state.validation_complete = True

        stats = self.validator.stats
        logger.info(
            f"Validated {stats.processed} mailboxes in {stats.windows_processed} windows "
            f"({stats.windows_reused} reused, {stats.crashed} crashed, peak {stats.peak_in_flight} in flight)"
        )

    async def _generate_report(self, state: MigrationRunState) -> None:
        results = self.artifacts.load_results(state.validation_results_location)
        classified = classify_results(results)
        state.ready_list = classified.ready
        state.warning_list = classified.warning
        state.failed_list = classified.failed

        self.report = self.reports.generate(results, run_id=state.run_id, batch_name=state.batch_name)
        state.report_location = str(self.report.report_path)

    async def _prepare_batch(self, state: MigrationRunState) -> Optional[RunStage]:
        classified = ClassifiedResults(
            ready=list(state.ready_list),
            warning=list(state.warning_list),
            failed=list(state.failed_list),
        )
        policy = resolve_inclusion_policy(classified, force=self.config.force, prompt=self.prompt)
        state.inclusion_policy = policy.value
        state.selected_identities = select_identities(classified, policy)
        logger.info(f"Inclusion policy {policy.value}: {len(state.selected_identities)} mailboxes selected")

        if state.dry_run:
            logger.info("Dry run: no migration batch is created")
            return RunStage.COMPLETED
        return None

    async def _create_batch(self, state: MigrationRunState) -> None:
        settings = self.config.batch
        overrides = None
        if settings.strategy == BatchStrategy.PER_MAILBOX and state.selected_identities:
            results = self.artifacts.load_results(state.validation_results_location)
            overrides = tolerance_overrides(results, state.selected_identities)

        descriptor = MigrationBatchDescriptor(
            name=state.batch_name,
            source_endpoint=settings.source_endpoint,
            target_delivery_domain=settings.target_delivery_domain,
            complete_after=settings.complete_after,
            start_after=settings.start_after,
            notification_emails=settings.notification_emails,
            mailboxes=state.selected_identities,
            tolerance_overrides=overrides,
        )

        def record_batch_id(batch_id: str) -> None:
            state.batch_id = batch_id
            self.store.save(state)

        self.outcome = await self.batch_creator.create(
            descriptor,
            strategy=settings.strategy,
            known_batch_id=state.batch_id,
            on_submitted=record_batch_id,
        )
        state.batch_id = self.outcome.batch_id
        state.batch_outcome = self.outcome.status.value
