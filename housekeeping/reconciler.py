"""
Reconciler: applies ActionSets through a directory adapter.

Every record is reconciled inside its own error boundary. A locked or
protected object records an error and the batch moves on; only fatal
problems (an unreachable directory, invalid configuration) stop a run,
and they do so before any mutation is attempted.
"""

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

from directory.adapters.base_directory_adapter import BaseDirectoryAdapter
from directory.exceptions import DirectoryError, ErrorKind
from directory.models.mutation_result import MutationResult

from .classifier import classify
from .config import HousekeepingConfig
from .differ import diff
from .exclusions import ExclusionList, build_exclusion_list
from .models.actions import ActionSet, CorrectiveAction
from .models.classification import Classification
from .models.run_result import PlannedAction, RecordError, RunResult, RunTally

if TYPE_CHECKING:
    from .routines import HousekeepingRoutine

logger = logging.getLogger(__name__)

# a missing or locked group skips only the actions aimed at it
GROUP_LOCAL_ERRORS = frozenset({ErrorKind.OBJECT_NOT_FOUND, ErrorKind.ACCESS_DENIED})


class RecordState(str, Enum):
    PENDING = "pending"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_STARTED = "not_started"


class Reconciler:
    """
    Applies corrective actions record by record.

    Args:
        adapter: Directory adapter carrying out mutations
        dry_run: Log and report actions without sending them to the adapter
        retry_backoff: Seconds to wait before the single retry of a timed-out call
        deadline_seconds: Stop starting new records after this many seconds
        max_workers: Records reconciled concurrently (1 means sequential)
    """

    def __init__(
        self,
        adapter: BaseDirectoryAdapter,
        dry_run: bool = False,
        retry_backoff: float = 2.0,
        deadline_seconds: Optional[float] = None,
        max_workers: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.dry_run = dry_run
        self.retry_backoff = retry_backoff
        self.deadline_seconds = deadline_seconds
        self.max_workers = max(1, int(max_workers))
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(cls, adapter: BaseDirectoryAdapter, config: HousekeepingConfig, **kwargs) -> "Reconciler":
        return cls(
            adapter,
            dry_run=config.dry_run,
            retry_backoff=config.retry_backoff,
            deadline_seconds=config.run_deadline_seconds,
            max_workers=config.max_workers,
            **kwargs,
        )

    def run(self, routine: "HousekeepingRoutine", config: HousekeepingConfig) -> RunResult:
        """
        Query, classify, diff and reconcile one routine end to end.

        Raises:
            ValidationFailedError: If an exclusion entry or setting is invalid
            QueryFailedError: If the directory cannot be queried
        """
        logger.info(f"\n{'=' * 70}")
        logger.info(f"Starting housekeeping routine: {routine.name}")
        logger.info(f"Search base: {config.search_base or '(adapter default)'} ({config.search_scope.value})")
        logger.info(f"Dry run: {self.dry_run}")
        logger.info(f"{'=' * 70}\n")

        exclusions = build_exclusion_list(self.adapter, config.exclusion_list)
        setup = routine.prepare(config, self.adapter)
        records = self.adapter.query(setup.query_filter, config.search_scope, config.search_base)

        action_sets = plan(records, setup.rules, setup.desired_groups, exclusions, setup.policy)
        classified = Counter(action_set.classification for action_set in action_sets)

        logger.info(
            f"Classified {len(records)} records: "
            + (", ".join(f"{tag}={count}" for tag, count in sorted(classified.items())) or "none")
        )
        return self.reconcile(action_sets, objects_scanned=len(records), classified=dict(classified))

    def reconcile(
        self,
        action_sets: Sequence[ActionSet],
        objects_scanned: Optional[int] = None,
        classified: Optional[Dict[Classification, int]] = None,
    ) -> RunResult:
        """Apply every ActionSet and return the frozen run summary."""
        started = self._clock()
        deadline = started + self.deadline_seconds if self.deadline_seconds else None
        if classified is None:
            classified = dict(Counter(action_set.classification for action_set in action_sets))
        tally = RunTally(
            objects_scanned=len(action_sets) if objects_scanned is None else objects_scanned,
            classified=classified,
            dry_run=self.dry_run,
        )

        total = len(action_sets)
        if self.dry_run:
            logger.info("*** DRY RUN MODE - No changes will be made ***")

        if self.max_workers > 1 and total > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [
                    pool.submit(self._reconcile_record, index, total, action_set, tally, deadline)
                    for index, action_set in enumerate(action_sets, 1)
                ]
                states = [future.result() for future in futures]
        else:
            states = [
                self._reconcile_record(index, total, action_set, tally, deadline)
                for index, action_set in enumerate(action_sets, 1)
            ]

        result = tally.freeze(self._clock() - started)
        self._log_summary(result, Counter(states))
        return result

    def _reconcile_record(
        self,
        index: int,
        total: int,
        action_set: ActionSet,
        tally: RunTally,
        deadline: Optional[float],
    ) -> RecordState:
        if action_set.skipped_reason:
            logger.debug(f"[{index}/{total}] {action_set.describe()}")
            tally.record_skipped()
            return RecordState.SKIPPED

        if deadline is not None and self._clock() >= deadline:
            logger.warning(f"[{index}/{total}] {action_set.identifier}: run deadline reached, not started")
            tally.record_not_started()
            return RecordState.NOT_STARTED

        tally.record_attempted()
        if action_set.is_empty:
            logger.debug(f"[{index}/{total}] {action_set.identifier}: compliant")
            return RecordState.SUCCEEDED

        logger.info(f"[{index}/{total}] {action_set.describe()}")
        state = RecordState.APPLYING
        for action in action_set.actions:
            planned = PlannedAction(
                identifier=action_set.identifier,
                classification=action_set.classification,
                action=action.describe(),
                applied=not self.dry_run,
            )
            if self.dry_run:
                logger.info(f"  [DRY RUN] Would apply {action.describe()} to {action_set.identifier}")
                tally.would_apply(planned)
                continue

            result = self._apply_with_retry(action, action_set.identifier)
            tally.operation(planned, succeeded=result.success, changed=result.changed)
            if result.success:
                marker = "✓" if result.changed else "="
                logger.info(f"  {marker} {action.describe()}")
                continue

            logger.error(f"  ✗ {action.describe()}: [{result.error_kind.value}] {result.message}")
            tally.error(
                RecordError(
                    identifier=action_set.identifier,
                    action=action.describe(),
                    kind=result.error_kind,
                    message=result.message,
                )
            )
            state = RecordState.FAILED
            if action.group_scoped and result.error_kind in GROUP_LOCAL_ERRORS:
                continue
            break

        return RecordState.SUCCEEDED if state == RecordState.APPLYING else state

    def _apply_with_retry(self, action: CorrectiveAction, identifier: str) -> MutationResult:
        result = self._apply(action, identifier)
        if not result.success and result.error_kind == ErrorKind.TIMEOUT:
            logger.warning(
                f"  {action.describe()} on {identifier} timed out, retrying in {self.retry_backoff}s"
            )
            self._sleep(self.retry_backoff)
            result = self._apply(action, identifier)
        return result

    def _apply(self, action: CorrectiveAction, identifier: str) -> MutationResult:
        try:
            return action.apply(self.adapter, identifier)
        except DirectoryError as e:
            return MutationResult.from_error(e)
        except Exception as e:
            logger.exception(f"Unexpected error applying {action.describe()} to {identifier}")
            return MutationResult.failed(ErrorKind.PROVIDER_ERROR, f"Unexpected error: {e}")

    def _log_summary(self, result: RunResult, states: Counter) -> None:
        logger.info(f"\n{'=' * 70}")
        logger.info("Housekeeping run completed")
        for line in result.summary_lines():
            logger.info(line)
        logger.debug(f"Record states: {dict(states)}")
        logger.info(f"{'=' * 70}\n")


def plan(
    records,
    rules,
    desired_groups_by_classification,
    exclusions=(),
    policy=None,
) -> List[ActionSet]:
    """Classify and diff a batch without touching the directory."""
    if not isinstance(exclusions, ExclusionList):
        exclusions = ExclusionList(exclusions)
    return [
        diff(record, classify(record, rules), desired_groups_by_classification, exclusions, policy)
        for record in records
    ]
