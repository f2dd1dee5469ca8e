import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import pandas as pd

from directory.exceptions import ErrorKind

from .classification import Classification


@dataclass(frozen=True)
class RecordError:
    """One failed (or skipped-as-missing) action on one record."""

    identifier: str
    action: str
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class PlannedAction:
    """An action reported by a dry run, or applied by a live one."""

    identifier: str
    classification: Classification
    action: str
    applied: bool


@dataclass(frozen=True)
class RunResult:
    """Aggregate outcome of one housekeeping run. Immutable once returned."""

    objects_scanned: int = 0
    classified: Mapping[Classification, int] = field(default_factory=dict)
    records_attempted: int = 0
    records_skipped: int = 0
    records_not_started: int = 0
    operations_attempted: int = 0
    operations_succeeded: int = 0
    operations_unchanged: int = 0
    planned_actions: Tuple[PlannedAction, ...] = ()
    errors: Tuple[RecordError, ...] = ()
    dry_run: bool = False
    deadline_reached: bool = False
    duration_seconds: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "classified", MappingProxyType(dict(self.classified)))

    @property
    def succeeded(self) -> bool:
        return not self.errors

    @property
    def exit_code(self) -> int:
        return 0 if not self.errors else 1

    def summary_lines(self) -> List[str]:
        mode = "DRY RUN" if self.dry_run else "LIVE"
        lines = [
            f"Mode: {mode}",
            f"Objects scanned: {self.objects_scanned}",
            "Classified: "
            + (", ".join(f"{tag}={count}" for tag, count in sorted(self.classified.items())) or "none"),
            f"Records: {self.records_attempted} attempted, {self.records_skipped} skipped, "
            f"{self.records_not_started} not started",
            f"Operations: {self.operations_attempted} attempted, {self.operations_succeeded} succeeded "
            f"({self.operations_unchanged} already compliant), {len(self.errors)} failed",
            f"Duration: {self.duration_seconds:.2f} seconds",
        ]
        if self.dry_run:
            lines.append(f"Would apply: {len(self.planned_actions)} actions")
        if self.deadline_reached:
            lines.append("Run deadline reached before all records were started")
        return lines

    def to_dataframe(self) -> pd.DataFrame:
        """One row per planned/applied action and per error, for CSV reports."""
        rows = [
            {
                "identifier": planned.identifier,
                "classification": str(planned.classification),
                "action": planned.action,
                "status": "applied" if planned.applied else "would_apply",
                "error_kind": "",
                "message": "",
            }
            for planned in self.planned_actions
        ]
        rows.extend(
            {
                "identifier": error.identifier,
                "classification": "",
                "action": error.action,
                "status": "failed",
                "error_kind": error.kind.value,
                "message": error.message,
            }
            for error in self.errors
        )
        return pd.DataFrame(
            rows,
            columns=["identifier", "classification", "action", "status", "error_kind", "message"],
        )


class RunTally:
    """Mutable, thread-safe accumulator that freezes into a RunResult."""

    def __init__(self, objects_scanned: int = 0, classified: Optional[Dict[Classification, int]] = None, dry_run: bool = False):
        self.objects_scanned = objects_scanned
        self.classified = dict(classified or {})
        self.dry_run = dry_run
        self.records_attempted = 0
        self.records_skipped = 0
        self.records_not_started = 0
        self.operations_attempted = 0
        self.operations_succeeded = 0
        self.operations_unchanged = 0
        self.deadline_reached = False
        self.planned: List[PlannedAction] = []
        self.errors: List[RecordError] = []
        self._lock = threading.Lock()

    def record_attempted(self) -> None:
        with self._lock:
            self.records_attempted += 1

    def record_skipped(self) -> None:
        with self._lock:
            self.records_skipped += 1

    def record_not_started(self) -> None:
        with self._lock:
            self.records_not_started += 1
            self.deadline_reached = True

    def operation(self, planned: PlannedAction, succeeded: bool, changed: bool = True) -> None:
        with self._lock:
            self.operations_attempted += 1
            if succeeded:
                self.operations_succeeded += 1
                self.planned.append(planned)
                if not changed:
                    self.operations_unchanged += 1

    def would_apply(self, planned: PlannedAction) -> None:
        with self._lock:
            self.planned.append(planned)

    def error(self, error: RecordError) -> None:
        with self._lock:
            self.errors.append(error)

    def freeze(self, duration_seconds: float) -> RunResult:
        with self._lock:
            return RunResult(
                objects_scanned=self.objects_scanned,
                classified=self.classified,
                records_attempted=self.records_attempted,
                records_skipped=self.records_skipped,
                records_not_started=self.records_not_started,
                operations_attempted=self.operations_attempted,
                operations_succeeded=self.operations_succeeded,
                operations_unchanged=self.operations_unchanged,
                planned_actions=tuple(self.planned),
                errors=tuple(self.errors),
                dry_run=self.dry_run,
                deadline_reached=self.deadline_reached,
                duration_seconds=duration_seconds,
            )
