"""Unit tests for RunResult reporting."""

import pytest

from directory.exceptions import ErrorKind
from housekeeping.models.classification import Classification
from housekeeping.models.run_result import PlannedAction, RecordError, RunResult, RunTally


def sample_result(dry_run=False):
    tally = RunTally(objects_scanned=3, classified={Classification.TIER1: 2, Classification.UNCLASSIFIED: 1}, dry_run=dry_run)
    tally.record_attempted()
    tally.record_attempted()
    tally.operation(PlannedAction("alice_T1", Classification.TIER1, "AddToGroup(GroupA)", True), succeeded=True)
    tally.operation(PlannedAction("bob", Classification.UNCLASSIFIED, "Disable", True), succeeded=False)
    tally.error(RecordError("bob", "Disable", ErrorKind.ACCESS_DENIED, "insufficientAccessRights"))
    return tally.freeze(1.5)


class TestRunResult:
    def test_counts(self):
        result = sample_result()
        assert result.records_attempted == 2
        assert result.operations_attempted == 2
        assert result.operations_succeeded == 1
        assert len(result.planned_actions) == 1
        assert not result.succeeded
        assert result.exit_code == 1

    def test_empty_result_succeeds(self):
        assert RunResult().exit_code == 0

    def test_classified_is_read_only(self):
        result = sample_result()
        with pytest.raises(TypeError):
            result.classified[Classification.TIER0] = 1

    def test_summary_lines(self):
        lines = sample_result().summary_lines()
        assert lines[0] == "Mode: LIVE"
        assert "Classified: Tier1=2, Unclassified=1" in lines
        assert any("1 failed" in line for line in lines)

    def test_dry_run_summary(self):
        tally = RunTally(dry_run=True)
        tally.would_apply(PlannedAction("alice_T1", Classification.TIER1, "AddToGroup(GroupA)", False))
        lines = tally.freeze(0.1).summary_lines()
        assert lines[0] == "Mode: DRY RUN"
        assert "Would apply: 1 actions" in lines

    def test_deadline_summary(self):
        tally = RunTally()
        tally.record_not_started()
        result = tally.freeze(0.0)
        assert result.deadline_reached
        assert result.records_not_started == 1
        assert "Run deadline reached before all records were started" in result.summary_lines()

    def test_to_dataframe(self):
        df = sample_result().to_dataframe()

        assert list(df.columns) == ["identifier", "classification", "action", "status", "error_kind", "message"]
        assert len(df) == 2
        applied = df.iloc[0]
        assert applied["identifier"] == "alice_T1"
        assert applied["classification"] == "Tier1"
        assert applied["status"] == "applied"
        failed = df.iloc[1]
        assert failed["status"] == "failed"
        assert failed["error_kind"] == "AccessDenied"

    def test_empty_dataframe_has_columns(self):
        df = RunResult().to_dataframe()
        assert df.empty
        assert "status" in df.columns
