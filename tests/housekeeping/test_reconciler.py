"""
Unit tests for the Reconciler.

Covers per-record error isolation, dry runs, the single timeout retry, the
run deadline and the optional worker pool, using InMemoryDirectoryAdapter
with forced failures.
"""

from unittest.mock import MagicMock

import pytest

from directory.adapters.memory_adapter import InMemoryDirectoryAdapter
from directory.exceptions import AccessDeniedError, ErrorKind
from directory.models.mutation_result import MutationResult
from directory.models.query_filter import QueryFilter, equals
from housekeeping.classifier import build_tier_rules
from housekeeping.models.actions import ActionSet, AddToGroup, ClearAttribute, Disable
from housekeeping.models.classification import Classification
from housekeeping.reconciler import Reconciler, plan


def action_set(identifier, *actions, skipped_reason=""):
    return ActionSet(
        identifier=identifier,
        distinguished_path=f"CN={identifier},CN=Users,DC=example,DC=com",
        classification=Classification.TIER1,
        actions=tuple(actions),
        skipped_reason=skipped_reason,
    )


@pytest.fixture
def directory():
    adapter = InMemoryDirectoryAdapter()
    adapter.add_group("GroupA")
    for name in ("u1", "u2", "u3"):
        adapter.add_object(name, attributes={"adminCount": 1})
    return adapter


@pytest.fixture
def sleep():
    return MagicMock()


def batch():
    return [action_set(name, AddToGroup("GroupA")) for name in ("u1", "u2", "u3")]


class TestPartialFailure:
    def test_one_failure_does_not_stop_the_batch(self, directory, sleep):
        directory.fail_on("u2", ErrorKind.ACCESS_DENIED)

        result = Reconciler(directory, sleep=sleep).reconcile(batch())

        assert result.records_attempted == 3
        assert result.operations_attempted == 3
        assert result.operations_succeeded == 2
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.identifier == "u2"
        assert error.kind == ErrorKind.ACCESS_DENIED
        assert error.action == "AddToGroup(GroupA)"
        assert result.exit_code == 1
        assert "GroupA" in directory.memberships_of("u1")
        assert "GroupA" in directory.memberships_of("u3")
        assert "GroupA" not in directory.memberships_of("u2")
        sleep.assert_not_called()

    def test_first_failure_stops_the_record(self, directory, sleep):
        directory.fail_on("u1", ErrorKind.PROVIDER_ERROR)
        sets = [action_set("u1", AddToGroup("GroupA"), ClearAttribute("adminCount"))]

        result = Reconciler(directory, sleep=sleep).reconcile(sets)

        assert directory.calls == [("add_to_group", "u1", "GroupA")]
        assert result.operations_attempted == 1
        assert len(result.errors) == 1

    def test_missing_group_skips_only_that_action(self, directory, sleep):
        sets = [action_set("u1", AddToGroup("Aaa_Missing"), AddToGroup("GroupA"), ClearAttribute("adminCount"))]

        first = Reconciler(directory, sleep=sleep).reconcile(sets)
        second = Reconciler(directory, sleep=sleep).reconcile(sets)

        assert [(e.action, e.kind) for e in first.errors] == [
            ("AddToGroup(Aaa_Missing)", ErrorKind.OBJECT_NOT_FOUND)
        ]
        assert first.operations_attempted == 3
        assert first.operations_succeeded == 2
        assert first.exit_code == 1
        assert directory.memberships_of("u1") == {"GroupA"}
        assert "adminCount" not in directory.attributes_of("u1")
        assert [e.action for e in second.errors] == ["AddToGroup(Aaa_Missing)"]
        assert directory.memberships_of("u1") == {"GroupA"}

    def test_denied_group_skips_only_that_action(self, directory, sleep):
        directory.fail_on("u1", ErrorKind.ACCESS_DENIED)
        sets = [action_set("u1", AddToGroup("GroupA"), ClearAttribute("adminCount"))]

        result = Reconciler(directory, sleep=sleep).reconcile(sets)

        assert directory.calls == [("add_to_group", "u1", "GroupA"), ("clear_attribute", "u1", "adminCount")]
        assert [e.kind for e in result.errors] == [ErrorKind.ACCESS_DENIED]
        assert "adminCount" not in directory.attributes_of("u1")

    def test_failure_without_error_kind_is_contained(self, sleep):
        adapter = MagicMock()
        adapter.disable.return_value = MutationResult(success=False, message="nope")

        result = Reconciler(adapter, sleep=sleep).reconcile(
            [action_set("u1", Disable()), action_set("u2", Disable())]
        )

        assert result.records_attempted == 2
        assert [(e.identifier, e.kind) for e in result.errors] == [
            ("u1", ErrorKind.PROVIDER_ERROR),
            ("u2", ErrorKind.PROVIDER_ERROR),
        ]

    def test_missing_object_is_recorded(self, directory, sleep):
        result = Reconciler(directory, sleep=sleep).reconcile([action_set("ghost", Disable())])
        assert result.errors[0].kind == ErrorKind.OBJECT_NOT_FOUND

    def test_adapter_exception_is_contained(self, sleep):
        adapter = MagicMock()
        adapter.disable.side_effect = [RuntimeError("boom"), AccessDeniedError("no rights")]

        result = Reconciler(adapter, sleep=sleep).reconcile(
            [action_set("u1", Disable()), action_set("u2", Disable())]
        )

        assert [e.kind for e in result.errors] == [ErrorKind.PROVIDER_ERROR, ErrorKind.ACCESS_DENIED]
        assert result.records_attempted == 2

    def test_clean_run(self, directory, sleep):
        result = Reconciler(directory, sleep=sleep).reconcile(batch())
        assert result.succeeded
        assert result.exit_code == 0
        assert [p.applied for p in result.planned_actions] == [True, True, True]


class TestRetry:
    def test_timeout_retried_once(self, directory, sleep):
        directory.fail_on("u1", ErrorKind.TIMEOUT)

        result = Reconciler(directory, retry_backoff=3.0, sleep=sleep).reconcile([batch()[0]])

        assert result.succeeded
        assert result.operations_succeeded == 1
        sleep.assert_called_once_with(3.0)
        assert len(directory.calls) == 2

    def test_second_timeout_recorded(self, directory, sleep):
        directory.fail_on("u1", ErrorKind.TIMEOUT, times=2)

        result = Reconciler(directory, sleep=sleep).reconcile([batch()[0]])

        assert result.errors[0].kind == ErrorKind.TIMEOUT
        assert len(directory.calls) == 2
        sleep.assert_called_once()

    def test_other_errors_not_retried(self, directory, sleep):
        directory.fail_on("u1", ErrorKind.ACCESS_DENIED, times=None)
        Reconciler(directory, sleep=sleep).reconcile([batch()[0]])
        assert len(directory.calls) == 1
        sleep.assert_not_called()


class TestDryRun:
    def test_nothing_reaches_the_directory(self, directory, sleep):
        result = Reconciler(directory, dry_run=True, sleep=sleep).reconcile(batch())

        assert directory.calls == []
        assert result.dry_run
        assert result.operations_attempted == 0
        assert result.records_attempted == 3
        assert [(p.identifier, p.action, p.applied) for p in result.planned_actions] == [
            ("u1", "AddToGroup(GroupA)", False),
            ("u2", "AddToGroup(GroupA)", False),
            ("u3", "AddToGroup(GroupA)", False),
        ]
        assert all("GroupA" not in directory.memberships_of(name) for name in ("u1", "u2", "u3"))


class TestRecordStates:
    def test_skipped_and_empty_records(self, directory, sleep):
        sets = [action_set("krbtgt", skipped_reason="excluded"), action_set("u1")]

        result = Reconciler(directory, sleep=sleep).reconcile(sets)

        assert result.records_skipped == 1
        assert result.records_attempted == 1
        assert result.operations_attempted == 0
        assert directory.calls == []

    def test_unchanged_operations_counted(self, directory, sleep):
        directory.add_to_group("u1", "GroupA")
        directory.calls.clear()

        result = Reconciler(directory, sleep=sleep).reconcile([batch()[0]])

        assert result.operations_succeeded == 1
        assert result.operations_unchanged == 1


class TestDeadline:
    def test_no_new_records_after_deadline(self, directory, sleep):
        clock = iter([0.0, 1.0, 11.0, 12.0, 13.0]).__next__

        result = Reconciler(directory, deadline_seconds=10, clock=clock, sleep=sleep).reconcile(batch())

        assert result.records_attempted == 1
        assert result.records_not_started == 2
        assert result.deadline_reached
        assert directory.calls == [("add_to_group", "u1", "GroupA")]
        assert result.duration_seconds == 13.0


class TestWorkerPool:
    def test_parallel_reconciliation(self, sleep):
        directory = InMemoryDirectoryAdapter()
        directory.add_group("GroupA")
        names = [f"user{i}_T1" for i in range(20)]
        for name in names:
            directory.add_object(name)
        directory.fail_on("user7_T1", ErrorKind.ACCESS_DENIED)

        sets = [action_set(name, AddToGroup("GroupA")) for name in names]
        result = Reconciler(directory, max_workers=4, sleep=sleep).reconcile(sets)

        assert result.records_attempted == 20
        assert result.operations_succeeded == 19
        assert [e.identifier for e in result.errors] == ["user7_T1"]
        assert all("GroupA" in directory.memberships_of(n) for n in names if n != "user7_T1")


class TestPlan:
    def test_plan_classifies_and_diffs(self, directory):
        directory.add_object("alice_T1")
        directory.add_object("krbtgt")
        records = directory.query(QueryFilter.where(equals("objectCategory", "person")))
        desired = {Classification.TIER1: frozenset({"GroupA"})}

        sets = {s.identifier: s for s in plan(records, build_tier_rules(), desired, ["krbtgt"])}

        assert list(sets["alice_T1"]) == [AddToGroup("GroupA")]
        assert sets["krbtgt"].skipped_reason == "excluded"
        assert sets["u1"].classification == Classification.UNCLASSIFIED
        assert sets["u1"].is_empty
        assert directory.calls == []
