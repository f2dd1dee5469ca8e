"""Unit tests for rule-based classification."""

from datetime import datetime, timedelta, timezone

import pytest

from directory.models.object_record import ObjectRecord
from housekeeping.classifier import (
    AD_NEVER,
    FILETIME_EPOCH_OFFSET,
    ClassificationRule,
    all_of,
    attribute_equals,
    build_tier_rules,
    classify,
    classify_all,
    lacks_membership,
    name_suffix,
    older_than,
    to_datetime,
)
from housekeeping.models.classification import Classification

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def record(identifier, memberships=(), **attributes):
    return ObjectRecord.build(identifier, f"CN={identifier},OU=Admins,DC=example,DC=com", attributes, memberships)


def filetime(moment):
    return int(moment.timestamp() * 10_000_000) + FILETIME_EPOCH_OFFSET


class TestClassify:
    def test_first_matching_rule_wins(self):
        rules = [
            ClassificationRule(lambda r: True, Classification.TIER1, "always"),
            ClassificationRule(lambda r: True, Classification.TIER0, "also always"),
        ]
        assert classify(record("x"), rules) == Classification.TIER1

    def test_no_match_is_unclassified(self):
        assert classify(record("bob"), build_tier_rules()) == Classification.UNCLASSIFIED
        assert classify(record("bob"), []) == Classification.UNCLASSIFIED

    def test_classification_is_deterministic(self):
        rules = build_tier_rules()
        target = record("alice_T1", employeeType="T1")
        assert {classify(target, rules) for _ in range(10)} == {Classification.TIER1}

    def test_classify_all(self):
        records = [record("alice_T1"), record("carol_T0"), record("bob")]
        assert classify_all(records, build_tier_rules()) == {
            "alice_T1": Classification.TIER1,
            "carol_T0": Classification.TIER0,
            "bob": Classification.UNCLASSIFIED,
        }


class TestTierRules:
    @pytest.mark.parametrize(
        "identifier, tier",
        [
            ("alice_T0", Classification.TIER0),
            ("alice_T1", Classification.TIER1),
            ("alice_t2", Classification.TIER2),
        ],
    )
    def test_suffix(self, identifier, tier):
        assert classify(record(identifier), build_tier_rules()) == tier

    def test_attribute(self):
        assert classify(record("svc_backup", employeeType="t0"), build_tier_rules()) == Classification.TIER0

    def test_attribute_takes_precedence_over_suffix(self):
        conflicting = record("alice_T0", employeeType="T1")
        assert classify(conflicting, build_tier_rules()) == Classification.TIER1

    def test_suffix_only(self):
        conflicting = record("alice_T0", employeeType="T1")
        assert classify(conflicting, build_tier_rules(attribute=None)) == Classification.TIER0

    def test_custom_attribute_values(self):
        rules = build_tier_rules(
            attribute="extensionAttribute1",
            attribute_values={Classification.TIER1: "ServerAdmin"},
        )
        assert classify(record("svc", extensionAttribute1="serveradmin"), rules) == Classification.TIER1


class TestRuleBuilders:
    def test_attribute_equals_multi_valued(self):
        rule = attribute_equals("objectClass", "computer", Classification.STALE)
        assert rule.matches(record("pc01$", objectClass=["top", "computer"]))
        assert not rule.matches(record("pc01$"))

    def test_name_suffix(self):
        assert name_suffix("_T1", Classification.TIER1).matches(record("ALICE_T1"))

    def test_lacks_membership(self):
        rule = lacks_membership(["Domain Admins"], Classification.ORPHANED)
        assert rule.matches(record("x", ["GroupA"]))
        assert not rule.matches(record("x", ["domain admins"]))

    def test_all_of(self):
        rule = all_of(
            name_suffix("_T1", Classification.TIER1),
            attribute_equals("employeeType", "T1", Classification.TIER1),
        )
        assert rule.classification == Classification.TIER1
        assert rule.matches(record("a_T1", employeeType="T1"))
        assert not rule.matches(record("a_T1"))


class TestOlderThan:
    def test_old_datetime(self):
        rule = older_than("lastLogonTimestamp", 90, now=NOW)
        assert rule.matches(record("x", lastLogonTimestamp=NOW - timedelta(days=120)))
        assert not rule.matches(record("x", lastLogonTimestamp=NOW - timedelta(days=10)))

    def test_filetime_values(self):
        rule = older_than("lastLogonTimestamp", 90, now=NOW)
        assert rule.matches(record("x", lastLogonTimestamp=filetime(NOW - timedelta(days=200))))
        assert not rule.matches(record("x", lastLogonTimestamp=str(filetime(NOW - timedelta(days=1)))))

    def test_missing_and_never(self):
        assert older_than("lastLogonTimestamp", 90, now=NOW).matches(record("x"))
        assert older_than("lastLogonTimestamp", 90, now=NOW).matches(record("x", lastLogonTimestamp=0))
        assert not older_than("whenCreated", 90, now=NOW, missing_is_old=False).matches(record("x"))

    def test_reference_time_is_captured(self):
        rule = older_than("lastLogonTimestamp", 90, now=NOW)
        target = record("x", lastLogonTimestamp=NOW - timedelta(days=100))
        assert classify(target, [rule]) == classify(target, [rule]) == Classification.STALE


class TestToDatetime:
    def test_naive_datetime_gets_utc(self):
        assert to_datetime(datetime(2024, 1, 1)).tzinfo == timezone.utc

    def test_iso_string(self):
        assert to_datetime("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_never_expires(self):
        assert to_datetime(0x7FFFFFFFFFFFFFFF).year == 9999

    def test_zero_is_never(self):
        assert to_datetime(0) == AD_NEVER

    def test_unparseable(self):
        assert to_datetime("yesterday") is None
        assert to_datetime(None) is None
