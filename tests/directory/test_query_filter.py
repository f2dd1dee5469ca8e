"""
Unit tests for QueryFilter and Predicate.

Covers LDAP rendering, in-memory evaluation and construction-time validation.
"""

import pytest

from directory.exceptions import ValidationFailedError
from directory.models.object_record import ObjectRecord
from directory.models.query_filter import (
    Predicate,
    QueryFilter,
    absent,
    at_least,
    at_most,
    ends_with,
    equals,
    flag_clear,
    flag_set,
    present,
)


def make_record(**attributes):
    return ObjectRecord.build("alice_T1", "CN=alice_T1,OU=Admins,DC=example,DC=com", attributes)


class TestPredicateValidation:
    """Malformed predicates are rejected before any directory call."""

    def test_invalid_attribute_name(self):
        with pytest.raises(ValidationFailedError):
            equals("bad name", "x")

    def test_attribute_name_with_filter_characters(self):
        with pytest.raises(ValidationFailedError):
            equals("cn)(objectClass=*", "x")

    def test_unknown_operator(self):
        with pytest.raises(ValidationFailedError):
            Predicate("cn", "contains", "x")

    def test_value_operator_requires_value(self):
        with pytest.raises(ValidationFailedError):
            Predicate("cn", "eq")

    def test_bit_flag_must_be_integer(self):
        with pytest.raises(ValidationFailedError):
            flag_set("userAccountControl", "disabled")

    def test_empty_filter_rejected(self):
        with pytest.raises(ValidationFailedError):
            QueryFilter([])

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            equals("", "x")


class TestToLdap:
    """Rendering to RFC 4515 filter strings."""

    def test_equality(self):
        assert equals("objectClass", "user").to_ldap() == "(objectClass=user)"

    def test_comparisons(self):
        assert at_least("adminCount", 1).to_ldap() == "(adminCount>=1)"
        assert at_most("badPwdCount", 3).to_ldap() == "(badPwdCount<=3)"

    def test_presence_and_absence(self):
        assert present("mail").to_ldap() == "(mail=*)"
        assert absent("mail").to_ldap() == "(!(mail=*))"

    def test_ends_with(self):
        assert ends_with("sAMAccountName", "_T1").to_ldap() == "(sAMAccountName=*_T1)"

    def test_bit_rules(self):
        assert flag_set("userAccountControl", 2).to_ldap() == (
            "(userAccountControl:1.2.840.113556.1.4.803:=2)"
        )
        assert flag_clear("userAccountControl", 2).to_ldap() == (
            "(!(userAccountControl:1.2.840.113556.1.4.803:=2))"
        )

    def test_values_are_escaped(self):
        assert equals("cn", "a*b(c)").to_ldap() == "(cn=a\\2ab\\28c\\29)"

    def test_single_predicate_not_wrapped(self):
        assert QueryFilter.where(equals("cn", "x")).to_ldap() == "(cn=x)"

    def test_and_combination(self):
        query = QueryFilter.where(equals("objectClass", "user")).and_(at_least("adminCount", 1))
        assert query.to_ldap() == "(&(objectClass=user)(adminCount>=1))"


class TestMatches:
    """In-memory evaluation agrees with the LDAP semantics."""

    def test_equality_is_case_insensitive(self):
        assert equals("employeeType", "t1").matches(make_record(employeeType="T1"))

    def test_equality_on_multi_valued_attribute(self):
        record = make_record(objectClass=["top", "person", "user"])
        assert equals("objectClass", "user").matches(record)
        assert not equals("objectClass", "group").matches(record)

    def test_attribute_name_is_case_insensitive(self):
        assert at_least("admincount", 1).matches(make_record(adminCount=1))

    def test_numeric_comparisons(self):
        record = make_record(adminCount="1")
        assert at_least("adminCount", 1).matches(record)
        assert not at_least("adminCount", 2).matches(record)
        assert at_most("adminCount", 1).matches(record)

    def test_missing_attribute_does_not_match_value_operators(self):
        record = make_record()
        assert not equals("employeeType", "T1").matches(record)
        assert not at_least("adminCount", 1).matches(record)

    def test_presence(self):
        assert present("mail").matches(make_record(mail="a@example.com"))
        assert not present("mail").matches(make_record(mail=""))
        assert absent("mail").matches(make_record())

    def test_ends_with(self):
        assert ends_with("sAMAccountName", "_t1").matches(make_record(sAMAccountName="alice_T1"))

    def test_flags(self):
        disabled = make_record(userAccountControl=514)
        enabled = make_record(userAccountControl=512)
        assert flag_set("userAccountControl", 2).matches(disabled)
        assert flag_clear("userAccountControl", 2).matches(enabled)
        assert not flag_clear("userAccountControl", 2).matches(disabled)

    def test_flag_clear_on_missing_attribute(self):
        assert flag_clear("userAccountControl", 2).matches(make_record())
        assert not flag_set("userAccountControl", 2).matches(make_record())

    def test_filter_requires_all_predicates(self):
        query = QueryFilter.where(equals("objectClass", "user"), at_least("adminCount", 1))
        assert query.matches(make_record(objectClass="user", adminCount=1))
        assert not query.matches(make_record(objectClass="user", adminCount=0))

    def test_equality_of_filters(self):
        assert QueryFilter.where(equals("cn", "x")) == QueryFilter.where(equals("cn", "x"))
        assert QueryFilter.where(equals("cn", "x")) != QueryFilter.where(equals("cn", "y"))
