# tests/test_patterns.py
"""
Detector behaviour: trigger/guard matching, the reentrancy and owner-check
windows, cross-detector suppression and the Option extract/borrow automaton.
"""

import dataclasses

import pytest

from msvd.core import patterns
from msvd.core.patterns import (
    ACCESS_CONTROL,
    ACCOUNT_REGISTRATION,
    ARITHMETIC_PRECISION,
    BUSINESS_LOGIC_FLAW,
    GENERICS_TYPE_CHECK,
    INCORRECT_STD_FUNCTION,
    INTEGER_OVERFLOW,
    MISSING_ERROR_HANDLING,
    PRICE_ORACLE_MANIPULATION,
    REENTRANCY,
    RESOURCE_MANAGEMENT,
    UNBOUNDED_EXECUTION,
    UNCHECKED_ARITHMETIC,
    suppressed_lines,
)
from msvd.core.utils import Severity

TRANSFER = "coin::transfer<AptosCoin>(account, to, amount);"
STATE_CHANGE = "let vault = borrow_global_mut<Vault>(addr);"
OWNER_CHECK = "assert!(signer::address_of(admin) == config.owner, E_NOT_OWNER);"


def _src(lines_by_number, total):
    """Build source text with the given 1-indexed lines, blank elsewhere."""
    return "\n".join(lines_by_number.get(n, "") for n in range(1, total + 1))


def _lines(findings):
    return [f.location.line for f in findings]


class TestArithmeticDetectors:

    def test_addition_without_guard_is_flagged(self):
        found = INTEGER_OVERFLOW.check("let total = a + b;", "a.move")
        assert len(found) == 1
        f = found[0]
        assert f.severity is Severity.HIGH
        assert f.title == "Integer Overflow Vulnerability"
        assert f.location.file == "a.move"
        assert f.location.line == 1
        assert f.location.column == 0

    def test_guard_marker_on_same_line_suppresses(self):
        assert INTEGER_OVERFLOW.check("let total = a + b; assert!(total >= a, 1);") == []

    def test_guard_on_another_line_does_not_help(self):
        code = "assert!(a < 100, 1);\nlet total = a + b;"
        assert _lines(INTEGER_OVERFLOW.check(code)) == [2]

    def test_subtraction_and_division(self):
        code = "let left = balance - amount;\nlet share = total / holders;"
        assert _lines(UNCHECKED_ARITHMETIC.check(code)) == [1]
        assert _lines(MISSING_ERROR_HANDLING.check(code)) == [2]

    def test_overlapping_operators_flag_every_detector(self):
        code = "let x = a + b - c / d;"
        for det in (INTEGER_OVERFLOW, UNCHECKED_ARITHMETIC, MISSING_ERROR_HANDLING):
            assert _lines(det.check(code)) == [1]

    def test_operator_without_assignment_is_ignored(self):
        assert INTEGER_OVERFLOW.check("foo(a + b);") == []

    def test_assignment_must_end_with_semicolon(self):
        assert INTEGER_OVERFLOW.check("let total = a + b") == []


class TestReentrancy:

    def test_state_change_two_lines_after_transfer(self):
        code = _src({5: TRANSFER, 7: STATE_CHANGE}, 10)
        found = REENTRANCY.check(code)
        assert _lines(found) == [5]
        assert found[0].severity is Severity.CRITICAL

    @pytest.mark.parametrize("offset", [1, 2, 3, 4])
    def test_state_change_inside_window(self, offset):
        code = _src({1: TRANSFER, 1 + offset: STATE_CHANGE}, 10)
        assert _lines(REENTRANCY.check(code)) == [1]

    @pytest.mark.parametrize("offset", [5, 6, 8])
    def test_state_change_outside_window(self, offset):
        code = _src({1: TRANSFER, 1 + offset: STATE_CHANGE}, 12)
        assert REENTRANCY.check(code) == []

    def test_only_first_state_change_counts(self):
        code = _src({1: TRANSFER, 2: STATE_CHANGE, 3: "move_to(account, Vault { balance: 0 });"}, 5)
        assert _lines(REENTRANCY.check(code)) == [1]

    def test_window_clipped_at_end_of_file(self):
        code = _src({1: STATE_CHANGE, 3: TRANSFER}, 3)
        assert REENTRANCY.check(code) == []

    def test_account_withdraw_is_a_trigger(self):
        code = "let coins = account::withdraw(user, 10);\nTable::add(&mut t, key, coins);"
        assert _lines(REENTRANCY.check(code)) == [1]

    def test_each_trigger_reported(self):
        code = _src({1: TRANSFER, 2: TRANSFER, 3: STATE_CHANGE}, 4)
        assert _lines(REENTRANCY.check(code)) == [1, 2]


class TestAccessControl:

    def test_state_change_without_owner_check(self):
        code = _src({20: "borrow_global_mut<Config>(@admin).paused = true;"}, 30)
        found = ACCESS_CONTROL.check(code)
        assert _lines(found) == [20]
        assert found[0].severity is Severity.HIGH

    @pytest.mark.parametrize("owner_line", [10, 15, 19, 21, 29])
    def test_owner_check_inside_window(self, owner_line):
        code = _src({20: STATE_CHANGE, owner_line: OWNER_CHECK}, 40)
        assert ACCESS_CONTROL.check(code) == []

    @pytest.mark.parametrize("owner_line", [5, 9, 30, 35])
    def test_owner_check_outside_window(self, owner_line):
        code = _src({20: STATE_CHANGE, owner_line: OWNER_CHECK}, 40)
        assert _lines(ACCESS_CONTROL.check(code)) == [20]

    @pytest.mark.parametrize("owner_line, expected", [
        (1, []),
        (15, []),
        (20, []),
        (21, [3]),
    ])
    def test_window_near_file_start_spans_twenty_lines(self, owner_line, expected):
        code = _src({3: STATE_CHANGE, owner_line: OWNER_CHECK}, 30)
        assert _lines(ACCESS_CONTROL.check(code)) == expected

    def test_assertion_without_owner_does_not_count(self):
        code = _src({2: "assert!(amount > 0, E_ZERO);", 3: STATE_CHANGE}, 5)
        assert _lines(ACCESS_CONTROL.check(code)) == [3]

    def test_arithmetic_line_is_suppressed(self):
        code = "let v = borrow_global_mut<Vault>(addr).balance + amount;"
        assert _lines(INTEGER_OVERFLOW.check(code)) == [1]
        assert ACCESS_CONTROL.check(code) == []

    def test_reentrancy_trigger_line_is_suppressed(self):
        code = _src({1: TRANSFER + " move_to(account, Receipt {});", 2: STATE_CHANGE}, 3)
        assert _lines(REENTRANCY.check(code)) == [1]
        assert _lines(ACCESS_CONTROL.check(code)) == [2]

    def test_suppressed_lines_is_union(self):
        code = _src({1: TRANSFER, 2: STATE_CHANGE, 4: "let a = b + c;", 5: "let d = e - f;", 6: "let g = h / i;"}, 6)
        lines = code.split("\n")
        assert suppressed_lines(lines) == {1, 4, 5, 6}


class TestOptionMisuse:

    def test_borrow_after_extract(self):
        code = _src({2: "let v = option::extract(&mut opt);", 4: "let r = option::borrow(&opt);"}, 5)
        found = INCORRECT_STD_FUNCTION.check(code)
        assert _lines(found) == [4]
        assert found[0].severity is Severity.MEDIUM

    def test_automaton_resets_after_report(self):
        code = _src({1: "option::extract(&mut a);", 2: "option::borrow(&a);", 3: "option::borrow(&a);"}, 3)
        assert _lines(INCORRECT_STD_FUNCTION.check(code)) == [2]

    def test_borrow_before_extract_is_fine(self):
        code = "option::borrow(&a);\noption::extract(&mut a);"
        assert INCORRECT_STD_FUNCTION.check(code) == []

    def test_extract_and_borrow_on_same_line(self):
        code = "let x = option::extract(&mut a); let y = option::borrow(&a);"
        assert _lines(INCORRECT_STD_FUNCTION.check(code)) == [1]

    def test_state_is_not_shared_between_scans(self):
        assert INCORRECT_STD_FUNCTION.check("option::extract(&mut a);") == []
        assert INCORRECT_STD_FUNCTION.check("option::borrow(&a);") == []


class TestHeuristicDetectors:

    @pytest.mark.parametrize("det, flagged, clean", [
        (UNBOUNDED_EXECUTION,
         "while (i < vector::length(&users)) {",
         "while (i < 10) {"),
        (GENERICS_TYPE_CHECK,
         "public fun deposit<CoinType>(account: &signer, amount: u64) {",
         "public fun deposit<CoinType>(account: &signer) { assert!(type_info::type_of<CoinType>() == t, 1);"),
        (PRICE_ORACLE_MANIPULATION,
         "let price = reserve_x * 1000;",
         "let spot = oracle::latest(feed);"),
        (ARITHMETIC_PRECISION,
         "let fee = amount * 3 / 1000;",
         "let half = x / 2;"),
        (ACCOUNT_REGISTRATION,
         "coin::deposit(addr, coins);",
         "if (coin::is_account_registered<C>(addr)) coin::deposit(addr, coins);"),
        (RESOURCE_MANAGEMENT,
         "struct Registry has key { users: vector<address> }",
         "struct Registry has key { count: u64 }"),
        (BUSINESS_LOGIC_FLAW,
         "coin::transfer<C>(from, to, 10);",
         "assert!(amount > 0, 1); coin::transfer<C>(from, to, amount);"),
    ])
    def test_trigger_and_exclusion(self, det, flagged, clean):
        assert _lines(det.check(flagged)) == [1]
        assert det.check(clean) == []

    def test_token_ratio_is_price_source(self):
        assert _lines(PRICE_ORACLE_MANIPULATION.check("let r = token_a / token_b;")) == [1]

    def test_oracle_keyword_excludes_price_line(self):
        assert PRICE_ORACLE_MANIPULATION.check("let price = oracle::price(feed);") == []


class TestDetectorMetadata:

    ALL = [
        REENTRANCY, INTEGER_OVERFLOW, ACCESS_CONTROL, UNCHECKED_ARITHMETIC, MISSING_ERROR_HANDLING,
        UNBOUNDED_EXECUTION, GENERICS_TYPE_CHECK, PRICE_ORACLE_MANIPULATION, ARITHMETIC_PRECISION,
        ACCOUNT_REGISTRATION, RESOURCE_MANAGEMENT, BUSINESS_LOGIC_FLAW, INCORRECT_STD_FUNCTION,
    ]

    def test_keys_and_titles_unique(self):
        assert len({d.key for d in self.ALL}) == len(self.ALL)
        assert len({d.title for d in self.ALL}) == len(self.ALL)

    def test_text_is_static_per_detector(self):
        code = "let a = b + c;\nlet d = e + f + g;"
        found = INTEGER_OVERFLOW.check(code)
        assert {(f.severity, f.description, f.recommendation) for f in found} == {
            (INTEGER_OVERFLOW.severity, INTEGER_OVERFLOW.description, INTEGER_OVERFLOW.recommendation)
        }

    def test_detectors_are_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            REENTRANCY.severity = Severity.LOW

    def test_window_constants(self):
        assert patterns.REENTRANCY_WINDOW == 4
        assert (patterns.OWNER_LOOKBEHIND, patterns.OWNER_WINDOW) == (10, 20)
