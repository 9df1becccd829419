"""
Unit tests for expression canonicalization.

Tests cover:
- Duration canonicalization
- Whitespace, quoting and block formatting
- Boolean condition parsing and rendering
- Permission clauses
- Malformed expressions
"""

import pytest

from schemasync.errors import NormalizationError
from schemasync.schema.expressions import (
    canonical_condition,
    canonical_permissions,
    canonical_text,
    find_top_level,
    join_conjuncts,
    normalize_duration,
    split_conjuncts,
    split_top_level,
)


class TestDurations:
    """Tests for normalize_duration."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("1w", "7d"),
            ("1h30m", "90m"),
            ("60s", "1m"),
            ("24h", "1d"),
            ("1500ms", "1500ms"),
            ("0s", "0s"),
        ],
    )
    def test_canonical_unit(self, raw, expected):
        """Durations use the largest unit that divides them exactly."""
        assert normalize_duration(raw) == expected

    def test_non_duration_unchanged(self):
        """Text that is not a duration literal is returned stripped."""
        assert normalize_duration(" forever ") == "forever"


class TestCanonicalText:
    """Tests for canonical_text."""

    def test_collapses_whitespace(self):
        """Runs of whitespace become single spaces."""
        assert canonical_text("  $value   >\n  0 ") == "$value > 0"

    def test_tightens_brackets(self):
        """No spaces directly inside parentheses or brackets."""
        assert canonical_text("string::len( $value )") == "string::len($value)"

    def test_requotes_double_quoted_literal(self):
        """Double quotes become single quotes when lossless."""
        assert canonical_text('$value = "admin"') == "$value = 'admin'"

    def test_keeps_double_quotes_with_apostrophe(self):
        """A literal containing a single quote keeps its double quotes."""
        assert canonical_text('"it\'s"') == '"it\'s"'

    def test_duration_in_code_is_canonicalized(self):
        """Durations in code are rewritten, durations in literals are not."""
        assert canonical_text("time::now() + 60s") == "time::now() + 1m"
        assert canonical_text("'60s'") == "'60s'"

    def test_record_id_is_not_a_duration(self):
        """Record ids that look like durations stay untouched."""
        assert canonical_text("user:7w") == "user:7w"

    def test_block_formatting(self):
        """Blocks read { a; b } without a trailing semicolon."""
        assert canonical_text("{a;b;}") == "{ a; b }"

    def test_trailing_semicolon_dropped(self):
        """A trailing statement terminator is removed."""
        assert canonical_text("RETURN 1;") == "RETURN 1"


class TestConditions:
    """Tests for boolean condition canonicalization."""

    def test_redundant_parentheses_removed(self):
        """Wrapping parentheses and keyword case are canonicalized."""
        assert canonical_condition("(($value > 0)) and ($value < 10)") == "$value > 0 AND $value < 10"

    def test_or_inside_and_keeps_parentheses(self):
        """OR operands of an AND are parenthesized."""
        assert canonical_condition("a = 1 AND (b = 2 OR c = 3)") == "a = 1 AND (b = 2 OR c = 3)"

    def test_symbolic_operators(self):
        """&& and || mean AND and OR."""
        assert canonical_condition("a = 1 && b = 2 || c = 3") == "a = 1 AND b = 2 OR c = 3"

    def test_nested_and_flattened(self):
        """Nested ANDs flatten into one level."""
        assert canonical_condition("a AND (b AND c)") == "a AND b AND c"

    def test_negation(self):
        """NOT and ! on a group or a bare operand render as !(x)."""
        assert canonical_condition("NOT (a = 1)") == "!(a = 1)"
        assert canonical_condition("!(a = 1)") == "!(a = 1)"
        assert canonical_condition("NOT $active") == "!($active)"
        assert canonical_condition("!string::is::email($value)") == "!(string::is::email($value))"

    def test_negation_binds_to_first_operand(self):
        """A negated operand followed by an operator stays one comparison."""
        assert canonical_condition("!$a = 1") == "!$a = 1"
        assert canonical_condition("NOT a = 1") == "NOT a = 1"
        assert canonical_condition("!$a = 1 AND $b = 2") == "!$a = 1 AND $b = 2"
        assert canonical_condition("!($a) = 1") == "!($a) = 1"

    def test_not_equal_is_not_negation(self):
        """!= is a comparison, not a negation."""
        assert canonical_condition("$value != NONE") == "$value != NONE"

    def test_split_conjuncts(self):
        """Top-level AND operands are split in order."""
        parts = split_conjuncts("$value != NONE AND string::len($value) > 3")
        assert parts == ["$value != NONE", "string::len($value) > 3"]

    def test_split_conjuncts_single(self):
        """A condition without AND is one conjunct."""
        assert split_conjuncts("a OR b") == ["a OR b"]

    def test_join_conjuncts(self):
        """Joining conjuncts and splitting them again round-trips."""
        joined = join_conjuncts(["a = 1", "b = 2 OR c = 3"])
        assert joined == "a = 1 AND (b = 2 OR c = 3)"
        assert split_conjuncts(joined) == ["a = 1", "b = 2 OR c = 3"]

    def test_missing_operand(self):
        """A dangling operator raises NormalizationError."""
        with pytest.raises(NormalizationError):
            canonical_condition("$value > 0 AND")

    def test_unbalanced_parentheses(self):
        """Unbalanced brackets raise NormalizationError."""
        with pytest.raises(NormalizationError):
            canonical_condition("($value > 0")

    def test_unterminated_literal(self):
        """Unterminated strings raise NormalizationError."""
        with pytest.raises(NormalizationError):
            canonical_text("$value = 'abc")


class TestPermissions:
    """Tests for canonical_permissions."""

    @pytest.mark.parametrize("raw", [None, "", "FULL", "full", "  FULL  "])
    def test_full_access_is_none(self, raw):
        """Every spelling of full access maps to None."""
        assert canonical_permissions(raw) is None

    def test_none_is_kept(self):
        """NONE stays distinct from full access."""
        assert canonical_permissions("none") == "NONE"


class TestScanning:
    """Tests for top-level scanning helpers."""

    def test_find_top_level_skips_nested_and_literals(self):
        """Keywords inside brackets or strings are ignored."""
        text = "fn(ASSERT) 'ASSERT' ASSERT x"
        assert find_top_level(text, "ASSERT") == text.rindex("ASSERT")

    def test_find_top_level_whole_word(self):
        """Keywords must be whole words."""
        assert find_top_level("ASSERTION", "ASSERT") == -1

    def test_split_top_level(self):
        """Separators inside brackets do not split."""
        assert split_top_level("a; {b; c}; d", ";") == ["a", " {b; c}", " d"]
