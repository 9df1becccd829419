"""
Expression canonicalization.

Expressions (assertions, defaults, computed values, permission clauses)
arrive from two very different authors: humans writing schema files and the
database echoing definitions back. This module rewrites both into one
canonical spelling so that textually different but logically identical
expressions compare equal.

Rules:
    - Whitespace outside string literals collapses to single spaces
    - Double-quoted literals become single-quoted when that is lossless
    - Duration literals are rewritten in one canonical unit (1w -> 7d)
    - Boolean structure is parsed into an AND/OR/NOT tree, nested groups of
      the same operator are flattened, redundant parentheses dropped and
      the tree re-rendered with one parenthesization rule: an OR group
      nested inside an AND is parenthesized, nothing else is
    - ! and NOT become a negation node only over a parenthesized group or a
      bare operand; a negated comparison like !$a = 1 stays as written
    - Operand order is preserved

Invariants:
    - canonical_condition(canonical_condition(x)) == canonical_condition(x)
    - Text inside string literals is never rewritten
    - Unbalanced delimiters or dangling operators raise NormalizationError

How to change safely:
    - Every rule must be applied identically to desired and live text
    - Add rules to canonical_text only if they are idempotent
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from ..errors import NormalizationError

_QUOTES = ("'", '"', "`")
_PAIRS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")": "(", "]": "[", "}": "{"}

_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3_600 * 1_000_000_000,
    "d": 86_400 * 1_000_000_000,
    "w": 7 * 86_400 * 1_000_000_000,
    "y": 365 * 86_400 * 1_000_000_000,
}
# Weeks and years fold into days
_CANONICAL_UNITS = ("d", "h", "m", "s", "ms", "us", "ns")
_UNIT_PATTERN = r"(?:ns|us|µs|ms|s|m|h|d|w|y)"
_DURATION_RE = re.compile(rf"(?<![\w$.:])((?:\d+{_UNIT_PATTERN})+)(?!\w)")
_DURATION_PART_RE = re.compile(rf"(\d+)({_UNIT_PATTERN})")
_DURATION_FULL_RE = re.compile(rf"^(?:\d+{_UNIT_PATTERN})+$")

_IDENT_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_$:.")

_PERMISSION_OPS = ("select", "create", "update", "delete")


def depth_map(text: str) -> list[int]:
    """Compute the bracket depth of every character.

    Opening and closing brackets sit at the depth outside them. Characters
    inside a string literal (quotes included) are marked -1.

    Raises:
        NormalizationError: On unbalanced brackets or unterminated literals
    """
    depths: list[int] = []
    stack: list[str] = []
    quote: str | None = None
    escaped = False
    for ch in text:
        if quote is not None:
            depths.append(-1)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
            depths.append(-1)
        elif ch in _PAIRS:
            depths.append(len(stack))
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or stack[-1] != _CLOSERS[ch]:
                raise NormalizationError(f"Unbalanced '{ch}' in expression", expression=text)
            stack.pop()
            depths.append(len(stack))
        else:
            depths.append(len(stack))
    if quote is not None:
        raise NormalizationError("Unterminated string literal in expression", expression=text)
    if stack:
        raise NormalizationError(f"Unclosed '{stack[-1]}' in expression", expression=text)
    return depths


def segments(text: str) -> list[tuple[str, bool]]:
    """Split text into (chunk, is_literal) runs."""
    depth_map(text)
    result: list[tuple[str, bool]] = []
    buf: list[str] = []
    quote: str | None = None
    escaped = False
    for ch in text:
        if quote is None:
            if ch in _QUOTES:
                if buf:
                    result.append(("".join(buf), False))
                    buf = []
                quote = ch
            buf.append(ch)
            continue
        buf.append(ch)
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == quote:
            result.append(("".join(buf), True))
            buf = []
            quote = None
    if buf:
        result.append(("".join(buf), False))
    return result


def _is_boundary(text: str, index: int) -> bool:
    return index < 0 or index >= len(text) or text[index] not in _IDENT_CHARS


def find_top_level(text: str, keyword: str, start: int = 0, depths: list[int] | None = None) -> int:
    """Find a whole-word keyword at depth 0 outside literals.

    Matching is case-sensitive; rendered statements use upper-case keywords.

    Returns:
        Index of the keyword, or -1 when absent
    """
    depths = depths if depths is not None else depth_map(text)
    index = text.find(keyword, start)
    while index != -1:
        if (
            depths[index] == 0
            and _is_boundary(text, index - 1)
            and _is_boundary(text, index + len(keyword))
        ):
            return index
        index = text.find(keyword, index + 1)
    return -1


def split_top_level(text: str, separator: str) -> list[str]:
    """Split on a single-character separator at depth 0 outside literals."""
    depths = depth_map(text)
    parts: list[str] = []
    start = 0
    for i, ch in enumerate(text):
        if ch == separator and depths[i] == 0:
            parts.append(text[start:i])
            start = i + 1
    parts.append(text[start:])
    return parts


def matching_close(text: str, open_index: int) -> int:
    """Index of the bracket closing the one at open_index."""
    depths = depth_map(text)
    target = depths[open_index]
    closer = _PAIRS[text[open_index]]
    for i in range(open_index + 1, len(text)):
        if text[i] == closer and depths[i] == target:
            return i
    raise NormalizationError(f"Unclosed '{text[open_index]}' in expression", expression=text)


def normalize_duration(value: str) -> str:
    """Rewrite a duration literal in its canonical unit.

    Example:
        >>> normalize_duration("1w")
        '7d'
        >>> normalize_duration("1h30m")
        '90m'
    """
    stripped = value.strip()
    if not _DURATION_FULL_RE.match(stripped):
        return stripped
    total = sum(int(n) * _UNIT_NS[unit] for n, unit in _DURATION_PART_RE.findall(stripped))
    if total == 0:
        return "0s"
    for unit in _CANONICAL_UNITS:
        if total % _UNIT_NS[unit] == 0:
            return f"{total // _UNIT_NS[unit]}{unit}"
    return f"{total}ns"


def _requote(literal: str) -> str:
    if literal.startswith('"') and "'" not in literal[1:-1]:
        return "'" + literal[1:-1] + "'"
    return literal


def _canonical_code(chunk: str) -> str:
    chunk = re.sub(r"\s+", " ", chunk)
    chunk = re.sub(r"([(\[]) ", r"\1", chunk)
    chunk = re.sub(r" ([)\]])", r"\1", chunk)
    # Blocks read { a; b }
    chunk = re.sub(r"\{ ?", "{ ", chunk)
    chunk = re.sub(r" ?\}", " }", chunk)
    chunk = re.sub(r" ?; ?", "; ", chunk)
    chunk = chunk.replace("; }", " }")
    chunk = re.sub(r" ?, ?", ", ", chunk)
    return _DURATION_RE.sub(lambda m: normalize_duration(m.group(1)), chunk)


def canonical_text(expr: str) -> str:
    """Canonicalize whitespace, quoting and durations of any expression."""
    parts = []
    for chunk, literal in segments(expr.strip()):
        parts.append(_requote(chunk) if literal else _canonical_code(chunk))
    return "".join(parts).strip().rstrip(";").strip()


@dataclass(frozen=True)
class Atom:
    """Leaf condition rendered verbatim."""

    text: str


@dataclass(frozen=True)
class Not:
    operand: Condition


@dataclass(frozen=True)
class And:
    operands: tuple[Condition, ...]


@dataclass(frozen=True)
class Or:
    operands: tuple[Condition, ...]


Condition = Union[Atom, Not, And, Or]


def _operator_positions(text: str, word: str, symbol: str) -> list[tuple[int, int]]:
    depths = depth_map(text)
    upper = text.upper()
    spans: list[tuple[int, int]] = []
    i = 0
    while i < len(text):
        if depths[i] != 0:
            i += 1
            continue
        if text.startswith(symbol, i):
            spans.append((i, i + len(symbol)))
            i += len(symbol)
            continue
        end = i + len(word)
        if upper.startswith(word, i) and _is_boundary(text, i - 1) and _is_boundary(text, end):
            spans.append((i, end))
            i = end
            continue
        i += 1
    return spans


def _split_operator(text: str, word: str, symbol: str) -> list[str]:
    parts: list[str] = []
    start = 0
    for begin, end in _operator_positions(text, word, symbol):
        parts.append(text[start:begin])
        start = end
    parts.append(text[start:])
    return parts


def _is_wrapped(text: str) -> bool:
    return text.startswith("(") and matching_close(text, 0) == len(text) - 1


_OPERAND_BREAKS = frozenset("=<>!~?+-*/")


def _is_bare_operand(text: str) -> bool:
    """Whether text is one operand (a path, parameter or call) with no operator."""
    depths = depth_map(text)
    return all(
        depth != 0 or not (ch.isspace() or ch in _OPERAND_BREAKS) for ch, depth in zip(text, depths)
    )


def _strip_negation(text: str) -> str | None:
    """Return the operand of a leading ! or NOT.

    Negation binds to the operand directly after it, so it is only lifted when
    that operand is a parenthesized group or a bare operand; ``!$a = 1``
    stays one comparison.
    """
    if text.startswith("!") and not text.startswith("!="):
        operand = text[1:].strip()
    elif text[:3].upper() == "NOT" and _is_boundary(text, 3):
        operand = text[3:].strip()
    else:
        return None
    if operand and (_is_wrapped(operand) or _is_bare_operand(operand)):
        return operand
    return None


def _flatten(kind: type, operands: list[Condition]) -> Condition:
    flat: list[Condition] = []
    for operand in operands:
        if isinstance(operand, kind):
            flat.extend(operand.operands)  # type: ignore[attr-defined]
        else:
            flat.append(operand)
    return kind(tuple(flat))


def _parse(text: str, source: str) -> Condition:
    text = text.strip()
    if not text:
        raise NormalizationError("Boolean operator is missing an operand", expression=source)
    parts = _split_operator(text, "OR", "||")
    if len(parts) > 1:
        return _flatten(Or, [_parse(p, source) for p in parts])
    parts = _split_operator(text, "AND", "&&")
    if len(parts) > 1:
        return _flatten(And, [_parse(p, source) for p in parts])
    negated = _strip_negation(text)
    if negated is not None:
        return Not(_parse(negated, source))
    if _is_wrapped(text):
        return _parse(text[1:-1], source)
    return Atom(text)


def parse_condition(expr: str) -> Condition:
    """Parse a boolean expression into a condition tree."""
    text = canonical_text(expr)
    return _parse(text, expr)


def render_condition(node: Condition) -> str:
    """Render a condition tree with the canonical parenthesization."""
    if isinstance(node, Atom):
        return node.text
    if isinstance(node, Not):
        return f"!({render_condition(node.operand)})"
    if isinstance(node, And):
        return " AND ".join(
            f"({render_condition(op)})" if isinstance(op, Or) else render_condition(op)
            for op in node.operands
        )
    return " OR ".join(render_condition(op) for op in node.operands)


def canonical_condition(expr: str) -> str:
    """Canonicalize a boolean expression.

    Example:
        >>> canonical_condition("(($value > 0)) and ($value < 10)")
        '$value > 0 AND $value < 10'
    """
    return render_condition(parse_condition(expr))


def split_conjuncts(expr: str) -> list[str]:
    """Split a condition into its top-level AND operands, canonicalized."""
    node = parse_condition(expr)
    if isinstance(node, And):
        return [render_condition(op) for op in node.operands]
    return [render_condition(node)]


def join_conjuncts(conditions: tuple[str, ...] | list[str]) -> str:
    """Combine AND-semantics conditions into one expression."""
    if len(conditions) == 1:
        return conditions[0]
    return canonical_condition(" AND ".join(f"({c})" for c in conditions))


def canonical_permissions(expr: str | None) -> str | None:
    """Canonicalize a permission clause.

    ``None``, empty and ``FULL`` all mean full access and map to None.
    ``FOR a FOR b`` clauses are rendered ``FOR a, FOR b`` with lower-case
    operation names and canonical WHERE conditions.
    """
    if expr is None:
        return None
    text = canonical_text(expr)
    if not text or text.upper() == "FULL":
        return None
    if text.upper() == "NONE":
        return "NONE"
    if text[:3].upper() != "FOR":
        return canonical_condition(text)

    clauses: list[str] = []
    depths = depth_map(text)
    starts = [m.start() for m in re.finditer(r"\bFOR\b", text, flags=re.IGNORECASE) if depths[m.start()] == 0]
    for i, begin in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(text)
        clause = text[begin + 3 : end].strip().rstrip(",").strip()
        clauses.append(_canonical_permission_clause(clause, expr))
    return ", ".join(clauses)


def _canonical_permission_clause(clause: str, source: str) -> str:
    match = re.match(
        r"^((?:\s*(?:select|create|update|delete)\s*,?)+)\s*(.*)$",
        clause,
        flags=re.IGNORECASE | re.DOTALL,
    )
    if not match:
        raise NormalizationError(f"Unrecognized permission clause 'FOR {clause}'", expression=source)
    ops = [op.lower() for op in re.findall(r"select|create|update|delete", match.group(1), re.IGNORECASE)]
    ops = [op for op in _PERMISSION_OPS if op in ops]
    rest = match.group(2).strip()
    upper = rest.upper()
    if upper in ("FULL", "NONE"):
        rule = upper
    elif upper.startswith("WHERE"):
        rule = "WHERE " + canonical_condition(rest[5:])
    else:
        raise NormalizationError(f"Unrecognized permission rule '{rest}'", expression=source)
    return f"FOR {', '.join(ops)} {rule}"
