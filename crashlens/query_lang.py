"""
Filter expression language (shareable filter text)
==================================================

A FilterSpecification can be written as a short expression and parsed
back, which is what the CLI `where` / `share` commands and any link
sharing layer use. Examples:

    severity IN (FATAL, SI) AND year >= 2015 AND year <= 2020
    road_user == "Pedestrian" AND age_group IN ("0-17", "18-25")
    time >= "22:00" AND time <= "02:00"

`spec_to_expr` writes the canonical form (fields in declaration order,
sorted values); `parse_filter(spec_to_expr(s)) == s` for every spec.

This file provides:
- Tokenizer (turns text into tokens)
- Parser (builds a flat list of clauses; only AND is allowed since a
  FilterSpecification is a conjunction)
- Conversion both ways
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, time
from typing import Any, Dict, List, Optional, Set, Tuple
import re

from .filters import FilterSpecification, SET_FIELDS, parse_date, parse_time
from .models import Severity

# Grammar:
# expr     := clause (AND clause)*
# clause   := IDENT OP value | IDENT IN "(" value ("," value)* ")"
# OP       := == >= <=
# value    := number | quoted string | bareword

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<LPAREN>\() |
        (?P<RPAREN>\)) |
        (?P<COMMA>,) |
        (?P<OP>==|>=|<=) |
        (?P<KW>\bAND\b|\bOR\b|\bIN\b) |
        (?P<NUMBER>-?\d+(?![\w:-])) |
        (?P<STRING>"([^"\\]|\\.)*"|'([^'\\]|\\.)*') |
        (?P<IDENT>[A-Za-z_][A-Za-z0-9_+.\-]*)
    )\s*
    """,
    re.VERBOSE | re.IGNORECASE
)

# expression name -> (spec field for >=, spec field for <=)
RANGES = {
    "year": ("year_from", "year_to"),
    "date": ("date_from", "date_to"),
    "time": ("time_from", "time_to"),
}

_RANGE_PARSERS = {"year": int, "date": parse_date, "time": parse_time}

@dataclass(frozen=True)
class Token:
    kind: str
    value: str

class ParseError(ValueError):
    pass

def tokenize(s: str) -> List[Token]:
    """Tokenize an input string into Token objects."""
    s = s.strip()
    pos = 0
    out: List[Token] = []
    while pos < len(s):
        m = _TOKEN_RE.match(s, pos)
        if not m or m.end() == pos:
            raise ParseError(f"Unexpected character near: {s[pos:pos+20]!r}")
        pos = m.end()
        if m.group("STRING") is not None:
            out.append(Token("STRING", m.group("STRING")))
            continue
        kind = val = None
        for k in ("LPAREN", "RPAREN", "COMMA", "OP", "KW", "NUMBER", "IDENT"):
            if m.group(k) is not None:
                kind, val = k, m.group(k)
                break
        if kind == "KW":
            kind = val = val.upper()
        out.append(Token(kind=kind, value=val))
    return out

# AST nodes
@dataclass(frozen=True)
class Clause:
    field: str
    op: str            # "==", ">=", "<=", "in"
    values: Tuple[Any, ...]

def parse(expr: str) -> List[Clause]:
    toks = tokenize(expr)
    p = _Parser(toks)
    if p.at_end():
        return []
    clauses = p.parse_expr()
    if not p.at_end():
        raise ParseError(f"Unexpected token: {p.peek().value}")
    return clauses

class _Parser:
    def __init__(self, toks: List[Token]) -> None:
        self.toks = toks
        self.i = 0

    def at_end(self) -> bool:
        return self.i >= len(self.toks)

    def peek(self) -> Token:
        return self.toks[self.i]

    def take(self, kind: str) -> Token:
        if self.at_end():
            raise ParseError(f"Expected {kind}, got end of input")
        t = self.peek()
        if t.kind != kind:
            raise ParseError(f"Expected {kind}, got {t.kind} ({t.value})")
        self.i += 1
        return t

    def match(self, *kinds: str) -> Optional[Token]:
        if self.at_end():
            return None
        if self.peek().kind in kinds:
            t = self.peek()
            self.i += 1
            return t
        return None

    def parse_expr(self) -> List[Clause]:
        out = [self.parse_clause()]
        while True:
            if self.match("AND"):
                out.append(self.parse_clause())
                continue
            if self.match("OR"):
                raise ParseError("OR is not supported; list alternatives with IN (...)")
            return out

    def parse_clause(self) -> Clause:
        fname = self.take("IDENT").value.lower()
        if self.match("IN"):
            self.take("LPAREN")
            vals = [self.parse_value()]
            while self.match("COMMA"):
                vals.append(self.parse_value())
            self.take("RPAREN")
            return Clause(field=fname, op="in", values=tuple(vals))
        op = self.take("OP").value
        return Clause(field=fname, op=op, values=(self.parse_value(),))

    def parse_value(self) -> Any:
        tok = self.match("NUMBER", "STRING", "IDENT")
        if not tok:
            raise ParseError("Expected a value")
        return _coerce_value(tok)

def _coerce_value(tok: Token) -> Any:
    if tok.kind == "NUMBER":
        return int(tok.value)
    if tok.kind == "STRING":
        s = tok.value
        if s[0] == s[-1] and s[0] in ("'", '"'):
            s = s[1:-1]
        return re.sub(r"\\(.)", r"\1", s)
    return tok.value


# ---------------- Spec conversion ----------------
def parse_filter(expr: str) -> FilterSpecification:
    """Parse filter text into a FilterSpecification.

    Raises ParseError for syntax errors and unknown fields/operators,
    ValueError for values FilterSpecification rejects.

    Clauses are a conjunction: repeating a set field intersects the value
    lists, repeating a bound keeps the tighter one.
    """
    sets: Dict[str, Set[Any]] = {}
    bounds: Dict[str, Any] = {}
    for c in parse(expr):
        if c.field in RANGES:
            lo, hi = RANGES[c.field]
            if c.op not in (">=", "<=", "=="):
                raise ParseError(f"{c.field} takes >=, <= or ==")
            v = _range_value(c.field, c.values[0])
            if c.op in (">=", "=="):
                bounds[lo] = max(bounds[lo], v) if lo in bounds else v
            if c.op in ("<=", "=="):
                bounds[hi] = min(bounds[hi], v) if hi in bounds else v
        elif c.field in SET_FIELDS:
            if c.op not in ("==", "in"):
                raise ParseError(f"{c.field} takes == or IN (...)")
            vals = {_set_value(c.field, v) for v in c.values}
            if c.field in sets:
                vals &= sets[c.field]
                if not vals:
                    raise ParseError(f"{c.field} clauses have no value in common")
            sets[c.field] = vals
        else:
            raise ParseError(f"Unknown filter field: {c.field}")
    return FilterSpecification(**sets, **bounds)


def _range_value(name: str, v: Any) -> Any:
    try:
        return _RANGE_PARSERS[name](v)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Bad {name} value {v!r}: {e}") from None


def _set_value(name: str, v: Any) -> Any:
    # severity spellings ("FATAL", "4: Fatal", 4) must compare equal
    return Severity.parse(str(v)) if name == "severity" else str(v)


def _quote(v: str) -> str:
    return '"' + v.replace("\\", "\\\\").replace('"', '\\"') + '"'

def _format_value(v: Any) -> str:
    if isinstance(v, Severity):
        return v.name
    if isinstance(v, bool):
        return _quote(str(v))
    if isinstance(v, int):
        return str(v)
    if isinstance(v, time):
        return _quote(v.strftime("%H:%M"))
    if isinstance(v, date):
        return _quote(v.isoformat())
    return _quote(str(v))


def spec_to_expr(spec: FilterSpecification) -> str:
    """Canonical filter text for `spec` ('' when nothing is active)."""
    grouped: List[Tuple[str, List[Any]]] = []
    for name, value in spec.active_constraints():
        if grouped and grouped[-1][0] == name:
            grouped[-1][1].append(value)
        else:
            grouped.append((name, [value]))

    range_fields = {lo: (r, ">=") for r, (lo, hi) in RANGES.items()}
    range_fields.update({hi: (r, "<=") for r, (lo, hi) in RANGES.items()})

    parts: List[str] = []
    for name, values in grouped:
        if name in range_fields:
            r, op = range_fields[name]
            parts.append(f"{r} {op} {_format_value(values[0])}")
        elif len(values) == 1:
            parts.append(f"{name} == {_format_value(values[0])}")
        else:
            parts.append(f"{name} IN ({', '.join(_format_value(v) for v in values)})")
    return " AND ".join(parts)
