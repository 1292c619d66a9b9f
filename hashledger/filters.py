"""
Filter compiler for ledger queries.

Turns human-written clauses such as ``FileCount > 2`` or
``FilePath LIKE 'C:%'`` into a parameterised SQL fragment plus a map of
bound values. Every literal becomes a named placeholder; literal text is
never spliced into the SQL.

Clauses that do not match ``<field> <operator> <literal>`` at all are
rejected unless the caller opts in with ``allow_raw=True``, in which case
they are passed through verbatim. That escape hatch hands raw SQL to the
database and must only be enabled for trusted input.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .algorithms import is_supported, normalize_algorithm
from .util import LogCallback, emit

OPERATORS = ("=", "<", ">", ">=", "<=", "<>", "LIKE")

_CLAUSE_RE = re.compile(
    r"""^\s*
    (?P<field>[A-Za-z_][A-Za-z0-9_]*)
    (?:\s*(?P<symbol><>|<=|>=|=|<|>)\s*|\s+(?P<like>LIKE)\s+)
    (?P<literal>.+?)
    \s*$""",
    re.IGNORECASE | re.VERBOSE,
)
_STRING_RE = re.compile(r"^'((?:[^']|'')*)'$", re.DOTALL)
_INTEGER_RE = re.compile(r"^\d+$")

# Field name -> SQL expression, per scope. Row fields address the FileHash
# table (alias fh) joined to Algorithm (alias a); group fields address the
# columns of DeduplicatedFile or an equivalently aliased subquery.
ROW_FIELDS: Dict[str, str] = {
    "FilePath": "fh.FilePath",
    "FileSize": "fh.FileSize",
    "ProcessedAt": "fh.ProcessedAt",
    "Hash": "fh.Hash",
    "Algorithm": "a.AlgorithmName",
    "AlgorithmName": "a.AlgorithmName",
}
GROUP_FIELDS: Dict[str, str] = {
    "Hash": "Hash",
    "Algorithm": "AlgorithmName",
    "AlgorithmName": "AlgorithmName",
    "FilePaths": "FilePaths",
    "FileCount": "FileCount",
    "RecordCount": "RecordCount",
    "MaxFileSize": "MaxFileSize",
    "MinProcessedAt": "MinProcessedAt",
    "MaxProcessedAt": "MaxProcessedAt",
}
SCOPES: Dict[str, Dict[str, str]] = {"row": ROW_FIELDS, "group": GROUP_FIELDS}
_ALGORITHM_FIELDS = {"algorithm", "algorithmname"}


class FilterError(ValueError):
    """A filter clause could not be compiled safely."""


@dataclass(frozen=True)
class FilterLiteral:
    kind: str  # string | integer | null
    value: Any


@dataclass(frozen=True)
class FilterClause:
    field: str
    operator: str
    literal: FilterLiteral


@dataclass
class CompiledFilter:
    sql: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    clauses: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.sql)

    def and_sql(self) -> str:
        """The fragment prefixed with AND, or an empty string."""
        return f" AND {self.sql}" if self.sql else ""


def parse_literal(text: str) -> FilterLiteral:
    text = text.strip()
    m = _STRING_RE.match(text)
    if m:
        return FilterLiteral("string", m.group(1).replace("''", "'"))
    if _INTEGER_RE.match(text):
        return FilterLiteral("integer", int(text))
    if text.upper() == "NULL":
        return FilterLiteral("null", None)
    raise FilterError(f"Unrecognised literal in filter: {text}")


def parse_clause(text: str) -> Optional[FilterClause]:
    """Parse one clause; None when the text is not of the form field-op-literal."""
    m = _CLAUSE_RE.match(text or "")
    if not m:
        return None
    operator = (m.group("symbol") or m.group("like")).upper()
    return FilterClause(m.group("field"), operator, parse_literal(m.group("literal")))


def _resolve_field(name: str, fields: Mapping[str, str], scope: str) -> str:
    for key, column in fields.items():
        if key.lower() == name.lower():
            return column
    raise FilterError(
        f"Unknown {scope} filter field: {name} (expected one of {', '.join(sorted(fields))})"
    )


def _compile_clause(clause: FilterClause, column: str, placeholder: str) -> str:
    if clause.literal.kind == "null":
        if clause.operator == "=":
            return f"{column} IS :{placeholder}"
        if clause.operator == "<>":
            return f"{column} IS NOT :{placeholder}"
        raise FilterError(f"NULL can only be compared with = or <> (got {clause.operator})")
    return f"{column} {clause.operator} :{placeholder}"


def compile_filters(
    clauses: Iterable[str],
    scope: str = "row",
    prefix: Optional[str] = None,
    allow_raw: bool = False,
    log_cb: Optional[LogCallback] = None,
) -> CompiledFilter:
    """Compile filter clauses for one scope into a single AND-joined fragment."""
    if scope not in SCOPES:
        raise FilterError(f"Unknown filter scope: {scope}")
    fields = SCOPES[scope]
    prefix = prefix or scope
    compiled = CompiledFilter()

    for index, text in enumerate(c for c in clauses if c and c.strip()):
        clause = parse_clause(text)
        if clause is None:
            if not allow_raw:
                raise FilterError(f"Filter clause is not of the form <field> <operator> <literal>: {text}")
            emit(log_cb, f"[WARN] Passing raw SQL filter through unchecked: {text}")
            compiled.clauses.append(f"({text.strip()})")
            continue

        column = _resolve_field(clause.field, fields, scope)
        literal = clause.literal
        if clause.field.lower() in _ALGORITHM_FIELDS and literal.kind == "string":
            if not is_supported(literal.value):
                raise FilterError(f"Unsupported algorithm in filter: {literal.value}")
            literal = FilterLiteral("string", normalize_algorithm(literal.value))

        placeholder = f"{prefix}_{index}"
        compiled.clauses.append(f"({_compile_clause(clause, column, placeholder)})")
        compiled.params[placeholder] = literal.value

    compiled.sql = " AND ".join(compiled.clauses)
    return compiled
