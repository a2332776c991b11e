"""Extract the columns Spring Data repository methods filter, join or sort on.

A repository is a Kotlin interface extending ``CrudRepository<E, ID>``,
``JpaRepository<E, ID>`` or ``PagingAndSortingRepository<E, ID>``; ``E`` must
be a mapped entity. Three query dialects are understood:

Derived queries
  ``fun findByEmailAndStatusOrderByCreatedAtDesc(...)``: the intent prefix
  is stripped, the predicate is split on ``And``/``Or`` and each token loses
  one condition keyword (``IsNull``, ``Between``, ...).

JPQL ``@Query``
  ``@Query("SELECT u FROM User u WHERE u.email = :email")``: every
  ``alias.field`` reference of an alias bound in FROM/JOIN.

Native ``@Query(..., nativeQuery = true)``
  columns in WHERE conditions, JOIN ... ON equalities and ORDER BY lists,
  limited to the entity's own table when the statement joins several.

A ``// @SuppressIndexCheck`` comment drops every column of the next query
method; ``// @SuppressIndexCheck("status", "kind")`` drops only those.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dbindex.model import QueryColumn, QueryType, TableMapping
from dbindex.parsers.entity import camel_to_snake
from dbindex.parsers.sources import iter_source_files, read_source

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Priority tables
# ---------------------------------------------------------------------------

# (prefix, intent); the longest prefix that leaves a non-empty remainder wins
DERIVED_QUERY_PREFIXES: tuple[tuple[str, str], ...] = (
    ("findAllBy", "find"),
    ("findFirstBy", "find"),
    ("findTopBy", "find"),
    ("findBy", "find"),
    ("existsBy", "exists"),
    ("countAllBy", "count"),
    ("countBy", "count"),
    ("deleteAllBy", "delete"),
    ("deleteBy", "delete"),
    ("streamAllBy", "stream"),
    ("streamBy", "stream"),
    ("removeAllBy", "delete"),
    ("removeBy", "delete"),
)

# (keyword, condition); checked in order, a longer keyword always precedes
# any keyword it ends with
CONDITION_SUFFIXES: tuple[tuple[str, str], ...] = (
    ("ContainsIgnoreCase", "contains"),
    ("Containing", "contains"),
    ("Contains", "contains"),
    ("StartingWith", "starts_with"),
    ("EndingWith", "ends_with"),
    ("LessThanEqual", "lte"),
    ("GreaterThanEqual", "gte"),
    ("LessThan", "lt"),
    ("GreaterThan", "gt"),
    ("IsNotNull", "not_null"),
    ("NotNull", "not_null"),
    ("IsNull", "null"),
    ("Null", "null"),
    ("NotLike", "not_like"),
    ("Like", "like"),
    ("IgnoreCase", "eq"),
    ("Between", "between"),
    ("After", "gt"),
    ("Before", "lt"),
    ("NotIn", "not_in"),
    ("In", "in"),
    ("IsTrue", "true"),
    ("IsFalse", "false"),
    ("True", "true"),
    ("False", "false"),
    ("IsNot", "ne"),
    ("Is", "eq"),
    ("Not", "ne"),
    ("Equals", "eq"),
)

_ORDER_BY = "OrderBy"
_SORT_DIRECTIONS = ("Asc", "Desc")

# ---------------------------------------------------------------------------
# Regex patterns for repository sources
# ---------------------------------------------------------------------------

_RE_REPO_ENTITY = re.compile(
    r"(?:CrudRepository|JpaRepository|PagingAndSortingRepository)\s*<\s*(\w+)\s*,",
)
_RE_SUPPRESS = re.compile(r"@SuppressIndexCheck(?:\s*\(\s*(.*?)\s*\))?")
_RE_QUOTED = re.compile(r"\"([^\"]+)\"")
_RE_FUN = re.compile(r"^\s*(?:(?:override|suspend)\s+)*fun\s+(\w+)\s*\(")
_RE_QUERY_START = re.compile(r"@Query\s*\(")
_RE_NATIVE = re.compile(r"nativeQuery\s*=\s*true")
_RE_TRIPLE_QUOTED = re.compile(r'"""(.*?)"""', re.DOTALL)
_RE_DOUBLE_QUOTED = re.compile(r'"([^"]*)"')
_RE_SEPARATOR = re.compile(r"(?:And|Or)(?=[A-Z])")
_RE_WS = re.compile(r"\s+")

# How far to look for the fun a @Query belongs to, and back for its @Query
_FUN_LOOKAHEAD = 10
_QUERY_LOOKBEHIND = 30

# ---------------------------------------------------------------------------
# SQL vocabulary
# ---------------------------------------------------------------------------

_JPQL_KEYWORDS = frozenset({
    "where", "on", "and", "or", "set", "join", "left", "right", "inner", "outer",
    "order", "group", "having", "limit", "as", "in", "not", "null", "is", "between",
    "like", "true", "false", "select", "from", "into", "update", "delete", "fetch",
})
_JPQL_IGNORED_FIELDS = frozenset({"class", "size"})

_ALIAS_KEYWORDS = frozenset({
    "on", "where", "inner", "left", "right", "outer", "cross", "natural", "join",
    "set", "order", "group", "having", "limit", "offset", "union", "full", "using",
    "fetch", "for", "window",
})
_VALUE_KEYWORDS = frozenset({
    "null", "not", "true", "false", "and", "or", "exists", "select",
    "case", "when", "then", "else", "end",
})
_JOIN_SKIP_COLUMNS = frozenset({"id", "null", "true", "false"})
_ORDER_BY_KEYWORDS = frozenset({"asc", "desc", "nulls", "first", "last"})

_RE_JPQL_ALIAS = re.compile(r"\b(?:FROM|JOIN)\s+(\w+)\s+(?:AS\s+)?(\w+)", re.IGNORECASE)
_RE_SQL_TABLE = re.compile(
    r"\b(?:FROM|JOIN)\s+([\w.\"`]+)(?:\s+(?:AS\s+)?(\w+))?", re.IGNORECASE,
)
_RE_SQL_CONDITION = re.compile(
    r"\b(?:WHERE|AND|OR)\s+\(?\s*(?:(\w+)\.)?(\w+)\s*"
    r"(?:=|<>|!=|<=|>=|<|>|IS\s|IN\s|IN\(|BETWEEN\s|I?LIKE\s|NOT\s)",
    re.IGNORECASE,
)
_RE_SQL_JOIN_ON = re.compile(
    r"\bON\s+(?:(\w+)\.)?(\w+)\s*=\s*(?:(\w+)\.)?(\w+)", re.IGNORECASE,
)
_RE_SQL_ORDER_BY = re.compile(
    r"\bORDER\s+BY\s+([\w.,\s]+?)(?:\s+(?:LIMIT|OFFSET|FETCH)\b|\s*$)", re.IGNORECASE,
)
_RE_SQL_ORDER_COLUMN = re.compile(r"(?:(\w+)\.)?(\w+)")
_RE_SQL_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_RE_DISTINCT_END = re.compile(r"\bDISTINCT\s*$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Derived query method names
# ---------------------------------------------------------------------------

def match_query_prefix(method_name: str) -> tuple[str, str] | None:
    """Return ``(prefix, intent)`` for a derived query method name, or None."""
    best: tuple[str, str] | None = None
    for prefix, intent in DERIVED_QUERY_PREFIXES:
        if method_name.startswith(prefix) and len(method_name) > len(prefix):
            if best is None or len(prefix) > len(best[0]):
                best = (prefix, intent)
    return best


def split_predicate(predicate: str) -> list[str]:
    """Split ``EmailAndStatusOrKind`` into ``["Email", "Status", "Kind"]``.

    ``And``/``Or`` only separate when an uppercase letter follows, so
    ``Android`` or ``Ordinal`` stay whole.
    """
    return [part for part in _RE_SEPARATOR.split(predicate) if part]


def strip_condition_suffix(token: str) -> tuple[str, str]:
    """Remove one trailing condition keyword: ``CreatedAtBetween`` -> ``("CreatedAt", "between")``."""
    for keyword, condition in CONDITION_SUFFIXES:
        if token.endswith(keyword) and len(token) > len(keyword):
            return token[: -len(keyword)], condition
    return token, "eq"


def _resolve_field(field_name: str, mapping: TableMapping) -> str:
    entity_field = field_name[:1].lower() + field_name[1:]
    return mapping.field_to_column.get(entity_field) or camel_to_snake(entity_field)


def parse_derived_query(
    method_name: str,
    mapping: TableMapping,
    file_path: str,
    line_number: int,
) -> list[QueryColumn]:
    """Columns referenced by a derived query method name."""
    matched = match_query_prefix(method_name)
    if matched is None:
        return []
    remainder = method_name[len(matched[0]):]

    order_idx = remainder.find(_ORDER_BY)
    if order_idx >= 0:
        predicate = remainder[:order_idx]
        order_part = remainder[order_idx + len(_ORDER_BY):]
    else:
        predicate, order_part = remainder, ""

    columns: list[QueryColumn] = []

    def _add(field_name: str, source: str) -> None:
        columns.append(QueryColumn(
            table_name=mapping.table_name,
            column_name=_resolve_field(field_name, mapping),
            source=source,
            file_path=file_path,
            line_number=line_number,
            query_type=QueryType.DERIVED_QUERY,
        ))

    for token in split_predicate(predicate):
        field_name, _condition = strip_condition_suffix(token)
        if field_name:
            _add(field_name, f"derived query: {method_name}")

    if order_part:
        for direction in _SORT_DIRECTIONS:
            if order_part.endswith(direction):
                order_part = order_part[: -len(direction)]
                break
        if order_part:
            _add(order_part, f"derived query ORDER BY: {method_name}")

    return columns


# ---------------------------------------------------------------------------
# @Query annotations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QueryAnnotation:
    """The query string of an ``@Query`` and the line the annotation ends on."""

    text: str
    is_native: bool
    end_line: int


def _extract_query_string(annotation: str) -> str | None:
    triple = _RE_TRIPLE_QUOTED.findall(annotation)
    if triple:
        return " ".join(part.strip() for part in triple)
    fragments = [
        frag for frag in _RE_DOUBLE_QUOTED.findall(annotation)
        if frag not in ("true", "false") and len(frag) > 1
    ]
    return " ".join(fragments) if fragments else None


def read_query_annotation(lines: list[str], start: int) -> QueryAnnotation | None:
    """Collect an ``@Query(...)`` starting on line *start* until its parentheses balance."""
    first = _RE_QUERY_START.search(lines[start])
    if first is None:
        return None
    depth = 0
    collected: list[str] = []
    for idx in range(start, len(lines)):
        line = lines[idx]
        offset = first.start() if idx == start else 0
        for pos in range(offset, len(line)):
            ch = line[pos]
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    collected.append(line[offset:pos + 1])
                    annotation = "\n".join(collected)
                    text = _extract_query_string(annotation)
                    if text is None:
                        return None
                    return QueryAnnotation(
                        text=text,
                        is_native=bool(_RE_NATIVE.search(annotation)),
                        end_line=idx,
                    )
        collected.append(line[offset:])
    return None


def _normalize(query: str) -> str:
    return _RE_WS.sub(" ", query).strip()


def parse_jpql_query(
    query: str,
    mapping: TableMapping,
    fun_name: str,
    file_path: str,
    line_number: int,
    mappings: Mapping[str, TableMapping] | None = None,
) -> list[QueryColumn]:
    """Columns referenced through ``alias.field`` paths of a JPQL query.

    Each alias resolves through the mapping of the entity it is bound to;
    an alias of an unmapped type falls back to the repository's entity.
    """
    normalized = _normalize(query)
    aliases: dict[str, str] = {}
    for m in _RE_JPQL_ALIAS.finditer(normalized):
        entity, alias = m.group(1), m.group(2)
        if alias.lower() in _JPQL_KEYWORDS:
            continue
        aliases.setdefault(alias, entity)

    columns: list[QueryColumn] = []
    seen: set[tuple[str, str]] = set()
    for alias, entity in aliases.items():
        owner = (mappings or {}).get(entity) or mapping
        ref_re = re.compile(r"(?<!\w)" + re.escape(alias) + r"\.(\w+)")
        for m in ref_re.finditer(normalized):
            field_name = m.group(1)
            if field_name.lower() in _JPQL_IGNORED_FIELDS:
                continue
            column = owner.field_to_column.get(field_name) or camel_to_snake(field_name)
            key = (owner.table_name, column)
            if key in seen:
                continue
            seen.add(key)
            columns.append(QueryColumn(
                table_name=owner.table_name,
                column_name=column,
                source=f"JPQL @Query: {fun_name}",
                file_path=file_path,
                line_number=line_number,
                query_type=QueryType.JPQL,
            ))
    return columns


def _is_expression_from(normalized: str, pos: int) -> bool:
    """True when the FROM at *pos* is part of an expression, not a FROM clause.

    Covers ``EXTRACT(YEAR FROM x)``, ``SUBSTRING(x FROM 2)`` and
    ``a IS DISTINCT FROM b``. Inside parentheses only a subquery binds tables.
    """
    if _RE_DISTINCT_END.search(normalized, 0, pos):
        return True
    depth = 0
    for idx in range(pos - 1, -1, -1):
        ch = normalized[idx]
        if ch == ")":
            depth += 1
        elif ch == "(":
            if depth == 0:
                return not normalized[idx + 1:pos].lstrip().lower().startswith("select")
            depth -= 1
    return False


def _table_bindings(normalized: str) -> dict[str, str]:
    """Map every qualifier usable in the statement (alias or bare table) to its table."""
    bindings: dict[str, str] = {}
    for m in _RE_SQL_TABLE.finditer(normalized):
        if _is_expression_from(normalized, m.start()):
            continue
        table = m.group(1).replace('"', "").replace("`", "").rsplit(".", 1)[-1].lower()
        if not table or table in _ALIAS_KEYWORDS or table == "select":
            continue
        bindings.setdefault(table, table)
        alias = m.group(2)
        if alias and alias.lower() not in _ALIAS_KEYWORDS:
            bindings[alias.lower()] = table
    return bindings


def parse_native_query(
    query: str,
    mapping: TableMapping,
    fun_name: str,
    file_path: str,
    line_number: int,
) -> list[QueryColumn]:
    """Columns of the entity's table used in WHERE, JOIN ... ON and ORDER BY."""
    normalized = _normalize(query)
    bindings = _table_bindings(normalized)
    entity_table = mapping.table_name.lower()
    entity_qualifiers = {q for q, t in bindings.items() if t == entity_table}
    multi_table = len(set(bindings.values())) > 1

    def _owned(qualifier: str | None) -> bool:
        if qualifier:
            return qualifier.lower() in entity_qualifiers
        return not multi_table

    columns: list[QueryColumn] = []
    seen: set[str] = set()

    def _add(column: str, source: str) -> None:
        if column in seen:
            return
        seen.add(column)
        columns.append(QueryColumn(
            table_name=mapping.table_name,
            column_name=column,
            source=source,
            file_path=file_path,
            line_number=line_number,
            query_type=QueryType.NATIVE_SQL,
        ))

    where = _RE_SQL_WHERE.search(normalized)
    if where:
        for m in _RE_SQL_CONDITION.finditer(normalized, where.start()):
            column = m.group(2).lower()
            if column not in _VALUE_KEYWORDS and _owned(m.group(1)):
                _add(column, f"native @Query: {fun_name}")

    for m in _RE_SQL_JOIN_ON.finditer(normalized):
        for qualifier, raw in ((m.group(1), m.group(2)), (m.group(3), m.group(4))):
            column = raw.lower()
            if column in _JOIN_SKIP_COLUMNS or column in _VALUE_KEYWORDS:
                continue
            if _owned(qualifier):
                _add(column, f"native @Query JOIN: {fun_name}")

    order = _RE_SQL_ORDER_BY.search(normalized)
    if order:
        for m in _RE_SQL_ORDER_COLUMN.finditer(order.group(1)):
            column = m.group(2).lower()
            if column in _ORDER_BY_KEYWORDS or column.isdigit():
                continue
            if _owned(m.group(1)):
                _add(column, f"native @Query ORDER BY: {fun_name}")

    return columns


# ---------------------------------------------------------------------------
# File scanning
# ---------------------------------------------------------------------------

def _suppression_directive(line: str) -> frozenset[str] | None:
    """Parse a ``// @SuppressIndexCheck`` comment; an empty set suppresses everything."""
    if not line.lstrip().startswith("//"):
        return None
    m = _RE_SUPPRESS.search(line)
    if m is None:
        return None
    args = (m.group(1) or "").strip()
    return frozenset(col.lower() for col in _RE_QUOTED.findall(args))


def _apply_suppression(
    columns: list[QueryColumn], suppressed: frozenset[str] | None,
) -> list[QueryColumn]:
    if suppressed is None:
        return columns
    if not suppressed:
        return []
    return [c for c in columns if c.column_name.lower() not in suppressed]


def _fun_name_after(lines: list[str], line_idx: int) -> str | None:
    for idx in range(line_idx + 1, min(len(lines), line_idx + _FUN_LOOKAHEAD)):
        m = _RE_FUN.match(lines[idx])
        if m:
            return m.group(1)
    return None


def _preceded_by_query(lines: list[str], fun_idx: int) -> bool:
    for idx in range(fun_idx - 1, max(-1, fun_idx - _QUERY_LOOKBEHIND - 1), -1):
        line = lines[idx].strip()
        if _RE_QUERY_START.search(line):
            return True
        if _RE_FUN.match(line) or line.startswith("interface "):
            return False
    return False


def scan_repository_source(
    content: str,
    mappings: Mapping[str, TableMapping],
    file_path: str,
) -> list[QueryColumn]:
    """Extract query columns from repository source text."""
    m = _RE_REPO_ENTITY.search(content)
    if m is None:
        return []
    mapping = mappings.get(m.group(1))
    if mapping is None:
        log.debug("%s: entity %s is not mapped", file_path, m.group(1))
        return []

    lines = content.splitlines()
    columns: list[QueryColumn] = []
    pending: frozenset[str] | None = None

    i = 0
    while i < len(lines):
        line = lines[i]

        directive = _suppression_directive(line)
        if directive is not None:
            pending = directive
            i += 1
            continue

        if _RE_QUERY_START.search(line):
            annotation = read_query_annotation(lines, i)
            if annotation is not None:
                fun_name = _fun_name_after(lines, annotation.end_line) or "unknown"
                if annotation.is_native:
                    found = parse_native_query(annotation.text, mapping, fun_name, file_path, i + 1)
                else:
                    found = parse_jpql_query(
                        annotation.text, mapping, fun_name, file_path, i + 1, mappings,
                    )
                columns.extend(_apply_suppression(found, pending))
                pending = None
                i = annotation.end_line + 1
                continue

        fun = _RE_FUN.match(line)
        if fun:
            if not _preceded_by_query(lines, i):
                found = parse_derived_query(fun.group(1), mapping, file_path, i + 1)
                columns.extend(_apply_suppression(found, pending))
            pending = None

        i += 1

    return columns


def extract_query_columns(
    path: Path, mappings: Mapping[str, TableMapping],
) -> list[QueryColumn]:
    """Query columns of one repository source file."""
    content = read_source(path)
    if content is None:
        return []
    return scan_repository_source(content, mappings, str(path))


def extract_repositories(
    directory: Path, mappings: Mapping[str, TableMapping],
) -> list[QueryColumn]:
    """Query columns of every repository under *directory*, in path order."""
    columns: list[QueryColumn] = []
    for path in iter_source_files(Path(directory)):
        columns.extend(extract_query_columns(path, mappings))
    log.debug("Extracted %d query columns under %s", len(columns), directory)
    return columns
