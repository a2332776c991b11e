"""Cross-reference query columns against declared indexes.

A column counts as indexed only when it is the leading column
(``composite_position == 0``) of some index on its table: a composite
index on ``(a, b)`` serves lookups on ``a`` but not on ``b`` alone.
Table and column names compare case-insensitively.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from dbindex.model import IndexedColumn, MissingIndex, QueryColumn

log = logging.getLogger(__name__)


def leading_columns(indexed_columns: Iterable[IndexedColumn]) -> dict[str, set[str]]:
    """Lower-cased table -> lower-cased columns that lead an index."""
    lookup: dict[str, set[str]] = defaultdict(set)
    for ic in indexed_columns:
        if ic.composite_position == 0:
            lookup[ic.table_name.lower()].add(ic.column_name.lower())
    return lookup


def find_missing_indexes(
    service_name: str,
    query_columns: Iterable[QueryColumn],
    indexed_columns: Iterable[IndexedColumn],
    exclude_tables: Iterable[str] = (),
    exclude_columns: Iterable[str] = (),
    exclude_findings: Iterable[str] = (),
) -> list[MissingIndex]:
    """Return one MissingIndex per unindexed (table, column) pair.

    *exclude_findings* entries are ``table.column`` strings. The first query
    column for a pair supplies the reported source location. The result is
    sorted by table then column, case-insensitively.
    """
    indexed = leading_columns(indexed_columns)
    skip_tables = {t.lower() for t in exclude_tables}
    skip_columns = {c.lower() for c in exclude_columns}
    skip_findings = {f.lower() for f in exclude_findings}

    seen: set[tuple[str, str]] = set()
    missing: list[MissingIndex] = []
    for qc in query_columns:
        table = qc.table_name.lower()
        column = qc.column_name.lower()
        if table in skip_tables or column in skip_columns:
            continue
        if f"{table}.{column}" in skip_findings:
            continue
        # Primary key is always indexed
        if column == "id":
            continue
        if column in indexed.get(table, ()):
            continue
        if (table, column) in seen:
            continue
        seen.add((table, column))
        missing.append(MissingIndex(
            service_name=service_name,
            table_name=qc.table_name,
            column_name=qc.column_name,
            query_source=qc.source,
            repository_file=qc.file_path,
            line_number=qc.line_number,
            query_type=qc.query_type,
        ))

    missing.sort(key=lambda m: (m.table_name.lower(), m.column_name.lower()))
    log.debug("%s: %d missing indexes", service_name, len(missing))
    return missing
