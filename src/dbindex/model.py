"""Value types shared by the parsers, the checker and the reports.

All records are frozen dataclasses: every stage builds new lists and never
mutates what an earlier stage produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class QueryType(Enum):
    """How a repository method expresses its query."""

    DERIVED_QUERY = "DERIVED_QUERY"
    JPQL = "JPQL"
    NATIVE_SQL = "NATIVE_SQL"


def issue_key(service: str, table: str, column: str) -> tuple[str, str, str]:
    """Case-insensitive identity of a finding."""
    return (service.lower(), table.lower(), column.lower())


@dataclass(frozen=True)
class TableMapping:
    """An entity class and the table it is persisted to."""

    entity_name: str
    table_name: str
    field_to_column: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class QueryColumn:
    """A column referenced by a repository query (filter, join or sort)."""

    table_name: str
    column_name: str
    source: str
    file_path: str
    line_number: int
    query_type: QueryType


@dataclass(frozen=True)
class IndexedColumn:
    """A column covered by an index declared in a changelog."""

    table_name: str
    column_name: str
    index_name: str
    file_path: str
    is_unique: bool = False
    is_partial: bool = False
    composite_position: int = 0


@dataclass(frozen=True)
class MissingIndex:
    service_name: str
    table_name: str
    column_name: str
    query_source: str
    repository_file: str
    line_number: int
    query_type: QueryType

    def key(self) -> tuple[str, str, str]:
        return issue_key(self.service_name, self.table_name, self.column_name)

    def to_dict(self) -> dict:
        return {
            "service": self.service_name,
            "table": self.table_name,
            "column": self.column_name,
            "queryType": self.query_type.value,
            "querySource": self.query_source,
            "file": self.repository_file,
            "line": self.line_number,
        }


@dataclass(frozen=True)
class BaselineIssue:
    """The identity of a finding as persisted in a baseline file."""

    service_name: str
    table_name: str
    column_name: str

    def key(self) -> tuple[str, str, str]:
        return issue_key(self.service_name, self.table_name, self.column_name)

    def to_dict(self) -> dict:
        return {
            "service": self.service_name,
            "table": self.table_name,
            "column": self.column_name,
        }

    @classmethod
    def from_missing(cls, missing: MissingIndex) -> BaselineIssue:
        return cls(missing.service_name, missing.table_name, missing.column_name)


@dataclass(frozen=True)
class BaselineComparison:
    current: list[MissingIndex]
    new_issues: list[MissingIndex]
    existing_issues: list[MissingIndex]
    resolved_issues: list[BaselineIssue]
