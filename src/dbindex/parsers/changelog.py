"""Collect indexed columns from Liquibase changelogs (XML, YAML and formatted SQL).

The changelog root (``changelog.xml`` / ``changelog.sql`` / ``changelog.yaml``)
is walked depth-first through ``include``, ``includeAll``, ``sqlFile`` and
``--include file:`` references. Each file is reduced to a flat list of
:class:`Change` records, and six rules turn changes into IndexedColumn rows:

  createIndex            -> one row per <column>, position = child order
  addUniqueConstraint    -> one row per name in columnNames, unique
  sql / SQL files        -> raw CREATE [UNIQUE] INDEX statements
  createTable pk         -> primary key column, unique, position 0
  createTable unique     -> unique column that is not also the primary key
  addColumn unique       -> unique column added later

Files that are missing contribute nothing; files that cannot be parsed are
logged and skipped without stopping the walk.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import yaml

from dbindex.model import IndexedColumn
from dbindex.parsers.sources import iter_source_files, read_source

log = logging.getLogger(__name__)

ROOT_CHANGELOGS = ("changelog.xml", "changelog.sql", "changelog.yaml", "changelog.yml")
CHANGELOG_SUFFIXES = (".xml", ".sql", ".yaml", ".yml")

# Change types that matter for index extraction or graph traversal
_CHANGE_TYPES = frozenset({
    "include", "includeAll", "sqlFile", "sql",
    "createIndex", "addUniqueConstraint", "createTable", "addColumn",
})

_RE_CREATE_INDEX = re.compile(
    r"CREATE\s+(UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?"
    r"(?:(\S+)\s+)?ON\s+(?:ONLY\s+)?([^\s(]+)\s*(?:USING\s+\w+\s*)?\(([^)]+)\)",
    re.IGNORECASE,
)
_RE_SORT_ORDER = re.compile(r"\s+(?:ASC|DESC)(?:\s+NULLS\s+(?:FIRST|LAST))?\s*$", re.IGNORECASE)
_RE_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_RE_SQL_INCLUDE = re.compile(r"^\s*--\s*include\s+file:(\S+)", re.IGNORECASE | re.MULTILINE)


@dataclass(frozen=True)
class Change:
    """One changelog element reduced to what the index rules need.

    ``columns`` holds ``(column attributes, [constraints attributes, ...])``
    for every nested column definition.
    """

    kind: str
    attrs: dict[str, str] = field(default_factory=dict)
    columns: list[tuple[dict[str, str], list[dict[str, str]]]] = field(default_factory=list)
    text: str = ""
    in_rollback: bool = False


# ---------------------------------------------------------------------------
# Identifier helpers
# ---------------------------------------------------------------------------

def _unquote(name: str) -> str:
    return name.strip().strip('"`[]')


def _bare_table(name: str) -> str:
    """``public."Users"`` -> ``Users``."""
    return _unquote(_unquote(name).rsplit(".", 1)[-1])


def _is_true(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


# ---------------------------------------------------------------------------
# Raw SQL
# ---------------------------------------------------------------------------

def _strip_rollback_lines(sql: str) -> str:
    return "\n".join(
        line for line in sql.splitlines()
        if not line.lstrip().lower().startswith("--rollback")
    )


def parse_sql_indexes(sql: str, file_path: str) -> list[IndexedColumn]:
    """IndexedColumn rows for every CREATE INDEX statement in *sql*."""
    text = _strip_rollback_lines(sql)
    results: list[IndexedColumn] = []
    for m in _RE_CREATE_INDEX.finditer(text):
        is_unique = bool(m.group(1))
        table = _bare_table(m.group(3))
        columns = [
            _unquote(_RE_SORT_ORDER.sub("", col.strip()))
            for col in m.group(4).split(",")
        ]
        columns = [c for c in columns if c]
        index_name = _unquote(m.group(2)) if m.group(2) else f"{table}_{'_'.join(columns)}_idx"

        remainder = text[m.end():]
        end = remainder.find(";")
        statement_tail = remainder if end < 0 else remainder[:end]
        is_partial = bool(_RE_WHERE.search(statement_tail))

        for position, column in enumerate(columns):
            results.append(IndexedColumn(
                table_name=table,
                column_name=column,
                index_name=index_name,
                file_path=file_path,
                is_unique=is_unique,
                is_partial=is_partial,
                composite_position=position,
            ))
    return results


# ---------------------------------------------------------------------------
# Extraction rules
# ---------------------------------------------------------------------------

def _create_index_rule(changes: list[Change], file_path: str) -> list[IndexedColumn]:
    results = []
    for change in changes:
        if change.kind != "createIndex":
            continue
        table = change.attrs.get("tableName", "")
        index_name = change.attrs.get("indexName", "")
        is_unique = _is_true(change.attrs.get("unique"))
        for position, (column, _constraints) in enumerate(change.columns):
            name = column.get("name", "")
            if table and name:
                results.append(IndexedColumn(
                    table_name=table,
                    column_name=name,
                    index_name=index_name,
                    file_path=file_path,
                    is_unique=is_unique,
                    composite_position=position,
                ))
    return results


def _unique_constraint_rule(changes: list[Change], file_path: str) -> list[IndexedColumn]:
    results = []
    for change in changes:
        if change.kind != "addUniqueConstraint":
            continue
        table = change.attrs.get("tableName", "")
        raw = change.attrs.get("columnNames", "")
        names = [n.strip() for n in raw.split(",") if n.strip()]
        if not table or not names:
            continue
        constraint = change.attrs.get("constraintName") or raw.replace(", ", "_") + "_uq"
        for position, name in enumerate(names):
            results.append(IndexedColumn(
                table_name=table,
                column_name=name,
                index_name=constraint,
                file_path=file_path,
                is_unique=True,
                composite_position=position,
            ))
    return results


def _raw_sql_rule(changes: list[Change], file_path: str) -> list[IndexedColumn]:
    results = []
    for change in changes:
        if change.kind == "sql" and not change.in_rollback:
            results.extend(parse_sql_indexes(change.text, file_path))
    return results


def _column_constraint_rows(
    changes: list[Change],
    kind: str,
    file_path: str,
    accept: Callable[[dict[str, str]], bool],
    name_attr: str,
    default_name: Callable[[str, str], str],
) -> list[IndexedColumn]:
    results = []
    for change in changes:
        if change.kind != kind:
            continue
        table = change.attrs.get("tableName", "")
        for column, constraints in change.columns:
            name = column.get("name", "")
            if not table or not name:
                continue
            for constraint in constraints:
                if not accept(constraint):
                    continue
                results.append(IndexedColumn(
                    table_name=table,
                    column_name=name,
                    index_name=constraint.get(name_attr) or default_name(table, name),
                    file_path=file_path,
                    is_unique=True,
                    composite_position=0,
                ))
    return results


def _primary_key_rule(changes: list[Change], file_path: str) -> list[IndexedColumn]:
    return _column_constraint_rows(
        changes, "createTable", file_path,
        accept=lambda c: _is_true(c.get("primaryKey")),
        name_attr="primaryKeyName",
        default_name=lambda table, _col: f"{table}_pkey",
    )


def _create_table_unique_rule(changes: list[Change], file_path: str) -> list[IndexedColumn]:
    # The primary key already counts as the column's index
    return _column_constraint_rows(
        changes, "createTable", file_path,
        accept=lambda c: _is_true(c.get("unique")) and not _is_true(c.get("primaryKey")),
        name_attr="uniqueConstraintName",
        default_name=lambda table, col: f"{table}_{col}_unique",
    )


def _add_column_unique_rule(changes: list[Change], file_path: str) -> list[IndexedColumn]:
    return _column_constraint_rows(
        changes, "addColumn", file_path,
        accept=lambda c: _is_true(c.get("unique")),
        name_attr="uniqueConstraintName",
        default_name=lambda table, col: f"{table}_{col}_unique",
    )


INDEX_RULES: tuple[Callable[[list[Change], str], list[IndexedColumn]], ...] = (
    _create_index_rule,
    _unique_constraint_rule,
    _raw_sql_rule,
    _primary_key_rule,
    _create_table_unique_rule,
    _add_column_unique_rule,
)


def indexes_from_changes(changes: list[Change], file_path: str) -> list[IndexedColumn]:
    """Apply every extraction rule to the changes of one file."""
    results: list[IndexedColumn] = []
    for rule in INDEX_RULES:
        results.extend(rule(changes, file_path))
    return results


# ---------------------------------------------------------------------------
# XML changelogs
# ---------------------------------------------------------------------------

def _local(tag) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _xml_attrs(elem: ET.Element) -> dict[str, str]:
    return {_local(k): v for k, v in elem.attrib.items()}


def _xml_change(elem: ET.Element, kind: str, in_rollback: bool) -> Change:
    columns = []
    for child in elem:
        if _local(child.tag) != "column":
            continue
        constraints = [
            _xml_attrs(c) for c in child if _local(c.tag) == "constraints"
        ]
        columns.append((_xml_attrs(child), constraints))
    text = "".join(elem.itertext()) if kind == "sql" else ""
    return Change(kind=kind, attrs=_xml_attrs(elem), columns=columns,
                  text=text, in_rollback=in_rollback)


def xml_changes(root: ET.Element) -> list[Change]:
    """Flatten an XML changelog into its relevant changes, in document order."""
    changes: list[Change] = []

    def _walk(elem: ET.Element, in_rollback: bool) -> None:
        kind = _local(elem.tag)
        if kind in _CHANGE_TYPES:
            changes.append(_xml_change(elem, kind, in_rollback))
        nested_rollback = in_rollback or kind == "rollback"
        for child in elem:
            _walk(child, nested_rollback)

    _walk(root, False)
    return changes


# ---------------------------------------------------------------------------
# YAML changelogs
# ---------------------------------------------------------------------------

def _yaml_scalar(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _yaml_attrs(node) -> dict[str, str]:
    if not isinstance(node, dict):
        return {}
    return {
        str(k): _yaml_scalar(v) for k, v in node.items()
        if not isinstance(v, (dict, list))
    }


def _yaml_change(kind: str, node, in_rollback: bool) -> Change:
    if kind == "sql" and not isinstance(node, dict):
        return Change(kind=kind, text=_yaml_scalar(node), in_rollback=in_rollback)

    columns = []
    for item in (node.get("columns") or []) if isinstance(node, dict) else []:
        column = item.get("column") if isinstance(item, dict) else None
        if not isinstance(column, dict):
            continue
        raw_constraints = column.get("constraints")
        constraints = [_yaml_attrs(raw_constraints)] if isinstance(raw_constraints, dict) else []
        columns.append((_yaml_attrs(column), constraints))

    text = _yaml_scalar(node.get("sql")) if kind == "sql" else ""
    return Change(kind=kind, attrs=_yaml_attrs(node), columns=columns,
                  text=text, in_rollback=in_rollback)


def yaml_changes(document) -> list[Change]:
    """Flatten a YAML changelog document into its relevant changes."""
    changes: list[Change] = []

    def _walk(node, in_rollback: bool) -> None:
        if isinstance(node, list):
            for item in node:
                _walk(item, in_rollback)
        elif isinstance(node, dict):
            for key, value in node.items():
                if key in _CHANGE_TYPES:
                    changes.append(_yaml_change(key, value, in_rollback))
                else:
                    _walk(value, in_rollback or key == "rollback")

    _walk(document, False)
    return changes


# ---------------------------------------------------------------------------
# Graph traversal
# ---------------------------------------------------------------------------

def resolve_reference(reference: str, parent_dir: Path, changelog_dir: Path) -> Path:
    """Resolve an include path the way Liquibase does for classpath resources.

    The including file's directory is tried first, then the changelog root.
    """
    path = reference.split("?", 1)[0].strip()
    for prefix in ("classpath:", "file:", "/"):
        if path.startswith(prefix):
            path = path[len(prefix):]
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    from_parent = parent_dir / path
    return from_parent if from_parent.exists() else changelog_dir / path


class _ChangelogWalker:
    """Depth-first walk over the include graph with an explicit visited set."""

    def __init__(self, changelog_dir: Path):
        self.changelog_dir = changelog_dir
        self.visited: set[Path] = set()
        self.results: list[IndexedColumn] = []

    def visit(self, path: Path) -> None:
        try:
            key = path.resolve()
        except (OSError, RuntimeError):
            return
        if key in self.visited:
            return
        self.visited.add(key)
        if not path.is_file():
            log.debug("Changelog reference %s does not exist", path)
            return

        suffix = path.suffix.lower()
        if suffix == ".sql":
            self._visit_sql(path)
        elif suffix == ".xml":
            self._visit_changes(path, self._load_xml(path))
        elif suffix in (".yaml", ".yml"):
            self._visit_changes(path, self._load_yaml(path))

    def _load_xml(self, path: Path) -> list[Change] | None:
        try:
            root = ET.parse(path).getroot()
        except (ET.ParseError, OSError) as exc:
            log.warning("Skipping malformed changelog %s: %s", path, exc)
            return None
        return xml_changes(root)

    def _load_yaml(self, path: Path) -> list[Change] | None:
        content = read_source(path)
        if content is None:
            return None
        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            log.warning("Skipping malformed changelog %s: %s", path, exc)
            return None
        return yaml_changes(document)

    def _visit_sql(self, path: Path) -> None:
        content = read_source(path)
        if content is None:
            return
        self.results.extend(parse_sql_indexes(content, str(path)))
        for m in _RE_SQL_INCLUDE.finditer(content):
            self.visit(resolve_reference(m.group(1), path.parent, self.changelog_dir))

    def _visit_changes(self, path: Path, changes: list[Change] | None) -> None:
        if changes is None:
            return
        for target in self._references(path, changes):
            self.visit(target)
        self.results.extend(indexes_from_changes(changes, str(path)))

    def _references(self, path: Path, changes: list[Change]) -> Iterable[Path]:
        parent = path.parent
        for change in changes:
            if change.kind == "include":
                ref = change.attrs.get("file", "").strip()
                if ref:
                    yield resolve_reference(ref, parent, self.changelog_dir)
            elif change.kind == "includeAll":
                ref = change.attrs.get("path", "").strip()
                if not ref:
                    continue
                directory = resolve_reference(ref, parent, self.changelog_dir)
                yield from iter_source_files(directory, CHANGELOG_SUFFIXES)
            elif change.kind == "sqlFile" and not change.in_rollback:
                ref = change.attrs.get("path", "").strip()
                if ref:
                    yield resolve_reference(ref, parent, self.changelog_dir)


def extract_indexes(changelog_dir: Path) -> list[IndexedColumn]:
    """Every indexed column reachable from the root changelog(s) in *changelog_dir*."""
    changelog_dir = Path(changelog_dir)
    roots = [changelog_dir / name for name in ROOT_CHANGELOGS if (changelog_dir / name).is_file()]
    if not roots:
        return []
    walker = _ChangelogWalker(changelog_dir)
    for root in roots:
        walker.visit(root)
    log.debug("Found %d indexed columns under %s", len(walker.results), changelog_dir)
    return walker.results
