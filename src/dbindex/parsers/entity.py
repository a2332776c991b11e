"""Map Kotlin JPA entity classes to their tables and columns.

Recognised declarations (regex-only, line based):

* ``@Entity`` marker and ``@Table(name = "...")``    -> the mapped table
* ``@Column(name = "...")``                        -> explicit column name
* ``@JoinColumn(name = "...")``                    -> foreign key column of a
  ``@ManyToOne`` / ``@OneToOne`` field
* ``@OneToMany`` / ``@ManyToMany`` / ``@JoinTable``  -> collection, no column
* any other ``val`` / ``var`` field                 -> ``camel_to_snake(name)``

Annotations apply to the next property, whether it follows on the same
line (constructor style) or below.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from dbindex.model import TableMapping
from dbindex.parsers.sources import iter_source_files, read_source

log = logging.getLogger(__name__)

_RE_ENTITY = re.compile(r"@Entity\b")
_RE_TABLE = re.compile(r"@Table\s*\(\s*name\s*=\s*\"([^\"]+)\"")
_RE_CLASS = re.compile(r"\bclass\s+(\w+)")
_RE_COLUMN = re.compile(r"@Column\s*\([^)]*\bname\s*=\s*\"([^\"]+)\"[^)]*\)")
_RE_JOIN_COLUMN = re.compile(r"@JoinColumn\s*\([^)]*\bname\s*=\s*\"([^\"]+)\"[^)]*\)")

# `val email: String` with optional annotations and modifiers in front
_RE_FIELD = re.compile(
    r"^\s*(?:@[\w.:]+(?:\s*\((?:[^()]|\([^()]*\))*\))?\s+)*"
    r"(?:(?:private|protected|internal|public|override|open|lateinit)\s+)*"
    r"(?:var|val)\s+(\w+)\s*:\s*(\S+)",
)

_RE_TO_MANY = re.compile(r"@(?:OneToMany|ManyToMany)\b")
_RE_JOIN_TABLE = re.compile(r"@JoinTable\b")

_RE_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")

# Lines searched around an annotation for the field it belongs to
_LOOKAHEAD = 5
_LOOKBEHIND = 5

# Audit columns inherited from the common base entity
_DEFAULT_FIELDS = (
    ("createdAt", "created_at"),
    ("updatedAt", "updated_at"),
)


def camel_to_snake(name: str) -> str:
    """Default physical naming: ``orderDate`` -> ``order_date``.

    Only a lowercase letter followed by an uppercase one gets an underscore,
    so runs of capitals are not collapsed (``iD`` -> ``i_d``,
    ``userURL`` -> ``user_url``).
    """
    return _RE_CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()


def _field_at_or_after(lines: list[str], start: int) -> str | None:
    for idx in range(start, min(len(lines), start + _LOOKAHEAD + 1)):
        m = _RE_FIELD.match(lines[idx])
        if m:
            return m.group(1)
    return None


def _is_collection_field(lines: list[str], field_idx: int) -> bool:
    """True if a to-many or @JoinTable annotation sits in the block above the field."""
    for idx in range(field_idx - 1, max(-1, field_idx - _LOOKBEHIND - 1), -1):
        line = lines[idx]
        if _RE_TO_MANY.search(line) or _RE_JOIN_TABLE.search(line):
            return True
        if _RE_FIELD.match(line) or not line.strip():
            return False
    return False


def _map_fields(lines: list[str]) -> dict[str, str]:
    columns: dict[str, str] = {"id": "id"}

    for i, line in enumerate(lines):
        if _RE_TO_MANY.search(line) or _RE_JOIN_TABLE.search(line):
            continue

        explicit = _RE_COLUMN.search(line) or _RE_JOIN_COLUMN.search(line)
        if explicit:
            field_name = _field_at_or_after(lines, i)
            if field_name:
                columns[field_name] = explicit.group(1)
            continue

        m = _RE_FIELD.match(line)
        if not m:
            continue
        field_name = m.group(1)
        # An earlier @Column/@JoinColumn already named this field
        if field_name in columns or _is_collection_field(lines, i):
            continue
        columns[field_name] = camel_to_snake(field_name)

    for field_name, column in _DEFAULT_FIELDS:
        columns.setdefault(field_name, column)
    return columns


def parse_entity_source(content: str) -> tuple[str, str, dict[str, str]] | None:
    """Return ``(class_name, table_name, field_to_column)`` for entity source text."""
    if not _RE_ENTITY.search(content):
        return None
    table = _RE_TABLE.search(content)
    if not table:
        return None
    cls = _RE_CLASS.search(content)
    if not cls:
        return None
    return cls.group(1), table.group(1), _map_fields(content.splitlines())


def map_entity(path: Path) -> TableMapping | None:
    """Build the TableMapping for one entity source file, or None."""
    content = read_source(path)
    if content is None:
        return None
    parsed = parse_entity_source(content)
    if parsed is None:
        return None
    entity_name, table_name, field_to_column = parsed
    return TableMapping(
        entity_name=entity_name,
        table_name=table_name,
        field_to_column=field_to_column,
    )


def map_entities(directory: Path) -> dict[str, TableMapping]:
    """Map every entity under *directory*, keyed by entity (class) name."""
    mappings: dict[str, TableMapping] = {}
    for path in iter_source_files(Path(directory)):
        mapping = map_entity(path)
        if mapping is not None:
            mappings[mapping.entity_name] = mapping
    log.debug("Mapped %d entities under %s", len(mappings), directory)
    return mappings
