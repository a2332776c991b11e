"""Regex-based extractors for entities, repository queries and changelogs."""

from dbindex.parsers.changelog import extract_indexes
from dbindex.parsers.entity import map_entities, map_entity
from dbindex.parsers.repository import extract_query_columns, extract_repositories

__all__ = [
    "extract_indexes",
    "extract_query_columns",
    "extract_repositories",
    "map_entities",
    "map_entity",
]
