"""Module discovery and the per-module check pipeline.

A project is either a multi-module Gradle build, where every direct
subdirectory with entities, repositories and a changelog is one service,
or a single service rooted at the project directory itself.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dbindex.checker import find_missing_indexes
from dbindex.config import CheckerConfig
from dbindex.model import IndexedColumn, MissingIndex, QueryColumn, TableMapping
from dbindex.parsers import extract_indexes, extract_repositories, map_entities
from dbindex.parsers.sources import SKIP_DIRS

log = logging.getLogger(__name__)

# Top-level directories of a Gradle build that are never services
_NON_MODULE_DIRS = frozenset({"build", "buildSrc", "gradle"})


@dataclass
class ModuleResult:
    name: str
    path: Path
    mappings: dict[str, TableMapping] = field(default_factory=dict)
    query_columns: list[QueryColumn] = field(default_factory=list)
    indexed_columns: list[IndexedColumn] = field(default_factory=list)
    missing: list[MissingIndex] = field(default_factory=list)
    # Why the module was not checked, None when it was
    skipped: str | None = None


@dataclass
class ScanResult:
    root: Path
    modules: list[ModuleResult] = field(default_factory=list)

    @property
    def findings(self) -> list[MissingIndex]:
        return [m for module in self.modules for m in module.missing]

    @property
    def checked(self) -> list[ModuleResult]:
        return [m for m in self.modules if m.skipped is None]


def find_directories(root: Path, name: str) -> list[Path]:
    """Every directory called *name* under *root* (inclusive), sorted."""
    root = Path(root)
    if not root.is_dir():
        return []
    found = [root] if root.name == name else []
    for dirpath, dirnames, _ in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        found.extend(Path(dirpath) / d for d in dirnames if d == name)
    return sorted(found)


def _named_dirs(source_root: Path, names: tuple[str, ...]) -> list[Path]:
    dirs = [d for name in names for d in find_directories(source_root, name)]
    return list(dict.fromkeys(dirs))


def _has_module_layout(module_dir: Path, config: CheckerConfig) -> bool:
    source_root = module_dir / config.source_root
    return (
        bool(_named_dirs(source_root, config.entity_dirs))
        and bool(_named_dirs(source_root, config.repository_dirs))
        and (module_dir / config.changelog_path).is_dir()
    )


def discover_modules(root: Path, config: CheckerConfig) -> list[str]:
    """Names of the direct subdirectories of *root* that look like services."""
    root = Path(root)
    if not root.is_dir():
        return []
    modules = []
    for child in sorted(root.iterdir()):
        if not child.is_dir() or child.name.startswith("."):
            continue
        if child.name in _NON_MODULE_DIRS:
            continue
        if _has_module_layout(child, config):
            modules.append(child.name)
    return modules


def check_module(name: str, module_dir: Path, config: CheckerConfig) -> ModuleResult:
    """Run mapping, extraction and comparison for one service."""
    module_dir = Path(module_dir)
    result = ModuleResult(name=name, path=module_dir)
    source_root = module_dir / config.source_root

    entity_dirs = _named_dirs(source_root, config.entity_dirs)
    if not entity_dirs:
        result.skipped = "no entity directory"
        return result
    repository_dirs = _named_dirs(source_root, config.repository_dirs)
    if not repository_dirs:
        result.skipped = "no repository directory"
        return result
    changelog_dir = module_dir / config.changelog_path
    if not changelog_dir.is_dir():
        result.skipped = "no changelog directory"
        return result

    for directory in entity_dirs:
        result.mappings.update(map_entities(directory))
    if not result.mappings:
        result.skipped = "no entities"
        return result

    for directory in repository_dirs:
        result.query_columns.extend(extract_repositories(directory, result.mappings))
    result.indexed_columns = extract_indexes(changelog_dir)
    result.missing = find_missing_indexes(
        name,
        result.query_columns,
        result.indexed_columns,
        exclude_tables=config.exclude_tables,
        exclude_columns=config.exclude_columns,
        exclude_findings=config.exclude_findings,
    )
    log.info(
        "%s: %d entities, %d query columns, %d indexed columns, %d missing",
        name, len(result.mappings), len(result.query_columns),
        len(result.indexed_columns), len(result.missing),
    )
    return result


def run_check(root: Path, config: CheckerConfig) -> ScanResult:
    """Check every service of the project at *root*."""
    root = Path(root).resolve()
    scan = ScanResult(root=root)

    if config.services:
        for name in config.services:
            module_dir = root / name
            if not module_dir.is_dir():
                log.warning("Configured service %s not found under %s", name, root)
                scan.modules.append(ModuleResult(name=name, path=module_dir, skipped="directory not found"))
                continue
            scan.modules.append(check_module(name, module_dir, config))
    else:
        names = discover_modules(root, config)
        if names:
            log.info("Discovered %d modules: %s", len(names), ", ".join(names))
            for name in names:
                scan.modules.append(check_module(name, root / name, config))
        else:
            scan.modules.append(check_module(root.name, root, config))

    for module in scan.modules:
        if module.skipped:
            log.info("Skipping %s: %s", module.name, module.skipped)
    return scan
