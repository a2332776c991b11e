"""Checker configuration loaded from ``.dbindex.yaml``.

Example::

    fail_on_new_missing: true
    baseline_file: ci/db-index-baseline.json
    exclude_tables: [databasechangelog, databasechangeloglock, audit_log]
    exclude_findings:
      - users.legacy_code
    services: [billing-service, user-service]
    repository_dirs: [dao, repository, persistence]

Every key is optional. Missing keys keep their defaults, unknown keys are
rejected so that typos do not silently disable a check.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path

import yaml

CONFIG_FILENAMES = (".dbindex.yaml", ".dbindex.yml")


@dataclass(frozen=True)
class CheckerConfig:
    fail_on_missing: bool = False
    fail_on_new_missing: bool = False
    warn_on_existing_missing: bool = True
    baseline_file: str = "db-index-checker-baseline.json"
    exclude_tables: tuple[str, ...] = ("databasechangelog", "databasechangeloglock")
    exclude_columns: tuple[str, ...] = ("id",)
    exclude_findings: tuple[str, ...] = ()
    # Empty means auto-discover
    services: tuple[str, ...] = ()
    entity_dirs: tuple[str, ...] = ("entity",)
    repository_dirs: tuple[str, ...] = ("dao", "repository")
    source_root: str = "src/main/kotlin"
    changelog_path: str = "src/main/resources/db"

    def with_overrides(self, **overrides) -> CheckerConfig:
        """Copy with every non-None override applied.

        List overrides for the ``exclude_*`` keys extend the configured
        values, every other override replaces them.
        """
        changes = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key.startswith("exclude_"):
                value = tuple(getattr(self, key)) + tuple(value)
            elif isinstance(value, list):
                value = tuple(value)
            changes[key] = value
        return dataclasses.replace(self, **changes)


_BOOL_KEYS = {"fail_on_missing", "fail_on_new_missing", "warn_on_existing_missing"}
_STR_KEYS = {"baseline_file", "source_root", "changelog_path"}
_LIST_KEYS = {
    "exclude_tables", "exclude_columns", "exclude_findings",
    "services", "entity_dirs", "repository_dirs",
}


def _validate(data: dict, source: str) -> dict:
    known = _BOOL_KEYS | _STR_KEYS | _LIST_KEYS
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"{source}: unknown key(s): {', '.join(map(str, unknown))}")

    values = {}
    for key, value in data.items():
        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{source}: '{key}' must be true or false")
        elif key in _STR_KEYS:
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{source}: '{key}' must be a non-empty string")
        else:
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"{source}: '{key}' must be a list of strings")
            value = tuple(value)
        values[key] = value
    return values


def parse_config(text: str, source: str = "<config>") -> CheckerConfig:
    """Build a CheckerConfig from YAML text. Raises ValueError when invalid."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"{source}: invalid YAML: {exc}") from exc
    if data is None:
        return CheckerConfig()
    if not isinstance(data, dict):
        raise ValueError(f"{source}: expected a mapping at the top level")
    return CheckerConfig(**_validate(data, source))


def load_config(path: Path) -> CheckerConfig:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read config {path}: {exc}") from exc
    return parse_config(text, str(path))


def find_config(root: Path) -> Path | None:
    """The project config file under *root*, if there is one."""
    for name in CONFIG_FILENAMES:
        candidate = Path(root) / name
        if candidate.is_file():
            return candidate
    return None
