"""Tests for .dbindex.yaml loading and CLI overrides."""

from __future__ import annotations

import pytest

from dbindex.config import CheckerConfig, find_config, load_config, parse_config


class TestDefaults:
    def test_default_values(self):
        config = CheckerConfig()
        assert config.fail_on_missing is False
        assert config.fail_on_new_missing is False
        assert config.warn_on_existing_missing is True
        assert config.baseline_file == "db-index-checker-baseline.json"
        assert config.exclude_tables == ("databasechangelog", "databasechangeloglock")
        assert config.exclude_columns == ("id",)
        assert config.entity_dirs == ("entity",)
        assert config.repository_dirs == ("dao", "repository")
        assert config.source_root == "src/main/kotlin"
        assert config.changelog_path == "src/main/resources/db"

    def test_empty_document(self):
        assert parse_config("") == CheckerConfig()


class TestParseConfig:
    def test_values_applied(self):
        config = parse_config(
            "fail_on_new_missing: true\n"
            "exclude_findings:\n"
            "  - users.legacy_code\n"
            "services: [billing-service]\n"
            "repository_dirs: persistence\n"
        )
        assert config.fail_on_new_missing is True
        assert config.exclude_findings == ("users.legacy_code",)
        assert config.services == ("billing-service",)
        assert config.repository_dirs == ("persistence",)
        assert config.exclude_columns == ("id",)

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="unknown key"):
            parse_config("fail_on_mising: true\n")

    def test_wrong_bool_type(self):
        with pytest.raises(ValueError, match="true or false"):
            parse_config("fail_on_missing: 'yes please'\n")

    def test_wrong_list_type(self):
        with pytest.raises(ValueError, match="list of strings"):
            parse_config("exclude_tables: [1, 2]\n")

    def test_empty_string_rejected(self):
        with pytest.raises(ValueError, match="non-empty string"):
            parse_config("source_root: ''\n")

    def test_top_level_must_be_mapping(self):
        with pytest.raises(ValueError, match="mapping"):
            parse_config("- a\n- b\n")

    def test_invalid_yaml(self):
        with pytest.raises(ValueError, match="invalid YAML"):
            parse_config("services: [a\n")


class TestFiles:
    def test_find_config(self, tmp_path):
        assert find_config(tmp_path) is None
        (tmp_path / ".dbindex.yml").write_text("fail_on_missing: true\n")
        assert find_config(tmp_path) == tmp_path / ".dbindex.yml"

    def test_yaml_preferred_over_yml(self, tmp_path):
        (tmp_path / ".dbindex.yml").write_text("")
        (tmp_path / ".dbindex.yaml").write_text("")
        assert find_config(tmp_path).name == ".dbindex.yaml"

    def test_load_config_names_the_file(self, tmp_path):
        path = tmp_path / ".dbindex.yaml"
        path.write_text("bogus: 1\n")
        with pytest.raises(ValueError, match=".dbindex.yaml"):
            load_config(path)


class TestOverrides:
    def test_none_keeps_value(self):
        config = CheckerConfig(fail_on_missing=True)
        assert config.with_overrides(fail_on_missing=None).fail_on_missing is True

    def test_scalar_replaces(self):
        assert CheckerConfig().with_overrides(fail_on_new_missing=True).fail_on_new_missing is True

    def test_excludes_extend(self):
        config = CheckerConfig().with_overrides(exclude_tables=("audit_log",), exclude_findings=["users.x"])
        assert config.exclude_tables == ("databasechangelog", "databasechangeloglock", "audit_log")
        assert config.exclude_findings == ("users.x",)

    def test_services_replace(self):
        config = CheckerConfig(services=("a",)).with_overrides(services=["b"])
        assert config.services == ("b",)
