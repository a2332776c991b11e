"""Tests for module discovery and the per-module pipeline."""

from __future__ import annotations

import json

from conftest import (
    USER_ENTITY,
    USER_REPOSITORY,
    USERS_CHANGELOG,
    write_file,
    write_service,
    xml_changelog,
)

from dbindex.config import CheckerConfig
from dbindex.scanner import check_module, discover_modules, find_directories, run_check


def _pairs(missing):
    return [(m.table_name, m.column_name) for m in missing]


# ===========================================================================
# Directory discovery
# ===========================================================================


class TestFindDirectories:
    def test_finds_nested_and_skips_build(self, tmp_path):
        (tmp_path / "a" / "entity").mkdir(parents=True)
        (tmp_path / "b" / "c" / "entity").mkdir(parents=True)
        (tmp_path / "build" / "entity").mkdir(parents=True)
        assert find_directories(tmp_path, "entity") == [
            tmp_path / "a" / "entity",
            tmp_path / "b" / "c" / "entity",
        ]

    def test_includes_root_itself(self, tmp_path):
        root = tmp_path / "entity"
        root.mkdir()
        assert find_directories(root, "entity") == [root]

    def test_missing_root(self, tmp_path):
        assert find_directories(tmp_path / "nope", "entity") == []


class TestDiscoverModules:
    def test_only_service_modules(self, multi_module_project):
        assert discover_modules(multi_module_project, CheckerConfig()) == ["order-service", "user-service"]

    def test_module_without_changelog_not_discovered(self, tmp_path):
        write_service(
            tmp_path / "lib",
            entities={"User.kt": USER_ENTITY},
            repositories={"UserRepository.kt": USER_REPOSITORY},
        )
        assert discover_modules(tmp_path, CheckerConfig()) == []

    def test_custom_repository_dir_names(self, tmp_path):
        module = tmp_path / "svc"
        write_file(module / "src/main/kotlin/com/example/entity/User.kt", USER_ENTITY)
        write_file(module / "src/main/kotlin/com/example/persistence/UserRepository.kt", USER_REPOSITORY)
        write_file(module / "src/main/resources/db/changelog.xml", USERS_CHANGELOG)
        assert discover_modules(tmp_path, CheckerConfig()) == []
        assert discover_modules(tmp_path, CheckerConfig(repository_dirs=("persistence",))) == ["svc"]


# ===========================================================================
# Per-module pipeline
# ===========================================================================


class TestCheckModule:
    def test_full_pipeline(self, service_project):
        result = check_module("user-service", service_project, CheckerConfig())
        assert result.skipped is None
        assert set(result.mappings) == {"User"}
        assert result.query_columns
        assert result.indexed_columns
        assert _pairs(result.missing) == [("users", "first_name"), ("users", "organization_id")]
        assert all(m.service_name == "user-service" for m in result.missing)

    def test_no_entity_directory(self, tmp_path):
        write_service(tmp_path, repositories={"R.kt": USER_REPOSITORY}, changelogs={"c.xml": USERS_CHANGELOG})
        assert check_module("svc", tmp_path, CheckerConfig()).skipped == "no entity directory"

    def test_no_repository_directory(self, tmp_path):
        write_service(tmp_path, entities={"User.kt": USER_ENTITY}, changelogs={"c.xml": USERS_CHANGELOG})
        assert check_module("svc", tmp_path, CheckerConfig()).skipped == "no repository directory"

    def test_no_changelog_directory(self, tmp_path):
        write_service(tmp_path, entities={"User.kt": USER_ENTITY}, repositories={"R.kt": USER_REPOSITORY})
        assert check_module("svc", tmp_path, CheckerConfig()).skipped == "no changelog directory"

    def test_no_entities(self, tmp_path):
        write_service(
            tmp_path,
            entities={"Dto.kt": "package com.example.entity\n\ndata class Dto(val name: String)\n"},
            repositories={"R.kt": USER_REPOSITORY},
            changelogs={"c.xml": USERS_CHANGELOG},
        )
        assert check_module("svc", tmp_path, CheckerConfig()).skipped == "no entities"

    def test_excludes_from_config(self, service_project):
        config = CheckerConfig(exclude_findings=("users.first_name",), exclude_columns=("organization_id",))
        assert check_module("user-service", service_project, config).missing == []


# ===========================================================================
# Project-level runs
# ===========================================================================


class TestRunCheck:
    def test_single_module_named_after_root(self, service_project):
        scan = run_check(service_project, CheckerConfig())
        assert [m.name for m in scan.modules] == ["user-service"]
        assert len(scan.findings) == 2

    def test_multi_module(self, multi_module_project):
        scan = run_check(multi_module_project, CheckerConfig())
        assert [m.name for m in scan.modules] == ["order-service", "user-service"]
        assert [(m.service_name, m.table_name, m.column_name) for m in scan.findings] == [
            ("order-service", "orders", "order_number"),
            ("user-service", "users", "first_name"),
            ("user-service", "users", "organization_id"),
        ]
        assert len(scan.checked) == 2

    def test_configured_services(self, multi_module_project):
        scan = run_check(multi_module_project, CheckerConfig(services=("user-service", "ghost-service")))
        assert [m.name for m in scan.modules] == ["user-service", "ghost-service"]
        assert scan.modules[1].skipped == "directory not found"
        assert [m.name for m in scan.checked] == ["user-service"]

    def test_empty_project(self, tmp_path):
        scan = run_check(tmp_path, CheckerConfig())
        assert len(scan.modules) == 1
        assert scan.modules[0].skipped == "no entity directory"
        assert scan.findings == []


# ===========================================================================
# Determinism
# ===========================================================================


class TestRepeatedRuns:
    def test_same_tree_same_ordered_findings(self, multi_module_project):
        first = run_check(multi_module_project, CheckerConfig())
        second = run_check(multi_module_project, CheckerConfig())
        assert json.dumps([m.to_dict() for m in first.findings]) == json.dumps(
            [m.to_dict() for m in second.findings]
        )
        for a, b in zip(first.modules, second.modules):
            assert a.query_columns == b.query_columns
            assert a.indexed_columns == b.indexed_columns

    def test_include_graph_order_is_stable(self, service_project):
        db = service_project / "src/main/resources/db"
        write_file(db / "changelog.xml", xml_changelog("""
            <include file="changes/010-users.xml" relativeToChangelogFile="true"/>
            <includeAll path="changes/extra/"/>
        """))
        write_file(db / "changes/010-users.xml", USERS_CHANGELOG)
        # Written out of name order; includeAll must still visit them sorted
        write_file(db / "changes/extra/b.xml", xml_changelog("""
            <changeSet id="b" author="dev">
                <createIndex tableName="users" indexName="idx_users_org">
                    <column name="organization_id"/>
                </createIndex>
            </changeSet>
        """))
        write_file(db / "changes/extra/a.xml", xml_changelog("""
            <changeSet id="a" author="dev">
                <createIndex tableName="users" indexName="idx_users_first_name">
                    <column name="first_name"/>
                </createIndex>
            </changeSet>
        """))

        first = check_module("user-service", service_project, CheckerConfig())
        second = check_module("user-service", service_project, CheckerConfig())
        assert first.indexed_columns == second.indexed_columns
        assert [ic.index_name for ic in first.indexed_columns][-2:] == [
            "idx_users_first_name",
            "idx_users_org",
        ]
        assert first.missing == second.missing == []
