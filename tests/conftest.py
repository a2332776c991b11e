"""Shared test fixtures and helpers for dbindex tests.

Provides:
- CliRunner fixtures: cli_runner, invoke_cli()
- JSON validation helpers: parse_json_output(), assert_json_envelope()
- Project builders: write_service() lays out a Kotlin + Liquibase module
- Composable project fixtures: service_project -> multi_module_project
"""

from __future__ import annotations

import json
import os
import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

# ===========================================================================
# Kotlin / Liquibase sources
# ===========================================================================

USER_ENTITY = """\
package com.example.entity

import jakarta.persistence.*

@Entity
@Table(name = "users")
class User(
    @Id
    @GeneratedValue(strategy = GenerationType.IDENTITY)
    val id: Long = 0,

    @Column(name = "email_address", nullable = false)
    val email: String,

    val firstName: String,

    val status: String,

    @ManyToOne(fetch = FetchType.LAZY)
    @JoinColumn(name = "organization_id")
    val organization: Organization,

    @OneToMany(mappedBy = "user")
    val orders: List<Order> = emptyList(),
)
"""

ORDER_ENTITY = """\
package com.example.entity

import jakarta.persistence.*

@Entity
@Table(name = "orders")
class Order(
    @Id
    val id: Long = 0,

    @ManyToOne
    @JoinColumn(name = "user_id")
    val user: User,

    val orderNumber: String,

    val totalAmount: Long,
)
"""

USER_REPOSITORY = """\
package com.example.repository

import org.springframework.data.jpa.repository.JpaRepository
import org.springframework.data.jpa.repository.Query

interface UserRepository : JpaRepository<User, Long> {

    fun findByEmail(email: String): User?

    fun findByStatusAndFirstName(status: String, firstName: String): List<User>

    fun findByOrganization(organization: Organization): List<User>
}
"""

USERS_CHANGELOG = """\
<?xml version="1.0" encoding="UTF-8"?>
<databaseChangeLog
        xmlns="http://www.liquibase.org/xml/ns/dbchangelog"
        xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">

    <changeSet id="1" author="dev">
        <createTable tableName="users">
            <column name="id" type="BIGINT" autoIncrement="true">
                <constraints primaryKey="true" nullable="false"/>
            </column>
            <column name="email_address" type="VARCHAR(255)">
                <constraints unique="true" nullable="false"/>
            </column>
            <column name="first_name" type="VARCHAR(100)"/>
            <column name="status" type="VARCHAR(20)"/>
            <column name="organization_id" type="BIGINT"/>
        </createTable>
    </changeSet>

    <changeSet id="2" author="dev">
        <createIndex tableName="users" indexName="idx_users_status_name">
            <column name="status"/>
            <column name="first_name"/>
        </createIndex>
    </changeSet>
</databaseChangeLog>
"""


def xml_changelog(body: str) -> str:
    """Wrap change sets in a Liquibase XML root element."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<databaseChangeLog xmlns="http://www.liquibase.org/xml/ns/dbchangelog">\n'
        + textwrap.indent(textwrap.dedent(body).strip("\n"), "    ")
        + "\n</databaseChangeLog>\n"
    )


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def write_service(
    module_dir: Path,
    entities: dict[str, str] | None = None,
    repositories: dict[str, str] | None = None,
    changelogs: dict[str, str] | None = None,
    package: str = "com/example",
) -> Path:
    """Lay out one service module the way a Gradle Kotlin project does.

    Keys of the dicts are file names relative to the entity dir, repository
    dir and ``src/main/resources/db`` respectively.
    """
    source = module_dir / "src" / "main" / "kotlin" / package
    for name, content in (entities or {}).items():
        write_file(source / "entity" / name, content)
    for name, content in (repositories or {}).items():
        write_file(source / "repository" / name, content)
    for name, content in (changelogs or {}).items():
        write_file(module_dir / "src" / "main" / "resources" / "db" / name, content)
    return module_dir


# ===========================================================================
# CliRunner helpers
# ===========================================================================


@pytest.fixture
def cli_runner():
    """Provide a Click CliRunner for in-process CLI testing."""
    return CliRunner()


def invoke_cli(runner, args, cwd=None, json_mode=False):
    """Invoke the dbindex CLI via CliRunner.

    Args:
        runner: CliRunner instance
        args: list of CLI arguments (e.g. ["check"])
        cwd: directory to run in
        json_mode: if True, prepend --json flag
    Returns:
        click.testing.Result
    """
    from dbindex.cli import cli

    full_args = []
    if json_mode:
        full_args.append("--json")
    full_args.extend(args)

    old_cwd = os.getcwd()
    try:
        if cwd:
            os.chdir(str(cwd))
        result = runner.invoke(cli, full_args, catch_exceptions=False)
    finally:
        os.chdir(old_cwd)

    return result


# ===========================================================================
# JSON validation helpers
# ===========================================================================


def parse_json_output(result, command=None):
    """Parse JSON from a CliRunner result that exited 0."""
    assert result.exit_code == 0, f"Command {command or '?'} failed (exit {result.exit_code}):\n{result.output}"
    try:
        return json.loads(result.output)
    except json.JSONDecodeError as e:
        pytest.fail(f"Invalid JSON from {command or '?'}: {e}\nOutput was:\n{result.output[:500]}")


def assert_json_envelope(data, command=None):
    """Validate that a parsed JSON dict follows the envelope contract."""
    assert isinstance(data, dict), f"Expected dict, got {type(data)}"
    for key in ("schema", "command", "version", "summary"):
        assert key in data, f"Missing '{key}' key in envelope"
    assert "timestamp" in data.get("_meta", {}), "Missing 'timestamp' in _meta"
    if command:
        assert data["command"] == command, f"Expected command={command}, got {data['command']}"
    assert isinstance(data["summary"], dict)
    assert "verdict" in data["summary"]


# ===========================================================================
# Composable project fixtures
# ===========================================================================


@pytest.fixture
def service_project(tmp_path):
    """A single-module service with one indexed and two unindexed query columns.

    findByEmail            -> email_address, unique constraint (indexed)
    findByStatusAndFirstName -> status leads a composite index, first_name does not
    findByOrganization     -> organization_id, no index
    """
    root = tmp_path / "user-service"
    write_service(
        root,
        entities={"User.kt": USER_ENTITY},
        repositories={"UserRepository.kt": USER_REPOSITORY},
        changelogs={"changelog.xml": USERS_CHANGELOG},
    )
    return root


@pytest.fixture
def multi_module_project(tmp_path):
    """Two service modules plus Gradle directories that are not services."""
    root = tmp_path / "platform"
    write_service(
        root / "user-service",
        entities={"User.kt": USER_ENTITY},
        repositories={"UserRepository.kt": USER_REPOSITORY},
        changelogs={"changelog.xml": USERS_CHANGELOG},
    )
    write_service(
        root / "order-service",
        entities={"Order.kt": ORDER_ENTITY},
        repositories={"OrderRepository.kt": textwrap.dedent("""\
            package com.example.repository

            interface OrderRepository : CrudRepository<Order, Long> {
                fun findByOrderNumber(orderNumber: String): Order?
            }
        """)},
        changelogs={"changelog.xml": xml_changelog("""
            <changeSet id="1" author="dev">
                <createTable tableName="orders">
                    <column name="id" type="BIGINT">
                        <constraints primaryKey="true"/>
                    </column>
                    <column name="order_number" type="VARCHAR(40)"/>
                </createTable>
            </changeSet>
        """)},
    )
    (root / "buildSrc" / "src").mkdir(parents=True)
    (root / "gradle" / "wrapper").mkdir(parents=True)
    (root / ".idea").mkdir()
    (root / "docs").mkdir()
    return root
