from __future__ import annotations

import copy
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from zerogen.config import GeneratorConfig, parse_config
from zerogen.model import Column, Table


SCENARIO_DDL = (
    """
    CREATE TABLE jobs (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        title VARCHAR(255) NOT NULL,
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )
    """,
    """
    CREATE TABLE clients (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )
    """,
    """
    CREATE TABLE tasks (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        title VARCHAR(255) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'open',
        position INTEGER,
        job_id VARCHAR(36) REFERENCES jobs (id),
        parent_id VARCHAR(36) REFERENCES tasks (id),
        discarded_at DATETIME,
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )
    """,
    """
    CREATE TABLE notes (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        body TEXT,
        notable_type VARCHAR(255),
        notable_id VARCHAR(36),
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )
    """,
    """
    CREATE TABLE counters (
        id INTEGER PRIMARY KEY,
        value INTEGER,
        CONSTRAINT counters_value_positive CHECK (value >= 0)
    )
    """,
    "CREATE INDEX index_tasks_on_job_id ON tasks (job_id)",
    "CREATE TABLE schema_migrations (version VARCHAR(20) NOT NULL PRIMARY KEY)",
)

SCENARIO_ENTITIES = {
    "Job": {
        "table": "jobs",
        "has_many": {"tasks": {}},
    },
    "Client": {"table": "clients"},
    "Task": {
        "table": "tasks",
        "enums": {"status": ["open", "done"]},
        "belongs_to": {
            "job": {},
            "parent": {"target": "tasks", "foreign_key": "parent_id"},
        },
        "has_many": {
            "notes": {"as": "notable"},
            "children": {"target": "tasks", "foreign_key": "parent_id"},
        },
    },
    "Note": {
        "table": "notes",
        "belongs_to": {"notable": {"polymorphic": True}},
    },
}

NOTE_ROWS = (
    "INSERT INTO notes (id, body, notable_type, notable_id, created_at, updated_at) "
    "VALUES ('n1', 'first', 'Task', 't1', '2024-01-01 00:00:00', '2024-01-02 00:00:00')",
    "INSERT INTO notes (id, body, notable_type, notable_id, created_at, updated_at) "
    "VALUES ('n2', 'second', 'Client', 'c1', '2024-02-01 00:00:00', '2024-02-03 00:00:00')",
    "INSERT INTO schema_migrations (version) VALUES ('20240201000000')",
)


def create_database(path: Path, statements=SCENARIO_DDL, rows=()) -> Engine:
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        for statement in list(statements) + list(rows):
            conn.execute(text(statement))
    return engine


def scenario_raw(**overrides) -> dict:
    raw = {
        "output": {
            "schema_file": "frontend/generated-schema.ts",
            "mutations_dir": "frontend/models",
            "discovery_file": "config/zero_polymorphic_types.yml",
        },
        "database_url": "sqlite://",
        "entities": copy.deepcopy(SCENARIO_ENTITIES),
    }
    raw.update(overrides)
    return raw


def scenario_config(root: Path, **overrides) -> GeneratorConfig:
    return parse_config(scenario_raw(**overrides), root)


def tasks_table() -> Table:
    return Table(
        name="tasks",
        primary_key="id",
        columns=[
            Column("id", "uuid", nullable=False, primary_key=True),
            Column("title", "string", nullable=False),
            Column("status", "string", nullable=False, default="open", default_kind="literal", enum_values=["open", "done"]),
            Column("position", "integer"),
            Column("job_id", "uuid"),
            Column("discarded_at", "timestamp"),
            Column("created_at", "timestamp", nullable=False),
            Column("updated_at", "timestamp", nullable=False),
        ],
    )
