"""Pytest fixtures for SnipSync tests.

This module provides fixtures for test configuration, databases and the
Flask application.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from snipsync.core.config import Config
from snipsync.core.database import Database
from snipsync.core.models import Folder, Snippet, SnippetContent, SnippetTag, Tag
from snipsync.server import create_app

from tests.helpers import CONTENT_IDS, FOLDER_IDS, SNIPPET_IDS, T0, TAG_IDS

ENV_VARS = (
    "SNIPSYNC_DATABASE_FILE",
    "SNIPSYNC_HOST",
    "SNIPSYNC_PORT",
    "SNIPSYNC_API_KEYS",
    "SNIPSYNC_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's SNIPSYNC_* variables out of the tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create temporary config directory for tests.

    Args:
        tmp_path: pytest temporary directory fixture

    Returns:
        Path to temporary config directory.
    """
    config_dir = tmp_path / "snipsync_test"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_config(test_config_dir: Path) -> Config:
    """Create test configuration.

    Args:
        test_config_dir: Temporary config directory

    Returns:
        Config instance for testing.
    """
    return Config(config_dir=test_config_dir)


@pytest.fixture
def test_db_path(test_config_dir: Path) -> Path:
    """Get path for test database.

    Args:
        test_config_dir: Temporary config directory

    Returns:
        Path to test database file.
    """
    return test_config_dir / "test_snipsync.sqlite"


@pytest.fixture
def empty_db(test_db_path: Path) -> Generator[Database, None, None]:
    """Create empty test database.

    Args:
        test_db_path: Path to test database

    Yields:
        Empty Database instance.
    """
    db = Database(test_db_path)
    yield db
    db.close()


@pytest.fixture
def populated_db(empty_db: Database) -> Database:
    """Create test database with sample data.

    Folders:
        Work (updated T0 + 1000)
        └── Scripts (updated T0 + 2000)

    Snippets:
        Deploy in Scripts (updated T0 + 3000), tagged bash and ops
            main, rollback contents
        Backup in Work (updated T0 + 4000), tagged bash
            main content

    Tags:
        bash, ops (updated T0 + 500)

    Args:
        empty_db: Empty database to fill

    Returns:
        Populated Database instance.
    """
    db = empty_db
    db.insert_folder(Folder(
        id=FOLDER_IDS["Work"], name="Work", default_language="plain_text",
        parent_id=None, is_open=1, order_index=0, icon=None,
        created_at=T0, updated_at=T0 + 1000,
    ))
    db.insert_folder(Folder(
        id=FOLDER_IDS["Scripts"], name="Scripts", default_language="sh",
        parent_id=FOLDER_IDS["Work"], is_open=0, order_index=1, icon="terminal",
        created_at=T0, updated_at=T0 + 2000,
    ))

    db.insert_tag(Tag(id=TAG_IDS["bash"], name="bash", created_at=T0, updated_at=T0 + 500))
    db.insert_tag(Tag(id=TAG_IDS["ops"], name="ops", created_at=T0, updated_at=T0 + 500))

    db.insert_snippet(Snippet(
        id=SNIPPET_IDS["Deploy"], name="Deploy", description="Ship it",
        folder_id=FOLDER_IDS["Scripts"], is_deleted=0, is_favorites=1,
        created_at=T0, updated_at=T0 + 3000,
    ))
    db.insert_snippet(Snippet(
        id=SNIPPET_IDS["Backup"], name="Backup", description=None,
        folder_id=FOLDER_IDS["Work"], is_deleted=0, is_favorites=0,
        created_at=T0, updated_at=T0 + 4000,
    ))

    db.insert_snippet_content(SnippetContent(
        id=CONTENT_IDS["Deploy/main"], snippet_id=SNIPPET_IDS["Deploy"],
        label="main", value="make deploy", language="sh",
        created_at=T0, updated_at=T0 + 3000,
    ))
    db.insert_snippet_content(SnippetContent(
        id=CONTENT_IDS["Deploy/rollback"], snippet_id=SNIPPET_IDS["Deploy"],
        label="rollback", value="make rollback", language="sh",
        created_at=T0, updated_at=T0 + 3000,
    ))
    db.insert_snippet_content(SnippetContent(
        id=CONTENT_IDS["Backup/main"], snippet_id=SNIPPET_IDS["Backup"],
        label="main", value="rsync -a ~ /mnt/backup", language="sh",
        created_at=T0, updated_at=T0 + 4000,
    ))

    db.insert_snippet_tag(SnippetTag(SNIPPET_IDS["Deploy"], TAG_IDS["bash"], T0 + 3000))
    db.insert_snippet_tag(SnippetTag(SNIPPET_IDS["Deploy"], TAG_IDS["ops"], T0 + 3000))
    db.insert_snippet_tag(SnippetTag(SNIPPET_IDS["Backup"], TAG_IDS["bash"], T0 + 4000))
    return db


@pytest.fixture
def app(test_config_dir: Path, empty_db: Database) -> Flask:
    """Create Flask app serving the empty test database."""
    app = create_app(config_dir=test_config_dir, db=empty_db)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create Flask test client."""
    return app.test_client()
