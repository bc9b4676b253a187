"""Pytest fixtures for sync tests.

This module provides fixtures for:
- Flask apps with API keys configured
- Spawning a real sync server process
"""

from __future__ import annotations

import json
import os
import socket
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, List, Optional

import pytest
import requests
from flask import Flask
from flask.testing import FlaskClient

from snipsync.core.database import Database
from snipsync.server import create_app

SRC_DIR = Path(__file__).parent.parent.parent / "src"

API_KEY = "test-secret-key"


@dataclass
class ServerNode:
    """A sync server process used by a test."""

    config_dir: Path
    db_path: Path
    port: int
    api_keys: List[str]
    process: Optional[subprocess.Popen] = None

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def is_server_running(self) -> bool:
        """Check if the sync server is responding."""
        try:
            resp = requests.get(f"{self.url}/api/health", timeout=1)
            return resp.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def wait_for_server(self, timeout: float = 10.0) -> bool:
        """Wait for server to become available."""
        start = time.time()
        while time.time() - start < timeout:
            if self.process and self.process.poll() is not None:
                return False
            if self.is_server_running():
                return True
            time.sleep(0.1)
        return False

    def stop_server(self) -> None:
        """Stop the sync server process."""
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()
            if self.process.stdout:
                self.process.stdout.close()
            if self.process.stderr:
                self.process.stderr.close()
            self.process = None


def find_free_port() -> int:
    """Find a free TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        return s.getsockname()[1]


def write_server_config(
    config_dir: Path, db_path: Path, port: int, api_keys: List[str]
) -> None:
    """Write a config.json for a server."""
    config_dir.mkdir(parents=True, exist_ok=True)
    config_data = {
        "database_file": str(db_path),
        "server": {"host": "127.0.0.1", "port": port},
        "api_keys": api_keys,
        "cors_origins": "*",
        "log_level": "WARNING",
    }
    with open(config_dir / "config.json", "w") as f:
        json.dump(config_data, f, indent=2)


def start_sync_server(node: ServerNode) -> subprocess.Popen:
    """Start a sync server process for the given node.

    Args:
        node: ServerNode to start server for

    Returns:
        Popen process object
    """
    env = os.environ.copy()
    env["PYTHONPATH"] = str(SRC_DIR)
    for name in list(env):
        if name.startswith("SNIPSYNC_"):
            del env[name]

    cmd = [
        sys.executable,
        "-m", "snipsync.main",
        "-d", str(node.config_dir),
        "serve",
        "--host", "127.0.0.1",
        "--port", str(node.port),
    ]

    process = subprocess.Popen(
        cmd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )

    node.process = process
    return process


@pytest.fixture
def auth_app(test_config_dir: Path, empty_db: Database) -> Flask:
    """Flask app that requires API_KEY."""
    write_server_config(
        test_config_dir, test_config_dir / "unused.sqlite", find_free_port(), [API_KEY]
    )
    app = create_app(config_dir=test_config_dir, db=empty_db)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def auth_client(auth_app: Flask) -> FlaskClient:
    """Test client for the app that requires API_KEY."""
    return auth_app.test_client()


@pytest.fixture
def running_server(tmp_path: Path) -> Generator[ServerNode, None, None]:
    """A real sync server process requiring API_KEY."""
    config_dir = tmp_path / "server"
    node = ServerNode(
        config_dir=config_dir,
        db_path=config_dir / "server.sqlite",
        port=find_free_port(),
        api_keys=[API_KEY],
    )
    write_server_config(node.config_dir, node.db_path, node.port, node.api_keys)

    start_sync_server(node)
    if not node.wait_for_server():
        stderr = b""
        if node.process and node.process.poll() is not None and node.process.stderr:
            stderr = node.process.stderr.read()
        node.stop_server()
        pytest.fail(f"Failed to start sync server: {stderr.decode(errors='replace')}")
    yield node
    node.stop_server()
