#!/usr/bin/env python3
"""HTTP server for SnipSync.

This module builds the Flask application that serves the sync protocol and
provides the `serve` subcommand.

Endpoints:
    GET       /api/health          Liveness check (never requires an API key)
    GET|POST  /api/sync/ping       Server clock
    POST      /api/sync/push       Apply local changes, get ID mappings
    POST      /api/sync/pull       Changes since lastSyncAt
    GET|POST  /api/sync/full       Complete dataset
    GET       /api/sync/status     Server status and row counts

All endpoints return JSON responses. When API keys are configured, sync
endpoints require `X-API-Key: <key>` or `Authorization: Bearer <key>`.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Optional

from flask import Flask, Response, jsonify
from flask_cors import CORS

from snipsync.core.config import Config
from snipsync.core.database import Database
from snipsync.core.sync import Clock, create_sync_blueprint
from snipsync.core.timestamp_utils import current_timestamp_ms
from snipsync.core.validation import ValidationError

logger = logging.getLogger(__name__)

DB_EXTENSION = "snipsync_db"


def get_db(app: Flask) -> Database:
    """Get the database handle owned by an application."""
    return app.extensions[DB_EXTENSION]


def create_app(
    config_dir: Optional[Path] = None,
    db: Optional[Database] = None,
    clock: Clock = current_timestamp_ms,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config_dir: Custom configuration directory (default: None)
        db: Database to serve. If None, the database named in the config is
            opened and owned by the application.
        clock: Millisecond clock reported as serverTime

    Returns:
        Configured Flask application
    """
    config = Config(config_dir=config_dir)

    app = Flask(__name__)
    app.json.sort_keys = False
    CORS(app, origins=config.get_cors_origins())

    if db is None:
        db = Database(config.get_database_file())
    app.extensions[DB_EXTENSION] = db

    api_keys = config.get_api_keys()
    app.register_blueprint(create_sync_blueprint(db, api_keys, clock))

    logger.info(
        f"Sync API initialized with database: {db.db_path} "
        f"(authentication {'enabled' if api_keys else 'disabled'})"
    )

    # Error handlers
    @app.errorhandler(404)
    def not_found(error: Any) -> tuple[Response, int]:
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error: Any) -> tuple[Response, int]:
        """Handle 405 errors."""
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error: Any) -> tuple[Response, int]:
        """Handle 500 errors."""
        logger.error(f"Internal error: {error}")
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(ValidationError)
    def validation_error(error: ValidationError) -> tuple[Response, int]:
        """Handle validation errors."""
        logger.warning(f"Validation error: {error.field} - {error.message}")
        return jsonify({"error": f"Invalid {error.field}: {error.message}"}), 400

    @app.route("/api/health", methods=["GET"])
    def health_check() -> tuple[Response, int]:
        """Health check endpoint.

        Returns:
            JSON response indicating service health
        """
        return jsonify({"status": "ok"}), 200

    return app


def add_serve_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add serve subparser and its arguments.

    Args:
        subparsers: Parent subparsers object to add serve parser to
    """
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the sync server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: server.host from config)"
    )

    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: server.port from config)"
    )

    serve_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run sync server with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have host, port, debug attributes)

    Returns:
        Exit code (0 for success)
    """
    logger.info("Starting SnipSync server")
    if config_dir:
        logger.info(f"Using custom config directory: {config_dir}")

    config = Config(config_dir=config_dir)
    host = args.host or config.get_server_host()
    port = args.port or config.get_server_port()

    app = create_app(config_dir=config_dir)
    db = get_db(app)

    try:
        app.run(
            host=host,
            port=port,
            debug=args.debug,
            threaded=True,
            use_reloader=False,
        )
    finally:
        db.close()

    return 0
