"""Reference remote store server for arkive-sync.

Serves a hierarchical JSON tree over HTTP so several devices can share
records. HttpRemoteStore is the matching client.

Endpoints:
    GET    /store-status       Liveness probe with the current revision
    GET    /store/<path>       Read the value at a path
    PUT    /store/<path>       Replace the value at a path ({"value": ...})
    DELETE /store/<path>       Delete the value at a path
    DELETE /store/             Delete everything

All endpoints return JSON responses.
"""

from __future__ import annotations

import argparse
import functools
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

from flask import Blueprint, Flask, jsonify, request
from flask_cors import CORS

from .config import Config
from .remote import MemoryRemoteStore
from .validation import ValidationError, validate_path

logger = logging.getLogger(__name__)


def api_endpoint(func: Callable) -> Callable:
    """Decorator for consistent API error handling.

    Catches ValidationError (400) and Exception (500) with proper
    JSON error responses and logging.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            logger.warning(f"Rejected request: {e.field} - {e.message}")
            return jsonify({"error": f"Invalid {e.field}: {e.message}"}), 400
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}")
            return jsonify({"error": str(e)}), 500
    return wrapper


def create_store_blueprint(store: MemoryRemoteStore) -> Blueprint:
    """Create Flask blueprint for the store endpoints.

    Args:
        store: Tree holding the shared data

    Returns:
        Flask Blueprint with store routes
    """
    store_bp = Blueprint("store", __name__)

    @store_bp.route("/store-status", methods=["GET"])
    @api_endpoint
    def status() -> Tuple[Any, int]:
        """Report that the store is up.

        Response:
            {"status": "ok", "revision": 12, "server_timestamp": "..."}
        """
        return jsonify({
            "status": "ok",
            "revision": store.revision,
            "server_timestamp": datetime.now(timezone.utc).isoformat(),
        }), 200

    @store_bp.route("/store/", defaults={"path": ""}, methods=["GET"])
    @store_bp.route("/store/<path:path>", methods=["GET"])
    @api_endpoint
    def read(path: str) -> Tuple[Any, int]:
        """Read a value.

        Response:
            {"path": "receipts", "value": {...} or null, "revision": 12}
        """
        normalized = validate_path(path, allow_root=True)
        value = store.get(normalized)
        return jsonify({"path": normalized, "value": value, "revision": store.revision}), 200

    @store_bp.route("/store/<path:path>", methods=["PUT"])
    @api_endpoint
    def write(path: str) -> Tuple[Any, int]:
        """Replace a value.

        Request body:
            {"value": ...}
        """
        normalized = validate_path(path)
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or "value" not in data:
            error_msg = "Request body must be a JSON object with a 'value' key"
            logger.warning(f"Write to {normalized} rejected: {error_msg}")
            return jsonify({"error": error_msg}), 400

        store.set(normalized, data["value"])
        logger.debug(f"Wrote {normalized}")
        return jsonify({"path": normalized, "revision": store.revision}), 200

    @store_bp.route("/store/", defaults={"path": ""}, methods=["DELETE"])
    @store_bp.route("/store/<path:path>", methods=["DELETE"])
    @api_endpoint
    def delete(path: str) -> Tuple[Any, int]:
        """Delete a value (the root clears the whole store)."""
        normalized = validate_path(path, allow_root=True)
        store.remove(normalized)
        if not normalized:
            logger.warning("Store cleared")
        else:
            logger.debug(f"Deleted {normalized}")
        return jsonify({"path": normalized, "revision": store.revision}), 200

    return store_bp


def create_app(
    store: Optional[MemoryRemoteStore] = None,
    data_file: Optional[Union[Path, str]] = None,
) -> Flask:
    """Create and configure the store server application.

    Args:
        store: Store to serve (a new one is created if None)
        data_file: JSON file backing a newly created store

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    CORS(app)  # Browser clients on other origins share the store

    if store is None:
        store = MemoryRemoteStore(data_file=data_file)
    app.config["STORE"] = store

    @app.errorhandler(404)
    def not_found(error: Any) -> Tuple[Any, int]:
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error: Any) -> Tuple[Any, int]:
        """Handle 405 errors."""
        return jsonify({"error": "Method not allowed"}), 405

    app.register_blueprint(create_store_blueprint(store))
    if data_file:
        logger.info(f"Store server initialized with data file: {data_file}")
    return app


def add_serve_subparser(subparsers: Any) -> None:
    """Add the serve subparser and its arguments."""
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the remote store server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from config, 127.0.0.1)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: from config, 8384)",
    )
    serve_parser.add_argument(
        "--data-file",
        type=Path,
        default=None,
        help="JSON file holding the store data (default: <config dir>/store.json)",
    )
    serve_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run the store server with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (host, port, data_file, debug)

    Returns:
        Exit code (0 for success)
    """
    config = Config(config_dir=config_dir)
    server_config = config.get_server_config()
    host = args.host or server_config["host"]
    port = args.port or int(server_config["port"])
    data_file = args.data_file or Path(server_config["data_file"])

    logger.info(f"Starting remote store server on {host}:{port}")
    app = create_app(data_file=data_file)
    app.run(host=host, port=port, debug=args.debug, threaded=True)
    return 0
