"""
Manuscript Ledger read-only REST API.

Flask API for:
- Health and ledger statistics
- View-gated manuscript metadata
- Tenure / storage analytics
- Custodian authenticity checks

The invoking identity is taken from the X-Identity header. Mutations are
CLI-only.

Run:
    flask --app api.server run --port 8080

Or with gunicorn (production):
    gunicorn -w 4 -b 0.0.0.0:8080 "api.server:create_app()"
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from manuscript_ledger import __version__
from manuscript_ledger.config import Settings, load_deployment, state_paths
from manuscript_ledger.errors import RegistryError
from manuscript_ledger.ledger import ProvenanceLedger
from manuscript_ledger.registry import ManuscriptRegistry

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def create_app(state_dir: Optional[str] = None) -> Flask:
    app = Flask(__name__)
    CORS(app)
    app.config["STATE_DIR"] = state_dir or Settings.load().STATE_DIR

    def open_registry() -> ManuscriptRegistry:
        st = state_paths(app.config["STATE_DIR"], create=False)
        deployment = load_deployment(st["deployment"])
        ledger = ProvenanceLedger(st["ledger"])
        return ManuscriptRegistry(
            administrator=deployment.administrator,
            height_source=ledger.current_height,
            storage_capacity=deployment.storage_capacity,
            state_path=st["state"],
        )

    def caller_identity() -> Optional[str]:
        who = request.headers.get("X-Identity", "").strip()
        return who or None

    @app.errorhandler(RegistryError)
    def handle_registry_error(e: RegistryError):
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(FileNotFoundError)
    def handle_not_deployed(e: FileNotFoundError):
        logger.warning(f"Registry not deployed: {e}")
        return jsonify({"error": "NOT_DEPLOYED", "message": str(e)}), 503

    @app.route("/api/health")
    def health_check():
        return jsonify({
            "status": "healthy",
            "version": __version__,
            "timestamp": _utc_now(),
        })

    @app.route("/api/ledger/stats")
    def ledger_stats():
        st = state_paths(app.config["STATE_DIR"], create=False)
        if not os.path.exists(st["ledger"]):
            return jsonify({"error": "NOT_FOUND", "message": "Ledger not found"}), 404
        ledger = ProvenanceLedger(st["ledger"])

        event_counts: dict = {}
        for payload in ledger.all_payloads():
            kind = payload.get("kind", "unknown")
            event_counts[kind] = event_counts.get(kind, 0) + 1

        return jsonify({
            "height": ledger.height,
            "tip_hash": ledger.tip_hash(),
            "event_types": event_counts,
            "integrity": "verified" if ledger.verify() else "FAILED",
            "last_updated": _utc_now(),
        })

    @app.route("/api/manuscripts/<int:manuscript_id>")
    def get_manuscript(manuscript_id: int):
        caller = caller_identity()
        if caller is None:
            return jsonify({"error": "IDENTITY_REQUIRED", "message": "X-Identity header missing"}), 401
        record = open_registry().get_manuscript(caller, manuscript_id)
        return jsonify(record.model_dump())

    @app.route("/api/manuscripts/<int:manuscript_id>/analytics")
    def get_analytics(manuscript_id: int):
        caller = caller_identity()
        if caller is None:
            return jsonify({"error": "IDENTITY_REQUIRED", "message": "X-Identity header missing"}), 401
        report = open_registry().get_analytics(caller, manuscript_id)
        return jsonify(report.model_dump())

    @app.route("/api/manuscripts/<int:manuscript_id>/authenticity")
    def verify_authenticity(manuscript_id: int):
        caller = caller_identity()
        if caller is None:
            return jsonify({"error": "IDENTITY_REQUIRED", "message": "X-Identity header missing"}), 401
        claimed = request.args.get("claimed")
        if not claimed:
            return jsonify({"error": "BAD_REQUEST", "message": "claimed query parameter required"}), 400
        report = open_registry().verify_authenticity(caller, manuscript_id, claimed)
        return jsonify(report.model_dump())

    return app


app = create_app()
