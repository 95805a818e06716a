"""
SecureRelay Web API
===================
Flask front end for the passcode-gated file relay.

Routes:
    POST /upload            multipart "file" + form "passcode" -> upload id
    POST /download/<id>     passcode -> short-lived download link
    GET  /file/<ticket>     decrypted file as an attachment
    GET  /health            liveness
"""

from __future__ import annotations

import io
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request, send_file, url_for
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.middleware.proxy_fix import ProxyFix

from securerelay.core.config import RelayConfig
from securerelay.core.errors import RelayError, ValidationError
from securerelay.core.logging import configure_from_config
from securerelay.core.relay.service import FileRelay
from securerelay.security.hardening import StartupSecurityValidator
from securerelay.security.tickets import TicketSealer

# Room for multipart boundaries and form fields on top of the file itself
_MULTIPART_OVERHEAD = 1024 * 1024

_log = logging.getLogger("securerelay.web")

relay_bp = Blueprint("relay", __name__)


def _relay() -> FileRelay:
    return current_app.extensions["securerelay"]


def _passcode_from_request() -> Optional[str]:
    data = request.get_json(silent=True)
    if isinstance(data, dict) and data.get("passcode"):
        return data["passcode"]
    return request.form.get("passcode")


# ============================================================
# UPLOAD
# ============================================================

@relay_bp.route("/upload", methods=["POST"])
def upload():
    files = request.files.getlist("file")
    passcode = request.form.get("passcode")

    if len(files) > 1:
        raise ValidationError("Exactly one file per upload is allowed")
    if not files or not passcode:
        raise ValidationError("File and passcode required")

    file = files[0]
    # Parts sent without a Content-Type skip the declared-type check
    record = _relay().upload_record(file.read(), file.filename, passcode, content_type=file.mimetype or None)

    return jsonify({
        "id": record.id,
        "expires_at": record.expires_at.isoformat(),
    }), 201


# ============================================================
# DOWNLOAD
# ============================================================

@relay_bp.route("/download/<upload_id>", methods=["POST"])
def verify_download(upload_id):
    passcode = _passcode_from_request()
    if not passcode:
        raise ValidationError("Passcode required")

    reference = _relay().verify(upload_id, passcode)

    return jsonify({
        "downloadUrl": url_for("relay.serve_file", ticket=reference.reference, _external=True),
        "filename": reference.filename,
        "expires_at": reference.expires_at.isoformat(),
    })


@relay_bp.route("/file/<ticket>", methods=["GET"])
def serve_file(ticket):
    result = _relay().fetch_ticket(ticket)

    response = send_file(
        io.BytesIO(result.content),
        mimetype=result.mime_type,
        as_attachment=True,
        download_name=result.filename,
    )
    response.headers["Cache-Control"] = "no-store"
    return response


# ============================================================
# HEALTH CHECK
# ============================================================

@relay_bp.route("/health")
def health():
    return jsonify({
        "status": "healthy",
        "reaper": "running" if _relay().reaper.is_running else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


# ============================================================
# ERROR HANDLING
# ============================================================

def _handle_relay_error(error: RelayError):
    if error.status >= 500:
        _log.error("%s: %s", error.code, error)
    return jsonify({"error": str(error), "code": error.code}), error.status


def _handle_too_large(error: RequestEntityTooLarge):
    return jsonify({"error": "File too large", "code": "payload_too_large"}), 413


def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return jsonify({"error": error.description, "code": error.name.lower().replace(" ", "_")}), error.code
    _log.exception("Unhandled error serving %s", request.path)
    return jsonify({"error": "Request failed", "code": "internal_error"}), 500


def _add_cors_headers(response):
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Access-Control-Max-Age"] = "3600"
    return response


# ============================================================
# APP FACTORY
# ============================================================

def create_app(
    config: Optional[RelayConfig] = None,
    relay: Optional[FileRelay] = None,
    ticket_secret: Optional[str | bytes] = None,
    run_self_tests: bool = True,
) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Relay configuration (loaded from the environment if omitted)
        relay: Pre-built relay, mainly for tests
        ticket_secret: Secret for download tickets; random per process if omitted
        run_self_tests: Run crypto self-tests and refuse to start on failure
    """
    if relay is None:
        config = config or RelayConfig.get_instance()
        sealer = TicketSealer(ticket_secret) if ticket_secret else None
        relay = FileRelay.from_config(config, sealer=sealer)
    config = relay.config

    if run_self_tests:
        validator = StartupSecurityValidator(strict_mode=True)
        if not validator.run_all_checks():
            raise RuntimeError(f"Security self-tests failed: {validator.get_summary()}")
        _log.info(validator.get_summary())

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.upload.max_upload_bytes + _MULTIPART_OVERHEAD
    app.extensions["securerelay"] = relay

    if config.app.behind_proxy:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    app.register_blueprint(relay_bp)
    app.register_error_handler(RelayError, _handle_relay_error)
    app.register_error_handler(RequestEntityTooLarge, _handle_too_large)
    app.register_error_handler(Exception, _handle_unexpected)
    app.after_request(_add_cors_headers)

    return app


# ============================================================
# ENTRY POINT
# ============================================================

def main() -> None:
    config = RelayConfig.get_instance()
    configure_from_config(config.logging, config.paths.log_dir)

    app = create_app(config, ticket_secret=os.environ.get("SECURERELAY_TICKET_SECRET"))
    relay = app.extensions["securerelay"]

    relay.reaper.start()
    try:
        app.run(host=config.app.host, port=config.app.port)
    finally:
        relay.reaper.stop(timeout=30)


if __name__ == "__main__":
    main()
