from functools import wraps
from io import BytesIO

import qrcode
import structlog
from flask import Blueprint, Flask, current_app, g, jsonify, request, send_file
from flask_cors import CORS
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from registry_app.auditors import build_verifier
from registry_app.blockchain import Chain
from registry_app.config import Config
from registry_app.crypto_utils import get_cipher, verify_principal
from registry_app.database import db, EncryptedEventJournal, SqlRegistryStore
from registry_app.registry import CertificationRegistry, RegistryError, Unbound
from registry_app.telemetry import setup_logging

logger = structlog.get_logger("registry_app.app")

bp = Blueprint("registry", __name__)

ERROR_STATUS = {
    RegistryError.NotAuthorized: 403,
    RegistryError.AuditorNotVerified: 403,
    RegistryError.InvalidFarmId: 400,
    RegistryError.InvalidProductId: 400,
    RegistryError.InvalidTestId: 400,
    RegistryError.InvalidMetadata: 400,
    RegistryError.InvalidNotes: 400,
    RegistryError.CertNotFound: 404,
    RegistryError.InvalidStatus: 409,
    RegistryError.CertAlreadyExists: 409,
}


# ---------------- APP FACTORY ----------------
def create_app(config=None):
    config = config if config is not None else Config()
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)

    app = Flask(__name__)
    app.config.from_object(config)
    CORS(app)
    db.init_app(app)

    cipher = get_cipher(config.MASTER_KEY.encode())

    with app.app_context():
        db.create_all()
        store = SqlRegistryStore(journal=EncryptedEventJournal(cipher))
        chain = Chain(height=store.latest_height())
        registry = CertificationRegistry(store=store, verifier=build_verifier(config.AUDITORS))
        ensure_authority_bound(registry, config.AUTHORITY_PRINCIPAL)

    app.extensions["registry"] = registry
    app.extensions["chain"] = chain
    app.register_blueprint(bp)
    return app


# ---------------- AUTHORITY INIT ----------------
def ensure_authority_bound(registry, principal):
    if not principal or not isinstance(registry.authority, Unbound):
        return
    result = registry.set_authority(principal)
    if result.ok:
        logger.info("startup_authority_bound", authority=principal)
    else:
        logger.warning("startup_authority_rejected", authority=principal, error=result.error.name)


# ---------------- HELPERS ----------------
def _registry():
    return current_app.extensions["registry"]

def _chain():
    return current_app.extensions["chain"]

def _respond(result, success_status=200):
    if result.ok:
        return jsonify({"ok": True, "value": result.value}), success_status
    error = result.error
    return jsonify({"ok": False, "error": error.name, "code": error.code}), ERROR_STATUS[error]

def _payload():
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None

def _bad_request(message):
    return jsonify({"ok": False, "error": "BadRequest", "message": message}), 400

def require_principal(view):
    """Reject requests whose principal is not signed by the identity gateway."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        principal = request.headers.get("X-Principal", "").strip()
        signature = request.headers.get("X-Principal-Signature", "").strip()
        secret = current_app.config["PRINCIPAL_SECRET"].encode()
        if not verify_principal(principal, signature, secret):
            logger.warning("request_unauthenticated", path=request.path, principal=principal or None)
            return jsonify({"ok": False, "error": "Unauthenticated"}), 401
        g.principal = principal
        return view(*args, **kwargs)
    return wrapper


# ---------------- AUTHORITY ----------------
@bp.route("/authority", methods=["POST"])
@require_principal
def set_authority():
    payload = _payload()
    if payload is None:
        return _bad_request("expected a JSON object")
    with _chain().block():
        result = _registry().set_authority(payload.get("identity"))
    return _respond(result)

# ---------------- ISSUE ----------------
@bp.route("/certifications", methods=["POST"])
@require_principal
def issue():
    payload = _payload()
    if payload is None:
        return _bad_request("expected a JSON object")
    with _chain().block() as height:
        result = _registry().issue(
            payload.get("farm_id"),
            payload.get("product_id"),
            payload.get("test_id"),
            payload.get("metadata"),
            caller=g.principal,
            current_time=height,
        )
    return _respond(result, success_status=201)

# ---------------- APPROVE / REVOKE ----------------
@bp.route("/certifications/<int:cert_id>/approve", methods=["POST"])
@require_principal
def approve(cert_id):
    payload = _payload()
    if payload is None:
        return _bad_request("expected a JSON object")
    with _chain().block() as height:
        result = _registry().approve(cert_id, payload.get("notes"), caller=g.principal, current_time=height)
    return _respond(result)

@bp.route("/certifications/<int:cert_id>/revoke", methods=["POST"])
@require_principal
def revoke(cert_id):
    payload = _payload()
    if payload is None:
        return _bad_request("expected a JSON object")
    with _chain().block() as height:
        result = _registry().revoke(cert_id, payload.get("notes"), caller=g.principal, current_time=height)
    return _respond(result)

# ---------------- READS ----------------
@bp.route("/certifications/<int:cert_id>")
def get_certification(cert_id):
    cert = _registry().get_certification(cert_id)
    if cert is None:
        return jsonify({"cert_id": cert_id, "found": False}), 404
    return jsonify({"cert_id": cert_id, "found": True, **cert.to_dict()})

@bp.route("/certifications/<int:cert_id>/audit")
def get_cert_audit(cert_id):
    audit = _registry().get_cert_audit(cert_id)
    if audit is None:
        return jsonify({"cert_id": cert_id, "found": False}), 404
    return jsonify({"cert_id": cert_id, "found": True, **audit.to_dict()})

@bp.route("/counter")
def get_counter():
    return jsonify({"counter": _registry().get_counter()})

# ---------------- QR ----------------
@bp.route("/qr/<int:cert_id>")
def qr_code(cert_id):
    url = request.host_url + f"certifications/{cert_id}"
    img = qrcode.make(url)
    buf = BytesIO()
    img.save(buf)
    buf.seek(0)
    return send_file(buf, mimetype="image/png")

# ---------------- PDF ----------------
@bp.route("/certifications/<int:cert_id>/pdf")
def download_certificate(cert_id):
    registry = _registry()
    cert = registry.get_certification(cert_id)
    if cert is None:
        return jsonify({"cert_id": cert_id, "found": False}), 404
    audit = registry.get_cert_audit(cert_id)

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)

    pdf.setFont("Helvetica-Bold", 22)
    pdf.drawCentredString(300, 800, "GMO-Free Certification")

    pdf.setFont("Helvetica", 14)
    pdf.drawString(80, 750, f"Certification ID: {cert_id}")
    pdf.drawString(80, 720, f"Farm ID: {cert.farm_id}")
    pdf.drawString(80, 690, f"Product ID: {cert.product_id}")
    pdf.drawString(80, 660, f"Test ID: {cert.test_id}")
    pdf.drawString(80, 630, f"Status: {cert.status.value.upper()}")
    pdf.drawString(80, 600, f"Last Status Change (height): {cert.issue_time}")
    pdf.drawString(80, 570, f"Details: {cert.metadata[:80]}")
    if audit is not None:
        pdf.drawString(80, 540, f"Auditor: {audit.auditor}")
        pdf.drawString(80, 510, f"Audit Notes: {audit.notes[:80]}")

    pdf.showPage()
    pdf.save()

    buffer.seek(0)
    return send_file(buffer, as_attachment=True,
                     download_name=f"gmo-cert-{cert_id}.pdf",
                     mimetype="application/pdf")


def main():
    create_app().run(port=8080, debug=False)

if __name__ == "__main__":
    main()
