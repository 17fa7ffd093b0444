from flask import Blueprint

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"service": "agritrace", "ok": True}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for k8s/DO. No DB access, minimal overhead.
    """
    return "ok", 200
