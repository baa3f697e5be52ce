import json

from flask import Blueprint, request

from models.audit_log import AuditLog
from security.rbac import require_staff
from utils.errors import ValidationFailed
from utils.responses import ok

audit_bp = Blueprint("audit", __name__, url_prefix="/admin")

DEFAULT_LIMIT = 200
MAX_LIMIT = 500


@audit_bp.get("/audit-logs")
@require_staff
def list_audit_logs():
    limit = request.args.get("limit", type=int) or DEFAULT_LIMIT
    limit = max(1, min(limit, MAX_LIMIT))

    action = request.args.get("action")
    user_id = request.args.get("userId")
    if user_id is not None:
        try:
            user_id = int(user_id)
        except ValueError:
            raise ValidationFailed(["userId must be an integer"]) from None

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action.strip().upper())
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()

    out = []
    for r in rows:
        out.append({
            "id": r.id,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            "userId": r.user_id,
            "action": r.action,
            "entity": r.entity,
            "entityId": r.entity_id,
            "ip": r.ip,
            "userAgent": r.user_agent,
            "metadata": json.loads(r.metadata_json) if r.metadata_json else None,
        })

    return ok(out)
