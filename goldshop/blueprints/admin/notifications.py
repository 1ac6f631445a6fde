from flask import jsonify, request

from ...errors import NotFound
from ...extensions import db
from ...models.notification import AdminNotification
from ...security import roles_required
from . import admin_bp


@admin_bp.get("/notifications")
@roles_required("admin")
def list_notifications():
    q = AdminNotification.query
    if request.args.get("unread") in ("1", "true", "yes"):
        q = q.filter(AdminNotification.is_read.is_(False))
    limit = min(request.args.get("limit", 50, type=int) or 50, 200)
    rows = q.order_by(AdminNotification.created_at.desc(), AdminNotification.id.desc()).limit(limit).all()
    unread = AdminNotification.query.filter(AdminNotification.is_read.is_(False)).count()
    return jsonify({"ok": True, "unread": unread, "notifications": [n.as_api() for n in rows]})


@admin_bp.post("/notifications/<int:notification_id>/read")
@roles_required("admin")
def mark_read(notification_id):
    note = db.session.get(AdminNotification, notification_id)
    if note is None:
        raise NotFound("Notification not found")
    note.is_read = True
    db.session.commit()
    return jsonify({"ok": True, "notification": note.as_api()})
