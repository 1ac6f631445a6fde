# goldshop/services/email_service.py
from flask import current_app
from flask_mail import Message
from ..extensions import mail
import logging

log = logging.getLogger(__name__)

def send_email(*, to, subject, body, html=None) -> bool:
    try:
        if not to:
            log.warning("send_email: missing recipient")
            return False
        recipients = [to] if isinstance(to, str) else list(to)

        sender = current_app.config.get("MAIL_DEFAULT_SENDER") or current_app.config.get("MAIL_USERNAME")
        if not sender:
            log.error("send_email: no sender configured")
            return False

        msg = Message(subject=subject, recipients=recipients, sender=sender)
        msg.body = body
        if html:
            msg.html = html

        if current_app.config.get("MAIL_SUPPRESS_SEND"):
            log.info("[MAIL_SUPPRESS_SEND=1] would send: %s | %s", recipients, subject)
            return True

        mail.send(msg)
        log.info("Email sent to %s | subject=%s", recipients, subject)
        return True
    except Exception as e:
        log.exception("send_email failed: %s", e)
        return False

def email_admin_alert(title: str, message: str, link: str | None = None) -> bool:
    to_list = current_app.config.get("ADMIN_ALERT_EMAILS") or []
    if not to_list:
        return False
    body = message
    if link:
        body += f"\n\n{link}"
    return send_email(to=to_list, subject=f"[Goldshop] {title}", body=body)
