"""
Audit / security channel.

Security-relevant denials, tampering detection and admin actions go to the
"security" logger, which has its own handlers and does not mix with the
general error log. When AUDIT_TO_FIRESTORE is on, the same events are
mirrored to Firestore (firestore_db); a failed mirror write is logged, never
raised into the request.
"""
import json
import logging

from flask import current_app, has_app_context, has_request_context, request

import firestore_db
from logging_config import SECURITY_LOGGER

security_log = logging.getLogger(SECURITY_LOGGER)
logger = logging.getLogger(__name__)


def _mirror_enabled() -> bool:
    return has_app_context() and bool(current_app.config.get("AUDIT_TO_FIRESTORE"))


def _with_request(context: dict) -> dict:
    if has_request_context():
        context.setdefault("ip", request.remote_addr)
        context.setdefault("path", request.path)
    return context


def security_event(message: str, level: int = logging.WARNING, **context) -> None:
    context = _with_request(context)
    security_log.log(level, "%s %s", message, json.dumps(context, default=str, sort_keys=True))

    if _mirror_enabled():
        actor = context.get("adminId") or context.get("userId")
        try:
            firestore_db.log_security_event(message, actor, context)
        except Exception:
            logger.exception("Security event mirror failed: %s", message)


def admin_action(action: str, admin_id, target_id, **details) -> None:
    security_event(action, level=logging.INFO, adminId=admin_id, targetId=target_id, **details)


def order_event(order_id, actor_id, event: str, **payload) -> None:
    logger.info("%s order=%s actor=%s", event, order_id, actor_id)

    if _mirror_enabled():
        try:
            firestore_db.log_order_event(order_id, actor_id, event, payload)
        except Exception:
            logger.exception("Order event mirror failed: %s %s", event, order_id)
