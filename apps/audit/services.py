import logging

from apps.audit.models import AuditLog

logger = logging.getLogger(__name__)


def record_audit(*, actor, action, entity_type, entity_id, payload=None, store=None):
    entry = AuditLog.objects.create(
        store=store,
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        payload=payload or {},
    )
    logger.info("audit %s %s:%s by %s", action, entity_type, entity_id, getattr(actor, "pk", None))
    return entry
