"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import AuditLog
from .time_rules import utcnow


def _integrity_hash(canonical_data: Dict[str, Any], secret: str) -> str:
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def record_audit(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    organization_id=None,
    actor_id=None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> AuditLog:
    """
    Add an audit entry to the caller's transaction.

    Args:
        entity_type: quote|invoice|payment|membership
        action: ACCEPT|REJECT|REOPEN|SEND|UPDATE|DEPOSIT_PAID|PAYMENT_RECORDED|PAYMENT_DELETED|
            PAYMENT_LINK_CREATED|SUSPEND|UNSUSPEND
        source: app|public|system
        changes_json: Before/after diff
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    The entry is flushed, not committed, so it lands or rolls back together
    with the change it describes.
    """
    timestamp_utc = utcnow()
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    integrity_hash = None
    if secret:
        integrity_hash = _integrity_hash(
            {
                "organization_id": str(organization_id) if organization_id else None,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "source": source,
                "timestamp_utc": timestamp_utc.isoformat(),
                "changes": changes_json,
                "context": context,
            },
            secret,
        )
    entry = AuditLog(
        organization_id=organization_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        source=source or "system",
        changes_json=_jsonable(changes_json),
        timestamp_utc=timestamp_utc,
        context=_jsonable(context),
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    db.flush()
    return entry


def _jsonable(value: Optional[Dict]) -> Optional[Dict]:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id=None,
    organization_id=None,
    limit: int = 100,
    offset: int = 0,
) -> list:
    query = db.query(AuditLog)
    if organization_id:
        query = query.filter(AuditLog.organization_id == organization_id)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    return query.order_by(AuditLog.timestamp_utc.desc()).limit(limit).offset(offset).all()
