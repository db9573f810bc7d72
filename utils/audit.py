from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from models.core import AuditEvent


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def record_audit(
    db: Session,
    entity_type: str,
    entity_id: int,
    action: str,
    usuario: Optional[str],
    descripcion: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditEvent:
    """Agrega un evento de auditoría a la sesión (se confirma con la operación)"""
    evento = AuditEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        usuario=usuario,
        descripcion=descripcion,
        payload=_jsonable(payload) if payload else None,
    )
    db.add(evento)
    return evento
