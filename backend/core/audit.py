"""审计记录"""
import logging
from typing import List, Optional

from backend.db import crud
from backend.db.models import AuditLogEntry

logger = logging.getLogger(__name__)


def record(actor_id: Optional[str], action: str, target: Optional[str], detail: Optional[str] = None) -> AuditLogEntry:
    entry = crud.add_audit_log(actor_id, action, target, detail)
    logger.info(f"📝 审计 | {action} | 操作者: {actor_id} | 对象: {target}")
    return entry


def recent(limit: int = 200) -> List[AuditLogEntry]:
    return crud.get_audit_logs(limit)
