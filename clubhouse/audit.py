import json
import logging
from typing import Dict, Optional

from matchday.models import format_timestamp, utcnow

audit_logger = logging.getLogger('clubhouse.audit')


def log_action(action: str, actor_id: Optional[str], object_id: str, metadata: Dict[str, str] = None) -> dict:
    """Write one audit record and return it."""
    record = dict(metadata or {})
    record['action'] = action
    record['actor_id'] = actor_id or 'anonymous'
    record['object_id'] = object_id
    record['timestamp'] = format_timestamp(utcnow())
    audit_logger.info(json.dumps(record, sort_keys=True))
    return record
