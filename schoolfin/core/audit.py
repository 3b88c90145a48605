"""
Audit trail for finance changes.
Every recorded transaction, template change, worksheet edit and payroll
finalization is appended as one JSON line per school.
"""
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Any, Optional

from .config import settings


class AuditLogger:
    """Append-only JSONL audit log for one school."""

    def __init__(self, school_id: str, audit_dir: Optional[str] = None):
        self.school_id = school_id
        self.audit_dir = Path(audit_dir or settings.AUDIT_LOG_PATH)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self.changes_log = self.audit_dir / f"{school_id}_audit.jsonl"

    def log_data_change(
        self,
        entity_type: str,
        operation: str,  # 'create', 'update', 'delete', 'edit', 'finalize'
        entity_id: str,
        changes: Dict[str, Any],
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Log an individual data change."""
        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'school_id': self.school_id,
            'entity_type': entity_type,
            'operation': operation,
            'entity_id': entity_id,
            'changes': changes,
            'user_id': user_id
        }

        with open(self.changes_log, 'a', encoding='utf-8') as f:
            f.write(json.dumps(log_entry, default=str) + '\n')
        return log_entry

    def get_history(self, days: int = 30, entity_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get audit entries for the last N days, newest first."""
        if not self.changes_log.exists():
            return []

        cutoff_date = datetime.now() - timedelta(days=days)
        history = []

        with open(self.changes_log, 'r', encoding='utf-8') as f:
            for line in f:
                try:
                    entry = json.loads(line.strip())
                    entry_date = datetime.fromisoformat(entry['timestamp'])
                except (json.JSONDecodeError, KeyError, ValueError):
                    continue
                if entry_date < cutoff_date:
                    continue
                if entity_type is None or entry.get('entity_type') == entity_type:
                    history.append(entry)

        history.sort(key=lambda x: x['timestamp'], reverse=True)
        return history
