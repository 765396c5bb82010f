"""Keep recent server errors in memory and in a daily JSON-lines file."""

from __future__ import annotations

import json
import logging
import tempfile
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

LOG_DIR_NAME = "ordinal-inscriber-logs"
MAX_IN_MEMORY = 100
DEFAULT_RECENT_LIMIT = 20
SENSITIVE_FIELDS = ("password", "secret", "token", "apiKey", "private")
REDACTED = "[REDACTED]"


def sanitize_request_body(body: Any) -> Any:
    if not isinstance(body, Mapping):
        return body
    sanitized = dict(body)
    for name in SENSITIVE_FIELDS:
        if sanitized.get(name):
            sanitized[name] = REDACTED
    return sanitized


class RecentErrorHandler(logging.Handler):
    """Logging handler for ERROR records raised while serving requests.

    Records may carry ``error_type``, ``endpoint``, ``request_data`` and
    ``response_status`` through ``extra=``; request bodies are redacted
    before they are stored.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        *,
        capacity: int = MAX_IN_MEMORY,
        level: int = logging.ERROR,
    ) -> None:
        super().__init__(level=level)
        self.log_dir = Path(log_dir) if log_dir else Path(tempfile.gettempdir()) / LOG_DIR_NAME
        self._entries: deque[Dict[str, Any]] = deque(maxlen=capacity)
        self._entries_lock = threading.Lock()

    @property
    def log_file(self) -> Path:
        date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.log_dir / f"server-errors-{date}.log"

    def _entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "type": getattr(record, "error_type", "server_error"),
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            entry["stack"] = logging.Formatter().formatException(record.exc_info)
        endpoint = getattr(record, "endpoint", None)
        if endpoint:
            entry["endpoint"] = endpoint
        request_data = getattr(record, "request_data", None)
        if request_data is not None:
            data = dict(request_data)
            data["body"] = sanitize_request_body(data.get("body"))
            entry["requestData"] = data
        status = getattr(record, "response_status", None)
        if status is not None:
            entry["responseStatus"] = status
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = self._entry(record)
            with self._entries_lock:
                self._entries.append(entry)
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        except Exception:
            self.handleError(record)

    def recent(self, limit: Optional[int] = DEFAULT_RECENT_LIMIT) -> List[Dict[str, Any]]:
        with self._entries_lock:
            entries = list(self._entries)
        if limit is None or limit <= 0:
            return entries
        return entries[-limit:]
