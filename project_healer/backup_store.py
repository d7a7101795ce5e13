"""
Backup Log Storage for Project Healer
=====================================

This module owns the durable record of backups and healing sessions.
The whole log is a single JSON document, read and rewritten wholesale on
every mutation::

    {
      "version": 1,
      "backups":  [{"id", "originalFile", "backupFile", "timestamp", "sessionId"}],
      "sessions": [{"id", "startTime", "endTime", "files", "status"}]
    }

The whole-file rewrite is NOT crash-safe: a process killed mid-write can
leave a truncated log. A corrupt or unreadable log degrades to an empty
in-memory log so a healing run never aborts on it; the backup blobs
themselves stay on disk for manual recovery.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import FileWriteError, LogCorrupt

logger = logging.getLogger(__name__)

LOG_VERSION = 1


class SessionStatus(Enum):
    """Lifecycle states of a healing session."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"       # Terminal: fixes kept, backups discarded
    ROLLED_BACK = "rolled_back"   # Terminal: backups kept for inspection

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_PROGRESS


@dataclass
class BackupRecord:
    """A stored copy of one file's pre-session bytes."""
    id: str
    original_file: str     # Path relative to the project root
    backup_file: str       # Blob name inside the backup directory
    timestamp: str         # ISO 8601
    session_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "originalFile": self.original_file,
            "backupFile": self.backup_file,
            "timestamp": self.timestamp,
            "sessionId": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupRecord":
        return cls(
            id=data["id"],
            original_file=data["originalFile"],
            backup_file=data["backupFile"],
            timestamp=data["timestamp"],
            session_id=data["sessionId"],
        )


@dataclass
class SessionRecord:
    """A bounded unit of file mutations with commit/rollback semantics."""
    id: str
    start_time: str
    end_time: Optional[str] = None
    files: List[str] = field(default_factory=list)
    status: SessionStatus = SessionStatus.IN_PROGRESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "files": list(self.files),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        return cls(
            id=data["id"],
            start_time=data["startTime"],
            end_time=data.get("endTime"),
            files=list(data.get("files", [])),
            status=SessionStatus(data.get("status", SessionStatus.IN_PROGRESS.value)),
        )


@dataclass
class BackupLog:
    """In-memory form of the whole backup/session log."""
    backups: List[BackupRecord] = field(default_factory=list)
    sessions: List[SessionRecord] = field(default_factory=list)

    def find_session(self, session_id: str) -> Optional[SessionRecord]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def find_backup(self, backup_id: str) -> Optional[BackupRecord]:
        for backup in self.backups:
            if backup.id == backup_id:
                return backup
        return None

    def backups_for(self, session_id: str) -> List[BackupRecord]:
        return [b for b in self.backups if b.session_id == session_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": LOG_VERSION,
            "backups": [b.to_dict() for b in self.backups],
            "sessions": [s.to_dict() for s in self.sessions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupLog":
        if not isinstance(data, dict):
            raise LogCorrupt(f"Expected a JSON object, got {type(data).__name__}")
        version = data.get("version", LOG_VERSION)
        if not isinstance(version, int) or version > LOG_VERSION:
            raise LogCorrupt(f"Unsupported backup log version: {version!r}")
        try:
            return cls(
                backups=[BackupRecord.from_dict(b) for b in data.get("backups", [])],
                sessions=[SessionRecord.from_dict(s) for s in data.get("sessions", [])],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LogCorrupt(f"Malformed backup log entry: {e}") from e


class BackupStore:
    """
    Load/save access to the backup log file.

    One store instance is injected into each RollbackManager; there is no
    shared module-level log.

    Usage:
        store = BackupStore(project_root / ".project-healer-backups" / "backup-log.json")
        log = store.load()
        log.sessions.append(...)
        store.save(log)
    """

    def __init__(self, log_path: Union[str, Path]):
        self.log_path = Path(log_path)

    def load(self) -> BackupLog:
        """
        Read the whole log.

        A missing log is an empty log. An unreadable or corrupt log is
        reported and degrades to an empty log.
        """
        if not self.log_path.exists():
            return BackupLog()

        try:
            with open(self.log_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return BackupLog.from_dict(data)
        except (OSError, ValueError, LogCorrupt) as e:
            logger.error("Backup log %s is unreadable, using an empty log: %s",
                         self.log_path, e)
            return BackupLog()

    def save(self, log: BackupLog) -> bool:
        """
        Rewrite the whole log. Failures are logged, never raised.

        Returns:
            True if the log was written
        """
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, 'w', encoding='utf-8') as f:
                json.dump(log.to_dict(), f, indent=2)
            return True
        except (OSError, TypeError) as e:
            logger.error("Error saving backup log %s: %s", self.log_path, e)
            return False


def read_source(path: Union[str, Path]) -> str:
    """Read a source file as text, preserving its line endings."""
    with open(path, 'r', encoding='utf-8', newline='') as f:
        return f.read()


def write_source(path: Union[str, Path], content: str) -> None:
    """
    Overwrite a source file with text, preserving line endings.

    Raises:
        FileWriteError: If the write fails
    """
    try:
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
    except OSError as e:
        raise FileWriteError(str(path), str(e)) from e
