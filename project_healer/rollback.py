"""
Rollback Manager for Project Healer
===================================

This module applies file changes with backup and rollback capability,
grouped into sessions.

Session lifecycle:
------------------
- start_session()           -> in_progress
- end_session(id, True)     -> completed (backups discarded, fixes kept)
- end_session(id, False)    -> rolled_back (backups kept for inspection)
- rollback_session(id)      -> rolled_back (backups restored, newest first)

Terminal sessions cannot be reused. Within one session each file is backed
up exactly once, on its first mutation; that first copy is the authority
for the file's original content.

Backups live in a private directory under the project root and are
described by the log kept in an injected BackupStore. The manager reads
the log once and keeps it in memory; every change is written through to
the store, and a failed write leaves the in-memory log authoritative.
"""

import logging
import shutil
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Set, Union

from .backup_store import (
    BackupLog, BackupRecord, BackupStore, SessionRecord, SessionStatus,
    write_source
)
from .errors import (
    BackupMissing, FileWriteError, HealerError, ProjectNotFound,
    SessionClosed, SessionNotFound, SourceFileNotFound
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class ApplyResult:
    """
    Result of RollbackManager.apply_fix.

    Attributes:
        success: Whether the new content is on disk
        backup_id: Backup guarding the file; set even when the write
            failed after the backup was taken
        error: Error message if the fix was not applied
    """
    success: bool
    backup_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RollbackStats:
    """Counts from rolling back a whole session."""
    succeeded: int = 0
    failed: int = 0
    total: int = 0


def _now() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def _new_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class RollbackManager:
    """
    Session-scoped backup, apply and rollback of project files.

    Usage:
        manager = RollbackManager(project_root)
        session_id = manager.start_session()
        result = manager.apply_fix("src/app.js", new_content, session_id)
        if not result.success:
            manager.rollback_session(session_id)
        else:
            manager.end_session(session_id, success=True)
    """

    def __init__(
        self,
        project_root: PathLike,
        store: Optional[BackupStore] = None,
        backup_dir_name: str = ".project-healer-backups",
        log_file: str = "backup-log.json"
    ):
        """
        Initialize the rollback manager.

        Args:
            project_root: Root of the project being healed
            store: Backup log storage (defaults to a JSON log in the backup dir)
            backup_dir_name: Backup directory name under the project root
            log_file: Log file name inside the backup directory

        Raises:
            ProjectNotFound: If project_root is not a directory
        """
        root = Path(project_root)
        if not root.is_dir():
            raise ProjectNotFound(str(project_root))

        self.project_root = root.resolve()
        self.backup_dir = self.project_root / backup_dir_name
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.store = store or BackupStore(self.backup_dir / log_file)

        self._log = self.store.load()
        if not self.store.log_path.exists():
            self.store.save(self._log)

        # Sessions started by this instance (anything else in_progress was interrupted)
        self._owned_sessions: Set[str] = set()

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    def _relative(self, file_path: PathLike) -> str:
        path = Path(file_path)
        if path.is_absolute():
            try:
                return path.resolve().relative_to(self.project_root).as_posix()
            except ValueError:
                return str(path)
        return path.as_posix()

    def _absolute(self, relative: str) -> Path:
        path = Path(relative)
        return path if path.is_absolute() else self.project_root / path

    def _require_open_session(self, log: BackupLog, session_id: str) -> SessionRecord:
        session = log.find_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.status.is_terminal:
            raise SessionClosed(session_id, session.status.value)
        return session

    # ------------------------------------------------------------------
    # Session primitives
    # ------------------------------------------------------------------

    def start_session(self) -> str:
        """
        Start a healing session.

        Returns:
            The new session id
        """
        session_id = _new_id("session")
        log = self._log
        log.sessions.append(SessionRecord(id=session_id, start_time=_now()))
        self._persist()
        self._owned_sessions.add(session_id)
        logger.debug("Started session %s", session_id)
        return session_id

    def backup_file(self, file_path: PathLike, session_id: str) -> str:
        """
        Back up a file before it is changed within a session.

        Calling this again for the same file and session returns the first
        backup's id without copying anything.

        Args:
            file_path: Path relative to the project root (or absolute)
            session_id: Current session id

        Returns:
            Backup id

        Raises:
            SourceFileNotFound: If the file does not exist
            SessionNotFound: If the session is unknown
            SessionClosed: If the session already ended
            FileWriteError: If the backup copy could not be written
        """
        relative = self._relative(file_path)
        full_path = self._absolute(relative)
        if not full_path.is_file():
            raise SourceFileNotFound(relative)

        log = self._log
        session = self._require_open_session(log, session_id)

        for backup in log.backups_for(session_id):
            if backup.original_file == relative:
                return backup.id

        backup_id = _new_id("backup")
        # Non-source suffix keeps tree-wide lint and type checks off the blobs
        backup_name = f"{backup_id}-{full_path.name}.bak"
        try:
            shutil.copy2(full_path, self.backup_dir / backup_name)
        except OSError as e:
            raise FileWriteError(str(self.backup_dir / backup_name), str(e)) from e

        log.backups.append(BackupRecord(
            id=backup_id,
            original_file=relative,
            backup_file=backup_name,
            timestamp=_now(),
            session_id=session_id
        ))
        if relative not in session.files:
            session.files.append(relative)
        self._persist()

        logger.debug("Backed up %s as %s", relative, backup_id)
        return backup_id

    def apply_fix(self, file_path: PathLike, new_content: str, session_id: str) -> ApplyResult:
        """
        Back up a file, then overwrite it with new content.

        Never raises. If the overwrite fails the backup is kept and its id
        is reported so the caller can roll the file back.

        Args:
            file_path: Path relative to the project root (or absolute)
            new_content: Content to write
            session_id: Current session id

        Returns:
            ApplyResult describing the outcome
        """
        try:
            backup_id = self.backup_file(file_path, session_id)
        except (HealerError, OSError) as e:
            return ApplyResult(success=False, error=str(e))

        try:
            write_source(self._absolute(self._relative(file_path)), new_content)
        except FileWriteError as e:
            logger.error("Error writing fix to %s: %s", file_path, e.reason)
            return ApplyResult(success=False, backup_id=backup_id, error=e.reason)

        return ApplyResult(success=True, backup_id=backup_id)

    def rollback_file(self, backup_id: str) -> bool:
        """
        Restore a single file from its backup.

        Args:
            backup_id: Backup id returned by backup_file/apply_fix

        Returns:
            True if the file was restored; False for an unknown id or a
            failed copy
        """
        log = self._log
        backup = log.find_backup(backup_id)
        if backup is None:
            logger.error("%s", BackupMissing(backup_id))
            return False
        return self._restore(backup)

    def _restore(self, backup: BackupRecord) -> bool:
        blob = self.backup_dir / backup.backup_file
        target = self._absolute(backup.original_file)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(blob, target)
            logger.info("Restored %s from %s", backup.original_file, backup.id)
            return True
        except OSError as e:
            logger.error("Error rolling back %s: %s", backup.original_file, e)
            return False

    def rollback_session(self, session_id: str) -> RollbackStats:
        """
        Restore every file touched by a session, newest backup first.

        Args:
            session_id: Session to roll back

        Returns:
            RollbackStats with succeeded/failed/total counts

        Raises:
            SessionClosed: If the session already completed
        """
        log = self._log
        session = log.find_session(session_id)
        if session is None:
            logger.warning("Cannot roll back unknown session %s", session_id)
            return RollbackStats()
        if session.status is SessionStatus.COMPLETED:
            raise SessionClosed(session_id, session.status.value)

        # Later log entries win ties on equal timestamps
        indexed = list(enumerate(log.backups_for(session_id)))
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)

        stats = RollbackStats(total=len(indexed))
        for _, backup in indexed:
            if self._restore(backup):
                stats.succeeded += 1
            else:
                stats.failed += 1

        session.status = SessionStatus.ROLLED_BACK
        session.end_time = _now()
        self._persist()
        self._owned_sessions.discard(session_id)

        logger.info(
            "Rolled back session %s: %d restored, %d failed",
            session_id, stats.succeeded, stats.failed
        )
        return stats

    def end_session(self, session_id: str, success: bool) -> None:
        """
        End a session.

        On success the session's backups are deleted and the files keep
        their fixed content. On failure the session is marked rolled_back
        and its backups are kept so the history can be inspected.

        Raises:
            SessionNotFound: If the session is unknown
            SessionClosed: If the session already ended
        """
        log = self._log
        session = self._require_open_session(log, session_id)

        session.end_time = _now()
        if success:
            session.status = SessionStatus.COMPLETED
            self._delete_backups(log, session_id)
        else:
            session.status = SessionStatus.ROLLED_BACK

        self._persist()
        self._owned_sessions.discard(session_id)
        logger.debug("Ended session %s as %s", session_id, session.status.value)

    def _delete_backups(self, log: BackupLog, session_id: str) -> int:
        doomed = log.backups_for(session_id)
        for backup in doomed:
            (self.backup_dir / backup.backup_file).unlink(missing_ok=True)
        log.backups = [b for b in log.backups if b.session_id != session_id]
        return len(doomed)

    # ------------------------------------------------------------------
    # Recovery and housekeeping
    # ------------------------------------------------------------------

    def find_interrupted_sessions(self) -> List[SessionRecord]:
        """
        List in-progress sessions not started by this manager.

        These are left behind when a healing run is killed; their backups
        can still be restored with rollback_session.
        """
        log = self._log
        return [
            s for s in log.sessions
            if s.status is SessionStatus.IN_PROGRESS and s.id not in self._owned_sessions
        ]

    def purge_sessions(self, older_than_days: int = 30) -> int:
        """
        Delete backups of rolled-back sessions that ended before the cutoff.

        Session records are kept as history.

        Args:
            older_than_days: Minimum age of the session end time

        Returns:
            Number of backups deleted
        """
        cutoff = datetime.now() - timedelta(days=older_than_days)
        log = self._log
        purged = 0

        for session in log.sessions:
            if session.status is not SessionStatus.ROLLED_BACK or not session.end_time:
                continue
            try:
                ended = datetime.fromisoformat(session.end_time)
            except ValueError:
                logger.warning("Session %s has an unreadable end time", session.id)
                continue
            if ended < cutoff:
                purged += self._delete_backups(log, session.id)

        if purged:
            self._persist()
            logger.info("Purged %d backups older than %d days", purged, older_than_days)
        return purged

    def _persist(self) -> bool:
        return self.store.save(self._log)

    def get_log(self) -> BackupLog:
        """Return a copy of the whole backup/session log."""
        return BackupLog.from_dict(self._log.to_dict())

    def save_log(self, log: BackupLog) -> bool:
        """Replace the whole backup/session log and write it to the store."""
        self._log = log
        return self._persist()
