"""
Error taxonomy for Project Healer.

Failures are contained at issue or file granularity by the pass
controller. Only environment errors such as ProjectNotFound reach the
caller of ``apply_fixes``.
"""


class HealerError(Exception):
    """Base class for all healing errors."""


class SourceFileNotFound(HealerError, FileNotFoundError):
    """A file targeted for backup or fixing does not exist."""

    def __init__(self, file_path: str):
        super().__init__(f"File not found: {file_path}")
        self.file_path = file_path


class ProjectNotFound(HealerError, FileNotFoundError):
    """The project root itself is missing."""

    def __init__(self, project_root: str):
        super().__init__(f"Project path not found: {project_root}")
        self.project_root = project_root


class FixApplicationError(HealerError):
    """Computing the fix for a single issue failed."""


class FileWriteError(HealerError):
    """Writing content to disk failed."""

    def __init__(self, file_path: str, reason: str):
        super().__init__(f"Error writing to {file_path}: {reason}")
        self.file_path = file_path
        self.reason = reason


class ValidationFailure(HealerError):
    """A candidate change was rejected by the project's checks."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class BackupMissing(HealerError):
    """A backup id is not present in the backup log."""

    def __init__(self, backup_id: str):
        super().__init__(f"Backup not found: {backup_id}")
        self.backup_id = backup_id


class LogCorrupt(HealerError):
    """The backup/session log could not be read or parsed."""


class SessionNotFound(HealerError):
    """A session id is not present in the backup log."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionClosed(HealerError):
    """A session in a terminal state was used again."""

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is already {status}")
        self.session_id = session_id
        self.status = status
