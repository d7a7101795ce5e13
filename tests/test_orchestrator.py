"""
Tests for the multi-pass controller.

These tests run the whole loop (scheduler, executor, validator, rollback
manager and logger) against small throwaway projects.
"""

import os
import shutil
import sys
from unittest.mock import patch

import pytest

from conftest import pattern_issue
from project_healer.backup_store import SessionStatus
from project_healer.errors import ProjectNotFound
from project_healer.issues import Issue
from project_healer.orchestrator import HealingReport, PassController, create_healer
from project_healer.providers import StaticScanner
from project_healer.rollback import ApplyResult, RollbackManager


class ScriptedScanner:
    """Scanner returning a prepared issue list per call"""

    def __init__(self, *rounds):
        self.rounds = list(rounds)
        self.calls = 0

    def scan(self):
        self.calls += 1
        return self.rounds.pop(0) if self.rounds else []


class TestApplyFixes:
    """Tests for PassController.apply_fixes."""

    def test_scenario_two_pattern_issues(self, project_dir, write_file, quiet_config, numbered_text):
        """Test issues at lines 10 and 5 of a.txt, both pattern-fixable."""
        path = write_file("a.txt", numbered_text)
        issues = [
            pattern_issue("a.txt", 5, r"line 5\n", "line five\n"),
            pattern_issue("a.txt", 10, r"line 10\n", "line ten\n"),
        ]
        controller = PassController(project_dir, StaticScanner([]), config=quiet_config)

        report = controller.apply_fixes(issues)

        assert [f.issue.line for f in report.fixed] == [10, 5]
        assert report.unfixed == []
        content = path.read_text()
        assert "line five\n" in content
        assert "line ten\n" in content

    def test_session_committed(self, project_dir, write_file, quiet_config):
        """Test that a finished run leaves a completed session and no backups."""
        write_file("a.txt", "old\n")
        controller = PassController(project_dir, config=quiet_config)

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new")])

        log = controller.rollback.get_log()
        assert log.find_session(report.session_id).status == SessionStatus.COMPLETED
        assert log.backups_for(report.session_id) == []

    def test_idempotence(self, project_dir, write_file, quiet_config):
        """Test that a second run with nothing applicable fixes nothing."""
        write_file("a.txt", "new\n")
        issues = [
            pattern_issue("a.txt", 1, "old", "new"),
            Issue(file="a.txt", line=1, message="delegated"),
        ]
        controller = PassController(project_dir, config=quiet_config)

        report = controller.apply_fixes(issues)

        assert report.fixed == []
        assert report.passes == 1
        assert {u.reason for u in report.unfixed} == {"fix could not be applied"}

    def test_scans_when_no_issues_supplied(self, project_dir, write_file, quiet_config):
        """Test that the scanner provides the initial issue set."""
        write_file("a.txt", "old\n")
        scanner = ScriptedScanner([pattern_issue("a.txt", 1, "old", "new")])
        controller = PassController(project_dir, scanner, config=quiet_config)

        report = controller.apply_fixes()

        assert len(report.fixed) == 1
        assert scanner.calls == 2

    def test_rescan_continues_and_skips_fixed_keys(self, project_dir, write_file, quiet_config):
        """Test that later passes work on the rescan minus fixed keys."""
        write_file("a.txt", "one\n")
        first = pattern_issue("a.txt", 1, "one", "two", message="step")
        # A fixed key reappearing must not be reprocessed
        reappearing = pattern_issue("a.txt", 1, "two", "bogus", message="step")
        second = pattern_issue("a.txt", 1, "two", "three", message="step two")
        scanner = ScriptedScanner([reappearing, second], [])
        controller = PassController(project_dir, scanner, config=quiet_config)

        report = controller.apply_fixes([first])

        assert [f.issue.message for f in report.fixed] == ["step", "step two"]
        assert (project_dir / "a.txt").read_text() == "three\n"
        assert report.passes == 2

    def test_passes_never_exceed_max(self, project_dir, write_file, quiet_config):
        """Test the pass ceiling with a scanner that always finds more."""
        write_file("a.txt", "0\n")
        quiet_config.passes.max_passes = 2

        class EndlessScanner:
            def scan(self):
                current = (project_dir / "a.txt").read_text().strip()
                return [pattern_issue("a.txt", 1, f"^{current}$", str(int(current) + 1),
                                      message=f"bump {current}")]

        controller = PassController(project_dir, EndlessScanner(), config=quiet_config)
        report = controller.apply_fixes()

        assert report.passes == 2
        assert len(report.fixed) == 2
        assert (project_dir / "a.txt").read_text() == "2\n"

    def test_no_progress_pass_is_counted(self, project_dir, write_file, quiet_config):
        """Test that the pass that fixed nothing counts and stops the loop."""
        write_file("a.txt", "old\n")
        stuck = Issue(file="a.txt", line=1, message="needs a human")
        scanner = ScriptedScanner([stuck], [stuck])
        controller = PassController(project_dir, scanner, config=quiet_config)

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new"), stuck])

        assert report.passes == 2
        assert scanner.calls == 1
        assert [u.issue.message for u in report.unfixed] == ["needs a human"]

    def test_unfixed_then_fixed_is_not_reported_unfixed(self, project_dir, write_file, quiet_config):
        """Test that only issues still unfixed at the end are reported."""
        write_file("a.txt", "a\n")
        write_file("b.txt", "b\n")

        class SecondTimeLucky:
            def __init__(self):
                self.calls = 0

            def generate_fix(self, content, file_type, issue):
                self.calls += 1
                return content if self.calls == 1 else "B\n"

        late = Issue(file="b.txt", line=1, message="late")
        scanner = ScriptedScanner([late])
        controller = PassController(project_dir, scanner, SecondTimeLucky(), config=quiet_config)

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "a", "A"), late])

        assert {f.issue.message for f in report.fixed} == {"replace a", "late"}
        assert report.unfixed == []

    def test_missing_file(self, project_dir, quiet_config):
        """Test that issues in a missing file are reported, not raised."""
        controller = PassController(project_dir, config=quiet_config)
        report = controller.apply_fixes([Issue(file="gone.txt", line=3, message="m")])

        assert report.fixed == []
        assert report.unfixed[0].reason == "File does not exist"

    def test_missing_project_root(self, project_dir, quiet_config):
        """Test that a vanished project root is a hard failure before any session."""
        controller = PassController(project_dir, config=quiet_config)
        sessions_before = len(controller.rollback.get_log().sessions)
        os.rename(project_dir, str(project_dir) + "-moved")

        with pytest.raises(ProjectNotFound):
            controller.apply_fixes([Issue(file="a.txt", line=1, message="m")])

        os.rename(str(project_dir) + "-moved", project_dir)
        assert len(controller.rollback.get_log().sessions) == sessions_before

    def test_protected_and_oversized_files_are_skipped(self, project_dir, write_file, quiet_config):
        """Test the safety limits."""
        write_file("big.txt", "x" * 4096)
        write_file("locked/a.txt", "old\n")
        quiet_config.safety.max_file_size_kb = 1
        quiet_config.safety.protected_paths = [str(project_dir.resolve() / "locked")]
        controller = PassController(project_dir, config=quiet_config)

        report = controller.apply_fixes([
            pattern_issue("big.txt", 1, "x", "y"),
            pattern_issue("locked/a.txt", 1, "old", "new"),
        ])

        reasons = {u.issue.file: u.reason for u in report.unfixed}
        assert reasons["big.txt"] == "File exceeds maximum size of 1 KB"
        assert reasons["locked/a.txt"] == "Path is protected"
        assert (project_dir / "locked" / "a.txt").read_text() == "old\n"


class TestFailureHandling:
    """Tests for demotion and rollback on failures."""

    def test_write_failure_demotes_fixed_issues(self, project_dir, write_file, quiet_config):
        """Test that a failed commit turns the file's fixes into unfixed issues."""
        path = write_file("a.txt", "old one\nold two\n")

        class BrokenWriteManager(RollbackManager):
            def apply_fix(self, file_path, new_content, session_id):
                backup_id = self.backup_file(file_path, session_id)
                return ApplyResult(success=False, backup_id=backup_id, error="disk full")

        controller = PassController(
            project_dir, config=quiet_config,
            rollback_manager=BrokenWriteManager(project_dir)
        )
        report = controller.apply_fixes([
            pattern_issue("a.txt", 1, "old one", "new one"),
            pattern_issue("a.txt", 2, "old two", "new two"),
        ])

        assert report.fixed == []
        assert len(report.unfixed) == 2
        assert all(u.reason == "Error writing to file: disk full" for u in report.unfixed)
        assert path.read_text() == "old one\nold two\n"

    def test_later_write_failure_keeps_earlier_pass(self, project_dir, write_file, quiet_config):
        """Test that a failed commit in pass 2 does not undo pass 1."""
        path = write_file("a.txt", "one\n")

        class FailSecondWrite(RollbackManager):
            writes = 0

            def apply_fix(self, file_path, new_content, session_id):
                FailSecondWrite.writes += 1
                if FailSecondWrite.writes == 1:
                    return super().apply_fix(file_path, new_content, session_id)
                backup_id = self.backup_file(file_path, session_id)
                return ApplyResult(success=False, backup_id=backup_id, error="disk full")

        scanner = ScriptedScanner([pattern_issue("a.txt", 1, "two", "three")])
        controller = PassController(
            project_dir, scanner, config=quiet_config,
            rollback_manager=FailSecondWrite(project_dir)
        )

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "one", "two")])

        assert [f.issue.message for f in report.fixed] == ["replace one"]
        assert report.unfixed[0].reason == "Error writing to file: disk full"
        assert path.read_text() == "two\n"

    @pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")
    def test_validation_failure_keeps_original(self, project_dir, write_file, quiet_config):
        """Test that a rejected candidate is reported and never committed."""
        path = write_file("a.txt", "old\n")
        quiet_config.validation.lint_command = "! grep -q new a.txt || (echo no new; exit 1)"
        controller = PassController(project_dir, config=quiet_config)

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new")])

        assert report.fixed == []
        assert report.unfixed[0].reason.startswith("Validation failed: Linting failed: ")
        assert path.read_text() == "old\n"
        events = [e["event_type"] for e in controller.get_changelog()["events"]]
        assert "validation_failed" in events

    def test_rescan_failure_keeps_committed_fixes(self, project_dir, write_file, quiet_config):
        """Test that a scanner crash between passes ends the run without undoing fixes."""
        path = write_file("a.txt", "old\n")

        class ExplodingScanner:
            def scan(self):
                raise RuntimeError("scanner crashed")

        controller = PassController(project_dir, ExplodingScanner(), config=quiet_config)

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new")])

        assert [f.issue.message for f in report.fixed] == ["replace old"]
        assert report.passes == 1
        assert "scanner crashed" in report.error
        assert report.to_dict()["error"] == report.error
        assert path.read_text() == "new\n"
        session = controller.rollback.get_log().find_session(report.session_id)
        assert session.status == SessionStatus.COMPLETED

    def test_unexpected_error_rolls_back_session(self, project_dir, write_file, quiet_config):
        """Test that a crash inside a pass restores every file and re-raises."""
        a_path = write_file("a.txt", "old\n")
        b_path = write_file("b.txt", "old\n")
        scanner = ScriptedScanner([pattern_issue("b.txt", 1, "old", "new")])
        controller = PassController(project_dir, scanner, config=quiet_config)
        real_execute = controller.executor.execute

        def execute(file, issues, original, gate):
            if file == "b.txt":
                raise RuntimeError("executor bug")
            return real_execute(file, issues, original, gate)

        with patch.object(controller.executor, "execute", side_effect=execute):
            with pytest.raises(RuntimeError, match="executor bug"):
                controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new")])

        assert a_path.read_text() == "old\n"
        assert b_path.read_text() == "old\n"
        sessions = controller.rollback.get_log().sessions
        assert sessions[-1].status == SessionStatus.ROLLED_BACK

    def test_project_removed_between_passes(self, project_dir, write_file, quiet_config):
        """Test that a vanished root is re-raised with the session left open."""
        write_file("a.txt", "old\n")

        class DeletingScanner:
            def scan(self):
                shutil.rmtree(project_dir)
                return [pattern_issue("a.txt", 1, "new", "newer")]

        controller = PassController(project_dir, DeletingScanner(), config=quiet_config)

        with pytest.raises(ProjectNotFound):
            controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new")])

        assert not project_dir.exists()
        sessions = controller.rollback.get_log().sessions
        assert sessions[-1].status == SessionStatus.IN_PROGRESS

    def test_unwritable_backup_log(self, project_dir, write_file, quiet_config):
        """Test that a run completes when the backup log cannot be saved."""
        path = write_file("a.txt", "old\n")
        (project_dir / ".project-healer-backups" / "backup-log.json").mkdir(parents=True)
        controller = PassController(project_dir, config=quiet_config)

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new")])

        assert [f.issue.message for f in report.fixed] == ["replace old"]
        assert path.read_text() == "new\n"
        session = controller.rollback.get_log().find_session(report.session_id)
        assert session.status == SessionStatus.COMPLETED

    @pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")
    def test_tree_wide_check_ignores_backups(self, project_dir, write_file, quiet_config):
        """Test that a check over the whole tree only sees the live sources."""
        path = write_file("pkg/mod.py", "import os\n")
        quiet_config.validation.lint_command = (
            "! grep -rq --include='*.py' 'import os' . || (echo unused import; exit 1)"
        )
        controller = PassController(project_dir, config=quiet_config)

        report = controller.apply_fixes([
            pattern_issue("pkg/mod.py", 1, "import os", "import sys")
        ])

        assert report.unfixed == []
        assert [f.issue.message for f in report.fixed] == ["replace import os"]
        assert path.read_text() == "import sys\n"

    def test_abort(self, project_dir, write_file, quiet_config):
        """Test explicit rollback of an in-progress session."""
        path = write_file("a.txt", "old\n")
        controller = PassController(project_dir, config=quiet_config)
        session_id = controller.rollback.start_session()
        controller.run_pass(session_id, [pattern_issue("a.txt", 1, "old", "new")])
        assert path.read_text() == "new\n"

        stats = controller.abort(session_id)

        assert stats.succeeded == 1
        assert path.read_text() == "old\n"

    def test_interrupted_session_auto_rollback(self, project_dir, write_file, quiet_config):
        """Test recovery of a session left behind by a killed run."""
        path = write_file("a.txt", "old\n")
        crashed = RollbackManager(project_dir)
        crashed.apply_fix("a.txt", "half done\n", crashed.start_session())
        quiet_config.backup.auto_rollback_interrupted = True

        PassController(project_dir, config=quiet_config).apply_fixes([])

        assert path.read_text() == "old\n"


class TestDryRun:
    """Tests for dry-run mode."""

    def test_dry_run_commits_nothing(self, project_dir, write_file, quiet_config):
        """Test that fixes are reported but files stay untouched."""
        path = write_file("a.txt", "old\n")
        quiet_config.safety.dry_run = True
        scanner = ScriptedScanner([pattern_issue("a.txt", 1, "old", "new")])
        controller = PassController(project_dir, scanner, config=quiet_config)

        report = controller.apply_fixes([pattern_issue("a.txt", 1, "old", "new")])

        assert report.dry_run is True
        assert len(report.fixed) == 1
        assert report.passes == 1
        assert scanner.calls == 0
        assert path.read_text() == "old\n"


class TestReportingAndFactory:
    """Tests for the report, changelog and factory."""

    def test_report_to_dict(self, project_dir, write_file, quiet_config):
        write_file("a.txt", "old\n")
        controller = PassController(project_dir, config=quiet_config)
        report = controller.apply_fixes([
            pattern_issue("a.txt", 1, "old", "new"),
            Issue(file="missing.txt", line=1, message="m"),
        ])

        data = report.to_dict()

        assert isinstance(report, HealingReport)
        assert data["passes"] == 1
        assert data["fixed"][0]["resolution"] == "Fixed by pattern"
        assert data["unfixed"][0]["reason"] == "File does not exist"

    def test_statistics(self, project_dir, write_file, quiet_config):
        """Test changelog statistics after a run."""
        write_file("a.txt", "old\n")
        controller = PassController(project_dir, config=quiet_config)
        controller.apply_fixes([
            pattern_issue("a.txt", 1, "old", "new"),
            pattern_issue("a.txt", 1, "absent", "x"),
        ])

        stats = controller.get_statistics()

        assert stats["total_sessions"] == 1
        assert stats["completed_sessions"] == 1
        assert stats["issues_fixed"] == 1
        assert stats["issues_unfixed"] == 1
        assert stats["patterns"]["pattern-old"] == {"fixed": 1, "unfixed": 0}
        assert stats["patterns"]["pattern-absent"] == {"fixed": 0, "unfixed": 1}

    def test_relative_log_directory_under_project(self, project_dir):
        """Test that the default log directory lives in the project."""
        controller = create_healer(project_dir, verbose=False)
        assert controller.logger.log_directory == project_dir.resolve() / ".project-healer-logs"

    def test_create_healer_overrides(self, project_dir, quiet_config):
        controller = create_healer(
            project_dir, StaticScanner([]), dry_run=True, max_passes=5,
            log_directory=quiet_config.logging.log_directory
        )
        assert controller.config.safety.dry_run is True
        assert controller.config.passes.max_passes == 5
