"""
Configuration Module for Project Healer
=======================================

This module provides configuration management for the healing system.
It defines all configurable parameters including the pass ceiling,
validation timeouts, backup storage, logging options and safety settings.

Configuration can be loaded from environment variables, config files, or
set programmatically. There is no process-wide configuration instance:
every component receives its configuration explicitly.
"""

import os
import json
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any
from pathlib import Path


@dataclass
class PassConfig:
    """Configuration for the multi-pass healing loop."""
    max_passes: int = 3             # Pass ceiling for one apply_fixes call


@dataclass
class ValidationConfig:
    """Configuration for the validation gate."""
    enabled: bool = True            # Run project checks against candidates
    timeout_seconds: int = 300      # Wall-clock limit per check command
    # Explicit commands override whatever is detected from project metadata
    lint_command: Optional[str] = None
    type_check_command: Optional[str] = None
    test_command: Optional[str] = None


@dataclass
class BackupConfig:
    """Configuration for backup storage and session bookkeeping."""
    directory: str = ".project-healer-backups"
    log_file: str = "backup-log.json"
    retention_days: int = 30        # Age at which rolled-back sessions are purged
    auto_rollback_interrupted: bool = False  # Roll back sessions left by a killed run


@dataclass
class LoggingConfig:
    """Configuration for logging and audit trail."""
    log_directory: str = ".project-healer-logs"
    changelog_file: str = "healing_changelog.json"
    verbose: bool = True            # Detailed logging
    log_to_console: bool = True     # Output logs to console
    log_to_file: bool = True        # Write logs to file


@dataclass
class SafetyConfig:
    """Safety settings to prevent unintended damage."""
    dry_run: bool = False           # Generate and validate fixes without committing
    protected_paths: List[str] = field(default_factory=lambda: [
        "/etc", "/usr", "/bin", "/sbin"
    ])
    max_file_size_kb: int = 10240   # Maximum file size to modify (10MB)


@dataclass
class ProviderConfig:
    """Configuration for the remote fix provider."""
    endpoint: Optional[str] = None  # No endpoint means no remote provider
    api_key: Optional[str] = None
    timeout_seconds: int = 60


@dataclass
class HealerConfig:
    """
    Main configuration class for Project Healer.

    This class aggregates all configuration sections and provides
    methods to load/save configuration from various sources.

    Attributes:
        passes: Multi-pass loop configuration
        validation: Validation gate configuration
        backup: Backup storage configuration
        logging: Logging and audit configuration
        safety: Safety settings configuration
        provider: Remote fix provider configuration
    """
    passes: PassConfig = field(default_factory=PassConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)

    @classmethod
    def from_file(cls, config_path: str) -> "HealerConfig":
        """
        Load configuration from a JSON file.

        Args:
            config_path: Path to the configuration file

        Returns:
            HealerConfig instance with loaded settings
        """
        path = Path(config_path)
        if not path.exists():
            # Return default config if file doesn't exist
            return cls()

        with open(path, 'r') as f:
            data = json.load(f)

        return cls._from_dict(data)

    @classmethod
    def from_env(cls) -> "HealerConfig":
        """
        Load configuration from environment variables.

        Environment variables are prefixed with PROJECT_HEALER_.
        For example: PROJECT_HEALER_DRY_RUN=true

        Returns:
            HealerConfig instance with settings from environment
        """
        config = cls()

        if os.getenv("PROJECT_HEALER_MAX_PASSES"):
            config.passes.max_passes = int(os.getenv("PROJECT_HEALER_MAX_PASSES", "3"))

        if os.getenv("PROJECT_HEALER_DRY_RUN"):
            config.safety.dry_run = os.getenv("PROJECT_HEALER_DRY_RUN", "false").lower() == "true"

        if os.getenv("PROJECT_HEALER_VALIDATE"):
            config.validation.enabled = os.getenv("PROJECT_HEALER_VALIDATE", "true").lower() == "true"

        if os.getenv("PROJECT_HEALER_VALIDATION_TIMEOUT"):
            config.validation.timeout_seconds = int(
                os.getenv("PROJECT_HEALER_VALIDATION_TIMEOUT", "300")
            )

        if os.getenv("PROJECT_HEALER_LOG_DIR"):
            config.logging.log_directory = os.getenv("PROJECT_HEALER_LOG_DIR")

        if os.getenv("PROJECT_HEALER_VERBOSE"):
            config.logging.verbose = os.getenv("PROJECT_HEALER_VERBOSE", "true").lower() == "true"

        if os.getenv("PROJECT_HEALER_FIX_ENDPOINT"):
            config.provider.endpoint = os.getenv("PROJECT_HEALER_FIX_ENDPOINT")

        if os.getenv("PROJECT_HEALER_FIX_API_KEY"):
            config.provider.api_key = os.getenv("PROJECT_HEALER_FIX_API_KEY")

        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "HealerConfig":
        """Convert a dictionary to HealerConfig."""
        config = cls()

        if "passes" in data:
            config.passes = PassConfig(**data["passes"])

        if "validation" in data:
            config.validation = ValidationConfig(**data["validation"])

        if "backup" in data:
            config.backup = BackupConfig(**data["backup"])

        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])

        if "safety" in data:
            config.safety = SafetyConfig(**data["safety"])

        if "provider" in data:
            config.provider = ProviderConfig(**data["provider"])

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary."""
        return {
            "passes": {
                "max_passes": self.passes.max_passes
            },
            "validation": {
                "enabled": self.validation.enabled,
                "timeout_seconds": self.validation.timeout_seconds,
                "lint_command": self.validation.lint_command,
                "type_check_command": self.validation.type_check_command,
                "test_command": self.validation.test_command
            },
            "backup": {
                "directory": self.backup.directory,
                "log_file": self.backup.log_file,
                "retention_days": self.backup.retention_days,
                "auto_rollback_interrupted": self.backup.auto_rollback_interrupted
            },
            "logging": {
                "log_directory": self.logging.log_directory,
                "changelog_file": self.logging.changelog_file,
                "verbose": self.logging.verbose,
                "log_to_console": self.logging.log_to_console,
                "log_to_file": self.logging.log_to_file
            },
            "safety": {
                "dry_run": self.safety.dry_run,
                "protected_paths": self.safety.protected_paths,
                "max_file_size_kb": self.safety.max_file_size_kb
            },
            # api_key is never serialized
            "provider": {
                "endpoint": self.provider.endpoint,
                "timeout_seconds": self.provider.timeout_seconds
            }
        }

    def save_to_file(self, config_path: str) -> None:
        """
        Save configuration to a JSON file.

        Args:
            config_path: Path where to save the configuration
        """
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def is_path_protected(self, file_path: str) -> bool:
        """
        Check if a file path is in a protected location.

        Args:
            file_path: Path to check

        Returns:
            True if the path is protected and should not be modified
        """
        abs_path = Path(os.path.abspath(file_path))
        for protected in self.safety.protected_paths:
            if abs_path == Path(protected) or Path(protected) in abs_path.parents:
                return True
        return False
