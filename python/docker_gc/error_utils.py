"""
Error message utilities for providing actionable guidance to users.

This module provides functions to create helpful error messages with
suggested fixes and troubleshooting steps.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    RESOURCE = "resource"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


def create_engine_connection_error(docker_host: str, error: Exception) -> ActionableError:
    """Create actionable error for an unreachable Docker engine"""
    error_str = str(error).lower()

    suggestions = [
        "Check that the Docker daemon is running (systemctl status docker)",
        "Verify the user running docker-gc can access the Docker socket",
        f"Verify the engine address is correct: {docker_host}",
    ]

    if isinstance(error, FileNotFoundError) or "no such file" in error_str:
        suggestions.insert(0, "Install the docker CLI or set docker.binary in config.yaml")

    if "permission denied" in error_str:
        suggestions.insert(0, "Add the user to the 'docker' group or run docker-gc as root")

    if "timeout" in error_str or "timed out" in error_str:
        suggestions.insert(0, "The daemon may be overloaded; raise retry.timeout in config.yaml")

    return ActionableError(
        message=f"Failed to connect to Docker engine at {docker_host}",
        category=ErrorCategory.TIMEOUT if "timed out" in error_str else ErrorCategory.CONNECTION,
        suggestions=suggestions,
        details={
            "docker_host": docker_host,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_state_dir_error(state_dir: str, error: Exception) -> ActionableError:
    """Create actionable error for an unusable state directory"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify the state directory exists and is writable: {state_dir}",
        "Set gc.state_dir in config.yaml or pass --state-dir",
        "Check free space on the filesystem holding the state directory",
    ]

    if "permission denied" in error_str:
        suggestions.insert(0, "Run docker-gc as a user that owns the state directory")

    if "read-only" in error_str:
        suggestions.insert(0, "Move the state directory off the read-only filesystem")

    return ActionableError(
        message=f"State directory is not usable: {state_dir}",
        category=ErrorCategory.PERMISSION if "permission denied" in error_str else ErrorCategory.RESOURCE,
        suggestions=suggestions,
        details={
            "state_dir": state_dir,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_config_error(field: str, value: Any, reason: str) -> ActionableError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml",
        "Verify the value matches the expected format",
        "Check config-example.yaml for correct format",
    ]

    if "interval" in field.lower() or "timeout" in field.lower() or "delay" in field.lower():
        suggestions.insert(1, "Time values must be non-negative numbers of seconds")
    elif "exclude" in field.lower():
        suggestions.insert(1, "Exclusion rules must be a list of glob patterns")

    return ActionableError(
        message=f"Configuration error: Invalid value for '{field}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason
        }
    )
