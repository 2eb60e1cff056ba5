"""
Health check utilities for verifying the host before a collection cycle.

This module provides health checks for:
- Docker engine connectivity
- State directory writability
"""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from docker_gc.error_utils import ActionableError, create_engine_connection_error, create_state_dir_error
from docker_gc.logging_utils import get_logger


@dataclass
class HealthCheckResult:
    """Result of a health check"""

    name: str
    status: bool  # True if healthy, False if unhealthy
    message: str
    details: Optional[Dict] = None


class HealthChecker:
    """Performs health checks on the engine and the state directory"""

    def __init__(self, docker_client, state_dir):
        self.docker_client = docker_client
        self.state_dir = Path(state_dir)
        self.logger = get_logger(self.__class__.__name__)

    def check_engine_connectivity(self) -> HealthCheckResult:
        """Check if the Docker engine answers

        Returns:
            HealthCheckResult indicating engine connectivity status
        """
        address = self.docker_client.engine_address
        try:
            version = self.docker_client.server_version()
            return HealthCheckResult(
                name="engine_connectivity",
                status=True,
                message=f"Connected to Docker engine at {address}",
                details={"docker_host": address, "server_version": version},
            )
        except Exception as e:
            actionable_error = e if isinstance(e, ActionableError) else create_engine_connection_error(address, e)
            return HealthCheckResult(
                name="engine_connectivity",
                status=False,
                message=actionable_error.message,
                details={
                    "docker_host": address,
                    "error": str(e),
                    "suggestions": actionable_error.suggestions,
                },
            )

    def check_state_dir(self) -> HealthCheckResult:
        """Check that the state directory exists (or can be created) and is writable"""
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            if not os.access(self.state_dir, os.W_OK):
                raise PermissionError(f"Permission denied: {self.state_dir}")
            # Exercise the same create-then-remove path the state store relies on
            fd, scratch = tempfile.mkstemp(prefix=".writable.", dir=self.state_dir)
            os.close(fd)
            os.unlink(scratch)
            return HealthCheckResult(
                name="state_directory",
                status=True,
                message=f"State directory {self.state_dir} is writable",
                details={"state_dir": str(self.state_dir)},
            )
        except OSError as e:
            actionable_error = create_state_dir_error(str(self.state_dir), e)
            return HealthCheckResult(
                name="state_directory",
                status=False,
                message=actionable_error.message,
                details={
                    "state_dir": str(self.state_dir),
                    "error": str(e),
                    "suggestions": actionable_error.suggestions,
                },
            )

    def run_all_checks(self) -> List[HealthCheckResult]:
        """Run all health checks

        Returns:
            List of HealthCheckResult objects
        """
        return [self.check_state_dir(), self.check_engine_connectivity()]

    def print_health_report(self, results: List[HealthCheckResult]) -> bool:
        """Print a formatted health check report

        Args:
            results: List of HealthCheckResult objects

        Returns:
            True if all checks passed, False otherwise
        """
        print("\n" + "=" * 60)
        print("Health Check Report")
        print("=" * 60)

        all_healthy = True

        for result in results:
            status_icon = "✓" if result.status else "✗"
            status_text = "HEALTHY" if result.status else "UNHEALTHY"

            print(f"\n{status_icon} {result.name.upper().replace('_', ' ')}: {status_text}")
            print(f"   {result.message}")

            if result.details:
                for key, value in result.details.items():
                    if key == "suggestions":
                        for i, suggestion in enumerate(value, 1):
                            print(f"   {i}. {suggestion}")
                    elif key != "error":  # Don't print error in details if it's already in message
                        print(f"   {key}: {value}")

            if not result.status:
                all_healthy = False

        print("\n" + "=" * 60)

        if all_healthy:
            print("✓ All health checks passed")
        else:
            print("✗ Some health checks failed - please review the issues above")

        print("=" * 60 + "\n")

        return all_healthy
