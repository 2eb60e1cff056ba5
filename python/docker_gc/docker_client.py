"""
Docker engine client for garbage collection.

This module provides a standardized client for the handful of engine
operations the collector needs, driving the ``docker`` CLI with retries,
timeouts and consistent error reporting.
"""

import json
import logging
import subprocess
from typing import List, Optional, Set

from docker_gc.error_utils import create_engine_connection_error
from docker_gc.retry_utils import retry_with_backoff


class DockerCommandError(Exception):
    """Raised when a docker CLI command exits non-zero."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        super().__init__(self.stderr or f"{' '.join(cmd)} exited with status {returncode}")


class DockerObjectNotFoundError(DockerCommandError):
    """Raised when the engine reports that a container or image does not exist.

    This is a non-retryable condition: the object was removed out-of-band
    or never existed.
    """


_CONNECTION_INDICATORS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error during connect",
    "connection refused",
)


def _is_not_found(stderr: str) -> bool:
    return "no such" in stderr.lower()


def _is_connection_failure(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(indicator in lowered for indicator in _CONNECTION_INDICATORS)


def _split_ids(output: str) -> Set[str]:
    return {line.strip() for line in output.splitlines() if line.strip()}


class DockerClient:
    """Standardized docker CLI client for engine operations."""

    def __init__(self, config_manager):
        """Initialize DockerClient.

        Args:
            config_manager: ConfigManager instance for accessing configuration
        """
        self.config_manager = config_manager
        self.binary = config_manager.get_docker_binary()
        self.docker_host = config_manager.get_docker_host()

    @property
    def engine_address(self) -> str:
        return self.docker_host or "default docker context"

    def _build_docker_command(self, args: List[str]) -> List[str]:
        """Build a complete docker command including the engine address."""
        cmd = [self.binary]
        if self.docker_host:
            cmd.extend(["-H", self.docker_host])
        return cmd + list(args)

    def run_docker_command(self, args: List[str]) -> str:
        """Run a docker command with standardized configuration.

        Returns:
            Command stdout

        Raises:
            ActionableError: engine unreachable, CLI missing, or timeout
            DockerObjectNotFoundError: the referenced object does not exist
            DockerCommandError: any other non-zero exit
        """
        timeout = self.config_manager.get_retry_timeout()
        cmd = self._build_docker_command(args)

        @retry_with_backoff(
            max_retries=self.config_manager.get_max_retries(),
            initial_delay=self.config_manager.get_retry_initial_delay(),
            max_delay=self.config_manager.get_retry_max_delay(),
            exponential_base=self.config_manager.get_retry_exponential_base(),
            jitter=self.config_manager.get_retry_jitter(),
        )
        def _execute() -> str:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
            )
            return result.stdout

        try:
            return _execute()
        except subprocess.TimeoutExpired as e:
            logging.error(f"Docker command timed out after {timeout}s: {' '.join(cmd)}")
            raise create_engine_connection_error(self.engine_address, e) from e
        except FileNotFoundError as e:
            logging.error(f"Docker CLI not found: {self.binary}")
            raise create_engine_connection_error(self.engine_address, e) from e
        except subprocess.CalledProcessError as e:
            stderr = e.stderr or ""
            if _is_not_found(stderr):
                raise DockerObjectNotFoundError(cmd, e.returncode, stderr) from e
            if _is_connection_failure(stderr):
                raise create_engine_connection_error(self.engine_address, DockerCommandError(cmd, e.returncode, stderr)) from e
            logging.debug(f"Docker command failed: {' '.join(cmd)}: {stderr.strip()}")
            raise DockerCommandError(cmd, e.returncode, stderr) from e

    def server_version(self) -> str:
        """Return the engine server version; raises if the engine is unreachable."""
        return self.run_docker_command(["version", "--format", "{{.Server.Version}}"]).strip()

    def list_all_containers(self) -> Set[str]:
        """Ids of every container known to the engine, running or not."""
        return _split_ids(self.run_docker_command(["ps", "--all", "--quiet", "--no-trunc"]))

    def list_running_containers(self) -> Set[str]:
        return _split_ids(self.run_docker_command(["ps", "--quiet", "--no-trunc"]))

    def list_all_images(self) -> Set[str]:
        """Canonical ids of every tagged or dangling top-level image (deduplicated)."""
        return _split_ids(self.run_docker_command(["images", "--quiet", "--no-trunc"]))

    def get_configured_image_ref(self, container_id: str) -> Optional[str]:
        """Image reference the container was created from, or None if the container is gone."""
        try:
            output = self.run_docker_command(
                ["inspect", "--type", "container", "--format", "{{.Config.Image}}", container_id]
            )
        except DockerObjectNotFoundError:
            return None
        return output.strip() or None

    def get_container_name(self, container_id: str) -> Optional[str]:
        try:
            output = self.run_docker_command(["inspect", "--type", "container", "--format", "{{.Name}}", container_id])
        except DockerObjectNotFoundError:
            return None
        return output.strip().lstrip("/") or None

    def resolve_image_id(self, image_ref: str) -> Optional[str]:
        """Resolve a tag, name or id to the canonical image id, or None if it no longer exists."""
        try:
            output = self.run_docker_command(["inspect", "--type", "image", "--format", "{{.Id}}", image_ref])
        except DockerObjectNotFoundError:
            return None
        return output.strip() or None

    def get_image_tags(self, image_id: str) -> List[str]:
        try:
            output = self.run_docker_command(["inspect", "--type", "image", "--format", "{{json .RepoTags}}", image_id])
        except DockerObjectNotFoundError:
            return []
        try:
            tags = json.loads(output.strip() or "null")
        except json.JSONDecodeError:
            logging.error(f"Failed to parse tags for image {image_id}")
            return []
        return [tag for tag in tags or [] if tag and tag != "<none>:<none>"]

    def delete_container(self, container_id: str, remove_volumes: bool = True) -> None:
        """Remove a container, optionally with its anonymous volumes.

        Raises:
            DockerCommandError: the engine refused or the container is gone
        """
        args = ["rm"]
        if remove_volumes:
            args.append("--volumes")
        if self.config_manager.get_force_container_removal():
            args.append("--force")
        args.append(container_id)
        self.run_docker_command(args)

    def delete_image(self, image_id: str) -> None:
        """Remove an image by id.

        The engine refuses to remove an image by id while tags from more than
        one repository point at it, so every tag but the first is removed
        beforehand. Removing a tag that other tags share only untags.

        Raises:
            DockerCommandError: the engine refused (e.g. image in use) or the image is gone
        """
        force = self.config_manager.get_force_image_removal()
        if not force:
            for tag in self.get_image_tags(image_id)[1:]:
                try:
                    self.run_docker_command(["rmi", tag])
                except DockerObjectNotFoundError:
                    logging.debug(f"Tag {tag} already gone from image {image_id}")

        args = ["rmi"]
        if force:
            args.append("--force")
        args.append(image_id)
        self.run_docker_command(args)
