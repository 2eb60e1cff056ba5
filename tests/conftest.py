"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory Docker engine for cycle-level tests.
"""
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)


class FakeEngine:
    """In-memory stand-in for DockerClient with the engine's refusal rules."""

    engine_address = "unix:///fake/docker.sock"

    def __init__(self):
        self.containers: Dict[str, Dict] = {}
        self.images: Dict[str, List[str]] = {}
        self.fail_container_deletes = set()
        self.fail_image_deletes = set()
        self.deleted_containers: List[str] = []
        self.deleted_images: List[str] = []
        self.unreachable: Optional[Exception] = None

    # Test setup helpers
    def add_image(self, image_id: str, *tags: str) -> None:
        self.images[image_id] = list(tags)

    def add_container(self, container_id: str, image_ref: str, running: bool = False, name: Optional[str] = None):
        self.containers[container_id] = {"image": image_ref, "running": running, "name": name or container_id}

    def set_running(self, container_id: str, running: bool) -> None:
        self.containers[container_id]["running"] = running

    def _check(self):
        if self.unreachable is not None:
            raise self.unreachable

    # DockerClient interface
    def server_version(self) -> str:
        self._check()
        return "24.0.7"

    def list_all_containers(self):
        self._check()
        return set(self.containers)

    def list_running_containers(self):
        self._check()
        return {cid for cid, c in self.containers.items() if c["running"]}

    def list_all_images(self):
        self._check()
        return set(self.images)

    def get_configured_image_ref(self, container_id):
        container = self.containers.get(container_id)
        return container["image"] if container else None

    def get_container_name(self, container_id):
        container = self.containers.get(container_id)
        return container["name"] if container else None

    def resolve_image_id(self, image_ref):
        if image_ref in self.images:
            return image_ref
        for image_id, tags in self.images.items():
            if image_ref in tags:
                return image_id
        return None

    def get_image_tags(self, image_id):
        return list(self.images.get(image_id, []))

    def delete_container(self, container_id, remove_volumes=True):
        from docker_gc.docker_client import DockerCommandError, DockerObjectNotFoundError

        cmd = ["docker", "rm", container_id]
        if container_id in self.fail_container_deletes:
            raise DockerCommandError(cmd, 1, "Error response from daemon: removal of container is already in progress")
        if container_id not in self.containers:
            raise DockerObjectNotFoundError(cmd, 1, f"Error: No such container: {container_id}")
        del self.containers[container_id]
        self.deleted_containers.append(container_id)

    def delete_image(self, image_id):
        # Same sequence as DockerClient.delete_image: extra tags first, then the id
        for tag in self.get_image_tags(image_id)[1:]:
            self._rmi(tag)
        self._rmi(image_id)

    def _rmi(self, ref):
        """Engine behaviour of `docker rmi <ref>` without --force"""
        from docker_gc.docker_client import DockerCommandError, DockerObjectNotFoundError

        cmd = ["docker", "rmi", ref]
        if ref in self.fail_image_deletes:
            raise DockerCommandError(cmd, 1, "Error response from daemon: unexpected failure")
        image_id = self.resolve_image_id(ref)
        if image_id is None:
            raise DockerObjectNotFoundError(cmd, 1, f"Error: No such image: {ref}")
        tags = self.images[image_id]
        if ref in tags and len(tags) > 1:
            tags.remove(ref)
            return
        if ref == image_id and len({tag.rsplit(":", 1)[0] for tag in tags}) > 1:
            raise DockerCommandError(
                cmd,
                1,
                f"Error response from daemon: conflict: unable to delete {image_id} (must be forced)"
                " - image is referenced in multiple repositories",
            )
        users = [cid for cid, c in self.containers.items() if self.resolve_image_id(c["image"]) == image_id]
        if users:
            raise DockerCommandError(
                cmd, 1, f"Error response from daemon: conflict: unable to delete {image_id} - image is being used by {users[0]}"
            )
        del self.images[image_id]
        self.deleted_images.append(image_id)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def state_store(tmp_path):
    from docker_gc.state_store import StateStore

    return StateStore(tmp_path / "state")


@pytest.fixture
def gc_config():
    """ConfigManager with built-in defaults only"""
    from docker_gc.config_manager import ConfigManager

    return ConfigManager(config_file="/nonexistent/config.yaml", validate=False)
