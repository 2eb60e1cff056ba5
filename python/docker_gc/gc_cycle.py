"""
One garbage collection cycle: select, delete, then advance the generation.

Workflow:
- Read the last-run marker; without one the cycle only records a baseline
- Select containers idle in this and the previous cycle (ContainerReaper)
- Resolve the images still used by the containers that stay
- Select images from the previous snapshot that nothing kept uses (ImageReaper)
- Delete containers, then images, each target independently
- Persist the new generational sets and touch the last-run marker

All engine enumeration happens before the first write, so an unreachable
engine or a failed listing aborts the cycle with the previous state intact.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from docker_gc.container_reaper import ContainerPlan, ContainerReaper
from docker_gc.docker_client import DockerObjectNotFoundError
from docker_gc.image_reaper import ImagePlan, ImageReaper, short_id
from docker_gc.image_resolver import resolve_active_images
from docker_gc.logging_utils import get_logger
from docker_gc.report_utils import format_summary_table
from docker_gc.state_store import LAST_RUN, StateStore

logger = get_logger(__name__)


@dataclass
class GCResult:
    """Result of a garbage collection cycle.

    Attributes:
        bootstrap: True when no previous cycle existed and only a baseline was recorded
        dry_run: True when nothing was deleted or persisted
        container_candidates: Containers selected for deletion
        image_candidates: Images selected for deletion
        deleted_containers: Containers the engine removed
        deleted_images: Images the engine removed
        skipped_containers: Candidates removed out-of-band before their deletion
        skipped_images: Candidates already gone from the engine
        excluded: Ids protected by exclusion rules
        errors: One message per failed deletion
    """

    bootstrap: bool = False
    dry_run: bool = False
    container_candidates: Set[str] = field(default_factory=set)
    image_candidates: Set[str] = field(default_factory=set)
    deleted_containers: List[str] = field(default_factory=list)
    deleted_images: List[str] = field(default_factory=list)
    skipped_containers: Set[str] = field(default_factory=set)
    skipped_images: Set[str] = field(default_factory=set)
    excluded: Set[str] = field(default_factory=set)
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        """Whether every attempted deletion succeeded."""
        return len(self.errors) == 0

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    def summary_rows(self) -> List[Dict[str, Any]]:
        verb = "Would delete" if self.dry_run else "Deleted"
        return [
            {
                "Kind": "containers",
                "Candidates": len(self.container_candidates),
                verb: len(self.container_candidates) if self.dry_run else len(self.deleted_containers),
                "Failed": sum(1 for e in self.errors if e.startswith("container ")),
            },
            {
                "Kind": "images",
                "Candidates": len(self.image_candidates),
                verb: len(self.image_candidates) if self.dry_run else len(self.deleted_images),
                "Failed": sum(1 for e in self.errors if e.startswith("image ")),
            },
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bootstrap": self.bootstrap,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "container_candidates": self.container_candidates,
            "image_candidates": self.image_candidates,
            "deleted_containers": self.deleted_containers,
            "deleted_images": self.deleted_images,
            "skipped_containers": self.skipped_containers,
            "skipped_images": self.skipped_images,
            "excluded": self.excluded,
            "errors": self.errors,
        }


class GCCycle:
    """Sequences selection, deletion and state advancement for one cycle."""

    def __init__(self, docker_client, state_store: StateStore, config_manager, dry_run: Optional[bool] = None):
        """Initialize a cycle

        Args:
            docker_client: Engine client (DockerClient or compatible)
            state_store: Store holding the previous generation
            config_manager: ConfigManager instance for removal and exclusion settings
            dry_run: Override config gc.dry_run
        """
        self.docker_client = docker_client
        self.state_store = state_store
        self.config_manager = config_manager
        self.dry_run = config_manager.is_dry_run() if dry_run is None else dry_run
        self.remove_volumes = config_manager.get_remove_volumes()
        self.container_reaper = ContainerReaper(
            docker_client, state_store, exclude_patterns=config_manager.get_exclude_containers()
        )
        self.image_reaper = ImageReaper(docker_client, state_store, exclude_patterns=config_manager.get_exclude_images())

    def run(self) -> GCResult:
        """Execute one cycle.

        Raises:
            ActionableError / DockerCommandError: engine unreachable or enumeration failed;
                nothing has been deleted or written when this happens
            OSError: the new state could not be written after deletions
        """
        result = GCResult(dry_run=self.dry_run)
        mode = "DRY RUN: " if self.dry_run else ""
        logger.info(f"{mode}Starting garbage collection cycle")

        last_run = self.state_store.read_timestamp(LAST_RUN)
        if last_run is None:
            return self._bootstrap(result)

        logger.info(f"Previous cycle marker: {last_run.isoformat()}")

        container_plan = self.container_reaper.plan()
        active_images = resolve_active_images(self.docker_client, container_plan.keep)
        image_plan = self.image_reaper.plan(active_images)

        result.container_candidates = set(container_plan.reap)
        result.image_candidates = set(image_plan.reap)
        result.skipped_images = set(image_plan.vanished)
        result.excluded = container_plan.excluded | image_plan.excluded

        if self.dry_run:
            for container_id in sorted(container_plan.reap):
                logger.info(f"DRY RUN: would delete container {container_id[:12]}")
            for image_id in sorted(image_plan.reap):
                logger.info(f"DRY RUN: would delete image {short_id(image_id)}")
        else:
            self._delete_containers(container_plan.reap, result)
            self._delete_images(image_plan.reap, result)
            self._advance(container_plan, image_plan)

        result.finished_at = datetime.now(timezone.utc)
        self.log_summary(result)
        return result

    def _bootstrap(self, result: GCResult) -> GCResult:
        """First cycle: record the baseline generation, delete nothing."""
        logger.info("No previous cycle recorded; establishing baseline state without deleting anything")
        result.bootstrap = True

        container_plan = self.container_reaper.plan()
        # Nothing is reaped without a previous cycle, whatever the store held
        container_plan.reap = set()
        image_plan = ImagePlan(all_images=self.docker_client.list_all_images(), reap=set())

        if not self.dry_run:
            self._advance(container_plan, image_plan)

        result.finished_at = datetime.now(timezone.utc)
        self.log_summary(result)
        return result

    def _delete_containers(self, container_ids: Set[str], result: GCResult) -> None:
        for container_id in sorted(container_ids):
            try:
                self.docker_client.delete_container(container_id, remove_volumes=self.remove_volumes)
                result.deleted_containers.append(container_id)
                logger.info(f"Deleted container {container_id[:12]}")
            except DockerObjectNotFoundError:
                logger.info(f"Container {container_id[:12]} was already removed, skipping")
                result.skipped_containers.add(container_id)
            except Exception as e:
                logger.warning(f"Failed to delete container {container_id[:12]}: {e}")
                result.add_error(f"container {container_id}: {e}")

    def _delete_images(self, image_ids: Set[str], result: GCResult) -> None:
        for image_id in sorted(image_ids):
            try:
                self.docker_client.delete_image(image_id)
                result.deleted_images.append(image_id)
                logger.info(f"Deleted image {short_id(image_id)}")
            except DockerObjectNotFoundError:
                logger.info(f"Image {short_id(image_id)} was already removed, skipping")
                result.skipped_images.add(image_id)
            except Exception as e:
                logger.warning(f"Failed to delete image {short_id(image_id)}: {e}")
                result.add_error(f"image {image_id}: {e}")

    def _advance(self, container_plan: ContainerPlan, image_plan: ImagePlan) -> None:
        """Make this cycle's observations the previous generation."""
        self.container_reaper.commit(container_plan)
        self.image_reaper.commit(image_plan)
        self.state_store.touch(LAST_RUN)

    def log_summary(self, result: GCResult) -> None:
        """Log a standardized cycle summary"""
        mode = "DRY RUN: " if result.dry_run else ""
        if result.bootstrap:
            logger.info(f"{mode}Baseline recorded; deletions start from the next cycle")
            return

        logger.info(f"\n📊 {mode}Garbage Collection Summary:\n{format_summary_table(result.summary_rows())}")
        if result.skipped_containers or result.skipped_images:
            logger.info(
                f"   Already removed out-of-band: {len(result.skipped_containers)} container(s), "
                f"{len(result.skipped_images)} image(s)"
            )
        if result.excluded:
            logger.info(f"   Protected by exclusion rules: {len(result.excluded)}")
        if result.errors:
            logger.warning(f"   {len(result.errors)} deletion(s) failed; they will be reconsidered next cycle")
