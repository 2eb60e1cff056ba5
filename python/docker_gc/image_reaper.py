"""
Image selection for a garbage collection cycle.

An image becomes a candidate only after it has been seen in the previous
cycle's full image snapshot, and it is reaped only if no kept container
references it by canonical id at decision time.
"""

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import List, Optional, Set

from docker_gc.logging_utils import get_logger
from docker_gc.state_store import PREV_ALL_IMAGES, StateStore

logger = get_logger(__name__)

SHORT_ID_LENGTH = 12


@dataclass
class ImagePlan:
    """Outcome of image selection for one cycle."""

    all_images: Set[str]  # Becomes the previous image set for the next cycle
    reap: Set[str]
    vanished: Set[str] = field(default_factory=set)
    excluded: Set[str] = field(default_factory=set)


def compute_image_reap(prev_all_images: Set[str], active_images: Set[str]) -> Set[str]:
    """Images present at the end of the previous cycle that nothing kept uses now."""
    return prev_all_images - active_images


def short_id(image_id: str) -> str:
    """'sha256:0123456789abcdef...' -> '0123456789ab'"""
    return image_id.split(":", 1)[-1][:SHORT_ID_LENGTH]


class ImageReaper:
    """Decides which images to remove and records the image generation."""

    def __init__(self, docker_client, state_store: StateStore, exclude_patterns: Optional[List[str]] = None):
        self.docker_client = docker_client
        self.state_store = state_store
        self.exclude_patterns = exclude_patterns or []

    def plan(self, active_images: Set[str]) -> ImagePlan:
        """Enumerate images and select the reap set. Does not write state."""
        all_images = self.docker_client.list_all_images()

        prev_all_images = self.state_store.read(PREV_ALL_IMAGES)
        if prev_all_images is None:
            logger.info("No previous image set; no image can be reaped this cycle")
            prev_all_images = set()

        candidates = compute_image_reap(prev_all_images, active_images)

        # Removed out-of-band since the last snapshot: nothing left to delete
        vanished = candidates - all_images
        reap = candidates & all_images

        excluded: Set[str] = set()
        if self.exclude_patterns and reap:
            excluded = self._find_excluded(reap)
            reap -= excluded

        logger.info(
            f"Images: {len(all_images)} total, {len(prev_all_images)} in previous snapshot, "
            f"{len(active_images)} in use, {len(reap)} to reap, {len(excluded)} excluded, "
            f"{len(vanished)} already gone"
        )
        return ImagePlan(all_images=all_images, reap=reap, vanished=vanished, excluded=excluded)

    def _is_excluded(self, image_id: str, tags: List[str]) -> bool:
        names = [image_id, short_id(image_id)] + tags
        return any(fnmatchcase(name, pattern) for name in names for pattern in self.exclude_patterns)

    def _find_excluded(self, candidates: Set[str]) -> Set[str]:
        excluded = set()
        for image_id in sorted(candidates):
            tags = self.docker_client.get_image_tags(image_id)
            if self._is_excluded(image_id, tags):
                logger.info(f"Image {short_id(image_id)} ({', '.join(tags) or 'untagged'}) matches an exclusion rule")
                excluded.add(image_id)
        return excluded

    def commit(self, plan: ImagePlan) -> None:
        """Persist this cycle's full image set as the next cycle's previous set."""
        self.state_store.write(PREV_ALL_IMAGES, plan.all_images)
