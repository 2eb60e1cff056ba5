"""
Container selection for a garbage collection cycle.

A container is reaped only when it was observed not running in this cycle
AND in the previous one. A container caught mid-restart by a single
snapshot therefore survives until the next cycle confirms it.
"""

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import List, Optional, Set

from docker_gc.logging_utils import get_logger
from docker_gc.state_store import PREV_EXITED_CONTAINERS, StateStore

logger = get_logger(__name__)


@dataclass
class ContainerPlan:
    """Outcome of container selection for one cycle."""

    exited: Set[str]  # Becomes the previous exited set for the next cycle
    reap: Set[str]
    keep: Set[str]
    excluded: Set[str] = field(default_factory=set)


def compute_container_plan(all_containers: Set[str], running: Set[str], prev_exited: Set[str]) -> ContainerPlan:
    """Pure set algebra for container selection.

    Ids listed as running but missing from ``all_containers`` (removed between
    the two listings) are ignored; they appear in no derived set.
    """
    exited = all_containers - running
    reap = exited & prev_exited
    keep = all_containers - reap
    return ContainerPlan(exited=exited, reap=reap, keep=keep)


class ContainerReaper:
    """Decides which containers to remove and records the exited generation."""

    def __init__(self, docker_client, state_store: StateStore, exclude_patterns: Optional[List[str]] = None):
        self.docker_client = docker_client
        self.state_store = state_store
        self.exclude_patterns = exclude_patterns or []

    def plan(self) -> ContainerPlan:
        """Enumerate containers and select the reap set. Does not write state.

        Engine errors propagate: a partial listing could under-count the
        keep set and expose images in use.
        """
        all_containers = self.docker_client.list_all_containers()
        running = self.docker_client.list_running_containers()

        prev_exited = self.state_store.read(PREV_EXITED_CONTAINERS)
        if prev_exited is None:
            logger.info("No previous exited-container set; nothing can be confirmed idle this cycle")
            prev_exited = set()

        plan = compute_container_plan(all_containers, running, prev_exited)

        if self.exclude_patterns and plan.reap:
            plan.excluded = self._find_excluded(plan.reap)
            plan.reap -= plan.excluded
            plan.keep |= plan.excluded

        logger.info(
            f"Containers: {len(all_containers)} total, {len(running & all_containers)} running, "
            f"{len(plan.exited)} exited, {len(plan.reap)} to reap, {len(plan.excluded)} excluded"
        )
        return plan

    def _find_excluded(self, candidates: Set[str]) -> Set[str]:
        excluded = set()
        for container_id in sorted(candidates):
            name = self.docker_client.get_container_name(container_id)
            if name is None:
                # Can't prove it isn't protected; leave it for the next cycle
                logger.debug(f"Could not read name of container {container_id}, keeping it")
                excluded.add(container_id)
                continue
            if any(fnmatchcase(name, pattern) for pattern in self.exclude_patterns):
                logger.info(f"Container {name} ({container_id[:12]}) matches an exclusion rule, keeping it")
                excluded.add(container_id)
        return excluded

    def commit(self, plan: ContainerPlan) -> None:
        """Persist this cycle's exited set as the next cycle's previous set."""
        self.state_store.write(PREV_EXITED_CONTAINERS, plan.exited)
