"""Map kept containers to the canonical ids of the images they use."""

from typing import Iterable, Set

from docker_gc.logging_utils import get_logger

logger = get_logger(__name__)


def resolve_active_images(docker_client, keep: Iterable[str]) -> Set[str]:
    """Return the canonical image ids referenced by any container in ``keep``.

    Resolution goes through the image id rather than the tag, so an image
    carrying several tags stays protected while any one of them is in use.
    Containers that vanished and references that no longer resolve are
    skipped, not raised.
    """
    active: Set[str] = set()

    for container_id in sorted(keep):
        image_ref = docker_client.get_configured_image_ref(container_id)
        if image_ref is None:
            logger.debug(f"Container {container_id[:12]} disappeared before its image could be read")
            continue

        image_id = docker_client.resolve_image_id(image_ref)
        if image_id is None:
            logger.warning(f"Container {container_id[:12]} references image '{image_ref}' which no longer exists")
            continue

        active.add(image_id)

    logger.info(f"{len(active)} image(s) in use by kept containers")
    return active
