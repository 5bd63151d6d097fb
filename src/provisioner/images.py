"""Boot image selection."""

from __future__ import annotations

import logging

from .events import Event
from .gateway import GatewayError, OciGateway, run_blocking
from .models import ImageMode, ProvisionSpec

logger = logging.getLogger(__name__)


class ImageResolutionError(Exception):
    """Raised when no usable boot image can be found."""

    pass


async def resolve_image_id(gateway: OciGateway, spec: ProvisionSpec) -> str:
    """Return the boot image OCID for the launch.

    ``explicit_ocid`` uses the configured OCID as is. The automatic mode picks
    the newest AVAILABLE platform image for the shape, OS and version.

    Raises:
        ImageResolutionError: If the lookup fails or finds nothing.
    """
    image = spec.instance.image
    if image.mode == ImageMode.EXPLICIT_OCID:
        return image.image_ocid

    logger.info(
        "Resolving latest %s %s image",
        image.operating_system,
        image.operating_system_version,
        extra={"event": Event.IMAGE_RESOLVE, "shape": spec.instance.shape},
    )
    try:
        candidates = await run_blocking(
            gateway.list_images,
            spec.oci.compartment_ocid,
            spec.instance.shape,
            image.operating_system,
            image.operating_system_version,
        )
    except GatewayError as e:
        raise ImageResolutionError(f"Failed to list images: {e}") from e

    available = [c for c in candidates if c.lifecycle_state == "AVAILABLE"]
    if not available:
        raise ImageResolutionError(
            f"No AVAILABLE {image.operating_system} {image.operating_system_version} "
            f"image found for {spec.instance.shape}"
        )

    # Provider sorts newest first; re-sort when timestamps are present
    if all(c.time_created is not None for c in available):
        available.sort(key=lambda c: c.time_created, reverse=True)
    return available[0].id
