"""Availability domain placement.

The sequence of availability domains is fixed for the lifetime of a run.
Launch attempts walk it circularly, one domain per attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .gateway import GatewayError, OciGateway, run_blocking

logger = logging.getLogger(__name__)


class PlacementError(Exception):
    """Raised when no availability domain can be determined."""

    pass


@dataclass(frozen=True)
class PlacementSequence:
    """Ordered, non-empty availability domain names."""

    domains: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.domains:
            raise PlacementError("placement sequence must contain at least one availability domain")

    def __len__(self) -> int:
        return len(self.domains)

    def at(self, index: int) -> str:
        """Domain for the given attempt index, wrapping around."""
        return self.domains[index % len(self.domains)]


async def resolve_placement(
    configured: list[str],
    gateway: OciGateway,
    compartment_id: str,
) -> PlacementSequence:
    """Build the placement sequence.

    An explicit list from the configuration file is used verbatim (blank
    entries dropped). Otherwise every domain the provider returns for the
    compartment is used in returned order.

    Raises:
        PlacementError: If both sources are empty or the provider query fails.
    """
    explicit = tuple(d.strip() for d in configured if d and d.strip())
    if explicit:
        return PlacementSequence(explicit)

    try:
        discovered = await run_blocking(gateway.list_availability_domains, compartment_id)
    except GatewayError as e:
        raise PlacementError(f"Failed to list availability domains: {e}") from e

    domains = tuple(d for d in discovered if d)
    if not domains:
        raise PlacementError(f"No availability domains found for compartment {compartment_id}")
    return PlacementSequence(domains)
