"""
Capacity lookup for device placement.

Resolves a metro with available capacity for a plan, constrained by an
allow-list of metros.
"""

import logging
from typing import Iterable, Optional

from .errors import NotFoundError
from dianomeas.provider.models import CapacityLevel, CapacityReport

logger = logging.getLogger(__name__)


class CapacityLocator:
    """Finds the first metro that can host a given plan.

    Metros are scanned in sorted order so the same snapshot always
    yields the same answer.
    """

    def __init__(self, capacity_service, allowed_metros: Optional[Iterable[str]] = None):
        """Initialize the locator.

        Args:
            capacity_service: Object exposing list_capacity() -> CapacityReport
            allowed_metros: Metros to accept; empty or None means any metro
        """
        self.capacity_service = capacity_service
        self.allowed_metros = frozenset(allowed_metros or ())

    def check_availability_for(self, instance_type: str) -> str:
        """Return a metro with capacity for the requested instance type.

        Args:
            instance_type: Plan slug, e.g. "n2.xlarge.x86"

        Returns:
            Metro code

        Raises:
            NotFoundError: If no metro passes both the level and allow-list filters
            TransportError: If the capacity snapshot cannot be fetched
        """
        report = self.capacity_service.list_capacity()
        metro = select_metro(report, instance_type, self.allowed_metros)
        if metro is None:
            raise NotFoundError(f"No availability found for {instance_type}")

        logger.info("Capacity for %s found in metro %s", instance_type, metro)
        return metro


def select_metro(
    report: CapacityReport,
    instance_type: str,
    allowed_metros: frozenset = frozenset(),
) -> Optional[str]:
    """Pick the first metro, by name, with a usable level for instance_type."""
    for metro in sorted(report):
        level = report[metro].get(instance_type)
        if level is None or level == CapacityLevel.UNAVAILABLE:
            continue
        if not allowed_metros or metro in allowed_metros:
            return metro
    return None
