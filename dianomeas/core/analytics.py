"""
Usage analytics over reconciled device lifecycles.

Pure computation: counts, uptimes, costs and leaks. Only devices with both
a creation and a consistent deletion contribute to uptime, cost and leaks;
creation-only devices still count toward the instance total.
"""

import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .reconciler import LifecycleRecord


@dataclass(frozen=True)
class DeviceMaximum:
    """The device holding a maximum, with its uptime and cost."""
    device_id: str
    uptime: timedelta
    cost: Decimal


@dataclass(frozen=True)
class UsageReport:
    """Aggregated usage over one reconciliation run."""
    total_instances: int
    daily_creations: List[Tuple[date, int]]
    paired_devices: int
    total_uptime: timedelta
    total_cost: Decimal
    average_uptime: Optional[timedelta]  # None when no device is paired
    max_uptime: Optional[DeviceMaximum]
    max_cost: Optional[DeviceMaximum]
    leak_count: int
    leak_hours_threshold: float
    hourly_rate: Decimal
    leaks: List[str] = field(default_factory=list)
    excluded_records: int = 0

    @property
    def has_uptime_data(self) -> bool:
        return self.paired_devices > 0

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable view of the report."""
        return {
            "total_instances": self.total_instances,
            "daily_creations": {d.isoformat(): n for d, n in self.daily_creations},
            "paired_devices": self.paired_devices,
            "total_uptime_seconds": self.total_uptime.total_seconds(),
            "total_cost": str(self.total_cost),
            "average_uptime_seconds": (
                self.average_uptime.total_seconds() if self.average_uptime is not None else None
            ),
            "max_uptime": _maximum_to_dict(self.max_uptime),
            "max_cost": _maximum_to_dict(self.max_cost),
            "leak_count": self.leak_count,
            "leak_hours_threshold": self.leak_hours_threshold,
            "leaks": list(self.leaks),
            "hourly_rate": str(self.hourly_rate),
            "excluded_records": self.excluded_records,
        }


def _maximum_to_dict(maximum: Optional[DeviceMaximum]) -> Optional[Dict[str, Any]]:
    if maximum is None:
        return None
    return {
        "device_id": maximum.device_id,
        "uptime_seconds": maximum.uptime.total_seconds(),
        "cost": str(maximum.cost),
    }


def calculate_device_cost(uptime: timedelta, hourly_rate: Decimal) -> Decimal:
    """Cost of a device: every started hour is billed in full."""
    hours = uptime.total_seconds() / 3600
    return Decimal(math.ceil(hours)) * hourly_rate


def compute_usage_report(
    records: Mapping[str, LifecycleRecord],
    daily_creations: Mapping[date, int],
    hourly_rate: Union[Decimal, float, str],
    leak_hours_threshold: float,
) -> UsageReport:
    """Compute aggregate usage statistics.

    Maxima are found with a linear scan over device ids in sorted order
    using strict comparisons, so ties go to the smallest id. The uptime
    and cost maxima are tracked independently.

    Args:
        records: Lifecycle records keyed by device id
        daily_creations: Creation counts keyed by calendar date
        hourly_rate: Cost per started hour
        leak_hours_threshold: Uptime in hours above which a device is a leak

    Returns:
        UsageReport

    Raises:
        ValueError: If the rate or threshold is negative
    """
    rate = Decimal(str(hourly_rate))
    if rate < 0:
        raise ValueError("hourly_rate cannot be negative")
    if leak_hours_threshold < 0:
        raise ValueError("leak_hours_threshold cannot be negative")

    total_uptime = timedelta()
    total_cost = Decimal("0")
    paired = 0
    excluded = 0
    leaks: List[str] = []
    max_uptime: Optional[DeviceMaximum] = None
    max_cost: Optional[DeviceMaximum] = None

    for device_id in sorted(records):
        record = records[device_id]
        if not record.is_paired:
            continue
        if record.is_inverted:
            excluded += 1
            continue

        uptime = record.uptime
        cost = calculate_device_cost(uptime, rate)
        current = DeviceMaximum(device_id=device_id, uptime=uptime, cost=cost)

        paired += 1
        total_uptime += uptime
        total_cost += cost

        if max_uptime is None or uptime > max_uptime.uptime:
            max_uptime = current
        if max_cost is None or cost > max_cost.cost:
            max_cost = current

        if uptime.total_seconds() / 3600 > leak_hours_threshold:
            leaks.append(device_id)

    average_uptime = None
    if paired:
        average_uptime = timedelta(seconds=int(total_uptime.total_seconds() // paired))

    return UsageReport(
        total_instances=sum(daily_creations.values()),
        daily_creations=sorted(daily_creations.items()),
        paired_devices=paired,
        total_uptime=total_uptime,
        total_cost=total_cost,
        average_uptime=average_uptime,
        max_uptime=max_uptime,
        max_cost=max_cost,
        leak_count=len(leaks),
        leak_hours_threshold=leak_hours_threshold,
        hourly_rate=rate,
        leaks=leaks,
        excluded_records=excluded,
    )
