"""Topology hint bookkeeping for endpoint slices."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable

from epslice.models import (
    NODE_READY,
    AddressType,
    ConditionStatus,
    Endpoint,
    EndpointHints,
    EndpointSlice,
    ForZone,
    Node,
)

logger = logging.getLogger(__name__)

OVERLOAD_THRESHOLD = 0.2

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

NO_ZONE_SPECIFIED = "One or more endpoints do not have a zone specified"
NO_ALLOCATED_HINTS_FOR_ZONES = "No hints allocated for zones"
TOPOLOGY_AWARE_HINTS_ENABLED = "Topology Aware Hints has been enabled"
TOPOLOGY_AWARE_HINTS_DISABLED = "Topology Aware Hints has been disabled"
INSUFFICIENT_NODE_INFO = (
    "Insufficient Node information: allocatable CPU or zone not specified on one or more nodes"
)
NODES_READY_IN_ONE_ZONE_ONLY = "Nodes only ready in one zone"
INSUFFICIENT_NUMBER_OF_ENDPOINTS = "Insufficient number of endpoints"
MIN_ALLOCATION_EXCEEDS_OVERLOAD_THRESHOLD = (
    "Unable to allocate minimum required endpoints to each zone without "
    "exceeding overload threshold"
)


@dataclass
class EventBuilder:
    """An event to be published by the caller."""

    event_type: str
    reason: str
    message: str


@dataclass
class Allocation:
    """Number of endpoints that should be allocated to a zone."""

    minimum: int = 0
    maximum: int = 0
    desired: float = 0.0


@dataclass
class SliceInfo:
    """Endpoint slices of one service and address type under reconciliation."""

    service_key: str = ""
    address_type: AddressType = AddressType.IPV4
    to_create: list[EndpointSlice] = field(default_factory=list)
    to_update: list[EndpointSlice] = field(default_factory=list)
    unchanged: list[EndpointSlice] = field(default_factory=list)

    def total_ready_endpoints(self) -> int:
        """Count ready endpoints across all slices."""
        return sum(
            num_ready_endpoints(s.endpoints)
            for s in (*self.to_create, *self.to_update, *self.unchanged)
        )

    def allocated_hints_by_zone(self, allocations: dict[str, Allocation]) -> dict[str, int]:
        """Sum hints held by unchanged slices, moving invalid ones to to_update."""
        allocated: dict[str, int] = {}
        still_unchanged = []
        for endpoint_slice in self.unchanged:
            hints_by_zone = get_hints_by_zone(endpoint_slice, allocated, allocations)
            if hints_by_zone is None:
                self.to_update.append(endpoint_slice.deep_copy())
                continue
            still_unchanged.append(endpoint_slice)
            for zone, num_hints in hints_by_zone.items():
                allocated[zone] = allocated.get(zone, 0) + num_hints
        self.unchanged = still_unchanged
        return allocated


def remove_hints_from_slices(
    slice_info: SliceInfo,
) -> tuple[list[EndpointSlice], list[EndpointSlice]]:
    """Strip hints from every slice; unchanged slices with hints move to to_update."""
    for endpoint_slice in (*slice_info.to_create, *slice_info.to_update):
        for endpoint in endpoint_slice.endpoints:
            endpoint.hints = None

    still_unchanged = []
    for endpoint_slice in slice_info.unchanged:
        if any(ep.hints is not None for ep in endpoint_slice.endpoints):
            # Unchanged slices may be shared with a cache; never modify them in place.
            updated = endpoint_slice.deep_copy()
            for endpoint in updated.endpoints:
                endpoint.hints = None
            slice_info.to_update.append(updated)
        else:
            still_unchanged.append(endpoint_slice)
    slice_info.unchanged = still_unchanged
    return slice_info.to_create, slice_info.to_update


def format_with_address_type(message: str, address_type: AddressType | str) -> str:
    """Append the address type to a message."""
    kind = address_type.value if isinstance(address_type, AddressType) else address_type
    return f"{message}, addressType: {kind}"


def redistribute_hints(
    slices: Iterable[EndpointSlice],
    giving_zones: dict[str, int],
    receiving_zones: dict[str, int],
) -> dict[str, int]:
    """Move hints from giving zones to receiving zones; return the change per zone."""
    redistributions: dict[str, int] = {}
    for endpoint_slice in slices:
        for endpoint in endpoint_slice.endpoints:
            if not endpoint_ready(endpoint):
                continue
            if not giving_zones or not receiving_zones:
                return redistributions
            if not endpoint.zone:
                logger.info("Endpoint found without zone specified")
                continue

            giving_zone = endpoint.zone
            num_to_give = giving_zones.get(giving_zone, 0)
            if num_to_give <= 0:
                continue
            receiving_zone = next(
                (zone for zone, n in receiving_zones.items() if n > 0), None
            )
            if receiving_zone is None:
                continue
            endpoint.hints = EndpointHints(for_zones=[ForZone(name=receiving_zone)])
            if num_to_give == 1:
                del giving_zones[giving_zone]
            else:
                giving_zones[giving_zone] -= 1
            if receiving_zones[receiving_zone] == 1:
                del receiving_zones[receiving_zone]
            else:
                receiving_zones[receiving_zone] -= 1
            redistributions[receiving_zone] = redistributions.get(receiving_zone, 0) + 1
            redistributions[giving_zone] = redistributions.get(giving_zone, 0) - 1
    return redistributions


def get_giving_and_receiving_zones(
    allocations: dict[str, Allocation], allocated_hints_by_zone: dict[str, int]
) -> tuple[dict[str, int], dict[str, int]]:
    """Work out how many endpoints each zone should give away or receive."""
    giving_desired: dict[str, float] = {}
    receiving_desired: dict[str, float] = {}
    for zone, allocation in allocations.items():
        allocated = float(allocated_hints_by_zone.get(zone, 0))
        target = allocation.desired
        if allocated > target:
            giving_desired[zone] = allocated - target
        elif allocated < target:
            receiving_desired[zone] = target - allocated

    giving: dict[str, int] = {}
    receiving: dict[str, int] = {}
    while True:
        giving_zone, num_to_give = get_most(giving_desired)
        receiving_zone, num_to_receive = get_most(receiving_desired)
        if (
            not giving_zone
            or not receiving_zone
            or (num_to_give < 1.0 and num_to_receive < 1.0)
            or num_to_give < 0.5
            or num_to_receive < 0.5
        ):
            break
        giving[giving_zone] = giving.get(giving_zone, 0) + 1
        giving_desired[giving_zone] -= 1
        receiving[receiving_zone] = receiving.get(receiving_zone, 0) + 1
        receiving_desired[receiving_zone] -= 1
    return giving, receiving


def get_most(zones: dict[str, float]) -> tuple[str, float]:
    """Return the zone with the greatest positive value, or ("", 0.0)."""
    best_zone, best = "", 0.0
    for zone, num in zones.items():
        if num > best:
            best_zone, best = zone, num
    return best_zone, best


def get_hints_by_zone(
    endpoint_slice: EndpointSlice,
    allocated_hints_by_zone: dict[str, int],
    allocations: dict[str, Allocation],
) -> dict[str, int] | None:
    """Count hints per zone in a slice, or None if the slice needs updating."""
    hints_by_zone: dict[str, int] = {}
    for endpoint in endpoint_slice.endpoints:
        if not endpoint_ready(endpoint):
            continue
        if endpoint.hints is None or not endpoint.hints.for_zones:
            return None
        for for_zone in endpoint.hints.for_zones:
            if for_zone.name not in allocations:
                return None
            hints_by_zone[for_zone.name] = hints_by_zone.get(for_zone.name, 0) + 1

    for zone, num_hints in hints_by_zone.items():
        allocation = allocations.get(zone)
        already = allocated_hints_by_zone.get(zone, 0)
        if allocation is None or num_hints + already > allocation.maximum:
            return None
    return hints_by_zone


def service_overloaded(zone_info: dict[str, int], zone_ratios: dict[str, float]) -> bool:
    """True if any zone holds too few endpoints for its share of capacity."""
    if not zone_info:
        return False
    if not zone_ratios:
        return True
    total = float(sum(zone_info.values()))
    for zone, ratio in zone_ratios.items():
        if zone not in zone_info:
            return True
        minimum = math.ceil(total * ratio * (1 / (1 + OVERLOAD_THRESHOLD)))
        if zone_info[zone] < minimum:
            return True
    return False


def is_node_ready(node: Node) -> bool:
    """True if the node's first Ready condition is True."""
    for condition in node.conditions:
        if condition.type == NODE_READY:
            return condition.status == ConditionStatus.TRUE
    return False


def num_ready_endpoints(endpoints: Iterable[Endpoint]) -> int:
    """Count endpoints whose Ready condition is true."""
    return sum(1 for ep in endpoints if endpoint_ready(ep))


def endpoint_ready(endpoint: Endpoint) -> bool:
    """True if the endpoint's Ready condition is set and true."""
    return endpoint.conditions.ready is True