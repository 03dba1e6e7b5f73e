"""Tracking of node capacity across zones and topology hint allocation."""

from __future__ import annotations

import logging
import math
import threading
from typing import Mapping, Sequence

from epslice.hints import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    INSUFFICIENT_NODE_INFO,
    INSUFFICIENT_NUMBER_OF_ENDPOINTS,
    MIN_ALLOCATION_EXCEEDS_OVERLOAD_THRESHOLD,
    NO_ALLOCATED_HINTS_FOR_ZONES,
    NO_ZONE_SPECIFIED,
    NODES_READY_IN_ONE_ZONE_ONLY,
    OVERLOAD_THRESHOLD,
    TOPOLOGY_AWARE_HINTS_ENABLED,
    Allocation,
    EventBuilder,
    SliceInfo,
    endpoint_ready,
    format_with_address_type,
    get_giving_and_receiving_zones,
    is_node_ready,
    redistribute_hints,
    remove_hints_from_slices,
    service_overloaded,
)
from epslice.models import (
    LABEL_TOPOLOGY_ZONE,
    AddressType,
    EndpointHints,
    EndpointSlice,
    ForZone,
    Node,
)

logger = logging.getLogger(__name__)

_HINTS_DISABLED_REASON = "TopologyAwareHintsDisabled"
_HINTS_ENABLED_REASON = "TopologyAwareHintsEnabled"

_EXCLUDED_NODE_LABELS = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)


def _disabled_event(message: str) -> EventBuilder:
    return EventBuilder(
        event_type=EVENT_TYPE_WARNING, reason=_HINTS_DISABLED_REASON, message=message
    )


class TopologyCache:
    """Tracks the distribution of nodes and endpoints across zones."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sufficient_node_info = False
        self.cpu_by_zone: dict[str, int] | None = {}
        self.cpu_ratios_by_zone: dict[str, float] | None = {}
        self.endpoints_by_service: dict[str, dict[AddressType, dict[str, int]]] = {}
        self.hints_populated_by_service: set[str] = set()

    def get_overloaded_services(self) -> list[str]:
        """Keys of services that cross the overload threshold in any zone."""
        ratios = self.cpu_ratios_by_zone or {}
        with self._lock:
            return [
                service_key
                for service_key, by_addr_type in self.endpoints_by_service.items()
                if any(service_overloaded(info, ratios) for info in by_addr_type.values())
            ]

    def add_hints(
        self, slice_info: SliceInfo
    ) -> tuple[list[EndpointSlice], list[EndpointSlice], list[EventBuilder]]:
        """Add or update hints; return slices to create, slices to update and events."""
        total_endpoints = slice_info.total_ready_endpoints()
        allocations, allocations_event = self.get_allocations(total_endpoints)
        events: list[EventBuilder] = []
        if allocations_event is not None:
            logger.info(
                "%s, removing hints (key=%s, addressType=%s)",
                allocations_event.message,
                slice_info.service_key,
                slice_info.address_type,
            )
            allocations_event.message = format_with_address_type(
                allocations_event.message, slice_info.address_type
            )
            events.append(allocations_event)
            return self._disable(slice_info, events)

        assert allocations is not None
        allocated_hints_by_zone = slice_info.allocated_hints_by_zone(allocations)
        allocatable_slices = [*slice_info.to_create, *slice_info.to_update]

        # Start by giving every ready endpoint a hint for its own zone.
        for endpoint_slice in allocatable_slices:
            for endpoint in endpoint_slice.endpoints:
                if not endpoint_ready(endpoint):
                    continue
                if not endpoint.zone:
                    logger.info(
                        "Endpoint found without zone specified, removing hints "
                        "(key=%s, addressType=%s)",
                        slice_info.service_key,
                        slice_info.address_type,
                    )
                    events.append(
                        _disabled_event(
                            format_with_address_type(
                                NO_ZONE_SPECIFIED, slice_info.address_type
                            )
                        )
                    )
                    return self._disable(slice_info, events)
                allocated_hints_by_zone[endpoint.zone] = (
                    allocated_hints_by_zone.get(endpoint.zone, 0) + 1
                )
                endpoint.hints = EndpointHints(for_zones=[ForZone(name=endpoint.zone)])

        giving_zones, receiving_zones = get_giving_and_receiving_zones(
            allocations, allocated_hints_by_zone
        )
        redistributions = redistribute_hints(
            allocatable_slices, giving_zones, receiving_zones
        )
        for zone, diff in redistributions.items():
            allocated_hints_by_zone[zone] = allocated_hints_by_zone.get(zone, 0) + diff

        if not allocated_hints_by_zone:
            logger.debug(
                "No hints allocated for zones, removing them (key=%s, addressType=%s)",
                slice_info.service_key,
                slice_info.address_type,
            )
            events.append(
                _disabled_event(
                    format_with_address_type(
                        NO_ALLOCATED_HINTS_FOR_ZONES, slice_info.address_type
                    )
                )
            )
            return self._disable(slice_info, events)

        with self._lock:
            hints_enabled = slice_info.service_key in self.hints_populated_by_service
            self._set_hints_locked(
                slice_info.service_key, slice_info.address_type, allocated_hints_by_zone
            )

        if not hints_enabled:
            logger.info(
                "Topology Aware Hints has been enabled, adding hints. "
                "(key=%s, addressType=%s)",
                slice_info.service_key,
                slice_info.address_type,
            )
            events.append(
                EventBuilder(
                    event_type=EVENT_TYPE_NORMAL,
                    reason=_HINTS_ENABLED_REASON,
                    message=format_with_address_type(
                        TOPOLOGY_AWARE_HINTS_ENABLED, slice_info.address_type
                    ),
                )
            )
        return slice_info.to_create, slice_info.to_update, events

    def _disable(
        self, slice_info: SliceInfo, events: list[EventBuilder]
    ) -> tuple[list[EndpointSlice], list[EndpointSlice], list[EventBuilder]]:
        self.remove_hints(slice_info.service_key, slice_info.address_type)
        to_create, to_update = remove_hints_from_slices(slice_info)
        return to_create, to_update, events

    def set_hints(
        self,
        service_key: str,
        address_type: AddressType,
        allocated_hints_by_zone: dict[str, int],
    ) -> None:
        """Record the hints allocated for a service and address type."""
        with self._lock:
            self._set_hints_locked(service_key, address_type, allocated_hints_by_zone)

    def _set_hints_locked(
        self,
        service_key: str,
        address_type: AddressType,
        allocated_hints_by_zone: dict[str, int],
    ) -> None:
        self.endpoints_by_service.setdefault(service_key, {})[address_type] = (
            allocated_hints_by_zone
        )
        self.hints_populated_by_service.add(service_key)

    def remove_hints(self, service_key: str, address_type: AddressType) -> None:
        """Forget the hints recorded for a service and address type."""
        with self._lock:
            by_addr_type = self.endpoints_by_service.get(service_key)
            if by_addr_type is not None:
                by_addr_type.pop(address_type, None)
                if not by_addr_type:
                    del self.endpoints_by_service[service_key]
            self.hints_populated_by_service.discard(service_key)

    def set_nodes(self, nodes: Sequence[Node]) -> None:
        """Recompute CPU capacity per zone from the given nodes."""
        cpu_by_zone: dict[str, int] = {}
        sufficient_node_info = True
        total_cpu = 0

        for node in nodes:
            if has_excluded_labels(node.labels):
                logger.debug("Ignoring node %s because it has an excluded label", node.name)
                continue
            if not is_node_ready(node):
                logger.debug("Ignoring node %s because it is not ready", node.name)
                continue
            node_cpu = node.allocatable_cpu
            zone = node.labels.get(LABEL_TOPOLOGY_ZONE, "")
            # One node without a zone or CPU disables hints cluster wide.
            if not zone or node_cpu == 0:
                cpu_by_zone = {}
                sufficient_node_info = False
                logger.info("Can't get CPU or zone information for node %s", node.name)
                break
            total_cpu += node_cpu
            cpu_by_zone[zone] = cpu_by_zone.get(zone, 0) + node_cpu

        with self._lock:
            if total_cpu == 0 or not sufficient_node_info or len(cpu_by_zone) < 2:
                logger.debug(
                    "Insufficient node info for topology hints "
                    "(totalZones=%d, totalCPU=%dm, sufficientNodeInfo=%s)",
                    len(cpu_by_zone),
                    total_cpu,
                    sufficient_node_info,
                )
                self.sufficient_node_info = False
                self.cpu_by_zone = None
                self.cpu_ratios_by_zone = None
            else:
                self.sufficient_node_info = True
                self.cpu_by_zone = cpu_by_zone
                self.cpu_ratios_by_zone = {
                    zone: cpu / total_cpu for zone, cpu in cpu_by_zone.items()
                }

    def has_populated_hints(self, service_key: str) -> bool:
        """True if hints are recorded for the service."""
        with self._lock:
            return service_key in self.hints_populated_by_service

    def get_allocations(
        self, num_endpoints: int
    ) -> tuple[dict[str, Allocation] | None, EventBuilder | None]:
        """Per-zone allocations, or None with an event explaining why there are none."""
        with self._lock:
            ratios = self.cpu_ratios_by_zone
            if ratios is None:
                return None, _disabled_event(INSUFFICIENT_NODE_INFO)
            if len(ratios) < 2:
                return None, _disabled_event(NODES_READY_IN_ONE_ZONE_ONLY)
            if len(ratios) > num_endpoints:
                return None, _disabled_event(
                    f"{INSUFFICIENT_NUMBER_OF_ENDPOINTS} "
                    f"({num_endpoints} endpoints, {len(ratios)} zones)"
                )

            remaining = num_endpoints
            min_total = 0
            allocations: dict[str, Allocation] = {}
            for zone, ratio in ratios.items():
                desired = ratio * float(num_endpoints)
                minimum = int(math.ceil(desired * (1 / (1 + OVERLOAD_THRESHOLD))))
                allocations[zone] = Allocation(
                    minimum=minimum, desired=max(desired, float(minimum))
                )
                min_total += minimum
                remaining -= minimum
                if remaining < 0:
                    return None, _disabled_event(
                        f"{MIN_ALLOCATION_EXCEEDS_OVERLOAD_THRESHOLD} "
                        f"({num_endpoints} endpoints, {len(ratios)} zones)"
                    )

            for allocation in allocations.values():
                allocation.maximum = allocation.minimum + num_endpoints - min_total
            return allocations, None


def has_excluded_labels(labels: Mapping[str, str] | None) -> bool:
    """True if a node carries a label that excludes it from capacity figures."""
    if not labels:
        return False
    return any(label in labels for label in _EXCLUDED_NODE_LABELS)