"""Helpers shared by endpoint slice reconciliation: pod/service matching and hashing."""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from epslice.models import (
    POD_READY,
    ConditionStatus,
    Endpoint,
    EndpointPort,
    Pod,
    PodCondition,
    PodPhase,
    Service,
)

logger = logging.getLogger(__name__)


@dataclass
class DeletedFinalStateUnknown:
    """Marker for an object deleted while its final state was not observed."""

    key: str
    obj: Any


def _service_key(service: Service) -> str:
    if service.namespace:
        return f"{service.namespace}/{service.name}"
    return service.name


def _selector_matches(selector: dict[str, str], labels: dict[str, str]) -> bool:
    return all(labels.get(key) == value for key, value in selector.items() if key in labels)\
        and all(key in labels for key in selector)


def get_pod_service_memberships(services: Iterable[Service], pod: Pod) -> set[str]:
    """Keys of services in the pod's namespace whose selector matches the pod."""
    memberships: set[str] = set()
    for service in services:
        if service.namespace != pod.namespace:
            continue
        if service.selector is None:
            # A nil selector matches nothing, not everything.
            continue
        if _selector_matches(service.selector, pod.labels):
            memberships.add(_service_key(service))
    return memberships


def _canonical(obj: Any) -> str:
    if obj is None:
        return "nil"
    if isinstance(obj, bool):
        return "true" if obj else "false"
    if isinstance(obj, Enum):
        return repr(obj.value)
    if isinstance(obj, (int, float, str, bytes)):
        return repr(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        fields = ", ".join(
            f"{f.name}: {_canonical(getattr(obj, f.name))}" for f in dataclasses.fields(obj)
        )
        return f"{type(obj).__name__}{{{fields}}}"
    if isinstance(obj, dict):
        items = sorted((_canonical(k), _canonical(v)) for k, v in obj.items())
        return "map[" + ", ".join(f"{k}: {v}" for k, v in items) + "]"
    if isinstance(obj, (set, frozenset)):
        return "set[" + ", ".join(sorted(_canonical(v) for v in obj)) + "]"
    if isinstance(obj, (list, tuple)):
        return "[" + ", ".join(_canonical(v) for v in obj) + "]"
    return repr(obj)


def deep_hash_object_to_string(obj: Any) -> str:
    """MD5 hex digest of a deterministic rendering of the object's values."""
    return hashlib.md5(_canonical(obj).encode("utf-8")).hexdigest()


def new_port_map_key(endpoint_ports: list[EndpointPort]) -> str:
    """Key identifying a group of ports; sorts the given list into hash order."""
    endpoint_ports.sort(key=deep_hash_object_to_string)
    return deep_hash_object_to_string(endpoint_ports)


def _is_pod_terminal(pod: Pod) -> bool:
    return pod.phase in (PodPhase.FAILED, PodPhase.SUCCEEDED)


def should_pod_be_in_endpoints(pod: Pod, include_terminating: bool) -> bool:
    """True if the pod belongs in endpoint slices; terminating pods only if asked."""
    if _is_pod_terminal(pod):
        return False
    if not pod.pod_ip and not pod.pod_ips:
        return False
    if not include_terminating and pod.deletion_timestamp is not None:
        return False
    return True


def should_set_hostname(pod: Pod, service: Service) -> bool:
    """True if the endpoint for this pod should carry the pod's hostname."""
    return (
        bool(pod.hostname)
        and pod.subdomain == service.name
        and service.namespace == pod.namespace
    )


def pod_endpoints_changed(old_pod: Pod, new_pod: Pod) -> tuple[bool, bool]:
    """Return (pod changed for endpoints, labels or hostname changed)."""
    labels_changed = (
        new_pod.labels != old_pod.labels
        or new_pod.hostname != old_pod.hostname
        or new_pod.subdomain != old_pod.subdomain
    )
    if new_pod.deletion_timestamp != old_pod.deletion_timestamp:
        return True, labels_changed
    if is_pod_ready(old_pod) != is_pod_ready(new_pod):
        return True, labels_changed
    if list(old_pod.pod_ips) != list(new_pod.pod_ips):
        return True, labels_changed
    return False, labels_changed


def get_services_to_update_on_pod_change(
    services: Iterable[Service], old: Pod, cur: Pod
) -> set[str]:
    """Keys of services that may be affected by a change from old to cur."""
    if cur.resource_version == old.resource_version:
        # Periodic resyncs deliver identical versions; nothing changed.
        return set()
    pod_changed, labels_changed = pod_endpoints_changed(old, cur)
    if not pod_changed and not labels_changed:
        return set()
    service_list = list(services)
    current = get_pod_service_memberships(service_list, cur)
    if labels_changed:
        previous = get_pod_service_memberships(service_list, old)
        current = determine_needed_service_updates(previous, current, pod_changed)
    return current


def get_pod_from_delete_action(obj: Any) -> Pod | None:
    """Extract a pod from a delete notification, or None if there is none."""
    if isinstance(obj, Pod):
        return obj
    if not isinstance(obj, DeletedFinalStateUnknown):
        logger.error("couldn't get object from tombstone %r", obj)
        return None
    if not isinstance(obj.obj, Pod):
        logger.error("tombstone contained object that is not a Pod: %r", obj)
        return None
    return obj.obj


def determine_needed_service_updates(
    old_services: set[str], services: set[str], pod_changed: bool
) -> set[str]:
    """Union of both sets if the pod changed, otherwise their symmetric difference."""
    if pod_changed:
        return set(services) | set(old_services)
    return set(services) ^ set(old_services)


def endpoints_equal_beyond_hash(ep1: Endpoint, ep2: Endpoint) -> bool:
    """True if endpoints agree on everything the endpoint hash leaves out."""
    if ep1.node_name != ep2.node_name or ep1.zone != ep2.zone:
        return False
    c1, c2 = ep1.conditions, ep2.conditions
    if (c1.ready, c1.serving, c1.terminating) != (c2.ready, c2.serving, c2.terminating):
        return False
    ref1, ref2 = ep1.target_ref, ep2.target_ref
    if (ref1 is None) != (ref2 is None):
        return False
    if ref1 is not None and ref2 is not None:
        if dataclasses.replace(ref1, resource_version="") != dataclasses.replace(
            ref2, resource_version=""
        ):
            return False
    return True


def get_pod_ready_condition(pod: Pod) -> PodCondition | None:
    """The pod's Ready condition, or None if absent."""
    return next((c for c in pod.conditions if c.type == POD_READY), None)


def is_pod_ready(pod: Pod) -> bool:
    """True if the pod's Ready condition is True."""
    condition = get_pod_ready_condition(pod)
    return condition is not None and condition.status == ConditionStatus.TRUE