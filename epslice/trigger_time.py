"""Computation of the last-change trigger time for a service's endpoints."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from epslice.controller_utils import get_pod_ready_condition
from epslice.models import Pod, Service


@dataclass(frozen=True)
class ServiceKey:
    """Namespace and name identifying a service."""

    namespace: str
    name: str


@dataclass
class ServiceState:
    """Trigger times observed for a service at the most recent computation."""

    last_service_trigger_time: datetime | None = None
    last_pod_trigger_times: dict[str, datetime] = field(default_factory=dict)


def _pod_trigger_time(pod: Pod) -> datetime | None:
    condition = get_pod_ready_condition(pod)
    return condition.last_transition_time if condition is not None else None


def _is_after(value: datetime | None, previous: datetime | None) -> bool:
    if value is None:
        return False
    return previous is None or value > previous


def _earliest(current: datetime | None, value: datetime) -> datetime:
    if current is None or value < current:
        return value
    return current


class TriggerTimeTracker:
    """Derives the time of the change that caused an endpoints update.

    The result may be wrong if one object changes several times between
    two computations for the same service.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.service_states: dict[ServiceKey, ServiceState] = {}

    def compute_endpoint_last_change_trigger_time(
        self, namespace: str, service: Service, pods: Iterable[Pod]
    ) -> datetime | None:
        """Update the service's state and return its trigger time, or None."""
        key = ServiceKey(namespace=namespace, name=service.name)
        with self._lock:
            previous = self.service_states.get(key)
        was_known = previous is not None
        state = previous if previous is not None else ServiceState()

        min_changed: datetime | None = None
        pod_trigger_times: dict[str, datetime] = {}
        for pod in pods:
            trigger = _pod_trigger_time(pod)
            if trigger is None:
                continue
            pod_trigger_times[pod.name] = trigger
            if _is_after(trigger, state.last_pod_trigger_times.get(pod.name)):
                min_changed = _earliest(min_changed, trigger)

        service_trigger = service.creation_timestamp
        if _is_after(service_trigger, state.last_service_trigger_time):
            assert service_trigger is not None
            min_changed = _earliest(min_changed, service_trigger)

        state.last_pod_trigger_times = pod_trigger_times
        state.last_service_trigger_time = service_trigger
        with self._lock:
            self.service_states[key] = state

        if not was_known:
            # A new service: its creation is the trigger.
            return service.creation_timestamp
        return min_changed

    def delete_service(self, namespace: str, name: str) -> None:
        """Forget the state stored for a service."""
        with self._lock:
            self.service_states.pop(ServiceKey(namespace=namespace, name=name), None)