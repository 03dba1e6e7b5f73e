"""Tracking of expected endpoint slice generations per service."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

from epslice.models import EndpointSlice, Service

DELETION_EXPECTED = -1


@dataclass(frozen=True)
class NamespacedName:
    """Namespace and name identifying a service."""

    namespace: str
    name: str


def _service_nn(endpoint_slice: EndpointSlice) -> NamespacedName:
    return NamespacedName(
        namespace=endpoint_slice.namespace, name=endpoint_slice.service_name()
    )


class EndpointSliceTracker:
    """Remembers the generation last written for each endpoint slice.

    A generation of DELETION_EXPECTED marks a slice the controller expects
    to see deleted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.generations_by_service: dict[NamespacedName, dict[str, int]] = {}

    def has(self, endpoint_slice: EndpointSlice) -> bool:
        """True if a generation is tracked for the slice."""
        with self._lock:
            generations = self.generations_for_slice(endpoint_slice)
            return generations is not None and endpoint_slice.uid in generations

    def should_sync(self, endpoint_slice: EndpointSlice) -> bool:
        """True if the slice is untracked or newer than the tracked generation."""
        with self._lock:
            generations = self.generations_for_slice(endpoint_slice)
            if generations is None or endpoint_slice.uid not in generations:
                return True
            return endpoint_slice.generation > generations[endpoint_slice.uid]

    def stale_slices(
        self, service: Service, endpoint_slices: Iterable[EndpointSlice]
    ) -> bool:
        """True if the given slices lag behind what the tracker expects.

        That is the case when a slice is older than the tracked one, when a
        slice is expected to be deleted, or when a tracked slice is missing.
        """
        with self._lock:
            generations = self.generations_by_service.get(
                NamespacedName(namespace=service.namespace, name=service.name)
            )
            if generations is None:
                return False
            provided: set[str] = set()
            for endpoint_slice in endpoint_slices:
                provided.add(endpoint_slice.uid)
                tracked = generations.get(endpoint_slice.uid)
                if tracked is not None and (
                    tracked == DELETION_EXPECTED or tracked > endpoint_slice.generation
                ):
                    return True
            return any(
                generation != DELETION_EXPECTED and uid not in provided
                for uid, generation in generations.items()
            )

    def update(self, endpoint_slice: EndpointSlice) -> None:
        """Record the slice's current generation."""
        with self._lock:
            generations = self.generations_by_service.setdefault(
                _service_nn(endpoint_slice), {}
            )
            generations[endpoint_slice.uid] = endpoint_slice.generation

    def delete_service(self, namespace: str, name: str) -> None:
        """Forget all generations tracked for a service."""
        with self._lock:
            self.generations_by_service.pop(
                NamespacedName(namespace=namespace, name=name), None
            )

    def expect_deletion(self, endpoint_slice: EndpointSlice) -> None:
        """Mark the slice as expected to be deleted."""
        with self._lock:
            generations = self.generations_by_service.setdefault(
                _service_nn(endpoint_slice), {}
            )
            generations[endpoint_slice.uid] = DELETION_EXPECTED

    def handle_deletion(self, endpoint_slice: EndpointSlice) -> bool:
        """Forget the slice; True if its deletion was expected or it was untracked."""
        with self._lock:
            generations = self.generations_for_slice(endpoint_slice)
            if generations is not None and endpoint_slice.uid in generations:
                tracked = generations.pop(endpoint_slice.uid)
                if tracked != DELETION_EXPECTED:
                    return False
            return True

    def generations_for_slice(
        self, endpoint_slice: EndpointSlice
    ) -> dict[str, int] | None:
        """Generations of the slice's service, or None; caller holds the lock."""
        return self.generations_by_service.get(_service_nn(endpoint_slice))