"""A set of endpoints keyed by their identifying addresses and target."""

from __future__ import annotations

from typing import Iterator

from epslice.controller_utils import deep_hash_object_to_string
from epslice.models import Endpoint


def hash_endpoint(endpoint: Endpoint) -> str:
    """Hash an endpoint by addresses, hostname and target; sorts its addresses."""
    endpoint.addresses.sort()
    key = {
        "addresses": list(endpoint.addresses),
        "hostname": endpoint.hostname or "",
        "namespace": endpoint.target_ref.namespace if endpoint.target_ref else "",
        "name": endpoint.target_ref.name if endpoint.target_ref else "",
    }
    return deep_hash_object_to_string(key)


class EndpointSet:
    """Endpoints indexed by identity, so attribute changes update in place."""

    def __init__(self, *args: Endpoint) -> None:
        self._items: dict[str, Endpoint] = {}
        self.insert(*args)

    def insert(self, *args: Endpoint) -> EndpointSet:
        """Add endpoints, replacing any with the same identity."""
        for endpoint in args:
            self._items[hash_endpoint(endpoint)] = endpoint
        return self

    def delete(self, *args: Endpoint) -> EndpointSet:
        """Remove endpoints with the same identity as those given."""
        for endpoint in args:
            self._items.pop(hash_endpoint(endpoint), None)
        return self

    def __contains__(self, item: object) -> bool:
        return isinstance(item, Endpoint) and hash_endpoint(item) in self._items

    def get(self, item: Endpoint) -> Endpoint | None:
        """The stored endpoint with the same identity, or None."""
        return self._items.get(hash_endpoint(item))

    def unsorted_list(self) -> list[Endpoint]:
        """All endpoints in no particular order."""
        return list(self._items.values())

    def pop_any(self) -> Endpoint:
        """Remove and return some endpoint; KeyError if the set is empty."""
        if not self._items:
            raise KeyError("pop from an empty EndpointSet")
        key = next(iter(self._items))
        return self._items.pop(key)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(list(self._items.values()))