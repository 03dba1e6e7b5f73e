# epslice

Bookkeeping for EndpointSlice controllers. It needs nothing outside the
standard library.

## What is in the package

- `epslice.models`: plain dataclasses and enums that the other modules work
  on. These are `Endpoint`, `EndpointConditions`, `EndpointHints`, `ForZone`,
  `EndpointPort`, `EndpointSlice`, `ObjectReference`, `Pod`, `PodCondition`,
  `Service`, `Node`, `NodeCondition`, `AddressType`, `ConditionStatus` and
  `PodPhase`.
  - A node's allocatable CPU is a whole number of millicores
    (`Node.allocatable_cpu`).
  - `parse_cpu_quantity("1500m")` turns a CPU quantity string into
    millicores, rounding up.
  - `EndpointSlice.service_name()` reads the `kubernetes.io/service-name`
    label.
- `epslice.topology.TopologyCache`: builds topology-aware hints.
  - `set_nodes(nodes)` records the allocatable CPU of ready nodes in each
    zone. Control-plane and master nodes are left out.
  - `add_hints(slice_info)` assigns zone hints to the endpoints of a
    `SliceInfo`. No zone is pushed past the overload threshold of 20%. The
    call returns the slices to create, the slices to update, and a list of
    `EventBuilder` events to publish.
  - Other methods: `get_allocations`, `set_hints`, `remove_hints`,
    `has_populated_hints` and `get_overloaded_services`.
- `epslice.hints`: `SliceInfo`, `EventBuilder`, `Allocation` and helper
  functions: `remove_hints_from_slices`, `get_giving_and_receiving_zones`,
  `redistribute_hints`, `get_hints_by_zone`, `service_overloaded`,
  `endpoint_ready` and others.
- `epslice.slice_tracker.EndpointSliceTracker`: remembers the generation
  written for each slice. It also tells you whether a slice should be synced
  (`should_sync`), whether the slices you have are stale (`stale_slices`),
  and whether a deletion was expected (`expect_deletion`,
  `handle_deletion`).
- `epslice.trigger_time.TriggerTimeTracker`: works out the time to publish
  as the endpoints' last-change trigger time.
  - `compute_endpoint_last_change_trigger_time(namespace, service, pods)`
    returns the service's creation time the first time a service is seen.
  - After that it returns the earliest changed trigger time, or `None` when
    nothing has changed.
- `epslice.controller_utils`: helpers for pods and services.
  - `get_pod_service_memberships`, `get_services_to_update_on_pod_change`,
    `should_pod_be_in_endpoints`, `should_set_hostname`,
    `pod_endpoints_changed`, `endpoints_equal_beyond_hash`,
    `new_port_map_key`, `deep_hash_object_to_string` and
    `get_pod_from_delete_action`.
  - `get_pod_from_delete_action` accepts a `Pod` or a
    `DeletedFinalStateUnknown` marker.
- `epslice.endpoint_set.EndpointSet`: a set of endpoints keyed by their
  addresses, hostname and target reference.

## Example

```python
from epslice.models import (
    AddressType, ConditionStatus, Endpoint, EndpointConditions,
    EndpointSlice, Node, NodeCondition, parse_cpu_quantity,
)
from epslice.hints import SliceInfo
from epslice.topology import TopologyCache

ready = [NodeCondition(type="Ready", status=ConditionStatus.TRUE)]
cache = TopologyCache()
cache.set_nodes([
    Node(labels={"topology.kubernetes.io/zone": "zone-a"},
         allocatable_cpu=parse_cpu_quantity("1000m"), conditions=ready),
    Node(labels={"topology.kubernetes.io/zone": "zone-b"},
         allocatable_cpu=parse_cpu_quantity("1000m"), conditions=ready),
])

info = SliceInfo(
    service_key="ns/svc",
    address_type=AddressType.IPV4,
    to_create=[EndpointSlice(endpoints=[
        Endpoint(addresses=["10.1.2.3"], zone="zone-a",
                 conditions=EndpointConditions(ready=True)),
        Endpoint(addresses=["10.1.2.4"], zone="zone-b",
                 conditions=EndpointConditions(ready=True)),
    ])],
)
to_create, to_update, events = cache.add_hints(info)
for event in events:
    print(event.event_type, event.reason, event.message)
# Normal TopologyAwareHintsEnabled Topology Aware Hints has been enabled, addressType: IPv4
```

## What it does not do

This is a library of bookkeeping pieces, not a running controller.

- It has no command.
- It does not talk to a cluster API, and it does not watch or list objects.
- It does not publish events or write endpoint slices.

The caller supplies the nodes, pods, services and slices. For example,
`get_pod_service_memberships` takes an iterable of `Service` objects. The
caller also acts on what comes back: slices to create or update, and
`EventBuilder` events.

## Running the tests

```
pip install ".[test]"
pytest
```