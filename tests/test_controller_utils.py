from dataclasses import dataclass, field
from datetime import datetime, timezone

import pytest

from epslice.controller_utils import (
    DeletedFinalStateUnknown,
    deep_hash_object_to_string,
    determine_needed_service_updates,
    endpoints_equal_beyond_hash,
    get_pod_from_delete_action,
    get_pod_ready_condition,
    get_pod_service_memberships,
    get_services_to_update_on_pod_change,
    is_pod_ready,
    new_port_map_key,
    pod_endpoints_changed,
    should_pod_be_in_endpoints,
    should_set_hostname,
)
from epslice.models import (
    POD_READY,
    ConditionStatus,
    Endpoint,
    EndpointConditions,
    EndpointPort,
    ObjectReference,
    Pod,
    PodCondition,
    PodPhase,
    Service,
)


@pytest.mark.parametrize(
    "a,b,xor,union",
    [
        ({"a", "b", "c"}, {"a", "b", "c"}, set(), {"a", "b", "c"}),
        ({"a", "b", "c"}, {"d", "e", "f"}, {"a", "b", "c", "d", "e", "f"},
         {"a", "b", "c", "d", "e", "f"}),
        ({"a", "b", "c"}, set(), {"a", "b", "c"}, {"a", "b", "c"}),
        (set(), {"a", "b", "c"}, {"a", "b", "c"}, {"a", "b", "c"}),
        ({"a", "b", "c"}, {"b", "c", "d"}, {"a", "d"}, {"a", "b", "c", "d"}),
        (set(), set(), set(), set()),
    ],
)
def test_determine_needed_service_updates(a, b, xor, union):
    assert determine_needed_service_updates(a, b, False) == xor
    assert determine_needed_service_updates(a, b, True) == union


NOW = datetime.now(timezone.utc)


@pytest.mark.parametrize(
    "pod,include_terminating,expected",
    [
        (Pod(restart_policy="Never", phase=PodPhase.FAILED, pod_ip="1.2.3.4"), False, False),
        (Pod(restart_policy="Never", phase=PodPhase.SUCCEEDED, pod_ip="1.2.3.4"), False, False),
        (Pod(restart_policy="OnFailure", phase=PodPhase.SUCCEEDED, pod_ip="1.2.3.4"), False, False),
        (Pod(restart_policy="Never", phase=PodPhase.RUNNING, pod_ip="", pod_ips=[]), False, False),
        (Pod(deletion_timestamp=NOW, phase=PodPhase.RUNNING, pod_ip="1.2.3.4"), False, False),
        (Pod(restart_policy="Always", phase=PodPhase.FAILED, pod_ip="1.2.3.4"), False, False),
        (Pod(restart_policy="Never", phase=PodPhase.PENDING, pod_ip="1.2.3.4"), False, True),
        (Pod(restart_policy="OnFailure", phase=PodPhase.UNKNOWN, pod_ip="1.2.3.4"), False, True),
        (Pod(restart_policy="Never", phase=PodPhase.RUNNING, pod_ip="1.2.3.4"), False, True),
        (Pod(restart_policy="Never", phase=PodPhase.RUNNING,
             pod_ips=["1.2.3.4", "1234::5678:0000:0000:9abc:def0"]), False, True),
        (Pod(deletion_timestamp=NOW, phase=PodPhase.RUNNING, pod_ip="1.2.3.4"), True, True),
    ],
)
def test_should_pod_be_in_endpoints(pod, include_terminating, expected):
    assert should_pod_be_in_endpoints(pod, include_terminating) is expected


def _simple_pod(namespace, hostname, subdomain):
    return Pod(namespace=namespace, hostname=hostname, subdomain=subdomain)


@pytest.mark.parametrize(
    "pod,service,expected",
    [
        (_simple_pod("ns", "foo", "svc-name"), Service(namespace="ns", name="svc-name"), True),
        (_simple_pod("ns", "", "svc-name"), Service(namespace="ns", name="svc-name"), False),
        (_simple_pod("ns", "hostname", "subdomain"), Service(namespace="ns", name="name"), False),
        (_simple_pod("ns1", "hostname", "svc-name"), Service(namespace="ns2", name="svc-name"), False),
    ],
)
def test_should_set_hostname(pod, service, expected):
    assert should_set_hostname(pod, service) is expected


def _services():
    return [
        Service(name=f"service-{i}", namespace="test", selector={"app": f"test-{i}"})
        for i in range(3)
    ]


@pytest.mark.parametrize(
    "index,expected",
    [
        (0, {"test/service-0"}),
        (1, {"test/service-1"}),
        (2, {"test/service-2"}),
        (3, set()),
        (4, set()),
    ],
)
def test_get_pod_service_memberships(index, expected):
    pod = Pod(
        namespace="test",
        name=f"test-pod-{index}",
        labels={"app": f"test-{index}", "label": f"label-{index}"},
    )
    assert get_pod_service_memberships(_services(), pod) == expected


def test_service_with_nil_selector_matches_nothing():
    services = [Service(name="svc", namespace="test", selector=None)]
    assert get_pod_service_memberships(services, Pod(namespace="test")) == set()


def test_empty_selector_matches_everything():
    services = [Service(name="svc", namespace="test", selector={})]
    pod = Pod(namespace="test", labels={"a": "b"})
    assert get_pod_service_memberships(services, pod) == {"test/svc"}


def _set_ips(pod, ips):
    pod.pod_ip = ips[0]
    pod.pod_ips = list(ips)


def _mod_no_change(old, new):
    pass


def _mod_node_name(old, new):
    new.node_name = "changed"


def _mod_resource_version(old, new):
    new.resource_version = "changed"


def _mod_add_ipv4(old, new):
    _set_ips(new, ["1.2.3.4"])


def _mod_modify_ipv4(old, new):
    _set_ips(old, ["1.2.3.4"])
    _set_ips(new, ["2.3.4.5"])


def _mod_add_ipv6(old, new):
    _set_ips(new, ["fd00:10:96::1"])


def _mod_modify_ipv6(old, new):
    _set_ips(old, ["fd00:10:96::1"])
    _set_ips(new, ["fd00:10:96::2"])


def _mod_add_secondary(old, new):
    _set_ips(old, ["1.2.3.4"])
    _set_ips(new, ["1.2.3.4", "fd00:10:96::1"])


def _mod_modify_secondary(old, new):
    _set_ips(old, ["1.2.3.4", "fd00:10:96::1"])
    _set_ips(new, ["1.2.3.4", "fd00:10:96::2"])


def _mod_remove_secondary(old, new):
    _set_ips(old, ["1.2.3.4", "fd00:10:96::1"])
    _set_ips(new, ["1.2.3.4"])


def _mod_readiness(old, new):
    new.conditions[0].status = ConditionStatus.TRUE


def _mod_deletion(old, new):
    new.deletion_timestamp = datetime.now(timezone.utc)


def _mod_add_label(old, new):
    new.labels["label"] = "new"


def _mod_modify_label(old, new):
    old.labels["label"] = "old"
    new.labels["label"] = "new"


def _mod_remove_label(old, new):
    old.labels["label"] = "old"


@pytest.mark.parametrize(
    "modifier,pod_changed,labels_changed",
    [
        (_mod_no_change, False, False),
        (_mod_node_name, False, False),
        (_mod_resource_version, False, False),
        (_mod_add_ipv4, True, False),
        (_mod_modify_ipv4, True, False),
        (_mod_add_ipv6, True, False),
        (_mod_modify_ipv6, True, False),
        (_mod_add_secondary, True, False),
        (_mod_modify_secondary, True, False),
        (_mod_remove_secondary, True, False),
        (_mod_readiness, True, False),
        (_mod_deletion, True, False),
        (_mod_add_label, False, True),
        (_mod_modify_label, False, True),
        (_mod_remove_label, False, True),
    ],
)
def test_pod_endpoints_changed(modifier, pod_changed, labels_changed):
    orig = Pod(
        namespace="test",
        name="pod",
        labels={"foo": "bar"},
        conditions=[PodCondition(type=POD_READY, status=ConditionStatus.FALSE)],
    )
    old = orig.deep_copy()
    new = old.deep_copy()
    modifier(old, new)
    assert pod_endpoints_changed(old, new) == (pod_changed, labels_changed)


def _endpoint(ready=True, serving=None, terminating=None, pod="pod0", rv="",
              zone=None, node="node-1"):
    return Endpoint(
        conditions=EndpointConditions(ready=ready, serving=serving, terminating=terminating),
        addresses=["10.0.0.1"],
        target_ref=ObjectReference(kind="Pod", namespace="default", name=pod,
                                   resource_version=rv),
        zone=zone,
        node_name=node,
    )


@pytest.mark.parametrize(
    "ep1,ep2,expected",
    [
        (_endpoint(), _endpoint(), True),
        (_endpoint(node="node-1"), _endpoint(node="node-2"), False),
        (_endpoint(zone="zone-1", node=None), _endpoint(zone="zone-2", node=None), False),
        (_endpoint(ready=True, zone="zone-1"), _endpoint(ready=False, zone="zone-1"), False),
        (_endpoint(zone="zone-1"),
         _endpoint(serving=True, terminating=False, zone="zone-1"), False),
        (_endpoint(serving=False, terminating=False, zone="zone-1"),
         _endpoint(serving=True, terminating=False, zone="zone-1"), False),
        (_endpoint(pod="pod0", zone="zone-1"), _endpoint(pod="pod1", zone="zone-1"), False),
        (_endpoint(rv="1", zone="zone-1"), _endpoint(rv="2", zone="zone-1"), True),
        (_endpoint(rv="1", zone="zone-1"), _endpoint(rv="", zone="zone-1"), True),
    ],
)
def test_endpoints_equal_beyond_hash(ep1, ep2, expected):
    assert endpoints_equal_beyond_hash(ep1, ep2) is expected


@dataclass(frozen=True)
class _A:
    x: int
    y: str


@dataclass
class _B:
    x: list = field(default_factory=list)
    y: dict = field(default_factory=dict)


@pytest.mark.parametrize(
    "factory",
    [
        lambda: 8675309,
        lambda: "Jenny, I got your number",
        lambda: ["eight", "six", "seven"],
        lambda: (5, 3, 0, 9),
        lambda: {8: "8", 6: "6", 7: "7"},
        lambda: {"5": 5, "3": 3, "0": 0, "9": 9},
        lambda: _A(867, "5309"),
        lambda: _B([8, 6, 7], {"5": True, "3": True, "0": True, "9": True}),
        lambda: {_A(8675309, "Jenny"): True, _A(9765683, "!Jenny"): False},
    ],
)
def test_deep_hash_object_is_deterministic(factory):
    first = deep_hash_object_to_string(factory())
    for _ in range(100):
        assert deep_hash_object_to_string(factory()) == first


@dataclass
class _Wheel:
    radius: int


@dataclass
class _Unicycle:
    primary_wheel: _Wheel
    licence_plate_id: str
    tags: dict


def test_deep_hash_follows_nested_values():
    uni1 = _Unicycle(_Wheel(17), "blah", {"color": "blue", "name": "john"})
    uni2 = _Unicycle(_Wheel(22), "blah", {"color": "blue", "name": "john"})
    uni3 = _Unicycle(_Wheel(17), "blah", {"name": "john", "color": "blue"})
    hash1 = deep_hash_object_to_string(uni1)
    assert hash1 == deep_hash_object_to_string(uni1)
    assert hash1 != deep_hash_object_to_string(uni2)
    assert hash1 == deep_hash_object_to_string(uni3)


def test_deep_hash_is_md5_hex():
    digest = deep_hash_object_to_string("anything")
    assert len(digest) == 32
    assert set(digest) <= set("0123456789abcdef")


def test_new_port_map_key_ignores_order():
    http = EndpointPort(name="http", port=80, protocol="TCP")
    https = EndpointPort(name="https", port=443, protocol="TCP")
    assert new_port_map_key([http, https]) == new_port_map_key([https, http])
    assert new_port_map_key([http]) != new_port_map_key([https])


def test_pod_ready_helpers():
    pod = Pod(conditions=[PodCondition(type=POD_READY, status=ConditionStatus.TRUE)])
    assert is_pod_ready(pod) is True
    assert get_pod_ready_condition(pod) is pod.conditions[0]
    assert get_pod_ready_condition(Pod()) is None
    assert is_pod_ready(Pod()) is False


def test_get_pod_from_delete_action():
    pod = Pod(name="p")
    assert get_pod_from_delete_action(pod) is pod
    assert get_pod_from_delete_action(DeletedFinalStateUnknown("ns/p", pod)) is pod
    assert get_pod_from_delete_action(DeletedFinalStateUnknown("ns/s", Service())) is None
    assert get_pod_from_delete_action("not a pod") is None


def test_services_to_update_same_resource_version():
    old = Pod(namespace="test", resource_version="1", labels={"app": "test-0"})
    cur = Pod(namespace="test", resource_version="1", labels={"app": "test-1"})
    assert get_services_to_update_on_pod_change(_services(), old, cur) == set()


def test_services_to_update_on_label_change():
    old = Pod(namespace="test", resource_version="1", labels={"app": "test-0"})
    cur = Pod(namespace="test", resource_version="2", labels={"app": "test-1"})
    assert get_services_to_update_on_pod_change(_services(), old, cur) == {
        "test/service-0",
        "test/service-1",
    }


def test_services_to_update_on_pod_change_only():
    old = Pod(namespace="test", resource_version="1", labels={"app": "test-2"})
    cur = old.deep_copy()
    cur.resource_version = "2"
    cur.pod_ips = ["1.2.3.4"]
    assert get_services_to_update_on_pod_change(_services(), old, cur) == {"test/service-2"}