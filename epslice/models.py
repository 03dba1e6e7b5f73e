"""Plain data types for endpoints, endpoint slices, pods, services and nodes."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from enum import Enum

LABEL_TOPOLOGY_ZONE = "topology.kubernetes.io/zone"
LABEL_SERVICE_NAME = "kubernetes.io/service-name"
NODE_READY = "Ready"
POD_READY = "Ready"


class _StrEnum(str, Enum):
    def __str__(self) -> str:
        return self.value


class AddressType(_StrEnum):
    """Address family carried by an endpoint slice."""

    IPV4 = "IPv4"
    IPV6 = "IPv6"
    FQDN = "FQDN"


class ConditionStatus(_StrEnum):
    """Status of a pod or node condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class PodPhase(_StrEnum):
    """Lifecycle phase of a pod."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


@dataclass
class ForZone:
    """A zone an endpoint should be consumed from."""

    name: str


@dataclass
class EndpointHints:
    """Topology hints attached to an endpoint."""

    for_zones: list[ForZone] = field(default_factory=list)


@dataclass
class EndpointConditions:
    """Readiness state of an endpoint; None means unknown."""

    ready: bool | None = None
    serving: bool | None = None
    terminating: bool | None = None


@dataclass
class ObjectReference:
    """Reference to the object backing an endpoint."""

    kind: str = ""
    namespace: str = ""
    name: str = ""
    uid: str = ""
    api_version: str = ""
    resource_version: str = ""
    field_path: str = ""


@dataclass
class Endpoint:
    """A single network endpoint in a slice."""

    addresses: list[str] = field(default_factory=list)
    conditions: EndpointConditions = field(default_factory=EndpointConditions)
    hostname: str | None = None
    target_ref: ObjectReference | None = None
    node_name: str | None = None
    zone: str | None = None
    hints: EndpointHints | None = None


@dataclass
class EndpointPort:
    """A port exposed by the endpoints of a slice."""

    name: str | None = None
    port: int | None = None
    protocol: str | None = None
    app_protocol: str | None = None


@dataclass
class EndpointSlice:
    """A group of endpoints belonging to one service."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    generation: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    address_type: AddressType = AddressType.IPV4
    endpoints: list[Endpoint] = field(default_factory=list)
    ports: list[EndpointPort] = field(default_factory=list)
    deletion_timestamp: datetime | None = None

    def deep_copy(self) -> EndpointSlice:
        """Return an independent copy of this slice."""
        return copy.deepcopy(self)

    def service_name(self) -> str:
        """Name of the service this slice belongs to, or an empty string."""
        return self.labels.get(LABEL_SERVICE_NAME, "")


@dataclass
class PodCondition:
    """A condition reported in a pod's status."""

    type: str
    status: ConditionStatus
    last_transition_time: datetime | None = None


@dataclass
class Pod:
    """The parts of a pod that endpoint tracking looks at."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    deletion_timestamp: datetime | None = None
    hostname: str = ""
    subdomain: str = ""
    node_name: str = ""
    restart_policy: str = ""
    phase: PodPhase | None = None
    pod_ip: str = ""
    pod_ips: list[str] = field(default_factory=list)
    conditions: list[PodCondition] = field(default_factory=list)

    def deep_copy(self) -> Pod:
        """Return an independent copy of this pod."""
        return copy.deepcopy(self)


@dataclass
class Service:
    """The parts of a service that endpoint tracking looks at."""

    name: str = ""
    namespace: str = ""
    selector: dict[str, str] | None = None
    creation_timestamp: datetime | None = None


@dataclass
class NodeCondition:
    """A condition reported in a node's status."""

    type: str
    status: ConditionStatus


@dataclass
class Node:
    """A cluster node; allocatable CPU is held in millicores."""

    name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    allocatable_cpu: int = 0
    conditions: list[NodeCondition] = field(default_factory=list)


_QUANTITY_RE = re.compile(
    r"^([+-]?(?:\d+\.?\d*|\.\d+))"
    r"(?:(Ki|Mi|Gi|Ti|Pi|Ei|n|u|m|k|M|G|T|P|E)|[eE]([+-]?\d+))?$"
)

_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
    "Ki": Decimal(2**10),
    "Mi": Decimal(2**20),
    "Gi": Decimal(2**30),
    "Ti": Decimal(2**40),
    "Pi": Decimal(2**50),
    "Ei": Decimal(2**60),
}


def parse_cpu_quantity(value: str | int | float) -> int:
    """Parse a CPU quantity such as "1500m" or "2" into millicores, rounding up."""
    if isinstance(value, bool):
        raise ValueError(f"invalid quantity: {value!r}")
    if isinstance(value, (int, float)):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValueError(f"invalid quantity: {value!r}")
    match = _QUANTITY_RE.match(text)
    if match is None:
        raise ValueError(f"invalid quantity: {value!r}")
    number, suffix, exponent = match.groups()
    try:
        amount = Decimal(number)
    except InvalidOperation as exc:
        raise ValueError(f"invalid quantity: {value!r}") from exc
    if suffix:
        amount *= _SUFFIXES[suffix]
    elif exponent:
        amount = amount.scaleb(int(exponent))
    return int((amount * 1000).to_integral_value(rounding=ROUND_CEILING))