"""Internal views of Kubernetes services and endpoints used to program IPVS."""

from __future__ import annotations

import ipaddress
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .ipvs import (
    DESTINATION_HASHING,
    LEAST_CONNECTION,
    MAGLEV_HASHING,
    ROUND_ROBIN,
    SOURCE_HASHING,
    Address,
    SchedFlags,
)

SVC_DSR_ANNOTATION = "kube-router.io/service.dsr"
SVC_SCHEDULER_ANNOTATION = "kube-router.io/service.scheduler"
SVC_HAIRPIN_ANNOTATION = "kube-router.io/service.hairpin"
SVC_HAIRPIN_EXTERNAL_IPS_ANNOTATION = "kube-router.io/service.hairpin.externalips"
SVC_LOCAL_ANNOTATION = "kube-router.io/service.local"
SVC_SKIP_LB_IPS_ANNOTATION = "kube-router.io/service.skiplbips"
SVC_SCHED_FLAGS_ANNOTATION = "kube-router.io/service.schedflags"

LEADER_ELECTION_ANNOTATION = "control-plane.alpha.kubernetes.io/leader"

IPVS_SVC_F_SCHED1 = "flag-1"
IPVS_SVC_F_SCHED2 = "flag-2"
IPVS_SVC_F_SCHED3 = "flag-3"

SERVICE_AFFINITY_CLIENT_IP = "ClientIP"
EXTERNAL_TRAFFIC_POLICY_LOCAL = "Local"

_KNOWN_SCHEDULERS = frozenset(
    {ROUND_ROBIN, LEAST_CONNECTION, DESTINATION_HASHING, SOURCE_HASHING, MAGLEV_HASHING}
)

KubeObject = Mapping[str, Any]


@dataclass
class ServiceInfo:
    """One port of a Kubernetes service, as seen by the proxy."""

    name: str = ""
    namespace: str = ""
    cluster_ip: Optional[Address] = None
    port: int = 0
    target_port: str = ""
    protocol: str = ""
    node_port: int = 0
    session_affinity: bool = False
    session_affinity_timeout_seconds: int = 0
    direct_server_return: bool = False
    scheduler: str = ROUND_ROBIN
    direct_server_return_method: str = ""
    hairpin: bool = False
    hairpin_external_ips: bool = False
    skip_lb_ips: bool = False
    external_ips: List[str] = field(default_factory=list)
    load_balancer_ips: List[str] = field(default_factory=list)
    local: bool = False
    flags: SchedFlags = field(default_factory=SchedFlags)


@dataclass(frozen=True)
class EndpointInfo:
    """One backend address of a service port."""

    ip: str
    port: int
    is_local: bool = False


def parse_sched_flags(value: str) -> SchedFlags:
    """Parse a comma separated list of IPVS scheduler flag names."""
    if not value:
        return SchedFlags()
    names = {part.strip(" ") for part in value.split(",")}
    return SchedFlags(
        flag1=IPVS_SVC_F_SCHED1 in names,
        flag2=IPVS_SVC_F_SCHED2 in names,
        flag3=IPVS_SVC_F_SCHED3 in names,
    )


def generate_service_id(namespace: str, name: str, port: str) -> str:
    """Unique id of a load-balanced service port: namespace, name and port name."""
    return f"{namespace}-{name}-{port}"


def generate_ip_port_id(ip: str, protocol: str, port: str) -> str:
    """Unique id of an address, protocol and port triple."""
    return f"{ip}-{protocol}-{port}"


def generate_endpoint_id(ip: str, port: str) -> str:
    """Id of an endpoint as ip:port."""
    return f"{ip}:{port}"


def shuffle(endpoints: List[EndpointInfo]) -> List[EndpointInfo]:
    """Shuffle endpoints in place and return the same list."""
    random.shuffle(endpoints)
    return endpoints


def has_active_endpoints(endpoints: Iterable[EndpointInfo]) -> bool:
    """Whether any endpoint runs on this node."""
    return any(endpoint.is_local for endpoint in endpoints)


def _metadata(obj: KubeObject) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _annotations(obj: KubeObject) -> Mapping[str, str]:
    return _metadata(obj).get("annotations") or {}


def is_endpoints_for_leader_election(endpoints: KubeObject) -> bool:
    """Whether an Endpoints object only carries a leader election record."""
    return LEADER_ELECTION_ANNOTATION in _annotations(endpoints)


def _cluster_ip_is_none_or_blank(cluster_ip: str) -> bool:
    return cluster_ip in ("", "None")


def _parse_ip(value: str) -> Optional[Address]:
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def _affinity_timeout(spec: Mapping[str, Any], service_name: str) -> int:
    try:
        return int(spec["sessionAffinityConfig"]["clientIP"]["timeoutSeconds"])
    except (KeyError, TypeError) as exc:
        raise ValueError(
            f"service {service_name} has ClientIP session affinity without a timeout"
        ) from exc


def build_services_info(services: Iterable[KubeObject]) -> Dict[str, ServiceInfo]:
    """Build a map of service id to ServiceInfo from Kubernetes Service objects."""
    service_map: Dict[str, ServiceInfo] = {}
    for svc in services:
        metadata = _metadata(svc)
        spec = svc.get("spec") or {}
        status = svc.get("status") or {}
        annotations = _annotations(svc)
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")

        cluster_ip = spec.get("clusterIP", "")
        if _cluster_ip_is_none_or_blank(cluster_ip):
            continue
        if spec.get("type") == "ExternalName":
            continue

        ingress = (status.get("loadBalancer") or {}).get("ingress") or []
        lb_ips = [entry["ip"] for entry in ingress if entry.get("ip")]

        scheduler = annotations.get(SVC_SCHEDULER_ANNOTATION, ROUND_ROBIN)
        if scheduler not in _KNOWN_SCHEDULERS:
            scheduler = ROUND_ROBIN

        flags = SchedFlags()
        if SVC_SCHED_FLAGS_ANNOTATION in annotations and scheduler == MAGLEV_HASHING:
            flags = parse_sched_flags(annotations[SVC_SCHED_FLAGS_ANNOTATION])

        session_affinity = spec.get("sessionAffinity") == SERVICE_AFFINITY_CLIENT_IP
        local = SVC_LOCAL_ANNOTATION in annotations or (
            spec.get("externalTrafficPolicy") == EXTERNAL_TRAFFIC_POLICY_LOCAL
        )

        for port in spec.get("ports") or []:
            info = ServiceInfo(
                name=name,
                namespace=namespace,
                cluster_ip=_parse_ip(cluster_ip),
                port=int(port.get("port", 0)),
                target_port=str(port.get("targetPort", 0)),
                protocol=str(port.get("protocol", "")).lower(),
                node_port=int(port.get("nodePort", 0)),
                session_affinity=session_affinity,
                scheduler=scheduler,
                external_ips=list(spec.get("externalIPs") or []),
                load_balancer_ips=list(lb_ips),
                flags=flags,
                hairpin=SVC_HAIRPIN_ANNOTATION in annotations,
                hairpin_external_ips=SVC_HAIRPIN_EXTERNAL_IPS_ANNOTATION in annotations,
                skip_lb_ips=SVC_SKIP_LB_IPS_ANNOTATION in annotations,
                local=local,
            )
            if SVC_DSR_ANNOTATION in annotations:
                info.direct_server_return = True
                info.direct_server_return_method = annotations[SVC_DSR_ANNOTATION]
            if session_affinity:
                info.session_affinity_timeout_seconds = _affinity_timeout(spec, name)

            service_id = generate_service_id(namespace, name, port.get("name", ""))
            service_map[service_id] = info
    return service_map


def build_endpoints_info(
    endpoints_list: Iterable[KubeObject], node_name: str
) -> Dict[str, List[EndpointInfo]]:
    """Build a map of service id to shuffled endpoints from Endpoints objects."""
    endpoints_map: Dict[str, List[EndpointInfo]] = {}
    for ep in endpoints_list:
        metadata = _metadata(ep)
        namespace = metadata.get("namespace", "")
        name = metadata.get("name", "")
        for subset in ep.get("subsets") or []:
            addresses = subset.get("addresses") or []
            for port in subset.get("ports") or []:
                service_id = generate_service_id(namespace, name, port.get("name", ""))
                port_number = int(port.get("port", 0))
                endpoints = [
                    EndpointInfo(
                        ip=addr.get("ip", ""),
                        port=port_number,
                        is_local=addr.get("nodeName") is not None
                        and addr.get("nodeName") == node_name,
                    )
                    for addr in addresses
                ]
                endpoints_map[service_id] = shuffle(endpoints)
    return endpoints_map