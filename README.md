# ipvsproxy

Building blocks for running a Linux node as a network service proxy on top
of IPVS. Kubernetes-style Service and Endpoints objects (plain dicts) are
turned into per-port service records and endpoint lists. The library can
create and update the matching IPVS virtual services and destinations, and
keep the supporting iptables rules for hairpinning and masquerading in sync.

Host changes go through the `ipvsadm`, `ip` and `iptables` tools, started as
subprocesses. Changing the node needs root privileges and a kernel with IPVS
support. Every class that runs a command takes a `runner` callable, so the
commands can be replaced in tests.

## Installing

```
pip install .
```

The tests need the `test` extra:

```
pip install ".[test]"
pytest
```

## Modules

### `ipvsproxy.ipvs`

Records and flag helpers with no side effects.

- `IpvsService` (address/protocol/port or `fwmark`, `sched_name`, `flags`,
  `timeout`, `netmask`, `stats`), `IpvsDestination` (`address`, `port`,
  `weight`), `IpvsStats` and `SchedFlags` (`flag1`, `flag2`, `flag3`).
  Addresses can be given as strings; they are stored as `ipaddress` objects.
- `set_persistence(service, persistent, timeout)`,
  `set_sched_flags(service, flags)` and `sched_flags_changed(service, flags)`.
- `service_string` and `destination_string` render records for logs, e.g.
  `tcp:10.0.0.1:80 (Flags: [persistent port])` or `FWMark:5 (Flags: )`.
- `protocol_number("tcp")` gives 6 (`"udp"` gives 17, anything else 0);
  `protocol_name(6)` gives `"tcp"` (unknown numbers give `"none"`).

### `ipvsproxy.services`

- `build_services_info(services)` returns a dict keyed by
  `namespace-name-portname` of `ServiceInfo` records. Services without a
  cluster IP (blank or `"None"`) and `ExternalName` services are skipped.
  Load balancer ingress entries with an IP become `load_balancer_ips`.
  These annotations are honoured:
  - `kube-router.io/service.scheduler`: `rr`, `lc`, `dh`, `sh` or `mh`;
    anything else falls back to `rr`.
  - `kube-router.io/service.schedflags`: parsed with `parse_sched_flags`,
    only used with the `mh` scheduler.
  - `kube-router.io/service.dsr`, `kube-router.io/service.hairpin`,
    `kube-router.io/service.hairpin.externalips`,
    `kube-router.io/service.local`, `kube-router.io/service.skiplbips`.

  `externalTrafficPolicy: Local` also marks a service local. With
  `sessionAffinity: ClientIP` the timeout is read from
  `sessionAffinityConfig.clientIP.timeoutSeconds`; `ValueError` is raised
  if it is missing.
- `build_endpoints_info(endpoints_list, node_name)` returns shuffled
  `EndpointInfo` lists keyed the same way; an endpoint is local when its
  `nodeName` equals `node_name`.
- Helpers: `generate_service_id`, `generate_ip_port_id`,
  `generate_endpoint_id`, `shuffle`, `has_active_endpoints`,
  `is_endpoints_for_leader_election`.

### `ipvsproxy.iptables`

`Iptables(binary="iptables", runner=None)` wraps the command line tool:
`exists`, `insert`, `append_unique`, `delete`, `new_chain`, `clear_chain`
(creates the chain if it is missing), `delete_chain`, `chain_exists`,
`list_chains`, `list` (rules in `-S` form) and `has_random_fully` (true for
iptables 1.6.2 and newer). An unexpected exit status raises `IptablesError`.

### `ipvsproxy.hairpin`

Rules in the `KUBE-ROUTER-HAIRPIN` nat chain that let a pod reach itself
through its own service VIP.

- `hairpin_rule_from(service_ip, endpoint_ip, service_port)` returns the
  rule as `iptables -S` lists it and the arguments that create it.
- `hairpin_rules_needed(service_map, endpoints_map, node_ip, global_hairpin)`
  covers local endpoints of hairpin services: the cluster IP, external IPs
  when requested, and the node IP for NodePort services.
- `sync_hairpin_rules(iptables, rules_needed)` makes the chain hold exactly
  those rules; with none wanted it calls `delete_hairpin_rules(iptables)`,
  which removes the jump rule and the chain.

### `ipvsproxy.masquerade`

- `masquerade_rule_args(node_ip, random_fully)`: the SNAT rule for outbound
  IPVS traffic.
- `ensure_masquerade_rule(iptables, node_ip, pod_cidr, masquerade_all)`
  adds or removes the masquerade-all rule and, with a pod CIDR, ensures the
  rule for traffic from outside that CIDR.
- `delete_bad_masquerade_rules(iptables, node_ip, pod_cidr)` removes
  outdated MASQUERADE rules, and the rules without `--random-fully` when
  that option is supported.
- `delete_masquerade_rule(iptables)` deletes the first IPVS SNAT rule in
  `POSTROUTING`.

### `ipvsproxy.networking`

- `IpvsHandle` reads and changes the IPVS table through `ipvsadm`:
  `get_services` (with counters from `--stats` and `--rate`),
  `get_destinations`, `new_service`, `update_service`, `del_service`,
  `new_destination`, `update_destination`, `del_destination`, `flush`.
- `LinuxNetworking(ipvs_handle, iptables, node_ip, runner, rt_tables_path)`:
  - `ip_addr_add` / `ip_addr_del` put /32 VIPs on an interface and keep the
    local route with the node IP as source; `get_kube_dummy_interface`
    creates `kube-dummy-if` if it is missing.
  - `ipvs_add_service` and `ipvs_add_fwmark_service` return a matching
    service, updating persistence, scheduler flags and scheduler when they
    differ, or create a new one; `ipvs_add_server` adds a destination or
    updates it if it already exists. The `ipvs_*` pass-through methods call
    the handle directly.
  - For direct server return: `setup_policy_routing_for_dsr`,
    `setup_routes_for_external_ip_for_dsr(service_map)` and
    `cleanup_mangle_table_rule(ip, protocol, port, fwmark, tcp_mss)`.
- `setup_mangle_table_rule(iptables, ip, protocol, port, fwmark, tcp_mss)`
  and `route_vip_traffic_to_director(fwmark, runner)`.
- Failures raise `NetworkingError`.

## Example

```python
from ipvsproxy.services import build_services_info

services = [{
    "metadata": {"name": "web", "namespace": "default",
                 "annotations": {"kube-router.io/service.scheduler": "lc"}},
    "spec": {"type": "ClusterIP", "clusterIP": "10.0.0.1",
             "ports": [{"name": "http", "port": 80, "protocol": "TCP"}]},
}]

info = build_services_info(services)
svc = info["default-web-http"]
print(svc.cluster_ip, svc.port, svc.protocol, svc.scheduler)
# 10.0.0.1 80 tcp lc
```

## What the package does not do

This is a library of parts, not a running proxy. It has no command to start
and no sync loop: nothing here watches a Kubernetes API server, reconciles
the whole IPVS table against the service map on a timer, or removes IPVS
services that are no longer wanted. The caller fetches Service and
Endpoints objects and drives the functions above. The package also does not
manage an input firewall chain or ipsets for service IPs, does not export
metrics, and does not enter pod network namespaces to configure endpoints
for direct server return.