"""Linux networking operations: IPVS through ipvsadm, links and routes through ip."""

from __future__ import annotations

import ipaddress
import logging
import subprocess
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .iptables import Iptables, IptablesError
from .ipvs import (
    FULL_NETMASK,
    IPPROTO_TCP,
    IPPROTO_UDP,
    PERSISTENT_FLAG,
    ROUND_ROBIN,
    SCHED1_FLAG,
    SCHED2_FLAG,
    SCHED3_FLAG,
    TCP_PROTOCOL,
    IpvsDestination,
    IpvsService,
    IpvsStats,
    SchedFlags,
    sched_flags_changed,
    set_persistence,
    set_sched_flags,
)
from .services import ServiceInfo

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[str]"]

KUBE_DUMMY_IF = "kube-dummy-if"
KUBE_BRIDGE_IF = "kube-bridge"
IFACE_HAS_ADDR = "file exists"
IFACE_HAS_NO_ADDR = "cannot assign requested address"
IPVS_SERVER_EXISTS = "file exists"

CUSTOM_DSR_ROUTE_TABLE_ID = "78"
CUSTOM_DSR_ROUTE_TABLE_NAME = "kube-router-dsr"
EXTERNAL_IP_ROUTE_TABLE_ID = "79"
EXTERNAL_IP_ROUTE_TABLE_NAME = "external_ip"
DEFAULT_RT_TABLES_PATH = "/etc/iproute2/rt_tables"

MANGLE_TABLE = "mangle"

_SCHED_FLAG_NAMES = (
    (SCHED1_FLAG, "flag-1"),
    (SCHED2_FLAG, "flag-2"),
    (SCHED3_FLAG, "flag-3"),
)
_PROTOCOL_OPTIONS = {IPPROTO_TCP: "-t", IPPROTO_UDP: "-u"}
_OPTION_PROTOCOLS = {option: number for number, option in _PROTOCOL_OPTIONS.items()}
_STATS_PROTOCOLS = {"TCP": IPPROTO_TCP, "UDP": IPPROTO_UDP}

ServiceKey = Tuple


class NetworkingError(Exception):
    """A networking operation on the host failed."""


def _run_subprocess(argv: Sequence[str]) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(list(argv), capture_output=True, text=True, check=False)


def _execute(runner: Runner, argv: Sequence[str]) -> "subprocess.CompletedProcess[str]":
    try:
        return runner(list(argv))
    except OSError as exc:
        return subprocess.CompletedProcess(list(argv), 127, "", str(exc))


def _output(result: "subprocess.CompletedProcess[str]") -> str:
    text = ((result.stderr or "") + (result.stdout or "")).strip()
    return text or f"exit status {result.returncode}"


def _format_host_port(address, port: int) -> str:
    if isinstance(address, ipaddress.IPv6Address):
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def _split_host_port(value: str) -> Tuple[ipaddress._BaseAddress, int]:
    if value.startswith("["):
        host, _, port = value[1:].rpartition("]:")
    else:
        host, _, port = value.rpartition(":")
    return ipaddress.ip_address(host), int(port)


def _service_key(service: IpvsService) -> ServiceKey:
    if service.fwmark:
        return ("fwmark", service.fwmark)
    return (service.protocol, service.address, service.port)


def _service_spec(service: IpvsService) -> List[str]:
    if service.fwmark:
        return ["-f", str(service.fwmark)]
    option = _PROTOCOL_OPTIONS.get(service.protocol)
    if option is None:
        raise NetworkingError(f"unsupported IPVS protocol {service.protocol}")
    if service.address is None:
        raise NetworkingError("IPVS service has neither an address nor a firewall mark")
    return [option, _format_host_port(service.address, service.port)]


def _service_options(service: IpvsService) -> List[str]:
    options = ["-s", service.sched_name]
    if service.flags & PERSISTENT_FLAG:
        options += ["-p", str(service.timeout)]
    names = [name for bit, name in _SCHED_FLAG_NAMES if service.flags & bit]
    if names:
        options += ["-b", ",".join(names)]
    return options


def _destination_options(destination: IpvsDestination) -> List[str]:
    if destination.address is None:
        raise NetworkingError("IPVS destination has no address")
    return [
        "-r", _format_host_port(destination.address, destination.port),
        "-m", "-w", str(destination.weight),
    ]


def _parse_service(tokens: Iterable[str]) -> IpvsService:
    service = IpvsService()
    flag_names: set = set()
    persistent_timeout: Optional[int] = None
    it = iter(tokens)
    for option in it:
        if option in _OPTION_PROTOCOLS:
            service.protocol = _OPTION_PROTOCOLS[option]
            service.address, service.port = _split_host_port(next(it))
        elif option == "-f":
            service.fwmark = int(next(it))
        elif option == "-s":
            service.sched_name = next(it)
        elif option == "-p":
            persistent_timeout = int(next(it))
        elif option == "-M":
            next(it)
            service.netmask |= FULL_NETMASK
        elif option == "-b":
            flag_names.update(next(it).split(","))
    if persistent_timeout is not None:
        set_persistence(service, True, persistent_timeout)
    set_sched_flags(
        service,
        SchedFlags(
            flag1="flag-1" in flag_names,
            flag2="flag-2" in flag_names,
            flag3="flag-3" in flag_names,
        ),
    )
    return service


def _parse_destination(tokens: List[str]) -> Tuple[IpvsService, IpvsDestination]:
    split = tokens.index("-r")
    service = _parse_service(tokens[:split])
    destination = IpvsDestination()
    it = iter(tokens[split:])
    for option in it:
        if option == "-r":
            destination.address, destination.port = _split_host_port(next(it))
        elif option == "-w":
            destination.weight = int(next(it))
    return service, destination


def _parse_stats_row(line: str) -> Optional[Tuple[ServiceKey, List[int]]]:
    fields = line.split()
    if len(fields) < 7 or fields[0] not in ("TCP", "UDP", "FWM"):
        return None
    try:
        values = [int(value) for value in fields[2:7]]
        if fields[0] == "FWM":
            key: ServiceKey = ("fwmark", int(fields[1]))
        else:
            address, port = _split_host_port(fields[1])
            key = (_STATS_PROTOCOLS[fields[0]], address, port)
    except ValueError:
        return None
    return key, values


class IpvsHandle:
    """Reads and changes the kernel IPVS table through the ipvsadm tool."""

    def __init__(self, binary: str = "ipvsadm", runner: Optional[Runner] = None) -> None:
        self.binary = binary
        self._runner = runner or _run_subprocess

    def _run(self, *args: str) -> str:
        argv = [self.binary, *args]
        result = _execute(self._runner, argv)
        if result.returncode != 0:
            raise NetworkingError(f"{' '.join(argv)}: {_output(result)}")
        return result.stdout or ""

    def _saved_rules(self) -> List[List[str]]:
        return [line.split() for line in self._run("-S", "-n").splitlines() if line.strip()]

    def _read_stats(self) -> Dict[ServiceKey, IpvsStats]:
        stats: Dict[ServiceKey, IpvsStats] = {}
        for line in self._run("-L", "-n", "--stats", "--exact").splitlines():
            parsed = _parse_stats_row(line)
            if parsed:
                key, values = parsed
                entry = stats.setdefault(key, IpvsStats())
                (entry.connections, entry.packets_in, entry.packets_out,
                 entry.bytes_in, entry.bytes_out) = values
        for line in self._run("-L", "-n", "--rate", "--exact").splitlines():
            parsed = _parse_stats_row(line)
            if parsed:
                key, values = parsed
                entry = stats.setdefault(key, IpvsStats())
                entry.cps, entry.pps_in, entry.pps_out, entry.bps_in, entry.bps_out = values
        return stats

    def get_services(self) -> List[IpvsService]:
        """All virtual services with their current counters."""
        services = [_parse_service(fields[1:]) for fields in self._saved_rules()
                    if fields[0] == "-A"]
        stats = self._read_stats()
        for service in services:
            service.stats = stats.get(_service_key(service), IpvsStats())
        return services

    def get_destinations(self, service: IpvsService) -> List[IpvsDestination]:
        """Real servers of one virtual service."""
        key = _service_key(service)
        destinations = []
        for fields in self._saved_rules():
            if fields[0] != "-a":
                continue
            owner, destination = _parse_destination(fields[1:])
            if _service_key(owner) == key:
                destinations.append(destination)
        return destinations

    def new_service(self, service: IpvsService) -> None:
        self._run("-A", *_service_spec(service), *_service_options(service))

    def update_service(self, service: IpvsService) -> None:
        self._run("-E", *_service_spec(service), *_service_options(service))

    def del_service(self, service: IpvsService) -> None:
        self._run("-D", *_service_spec(service))

    def new_destination(self, service: IpvsService, destination: IpvsDestination) -> None:
        self._run("-a", *_service_spec(service), *_destination_options(destination))

    def update_destination(self, service: IpvsService, destination: IpvsDestination) -> None:
        self._run("-e", *_service_spec(service), *_destination_options(destination))

    def del_destination(self, service: IpvsService, destination: IpvsDestination) -> None:
        self._run("-d", *_service_spec(service), *_destination_options(destination)[:2])

    def flush(self) -> None:
        """Remove every virtual service."""
        self._run("-C")


def _mangle_args(ip: str, protocol: str, port, fwmark) -> List[str]:
    return ["-d", ip, "-m", protocol, "-p", protocol, "--dport", str(port),
            "-j", "MARK", "--set-mark", str(fwmark)]


def _mss_args(ip: str, tcp_mss: int) -> List[str]:
    return ["-d", ip, "-m", TCP_PROTOCOL, "-p", TCP_PROTOCOL, "--tcp-flags", "SYN,RST", "SYN",
            "-j", "TCPMSS", "--set-mss", str(tcp_mss)]


def setup_mangle_table_rule(
    iptables: Iptables, ip: str, protocol: str, port, fwmark, tcp_mss: int
) -> None:
    """Mark traffic to an external IP with a firewall mark and clamp its TCP MSS."""
    args = _mangle_args(ip, protocol, port, fwmark)
    for chain in ("PREROUTING", "OUTPUT"):
        try:
            iptables.append_unique(MANGLE_TABLE, chain, *args)
        except IptablesError as exc:
            raise NetworkingError(
                f"Failed to run iptables command to set up FWMARK due to {exc}") from exc

    mss_args = _mss_args(ip, tcp_mss)
    for chain, direction in (("PREROUTING", "-d"), ("POSTROUTING", "-s")):
        mss_args[0] = direction
        try:
            iptables.append_unique(MANGLE_TABLE, chain, *mss_args)
        except IptablesError as exc:
            raise NetworkingError(
                f"Failed to run iptables command to set up TCPMSS due to {exc}") from exc


def route_vip_traffic_to_director(fwmark, runner: Optional[Runner] = None) -> None:
    """Add a policy rule so packets with this firewall mark are delivered locally."""
    run = runner or _run_subprocess
    result = _execute(run, ["ip", "rule", "list"])
    if result.returncode != 0:
        raise NetworkingError(f"Failed to verify if `ip rule` exists due to: {_output(result)}")
    if f"{fwmark} " in (result.stdout or ""):
        return
    added = _execute(run, ["ip", "rule", "add", "prio", "32764", "fwmark", str(fwmark),
                           "table", CUSTOM_DSR_ROUTE_TABLE_ID])
    if added.returncode != 0:
        raise NetworkingError(
            "Failed to add policy rule to lookup traffic to VIP through the custom "
            f" routing table due to {_output(added)}")


class LinuxNetworking:
    """The host networking operations the service proxy relies on."""

    def __init__(
        self,
        ipvs_handle: Optional[IpvsHandle] = None,
        iptables: Optional[Iptables] = None,
        node_ip=None,
        runner: Optional[Runner] = None,
        rt_tables_path=DEFAULT_RT_TABLES_PATH,
    ) -> None:
        self._runner = runner or _run_subprocess
        self.ipvs_handle = ipvs_handle if ipvs_handle is not None else IpvsHandle(
            runner=self._runner)
        self.iptables = iptables if iptables is not None else Iptables(runner=runner)
        self.node_ip = node_ip
        self.rt_tables_path = Path(rt_tables_path)

    def _ip(self, *args: str) -> "subprocess.CompletedProcess[str]":
        return _execute(self._runner, ["ip", *args])

    def _local_route(self, action: str, ip: str) -> "subprocess.CompletedProcess[str]":
        return self._ip("route", action, "local", ip, "dev", KUBE_DUMMY_IF, "table", "local",
                        "proto", "kernel", "scope", "host", "src", str(self.node_ip),
                        "table", "local")

    # addresses and links

    def ip_addr_add(self, iface: str, ip: str, add_route: bool) -> None:
        """Assign a /32 address to an interface, optionally pinning the node IP as source."""
        result = self._ip("addr", "add", f"{ip}/32", "dev", iface, "scope", "link")
        if result.returncode != 0 and IFACE_HAS_ADDR not in _output(result).lower():
            logger.error("Failed to assign cluster ip %s to dummy interface: %s",
                         ip, _output(result))
            raise NetworkingError(f"failed to assign {ip} to {iface}: {_output(result)}")
        if not add_route:
            return
        # Without this route the kernel may pick the VIP itself as source address.
        route = self._local_route("replace", ip)
        if route.returncode != 0:
            logger.error("Failed to replace route to service VIP %s configured on %s: %s",
                         ip, KUBE_DUMMY_IF, _output(route))

    def ip_addr_del(self, iface: str, ip: str) -> None:
        """Remove a /32 address from an interface and its local route."""
        result = self._ip("addr", "del", f"{ip}/32", "dev", iface, "scope", "link")
        if result.returncode != 0:
            message = _output(result)
            if IFACE_HAS_NO_ADDR not in message.lower():
                logger.error(
                    "Failed to verify is external ip %s is assocated with dummy interface %s due to %s",
                    ip, KUBE_DUMMY_IF, message)
            raise NetworkingError(f"failed to remove {ip} from {iface}: {message}")
        route = self._local_route("delete", ip)
        if route.returncode != 0 and "No such process" not in _output(route):
            logger.error("Failed to delete route to service VIP %s configured on %s: %s",
                         ip, KUBE_DUMMY_IF, _output(route))

    def get_kube_dummy_interface(self) -> str:
        """Name of the dummy interface holding service VIPs, creating it if needed."""
        shown = self._ip("link", "show", "dev", KUBE_DUMMY_IF)
        if shown.returncode == 0:
            return KUBE_DUMMY_IF
        if "does not exist" not in _output(shown):
            raise NetworkingError(f"Failed to get dummy interface: {_output(shown)}")
        logger.debug("Could not find dummy interface: %s to assign cluster ip's, creating one",
                     KUBE_DUMMY_IF)
        added = self._ip("link", "add", KUBE_DUMMY_IF, "type", "dummy")
        if added.returncode != 0:
            raise NetworkingError(f"Failed to add dummy interface:  {_output(added)}")
        up = self._ip("link", "set", KUBE_DUMMY_IF, "up")
        if up.returncode != 0:
            raise NetworkingError(f"Failed to bring dummy interface up: {_output(up)}")
        return KUBE_DUMMY_IF

    # IPVS table

    def ipvs_get_services(self) -> List[IpvsService]:
        return self.ipvs_handle.get_services()

    def ipvs_new_service(self, service: IpvsService) -> None:
        self.ipvs_handle.new_service(service)

    def ipvs_update_service(self, service: IpvsService) -> None:
        self.ipvs_handle.update_service(service)

    def ipvs_del_service(self, service: IpvsService) -> None:
        self.ipvs_handle.del_service(service)

    def ipvs_get_destinations(self, service: IpvsService) -> List[IpvsDestination]:
        return self.ipvs_handle.get_destinations(service)

    def ipvs_new_destination(self, service: IpvsService, destination: IpvsDestination) -> None:
        self.ipvs_handle.new_destination(service, destination)

    def ipvs_update_destination(self, service: IpvsService,
                                destination: IpvsDestination) -> None:
        self.ipvs_handle.update_destination(service, destination)

    def ipvs_del_destination(self, service: IpvsService, destination: IpvsDestination) -> None:
        self.ipvs_handle.del_destination(service, destination)

    def _update_scheduler(self, service: IpvsService, scheduler: str) -> None:
        service.sched_name = scheduler
        try:
            self.ipvs_update_service(service)
        except NetworkingError as exc:
            raise NetworkingError(
                f"Failed to update the scheduler for the service due to {exc}") from exc
        logger.debug("Updated schedule for the service: %s", service)

    def ipvs_add_service(
        self,
        services: Iterable[IpvsService],
        vip,
        protocol: int,
        port: int,
        persistent: bool,
        persistent_timeout: int,
        scheduler: str,
        flags: SchedFlags,
    ) -> IpvsService:
        """Return the matching service, brought up to date, or create it."""
        address = ipaddress.ip_address(str(vip))
        for service in services:
            if service.address != address or service.protocol != protocol or service.port != port:
                continue
            if (persistent != bool(service.flags & PERSISTENT_FLAG)
                    or service.timeout != persistent_timeout & 0xFFFFFFFF):
                set_persistence(service, persistent, persistent_timeout)
                self.ipvs_update_service(service)
                logger.debug("Updated persistence/session-affinity for service: %s", service)
            if sched_flags_changed(service, flags):
                set_sched_flags(service, flags)
                self.ipvs_update_service(service)
                logger.debug("Updated scheduler flags for service: %s", service)
            if scheduler != service.sched_name:
                self._update_scheduler(service, scheduler)
            logger.debug("ipvs service %s already exists so returning", service)
            return service

        service = IpvsService(address=address, protocol=protocol, port=port,
                              sched_name=scheduler)
        set_persistence(service, persistent, persistent_timeout)
        set_sched_flags(service, flags)
        self.ipvs_new_service(service)
        logger.debug("Successfully added service: %s", service)
        return service

    def ipvs_add_fwmark_service(
        self,
        services: Iterable[IpvsService],
        fwmark: int,
        protocol: int,
        port: int,
        persistent: bool,
        persistent_timeout: int,
        scheduler: str,
        flags: SchedFlags,
    ) -> IpvsService:
        """Return the service with this firewall mark, brought up to date, or create it."""
        for service in services:
            if service.fwmark != fwmark:
                continue
            if persistent != bool(service.flags & PERSISTENT_FLAG):
                set_persistence(service, persistent, persistent_timeout)
                if sched_flags_changed(service, flags):
                    set_sched_flags(service, flags)
                self.ipvs_update_service(service)
                logger.debug("Updated persistence/session-affinity for service: %s", service)
            if sched_flags_changed(service, flags):
                set_sched_flags(service, flags)
                self.ipvs_update_service(service)
                logger.debug("Updated scheduler flags for service: %s", service)
            if scheduler != service.sched_name:
                self._update_scheduler(service, scheduler)
            logger.debug("ipvs service %s already exists so returning", service)
            return service

        service = IpvsService(fwmark=fwmark, protocol=protocol, port=port,
                              sched_name=ROUND_ROBIN)
        set_persistence(service, persistent, persistent_timeout)
        set_sched_flags(service, flags)
        self.ipvs_new_service(service)
        logger.info("Successfully added service: %s", service)
        return service

    def ipvs_add_server(self, service: IpvsService, destination: IpvsDestination) -> None:
        """Add a destination to a service, updating it if it is already there."""
        try:
            self.ipvs_new_destination(service, destination)
        except NetworkingError as exc:
            text = str(exc).lower()
            if IPVS_SERVER_EXISTS not in text and "already exists" not in text:
                raise NetworkingError(
                    f"failed to add ipvs destination {destination} to the ipvs service "
                    f"{service} due to : {exc}") from exc
        else:
            logger.debug("Successfully added destination %s to the service %s",
                         destination, service)
            return
        try:
            self.ipvs_update_destination(service, destination)
        except NetworkingError as exc:
            raise NetworkingError(
                f"failed to update ipvs destination {destination} to the ipvs service "
                f"{service} due to : {exc}") from exc
        logger.debug("ipvs destination %s already exists in the ipvs service %s",
                     destination, service)

    # DSR support

    def cleanup_mangle_table_rule(self, ip: str, protocol: str, port, fwmark,
                                  tcp_mss: int) -> None:
        """Remove the firewall mark and TCP MSS rules for an external IP."""
        args = _mangle_args(ip, protocol, port, fwmark)
        try:
            for chain in ("PREROUTING", "OUTPUT"):
                if self.iptables.exists(MANGLE_TABLE, chain, *args):
                    logger.debug("removing mangle rule with: iptables -D %s -t mangle %s",
                                 chain, args)
                    self.iptables.delete(MANGLE_TABLE, chain, *args)
        except IptablesError as exc:
            raise NetworkingError(
                f"Failed to cleanup iptables command to set up FWMARK due to {exc}") from exc

        mss_args = _mss_args(ip, tcp_mss)
        try:
            for chain, direction in (("PREROUTING", "-d"), ("POSTROUTING", "-s")):
                mss_args[0] = direction
                if self.iptables.exists(MANGLE_TABLE, chain, *mss_args):
                    logger.debug("removing mangle rule with: iptables -D %s -t mangle %s",
                                 chain, mss_args)
                    self.iptables.delete(MANGLE_TABLE, chain, *mss_args)
        except IptablesError as exc:
            raise NetworkingError(
                f"Failed to cleanup iptables command to set up TCPMSS due to {exc}") from exc

    def _ensure_route_table(self, table_id: str, table_name: str, context: str) -> None:
        try:
            content = self.rt_tables_path.read_text()
            if table_name not in content:
                with self.rt_tables_path.open("a") as handle:
                    handle.write(f"{table_id} {table_name}\n")
        except OSError as exc:
            raise NetworkingError(f"Failed to setup {context} due to {exc}") from exc

    def setup_policy_routing_for_dsr(self) -> None:
        """Create the DSR routing table that delivers marked packets locally."""
        self._ensure_route_table(CUSTOM_DSR_ROUTE_TABLE_ID, CUSTOM_DSR_ROUTE_TABLE_NAME,
                                 "policy routing required for DSR")
        listed = self._ip("route", "list", "table", CUSTOM_DSR_ROUTE_TABLE_ID)
        if listed.returncode != 0 or " lo " not in (listed.stdout or ""):
            added = self._ip("route", "add", "local", "default", "dev", "lo", "table",
                             CUSTOM_DSR_ROUTE_TABLE_ID)
            if added.returncode != 0:
                raise NetworkingError(
                    f"Failed to add route in custom route table due to: {_output(added)}")

    def setup_routes_for_external_ip_for_dsr(self, service_map: Mapping[str, ServiceInfo]) -> None:
        """Route external IPs of DSR services via the bridge and drop stale routes."""
        self._ensure_route_table(EXTERNAL_IP_ROUTE_TABLE_ID, EXTERNAL_IP_ROUTE_TABLE_NAME,
                                 "external ip routing table required for DSR")
        rules = self._ip("rule", "list")
        if rules.returncode != 0:
            raise NetworkingError(
                "failed to verify if `ip rule add prio 32765 from all lookup external_ip` "
                f"exists due to: {_output(rules)}")
        rules_out = rules.stdout or ""
        if not (EXTERNAL_IP_ROUTE_TABLE_NAME in rules_out
                or EXTERNAL_IP_ROUTE_TABLE_ID in rules_out):
            added = self._ip("rule", "add", "prio", "32765", "from", "all", "lookup",
                             EXTERNAL_IP_ROUTE_TABLE_ID)
            if added.returncode != 0:
                raise NetworkingError(
                    "failed to add policy rule `ip rule add prio 32765 from all lookup "
                    f"external_ip` due to {_output(added)}")

        routes = self._ip("route", "list", "table", EXTERNAL_IP_ROUTE_TABLE_ID).stdout or ""
        active = set()
        for info in service_map.values():
            for external_ip in info.external_ips:
                if not info.direct_server_return:
                    logger.debug("Skipping service %s/%s as it does not have DSR annotation",
                                 info.namespace, info.name)
                    continue
                active.add(external_ip)
                if external_ip in routes:
                    continue
                added = self._ip("route", "add", external_ip, "dev", KUBE_BRIDGE_IF, "table",
                                 EXTERNAL_IP_ROUTE_TABLE_ID)
                if added.returncode != 0:
                    logger.error("Failed to add route for %s in custom route table for "
                                 "external IP's due to: %s", external_ip, _output(added))

        if not routes:
            return
        for line in routes.strip("\n").split("\n"):
            route = line.strip(" ").split(" ")
            if route[0] in active:
                continue
            deleted = self._ip("route", "del", "table", EXTERNAL_IP_ROUTE_TABLE_ID, *route)
            if deleted.returncode != 0:
                logger.error("Failed to del route for %s in custom route table for "
                             "external IP's due to: %s", route[0], _output(deleted))