import ipaddress
import subprocess

import pytest

from ipvsproxy.hairpin import (
    HAIRPIN_CHAIN_NAME,
    HAIRPIN_JUMP_ARGS,
    delete_hairpin_rules,
    hairpin_rule_from,
    hairpin_rules_needed,
    sync_hairpin_rules,
)
from ipvsproxy.iptables import Iptables
from ipvsproxy.services import EndpointInfo, ServiceInfo

BUILTIN = {
    "filter": ["INPUT", "FORWARD", "OUTPUT"],
    "nat": ["PREROUTING", "INPUT", "OUTPUT", "POSTROUTING"],
}


class FakeIptables:
    def __init__(self):
        self.tables = {t: {c: [] for c in chains} for t, chains in BUILTIN.items()}
        self.calls = []

    def _done(self, argv, code, out=""):
        return subprocess.CompletedProcess(argv, code, out, "" if code == 0 else "error")

    def _header(self, table, chain):
        return f"-P {chain} ACCEPT" if chain in BUILTIN[table] else f"-N {chain}"

    def __call__(self, argv):
        self.calls.append(list(argv))
        args = list(argv[1:])
        name = args[1]
        table = self.tables[name]
        op, rest = args[2], args[3:]
        if op == "-S":
            chains = [rest[0]] if rest else list(table)
            if rest and rest[0] not in table:
                return self._done(argv, 1)
            lines = [self._header(name, c) for c in chains]
            for chain in chains:
                lines += [f"-A {chain} " + " ".join(r) for r in table[chain]]
            return self._done(argv, 0, "\n".join(lines) + "\n")
        chain = rest[0]
        if op == "-N":
            if chain in table:
                return self._done(argv, 1)
            table[chain] = []
            return self._done(argv, 0)
        if chain not in table:
            return self._done(argv, 1)
        rules = table[chain]
        rule = tuple(rest[1:])
        if op == "-C":
            return self._done(argv, 0 if rule in rules else 1)
        if op == "-A":
            rules.append(rule)
            return self._done(argv, 0)
        if op == "-D":
            if rule not in rules:
                return self._done(argv, 1)
            rules.remove(rule)
            return self._done(argv, 0)
        if op == "-F":
            rules.clear()
            return self._done(argv, 0)
        if op == "-X":
            if rules:
                return self._done(argv, 1)
            del table[chain]
            return self._done(argv, 0)
        return self._done(argv, 2)


@pytest.fixture
def fake():
    return FakeIptables()


@pytest.fixture
def ipt(fake):
    return Iptables(runner=fake)


def make_service(**overrides):
    values = dict(
        name="svc-1",
        namespace="default",
        cluster_ip=ipaddress.ip_address("10.0.0.1"),
        port=8080,
        protocol="tcp",
        external_ips=["1.1.1.1", "2.2.2.2"],
    )
    values.update(overrides)
    return ServiceInfo(**values)


ENDPOINTS = {
    "default-svc-1-port-1": [
        EndpointInfo(ip="172.20.1.1", port=80, is_local=True),
        EndpointInfo(ip="172.20.1.2", port=80, is_local=False),
    ]
}


def test_hairpin_rule_from_format():
    rule, args = hairpin_rule_from("10.0.0.1", "172.20.1.1", 8080)
    assert rule == (
        "-A KUBE-ROUTER-HAIRPIN -s 172.20.1.1/32 -d 172.20.1.1/32 -m ipvs "
        "--vaddr 10.0.0.1 --vport 8080 -j SNAT --to-source 10.0.0.1"
    )
    assert rule == f"-A {HAIRPIN_CHAIN_NAME} " + " ".join(args)


def test_no_rules_without_hairpin():
    services = {"default-svc-1-port-1": make_service()}
    assert hairpin_rules_needed(services, ENDPOINTS, "10.0.0.0", False) == {}


def test_global_hairpin_only_local_endpoints():
    services = {"default-svc-1-port-1": make_service()}
    rules = hairpin_rules_needed(services, ENDPOINTS, "10.0.0.0", True)
    expected, _ = hairpin_rule_from("10.0.0.1", "172.20.1.1", 8080)
    assert list(rules) == [expected]


def test_hairpin_external_ips_and_node_port():
    services = {
        "default-svc-1-port-1": make_service(
            hairpin=True, hairpin_external_ips=True, node_port=30080
        )
    }
    rules = hairpin_rules_needed(services, ENDPOINTS, ipaddress.ip_address("10.0.0.9"), False)
    wanted = {
        hairpin_rule_from("10.0.0.1", "172.20.1.1", 8080)[0],
        hairpin_rule_from("1.1.1.1", "172.20.1.1", 8080)[0],
        hairpin_rule_from("2.2.2.2", "172.20.1.1", 8080)[0],
        hairpin_rule_from("10.0.0.9", "172.20.1.1", 30080)[0],
    }
    assert set(rules) == wanted


def test_service_without_local_endpoints_skipped():
    services = {"default-svc-1-port-1": make_service(hairpin=True)}
    endpoints = {"default-svc-1-port-1": [EndpointInfo("172.20.1.2", 80, False)]}
    assert hairpin_rules_needed(services, endpoints, "10.0.0.0", False) == {}


def test_sync_creates_chain_jump_and_rules(ipt, fake):
    rules = hairpin_rules_needed(
        {"default-svc-1-port-1": make_service(hairpin=True)}, ENDPOINTS, "10.0.0.0", False
    )
    sync_hairpin_rules(ipt, rules)
    assert ipt.exists("nat", "POSTROUTING", *HAIRPIN_JUMP_ARGS) is True
    assert ipt.list("nat", HAIRPIN_CHAIN_NAME) == [f"-N {HAIRPIN_CHAIN_NAME}", *rules]


def test_sync_is_idempotent(ipt):
    rules = dict([hairpin_rule_from("10.0.0.1", "172.20.1.1", 8080)])
    sync_hairpin_rules(ipt, rules)
    sync_hairpin_rules(ipt, rules)
    assert ipt.list("nat", HAIRPIN_CHAIN_NAME)[1:] == list(rules)
    assert ipt.list("nat", "POSTROUTING").count(
        "-A POSTROUTING " + " ".join(HAIRPIN_JUMP_ARGS)
    ) == 1


def test_sync_removes_stale_rules(ipt):
    old = dict([hairpin_rule_from("10.0.0.5", "172.20.1.5", 9090)])
    sync_hairpin_rules(ipt, old)
    new = dict([hairpin_rule_from("10.0.0.1", "172.20.1.1", 8080)])
    sync_hairpin_rules(ipt, new)
    assert ipt.list("nat", HAIRPIN_CHAIN_NAME)[1:] == list(new)


def test_sync_with_nothing_needed_removes_chain(ipt):
    sync_hairpin_rules(ipt, dict([hairpin_rule_from("10.0.0.1", "172.20.1.1", 8080)]))
    sync_hairpin_rules(ipt, {})
    assert HAIRPIN_CHAIN_NAME not in ipt.list_chains("nat")
    assert ipt.exists("nat", "POSTROUTING", *HAIRPIN_JUMP_ARGS) is False


def test_delete_without_chain_only_lists(ipt, fake):
    delete_hairpin_rules(ipt)
    assert fake.calls == [["iptables", "-t", "nat", "-S"]]
    assert ipt.list_chains("nat") == ["PREROUTING", "INPUT", "OUTPUT", "POSTROUTING"]
    assert ipt.list("nat", "POSTROUTING") == ["-P POSTROUTING ACCEPT"]