import subprocess

import pytest

from ipvsproxy.iptables import Iptables, IptablesError
from ipvsproxy.masquerade import (
    delete_bad_masquerade_rules,
    delete_masquerade_rule,
    ensure_masquerade_rule,
    masquerade_rule_args,
)

BUILTIN = {"INPUT", "OUTPUT", "FORWARD", "PREROUTING", "POSTROUTING"}
NODE_IP = "10.0.0.5"
POD_CIDR = "10.1.0.0/24"


class FakeIptablesRunner:
    def __init__(self, version="v1.8.4"):
        self.version = version
        self.fail_ops = set()
        self.tables = {
            "nat": {"PREROUTING": [], "INPUT": [], "OUTPUT": [], "POSTROUTING": []},
            "filter": {"INPUT": [], "FORWARD": [], "OUTPUT": []},
        }

    @staticmethod
    def _result(argv, code=0, stdout="", stderr=""):
        return subprocess.CompletedProcess(argv, code, stdout, stderr)

    def __call__(self, argv):
        argv = list(argv)
        args = argv[1:]
        if args == ["--version"]:
            return self._result(argv, stdout=f"iptables {self.version} (legacy)\n")
        _, table, op, *rest = args
        if op in self.fail_ops:
            return self._result(argv, 4, stderr="simulated failure")
        chains = self.tables.setdefault(table, {})
        if op == "-S":
            names = rest[:1] or list(chains)
            lines = []
            for name in names:
                if name not in chains:
                    return self._result(argv, 1, stderr="No chain by that name")
                lines.append(f"-P {name} ACCEPT" if name in BUILTIN else f"-N {name}")
            for name in names:
                lines += ["-A " + name + " " + " ".join(r) for r in chains[name]]
            return self._result(argv, stdout="\n".join(lines) + "\n")
        chain = rest[0]
        rule = tuple(rest[1:])
        if op == "-N":
            if chain in chains:
                return self._result(argv, 1)
            chains[chain] = []
            return self._result(argv)
        if chain not in chains:
            return self._result(argv, 1)
        rules = chains[chain]
        if op == "-C":
            return self._result(argv, 0 if rule in rules else 1)
        if op == "-A":
            rules.append(rule)
        elif op == "-I":
            rules.insert(int(rule[0]) - 1, tuple(rule[1:]))
        elif op == "-D":
            if len(rule) == 1 and rule[0].isdigit():
                del rules[int(rule[0]) - 1]
            elif rule in rules:
                rules.remove(rule)
            else:
                return self._result(argv, 1)
        elif op == "-F":
            rules.clear()
        elif op == "-X":
            if chain in BUILTIN or rules:
                return self._result(argv, 1)
            del chains[chain]
        return self._result(argv)


@pytest.fixture
def runner():
    return FakeIptablesRunner()


@pytest.fixture
def ipt(runner):
    return Iptables(runner=runner)


def postrouting(runner):
    return runner.tables["nat"]["POSTROUTING"]


def test_rule_args_without_random_fully():
    args = masquerade_rule_args(NODE_IP, False)
    assert args[-4:] == ["-j", "SNAT", "--to-source", NODE_IP]
    assert "--random-fully" not in args


def test_rule_args_with_random_fully():
    args = masquerade_rule_args(NODE_IP, True)
    assert args[-1] == "--random-fully"
    assert args[:-1] == masquerade_rule_args(NODE_IP, False)


def test_ensure_masquerade_all_adds_rule_once(runner, ipt):
    ensure_masquerade_rule(ipt, NODE_IP, "", True)
    ensure_masquerade_rule(ipt, NODE_IP, "", True)
    assert postrouting(runner) == [tuple(masquerade_rule_args(NODE_IP, True))]


def test_ensure_uses_plain_rule_on_old_iptables():
    runner = FakeIptablesRunner(version="v1.4.21")
    ensure_masquerade_rule(Iptables(runner=runner), NODE_IP, "", True)
    assert postrouting(runner) == [tuple(masquerade_rule_args(NODE_IP, False))]


def test_ensure_without_masquerade_all_removes_rule(runner, ipt):
    postrouting(runner).append(tuple(masquerade_rule_args(NODE_IP, True)))
    ensure_masquerade_rule(ipt, NODE_IP, "", False)
    assert postrouting(runner) == []


def test_ensure_adds_pod_cidr_rule(runner, ipt):
    ensure_masquerade_rule(ipt, NODE_IP, POD_CIDR, False)
    rules = postrouting(runner)
    assert len(rules) == 1
    rule = rules[0]
    assert rule[rule.index("-s") - 1 : rule.index("-s") + 2] == ("!", "-s", POD_CIDR)
    assert rule[rule.index("-d") - 1 : rule.index("-d") + 2] == ("!", "-d", POD_CIDR)
    assert rule[-1] == "--random-fully"


def test_delete_bad_rules_removes_masquerade_targets(runner, ipt):
    match = ("-m", "ipvs", "--ipvs", "--vdir", "ORIGINAL", "--vmethod", "MASQ",
             "-m", "comment", "--comment", "")
    good = tuple(masquerade_rule_args(NODE_IP, True))
    postrouting(runner).extend([
        match + ("-j", "MASQUERADE"),
        match + ("!", "-s", POD_CIDR, "!", "-d", POD_CIDR, "-j", "MASQUERADE"),
        tuple(masquerade_rule_args(NODE_IP, False)),
        good,
    ])
    delete_bad_masquerade_rules(ipt, NODE_IP, POD_CIDR)
    assert postrouting(runner) == [good]


def test_delete_bad_rules_keeps_plain_snat_on_old_iptables():
    runner = FakeIptablesRunner(version="v1.4.21")
    plain = tuple(masquerade_rule_args(NODE_IP, False))
    postrouting(runner).append(plain)
    delete_bad_masquerade_rules(Iptables(runner=runner), NODE_IP, POD_CIDR)
    assert postrouting(runner) == [plain]


def test_delete_masquerade_rule_removes_first_ipvs_snat(runner, ipt):
    unrelated = ("-o", "eth0", "-j", "MASQUERADE")
    snat = tuple(masquerade_rule_args(NODE_IP, True))
    postrouting(runner).extend([unrelated, snat, snat])
    delete_masquerade_rule(ipt)
    assert postrouting(runner) == [unrelated, snat]


def test_delete_masquerade_rule_without_match_leaves_chain(runner, ipt):
    unrelated = ("-o", "eth0", "-j", "MASQUERADE")
    postrouting(runner).append(unrelated)
    delete_masquerade_rule(ipt)
    assert postrouting(runner) == [unrelated]
    assert ipt.list("nat", "POSTROUTING") == [
        "-P POSTROUTING ACCEPT",
        "-A POSTROUTING -o eth0 -j MASQUERADE",
    ]


def test_ensure_raises_when_append_fails(runner, ipt):
    runner.fail_ops.add("-A")
    with pytest.raises(IptablesError):
        ensure_masquerade_rule(ipt, NODE_IP, "", True)