import ipaddress

import pytest

from ipvsproxy.ipvs import (
    IpvsDestination,
    IpvsService,
    IpvsStats,
    SchedFlags,
    destination_string,
    protocol_name,
    protocol_number,
    sched_flags_changed,
    service_string,
    set_persistence,
    set_sched_flags,
)


def test_protocol_numbers_match_syscall_values():
    assert protocol_number("tcp") == 6
    assert protocol_number("udp") == 17
    assert protocol_number("TCP") == 6
    assert protocol_number("sctp") == 0


@pytest.mark.parametrize("name", ["tcp", "udp"])
def test_protocol_round_trip(name):
    assert protocol_name(protocol_number(name)) == name


def test_unknown_protocol_number_is_none():
    assert protocol_name(0) == "none"
    assert protocol_name(255) == "none"


def test_service_address_is_normalized():
    svc = IpvsService(address="10.0.0.1", protocol=6, port=8080)
    assert svc.address == ipaddress.ip_address("10.0.0.1")
    assert IpvsDestination(address="172.20.1.1", port=80).address == ipaddress.ip_address(
        "172.20.1.1"
    )


def test_service_string_persistent():
    svc = IpvsService(address="10.0.0.1", protocol=6, port=8080)
    set_persistence(svc, True, 10800)
    assert service_string(svc) == "tcp:10.0.0.1:8080 (Flags: [persistent port])"


def test_service_string_fwmark_ignores_address():
    svc = IpvsService(fwmark=1234, protocol=6, port=80)
    text = service_string(svc)
    assert text.startswith("FWMark:1234 (Flags: ")
    assert "tcp" not in text


def test_service_string_lists_sched_flags_in_order():
    svc = IpvsService(address="5.6.7.8", protocol=17, port=53)
    set_sched_flags(svc, SchedFlags(True, True, True))
    text = str(svc)
    assert text.startswith("udp:5.6.7.8:53 (Flags: ")
    assert text.index("[flag-1(fallback)]") < text.index("[flag-2(port)]") < text.index("[flag-3]")


def test_destination_string():
    dst = IpvsDestination(address="172.20.1.1", port=80, weight=1)
    assert destination_string(dst) == "172.20.1.1:80 (Weight: 1)"
    assert str(dst) == destination_string(dst)


def test_set_persistence_on_and_off():
    svc = IpvsService(address="10.0.0.1", protocol=6, port=80)
    set_persistence(svc, True, 300)
    assert svc.flags & 0x0001
    assert svc.netmask == 0xFFFFFFFF
    assert svc.timeout == 300
    set_persistence(svc, False, 300)
    assert svc.flags & 0x0001 == 0
    assert svc.netmask == 0
    assert svc.timeout == 0


def test_set_sched_flags_then_unchanged():
    svc = IpvsService(address="10.0.0.1", protocol=6, port=80)
    wanted = SchedFlags(True, False, True)
    assert sched_flags_changed(svc, wanted)
    set_sched_flags(svc, wanted)
    assert not sched_flags_changed(svc, wanted)
    assert svc.flags & 0x0008
    assert svc.flags & 0x0010 == 0
    assert svc.flags & 0x0020
    assert svc.netmask == 0xFFFFFFFF


def test_persistence_netmask_kept_when_sched_flags_cleared():
    svc = IpvsService(address="10.0.0.1", protocol=6, port=80)
    set_persistence(svc, True, 60)
    set_sched_flags(svc, SchedFlags())
    assert svc.netmask == 0xFFFFFFFF
    assert svc.flags & 0x0001


def test_sched_flags_changed_detects_each_flag():
    svc = IpvsService(address="10.0.0.1", protocol=6, port=80)
    set_sched_flags(svc, SchedFlags(True, True, True))
    assert sched_flags_changed(svc, SchedFlags(False, True, True))
    assert sched_flags_changed(svc, SchedFlags(True, False, True))
    assert sched_flags_changed(svc, SchedFlags(True, True, False))
    assert not sched_flags_changed(svc, SchedFlags(True, True, True))


def test_sched_flags_any():
    assert SchedFlags().any() is False
    assert SchedFlags(flag2=True).any() is True


def test_default_stats_are_zero():
    svc = IpvsService(address="10.0.0.1")
    assert svc.stats == IpvsStats()
    assert svc.stats.connections == 0
    assert svc.sched_name == "rr"