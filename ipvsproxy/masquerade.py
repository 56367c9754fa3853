"""iptables rules that source-NAT outbound IPVS traffic to the node address."""

from __future__ import annotations

import logging
from typing import List

from .iptables import Iptables

logger = logging.getLogger(__name__)

NAT_TABLE = "nat"
POSTROUTING_CHAIN = "POSTROUTING"

_IPVS_MASQ_MATCH = (
    "-m", "ipvs", "--ipvs", "--vdir", "ORIGINAL", "--vmethod", "MASQ",
    "-m", "comment", "--comment", "",
)


def masquerade_rule_args(node_ip, random_fully: bool) -> List[str]:
    """Arguments of the rule that SNATs all outbound IPVS traffic to the node IP."""
    args = [*_IPVS_MASQ_MATCH, "-j", "SNAT", "--to-source", str(node_ip)]
    if random_fully:
        args.append("--random-fully")
    return args


def _pod_cidr_rule_args(node_ip, pod_cidr: str, random_fully: bool) -> List[str]:
    args = [
        *_IPVS_MASQ_MATCH,
        "!", "-s", pod_cidr, "!", "-d", pod_cidr,
        "-j", "SNAT", "--to-source", str(node_ip),
    ]
    if random_fully:
        args.append("--random-fully")
    return args


def ensure_masquerade_rule(
    iptables: Iptables, node_ip, pod_cidr: str, masquerade_all: bool
) -> None:
    """Add or remove the masquerade-all rule and ensure the pod CIDR rule.

    IPVS NAT needs return traffic to pass through the director, so outbound
    IPVS traffic gets the node IP as its source.
    """
    random_fully = iptables.has_random_fully()
    args = masquerade_rule_args(node_ip, random_fully)
    if masquerade_all:
        iptables.append_unique(NAT_TABLE, POSTROUTING_CHAIN, *args)
    elif iptables.exists(NAT_TABLE, POSTROUTING_CHAIN, *args):
        iptables.delete(NAT_TABLE, POSTROUTING_CHAIN, *args)
        logger.info("Deleted iptables rule to masquerade all outbound IVPS traffic.")

    if pod_cidr:
        cidr_args = _pod_cidr_rule_args(node_ip, pod_cidr, random_fully)
        iptables.append_unique(NAT_TABLE, POSTROUTING_CHAIN, *cidr_args)
    logger.debug("Successfully synced iptables masquerade rule")


def delete_bad_masquerade_rules(iptables: Iptables, node_ip, pod_cidr: str) -> None:
    """Remove outdated masquerade rules left behind by earlier versions."""
    bad_rules = [
        [*_IPVS_MASQ_MATCH, "-j", "MASQUERADE"],
        [*_IPVS_MASQ_MATCH, "!", "-s", pod_cidr, "!", "-d", pod_cidr, "-j", "MASQUERADE"],
    ]
    if iptables.has_random_fully():
        bad_rules.append(masquerade_rule_args(node_ip, False))
        if pod_cidr:
            bad_rules.append(_pod_cidr_rule_args(node_ip, pod_cidr, False))

    for args in bad_rules:
        if iptables.exists(NAT_TABLE, POSTROUTING_CHAIN, *args):
            iptables.delete(NAT_TABLE, POSTROUTING_CHAIN, *args)
            logger.info("Deleted old/bad iptables rule to masquerade outbound traffic.")


def delete_masquerade_rule(iptables: Iptables) -> None:
    """Delete the first IPVS SNAT rule found in the POSTROUTING chain."""
    rules = iptables.list(NAT_TABLE, POSTROUTING_CHAIN)
    for number, rule in enumerate(rules):
        if "ipvs" in rule and "SNAT" in rule:
            iptables.delete(NAT_TABLE, POSTROUTING_CHAIN, str(number))
            logger.debug("Deleted iptables masquerade rule: %s", rule)
            break