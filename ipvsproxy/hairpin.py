"""iptables rules that let a pod reach itself through its own service VIP."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence, Tuple

from .iptables import Iptables, IptablesError
from .services import EndpointInfo, ServiceInfo, has_active_endpoints

logger = logging.getLogger(__name__)

NAT_TABLE = "nat"
POSTROUTING_CHAIN = "POSTROUTING"
HAIRPIN_CHAIN_NAME = "KUBE-ROUTER-HAIRPIN"
HAIRPIN_JUMP_ARGS = ("-m", "ipvs", "--vdir", "ORIGINAL", "-j", HAIRPIN_CHAIN_NAME)


def hairpin_rule_from(
    service_ip: str, endpoint_ip: str, service_port: int
) -> Tuple[str, List[str]]:
    """Return the rule as iptables lists it, and the arguments that create it."""
    rule_args = [
        "-s", f"{endpoint_ip}/32",
        "-d", f"{endpoint_ip}/32",
        "-m", "ipvs",
        "--vaddr", service_ip,
        "--vport", str(service_port),
        "-j", "SNAT",
        "--to-source", service_ip,
    ]
    rule = f"-A {HAIRPIN_CHAIN_NAME} " + " ".join(rule_args)
    return rule, rule_args


def hairpin_rules_needed(
    service_map: Mapping[str, ServiceInfo],
    endpoints_map: Mapping[str, Sequence[EndpointInfo]],
    node_ip,
    global_hairpin: bool,
) -> Dict[str, List[str]]:
    """Work out the hairpin rules wanted for local endpoints of hairpin services."""
    rules: Dict[str, List[str]] = {}
    for service_id, info in service_map.items():
        if not (global_hairpin or info.hairpin):
            continue
        endpoints = endpoints_map.get(service_id, [])
        if not has_active_endpoints(endpoints):
            continue
        for endpoint in endpoints:
            if not endpoint.is_local:
                continue
            rule, args = hairpin_rule_from(str(info.cluster_ip), endpoint.ip, info.port)
            rules[rule] = args
            if info.hairpin_external_ips:
                for external_ip in info.external_ips:
                    rule, args = hairpin_rule_from(external_ip, endpoint.ip, info.port)
                    rules[rule] = args
            if info.node_port != 0:
                rule, args = hairpin_rule_from(str(node_ip), endpoint.ip, info.node_port)
                rules[rule] = args
    return rules


def sync_hairpin_rules(iptables: Iptables, rules_needed: Mapping[str, Sequence[str]]) -> None:
    """Make the hairpin chain hold exactly the wanted rules."""
    if not rules_needed:
        logger.debug("No hairpin-mode enabled services found -- no hairpin rules created")
        delete_hairpin_rules(iptables)
        return

    if HAIRPIN_CHAIN_NAME not in iptables.list_chains(NAT_TABLE):
        iptables.new_chain(NAT_TABLE, HAIRPIN_CHAIN_NAME)

    iptables.append_unique(NAT_TABLE, POSTROUTING_CHAIN, *HAIRPIN_JUMP_ARGS)

    rules_from_node = iptables.list(NAT_TABLE, HAIRPIN_CHAIN_NAME)
    present = set(rules_from_node)
    for rule, args in rules_needed.items():
        if rule not in present:
            iptables.append_unique(NAT_TABLE, HAIRPIN_CHAIN_NAME, *args)

    for rule in rules_from_node:
        if rule in rules_needed:
            continue
        fields = rule.split()
        if len(fields) > 2:
            try:
                iptables.delete(NAT_TABLE, HAIRPIN_CHAIN_NAME, *fields[2:])
            except IptablesError as exc:
                logger.error(
                    'Unable to delete hairpin rule "%s" from chain %s: %s',
                    rule, HAIRPIN_CHAIN_NAME, exc,
                )
            else:
                logger.debug(
                    'Deleted invalid/outdated hairpin rule "%s" from chain %s',
                    rule, HAIRPIN_CHAIN_NAME,
                )
        elif rule != f"-N {HAIRPIN_CHAIN_NAME}":
            logger.debug(
                'Not removing invalid hairpin rule "%s" from chain %s',
                rule, HAIRPIN_CHAIN_NAME,
            )


def delete_hairpin_rules(iptables: Iptables) -> None:
    """Remove the jump rule and the hairpin chain, if the chain exists."""
    if HAIRPIN_CHAIN_NAME not in iptables.list_chains(NAT_TABLE):
        return

    if iptables.exists(NAT_TABLE, POSTROUTING_CHAIN, *HAIRPIN_JUMP_ARGS):
        try:
            iptables.delete(NAT_TABLE, POSTROUTING_CHAIN, *HAIRPIN_JUMP_ARGS)
        except IptablesError as exc:
            logger.error('unable to delete hairpin jump rule from chain "POSTROUTING": %s', exc)
        else:
            logger.debug('Deleted hairpin jump rule from chain "POSTROUTING"')

    iptables.clear_chain(NAT_TABLE, HAIRPIN_CHAIN_NAME)
    iptables.delete_chain(NAT_TABLE, HAIRPIN_CHAIN_NAME)