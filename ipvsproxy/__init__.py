"""Parts of an IPVS service proxy: service and endpoint models, IPVS management, iptables rules."""

__version__ = "0.1.0"