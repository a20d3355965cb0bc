"""Output sinks for netfilter packet and flow logs, and a ULOG netlink reader."""

__version__ = "0.1.0"