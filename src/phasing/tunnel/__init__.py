"""
Tunnel system for relaying cluster traffic to the local machine.

This module provides the kubectl control channel to the agent, the reverse
SSH tunnel session, and the byte relay between paired connections.
"""

from phasing.tunnel.bind_connection import bind_connection, bind_reader_writer
from phasing.tunnel.control_channel import ControlChannelBootstrap
from phasing.tunnel.session import TunnelSession

__all__ = [
    "ControlChannelBootstrap",
    "TunnelSession",
    "bind_connection",
    "bind_reader_writer",
]
