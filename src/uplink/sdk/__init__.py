"""Uplink SDK - client for connecting to a running uplink server."""

from .client import UplinkClient

__all__ = ["UplinkClient"]
