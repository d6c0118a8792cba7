"""Reference agent entry point.

Usage:
    python -m uplink.mock_agent [--stream-interval SECONDS]
"""

from __future__ import annotations

from ..cli import mock_agent

if __name__ == "__main__":
    mock_agent(prog_name="python -m uplink.mock_agent")
