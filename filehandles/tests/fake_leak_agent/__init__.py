"""
Stand-in for the file-leak-detector agent, used by the console tests.

``python -m filehandles.tests.fake_leak_agent <pid> [options]`` plays the
attach helper: it validates the options and records residency for ``pid`` in
a marker file under FAKE_AGENT_STATE_DIR. ``listener`` answers residency
queries from that marker and dumps the descriptors of the current process
from /proc/self/fd.
"""
import os
import tempfile
from pathlib import Path

KNOWN_OPTIONS = {"strong", "trace", "error", "threshold", "dumpatshutdown"}


def state_dir() -> Path:
    raw = os.environ.get("FAKE_AGENT_STATE_DIR")
    return Path(raw) if raw else Path(tempfile.gettempdir()) / "fake-leak-agent"


def marker_for(pid: int) -> Path:
    return state_dir() / str(pid)
