"""
Open File Handles console.

Two operations, both behind the admin check done by the HTTP layer:

    report()          -> the agent's open-handle dump, or None before activation
    activate(opts)    -> attaches the agent once; later calls are no-ops

Typical flow: report() returns None, the admin activates, report() again.
"""

from __future__ import annotations

import io
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from .agent import ActivationRequest, DiagnosticsAgent

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Successfully activated file leak detector"
ALREADY_ACTIVE_MESSAGE = "File leak detector is already activated"
FAILURE_PREFIX = (
    "Failed to activate file leak detector. Perhaps the parameters were incorrect. "
    "Look for 'Agent failed to start!' in stderr logs for more info. Additional logs:\n"
)


class ActivationFailed(Exception):
    """
    The attach helper exited non-zero (or was killed after the attach timeout).

    The helper's output is the only record of what went wrong: it runs in a
    separate process, so nothing it printed reaches our logs. The message
    always carries that output in full.
    """

    def __init__(self, output: str, timeout: Optional[float] = None):
        self.output = output
        self.timeout = timeout
        message = FAILURE_PREFIX + output
        if timeout is not None:
            message = f"Agent helper did not finish within {timeout:g}s and was killed.\n" + message
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.args[0]


@dataclass(frozen=True)
class ActivationResult:
    already_active: bool = False

    @property
    def message(self) -> str:
        return ALREADY_ACTIVE_MESSAGE if self.already_active else SUCCESS_MESSAGE


@dataclass(frozen=True)
class ManagementLink:
    """How the console shows up on the server's management page."""
    display_name: str
    url_name: str
    icon: str
    description: str
    category: str

    def to_dict(self) -> dict:
        return asdict(self)


FILE_HANDLES_LINK = ManagementLink(
    display_name="Open File Handles",
    url_name="file-handles",
    icon="help.png",
    description="Monitor the current open file handles on the server process",
    category="troubleshooting",
)


class HandleConsole:
    def __init__(self, agent: DiagnosticsAgent):
        self.agent = agent

    def is_active(self) -> bool:
        return self.agent.is_resident()

    def report(self) -> Optional[str]:
        """Dump the currently open handles. None means the agent is not running."""
        sink = io.StringIO()
        if not self.agent.report(sink):
            return None
        return sink.getvalue()

    def activate(self, options: Optional[str] = None) -> ActivationResult:
        if self.agent.is_resident():
            return ActivationResult(already_active=True)

        request = ActivationRequest.for_current_process(options)
        outcome = self.agent.attach(request)
        if not outcome.succeeded:
            error = ActivationFailed(
                outcome.output,
                timeout=self.agent.timeout if outcome.timed_out else None,
            )
            logger.warning(error.message)
            raise error

        logger.info("File leak detector attached to pid %d", request.pid)
        return ActivationResult()
