"""
Diagnostics agent adapter.

The file-leak-detector agent is never imported by this package. Once it has
been attached it lives in the process-wide module registry (``sys.modules``),
and both entry points are looked up there by name:

    <listener>.is_agent_installed() -> bool
    <listener>.dump(writer) -> None

Importing the listener ourselves would give a copy whose tracking state is
empty, so a missing module simply means "not resident".

Attaching happens out of process: a helper runs with the same interpreter,

    <python> -m <agent main> <pid> [<options>]

and installs the agent into the process with that pid. Exit code 0 means the
agent is attached; anything else means the merged helper output explains why
it is not.
"""

from __future__ import annotations

import importlib.util
import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from types import ModuleType
from typing import List, Optional, TextIO

from .config import get_agent_listener, get_agent_main, get_attach_timeout
from .observability import span

logger = logging.getLogger(__name__)

# Seconds to collect remaining output once a timed-out helper is killed
KILL_DRAIN_SECONDS = 5.0


class AgentNotFound(RuntimeError):
    """The helper module that installs the agent cannot be located."""


def normalize_options(options: Optional[str]) -> Optional[str]:
    """Blank option strings are passed to the helper as no argument at all."""
    if options is None or not options.strip():
        return None
    return options


@dataclass(frozen=True)
class ActivationRequest:
    """One attach attempt against a target process."""
    pid: int
    options: Optional[str] = None

    @classmethod
    def for_current_process(cls, options: Optional[str] = None) -> "ActivationRequest":
        return cls(pid=os.getpid(), options=normalize_options(options))


@dataclass(frozen=True)
class HelperOutcome:
    """Exit status and merged stdout/stderr of one helper run."""
    exit_code: int
    output: str
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class DiagnosticsAgent:
    """
    Capability adapter around the external file-leak-detector agent.

    is_resident() and report() only read the agent's state; attach() spawns
    exactly one helper process per call and never retries.
    """

    def __init__(
        self,
        listener_name: str,
        main_module: str,
        python: str = sys.executable,
        timeout: Optional[float] = None,
    ):
        self.listener_name = listener_name
        self.main_module = main_module
        self.python = python
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> "DiagnosticsAgent":
        return cls(
            listener_name=get_agent_listener(),
            main_module=get_agent_main(),
            timeout=get_attach_timeout(),
        )

    # =========================================================================
    # RESIDENCY
    # =========================================================================

    def lookup_listener(self) -> Optional[ModuleType]:
        """Resolve the listener module from sys.modules, or None if it was never loaded."""
        listener = sys.modules.get(self.listener_name)
        if listener is None:
            logger.debug("Listener %s is not loaded in this process", self.listener_name)
        return listener

    def _resident_listener(self) -> Optional[ModuleType]:
        listener = self.lookup_listener()
        if listener is None:
            return None
        query = getattr(listener, "is_agent_installed", None)
        if not callable(query):
            logger.debug("Listener %s has no is_agent_installed()", self.listener_name)
            return None
        try:
            installed = bool(query())
        except Exception:
            # incompatible agent version or broken agent state
            logger.debug("is_agent_installed() on %s failed", self.listener_name, exc_info=True)
            return None
        return listener if installed else None

    def is_resident(self) -> bool:
        return self._resident_listener() is not None

    # =========================================================================
    # REPORT
    # =========================================================================

    def report(self, sink: TextIO) -> bool:
        """
        Write the agent's open-handle dump into ``sink``.

        Returns False without writing anything when the agent is not resident.
        """
        listener = self._resident_listener()
        if listener is None:
            return False
        dump = getattr(listener, "dump", None)
        if not callable(dump):
            logger.debug("Listener %s has no dump()", self.listener_name)
            return False
        with span("fhc.agent.dump", {"fhc.listener": self.listener_name}):
            dump(sink)
        return True

    # =========================================================================
    # ATTACH
    # =========================================================================

    def command_line(self, request: ActivationRequest) -> List[str]:
        try:
            spec = importlib.util.find_spec(self.main_module)
        except ModuleNotFoundError:
            spec = None
        if spec is None:
            raise AgentNotFound(f"Cannot locate agent module {self.main_module!r}")

        args = [self.python, "-m", self.main_module, str(request.pid)]
        if request.options is not None:
            args.append(request.options)
        return args

    def helper_env(self) -> dict:
        """Environment for the helper: ours, with PYTHONPATH covering our sys.path."""
        env = dict(os.environ)
        paths: List[str] = []
        for entry in sys.path:
            if entry and entry not in paths:
                paths.append(entry)
        existing = env.get("PYTHONPATH")
        if existing:
            paths.append(existing)
        env["PYTHONPATH"] = os.pathsep.join(paths)
        return env

    def attach(self, request: ActivationRequest) -> HelperOutcome:
        """
        Run the attach helper for ``request`` and wait for it to exit.

        Output is read while waiting; reading only after exit would deadlock
        once the helper fills the pipe buffer.
        """
        args = self.command_line(request)
        logger.info("Launching agent helper for pid %d: %s", request.pid, " ".join(args))

        attributes = {"fhc.target_pid": request.pid, "fhc.agent_main": self.main_module}
        with span("fhc.agent.attach", attributes) as current:
            outcome = self._run_helper(args)
            if current is not None:
                current.set_attribute("fhc.exit_code", outcome.exit_code)
                current.set_attribute("fhc.timed_out", outcome.timed_out)
        return outcome

    def _run_helper(self, args: List[str]) -> HelperOutcome:
        proc = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=self.helper_env(),
        )
        try:
            out, _ = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Agent helper %d exceeded %ss, killing it", proc.pid, self.timeout)
            proc.kill()
            try:
                out, _ = proc.communicate(timeout=KILL_DRAIN_SECONDS)
            except subprocess.TimeoutExpired as exc:
                # a process the helper spawned still holds the pipe open
                logger.warning("Agent helper %d output still open after kill, abandoning it", proc.pid)
                out = exc.output
                proc.stdout.close()
                proc.wait()
            return HelperOutcome(proc.returncode, _decode(out), timed_out=True)

        logger.info("Agent helper %d exited with code %d", proc.pid, proc.returncode)
        return HelperOutcome(proc.returncode, _decode(out))


def _decode(raw: Optional[bytes]) -> str:
    return (raw or b"").decode("utf-8", errors="replace")
