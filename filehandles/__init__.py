"""
filehandles - Open File Handles console

Shows the open file handles of a running server process, as tracked by the
file-leak-detector agent, and attaches that agent on demand.

Components:
- agent.py: name-based lookup of the agent and the out-of-process attach helper
- console.py: activate/report operations and the management link
- auth.py: Ed25519 challenge-response admin login
- api_server.py: FastAPI endpoints and views
- client.py / cli.py: HTTP client and command line
"""

__version__ = "0.3.0"


# Lazy imports so the attach helper can import the package without FastAPI
def __getattr__(name):
    if name == "DiagnosticsAgent":
        from .agent import DiagnosticsAgent
        return DiagnosticsAgent
    elif name == "HandleConsole":
        from .console import HandleConsole
        return HandleConsole
    elif name == "ActivationFailed":
        from .console import ActivationFailed
        return ActivationFailed
    elif name == "AdminAuth":
        from .auth import AdminAuth
        return AdminAuth
    elif name == "HandleConsoleClient":
        from .client import HandleConsoleClient
        return HandleConsoleClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "DiagnosticsAgent",
    "HandleConsole",
    "ActivationFailed",
    "AdminAuth",
    "HandleConsoleClient",
]
