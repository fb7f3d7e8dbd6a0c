# Maboroshi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Failure taxonomy for the playback core.

Gateway and control-socket failures are raised as one of these; the
orchestrator catches MaboroshiError and turns it into the ERROR status
plus a log line.
"""


class MaboroshiError(Exception):
    """Base exception for maboroshi."""


class LaunchError(MaboroshiError):
    """An external process could not be started."""


class DeadlineExceeded(MaboroshiError):
    """A process or socket operation ran past its deadline."""


class ToolError(MaboroshiError):
    """An external tool exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int, diagnostics: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.diagnostics = diagnostics
        message = f"{tool} exited with status {returncode}"
        if diagnostics:
            message = f"{message}: {diagnostics}"
        super().__init__(message)


class SocketConnectionError(MaboroshiError):
    """The player control socket is missing or refused the connection."""


class ProtocolError(MaboroshiError):
    """Malformed or unexpected payload on the control socket."""


class NotFoundError(MaboroshiError):
    """No search results or no audio stream for a keyword."""


class FavoritesError(MaboroshiError):
    """The favorites file could not be written."""
