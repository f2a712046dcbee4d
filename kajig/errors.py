from __future__ import annotations


class KajigError(Exception):
    """Base class for errors raised by the research core."""


class ProbeError(KajigError):
    """A single probe failed; the fan-out drops its output and keeps going."""

    def __init__(self, probe_id: str, message: str):
        super().__init__(f"Probe '{probe_id}' failed: {message}")
        self.probe_id = probe_id


class TransportError(KajigError):
    """Backend unreachable, timed out, or answered with a non-success status."""

    def __init__(self, backend_id: str, message: str):
        super().__init__(message)
        self.backend_id = backend_id


class ParseError(KajigError):
    """Backend payload could not be read as chat text."""


class TurnInProgressError(KajigError):
    """A turn was started while another one is still running on the same session."""
