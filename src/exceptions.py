"""
Custom exception hierarchy for the dashboard state layer.

Hierarchy:

    DashboardError (base)
    ├── OperationalError      - transient (network, handshake, remote sync)
    │   ├── TransportError    - stream connect/handshake/timeout failures
    │   └── SyncError         - remote history/log mirror or fetch failed
    ├── DataError             - bad payload, discard event, keep going
    │   └── PayloadShapeError - payload matches none of the known shapes
    └── StaleGenerationError  - event from a superseded session generation

Rules:
    - OperationalError: catch, log at warning, retry or carry on with local state
    - DataError: catch, log, discard the event, continue with the next one
    - StaleGenerationError: drop silently, it is expected during reconnects
    - Everything else (AttributeError, TypeError, etc.): let it propagate.
"""


class DashboardError(Exception):
    """Base exception for all dashboard state errors."""
    pass


# ============ OPERATIONAL (transient) ============

class OperationalError(DashboardError):
    """Transient error: network, handshake, remote endpoint.

    Treatment: catch, log, retry on the fixed delay or fall back to local state.
    """
    pass


class TransportError(OperationalError):
    """Raised when the stream connection cannot be established or is lost."""
    pass


class SyncError(OperationalError):
    """Raised when the remote history/log endpoint cannot be read or written."""
    pass


# ============ DATA (bad input, discard) ============

class DataError(DashboardError):
    """Bad inbound data.

    Treatment: catch, log, discard the event, continue with the next one.
    """
    pass


class PayloadShapeError(DataError):
    """Raised when an event body matches none of the known payload shapes."""

    def __init__(self, event: str, detail: str = ""):
        self.event = event
        self.detail = detail
        super().__init__(f"Unrecognized payload shape for '{event}'" + (f": {detail}" if detail else ""))


# ============ GENERATION (superseded session) ============

class StaleGenerationError(DashboardError):
    """An event was produced by a session generation that has since been replaced.

    Treatment: drop without logging.
    """

    def __init__(self, event_generation: int, current_generation: int):
        self.event_generation = event_generation
        self.current_generation = current_generation
        super().__init__(
            f"Event from generation {event_generation} (current {current_generation})"
        )
