"""Exceptions raised by the session backend.

Recoverable round conditions (too few participants, capacity, stale
snapshots, empty elimination pool) are reported as ``Condition`` values and
never raised. Only programming errors and lookups of unknown objects end up
here.
"""


class FingerpickError(Exception):
    """Base class for backend errors."""


class SessionNotFound(FingerpickError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class UnknownMode(FingerpickError):
    def __init__(self, mode: object):
        self.mode = mode
        super().__init__(f"Unknown mode: {mode!r}")


class InvalidStateTransition(FingerpickError):
    def __init__(self, current: object, target: object):
        self.current = current
        self.target = target
        super().__init__(f"Invalid phase transition {current} -> {target}")
