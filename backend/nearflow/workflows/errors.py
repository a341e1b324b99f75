# /nearflow/workflows/errors.py

"""
Error taxonomy for the flow engine.

Recoverable errors (TypeMismatch, InvalidInput, BusyState, NothingToResume,
SessionExpired, HandlerContractViolation) are turned into OutboundInstructions
inside the engine. VersionConflict is retried once and escalates to
TransientError, the only error the transport layer ever sees. Configuration
errors (UnknownFlow, UnknownStep) are raised by registry validation at startup.
"""

from typing import Optional

from nearflow.utils.logging import mask_user_key


class FlowEngineError(Exception):
    """Base class for all engine errors."""
    error_code = "FLOW_ENGINE_ERROR"

    def __init__(self, message: str = "", *, error_code: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if error_code:
            self.error_code = error_code


class TypeMismatch(FlowEngineError):
    error_code = "TYPE_MISMATCH"


class InvalidInput(FlowEngineError):
    """Raw payload could not be normalized (e.g. out-of-range coordinates)."""
    error_code = "INVALID_INPUT"


class HandlerContractViolation(FlowEngineError):
    error_code = "HANDLER_CONTRACT_VIOLATION"


class VersionConflict(FlowEngineError):
    error_code = "VERSION_CONFLICT"

    def __init__(self, user_key: str, expected_version: int, actual_version: Optional[int] = None):
        super().__init__(
            f"Version conflict for session {mask_user_key(user_key)}: expected {expected_version}, found {actual_version}"
        )
        self.user_key = user_key
        self.expected_version = expected_version
        self.actual_version = actual_version


class TransientError(FlowEngineError):
    """The caller should retry the whole event later."""
    error_code = "TRANSIENT"


class BusyState(FlowEngineError):
    error_code = "BUSY"


class NothingToResume(FlowEngineError):
    error_code = "NOTHING_TO_RESUME"


class SessionExpired(FlowEngineError):
    error_code = "SESSION_EXPIRED"


class ConfigurationError(FlowEngineError):
    error_code = "CONFIGURATION_ERROR"


class UnknownFlow(ConfigurationError):
    error_code = "UNKNOWN_FLOW"


class UnknownStep(ConfigurationError):
    error_code = "UNKNOWN_STEP"
