"""
Engine error taxonomy.

Every operation of the selector and the attempt tracker either returns a value or
raises one of these. Errors are grouped by ``category`` so callers can tell a
self-contradictory request from a resource shortage, a lifecycle conflict, or an
unknown identifier.
"""
from typing import Any, Dict, Optional


class EngineError(Exception):
    status_code = 400
    code = "engine_error"
    category = "engine"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "type": self.code, "category": self.category, "details": self.details}


class ConfigurationError(EngineError):
    """The request contradicts itself or asks for something malformed."""
    status_code = 422
    code = "configuration_error"
    category = "configuration"


class InvalidAnswerError(ConfigurationError):
    code = "invalid_answer"


class InsufficientPoolError(EngineError):
    """The active pool cannot satisfy a target; the caller may relax filters and retry."""
    status_code = 422
    code = "insufficient_pool"
    category = "resource"

    def __init__(self, message: str, tier: Optional[str] = None, requested: int = 0, available: int = 0, **details: Any):
        super().__init__(message, tier=tier, requested=requested, available=available, **details)
        self.tier = tier
        self.requested = requested
        self.available = available


class StateConflictError(EngineError):
    status_code = 409
    code = "state_conflict"
    category = "state_conflict"


class DuplicateActiveAttemptError(StateConflictError):
    code = "duplicate_active_attempt"

    def __init__(self, message: str, attempt_id: Optional[str] = None, **details: Any):
        super().__init__(message, attempt_id=attempt_id, **details)
        self.attempt_id = attempt_id


class AttemptNotActiveError(StateConflictError):
    code = "attempt_not_active"

    def __init__(self, message: str, status: Optional[str] = None, **details: Any):
        super().__init__(message, status=status, **details)
        self.status = status


class AttemptExpiredError(AttemptNotActiveError):
    code = "attempt_expired"


class QuestionSetUnavailableError(StateConflictError):
    code = "question_set_unavailable"


class ConcurrentModificationError(StateConflictError):
    code = "concurrent_modification"


class NotFoundError(EngineError):
    status_code = 404
    code = "not_found"
    category = "not_found"
