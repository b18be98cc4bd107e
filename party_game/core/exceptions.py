"""
Game error taxonomy
游戏错误分类 - 所有失败都是单次操作级别、可重试的
"""

from typing import Any, Dict, List, Optional


class GameError(Exception):
    """Base class for every per-action failure"""

    code = "game_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.code,
            "message": self.message,
            "error_details": self.details or None,
        }


class ValidationError(GameError):
    """Input rejected locally before any store write"""

    code = "validation_error"
    status_code = 422


class PreconditionFailed(GameError):
    """A transition or action guard does not hold for the current state"""

    code = "precondition_failed"
    status_code = 409


class NotFoundError(GameError):
    """Referenced row does not exist"""

    code = "not_found"
    status_code = 404


class PermissionDenied(GameError):
    """Caller identity may not perform this action"""

    code = "permission_denied"
    status_code = 403


class StoreError(GameError):
    """The persistent store rejected a read or write"""

    code = "store_error"
    status_code = 503


class PartialSequenceFailure(StoreError):
    """A multi-step operation stopped part way through"""

    code = "partial_sequence_failure"
    status_code = 500

    def __init__(
        self,
        message: str,
        failed_step: str,
        completed_steps: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps or [])
        merged = dict(details or {})
        merged.update({
            "failed_step": failed_step,
            "completed_steps": self.completed_steps,
        })
        super().__init__(message, merged)
