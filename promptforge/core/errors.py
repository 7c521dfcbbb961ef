"""Exception hierarchy for PromptForge."""


class PromptForgeError(Exception):
    """Base class for all PromptForge errors."""


class ChainError(PromptForgeError):
    """Errors raised by the chain model and executor."""


class ChainBusyError(ChainError):
    """A run is in progress: the chain cannot be run again or edited."""


class ChainNotIdleError(ChainError):
    """run() was called on a chain whose stages have not been reset."""


class StageNotFoundError(ChainError, KeyError):
    """No stage with the given id exists in the chain."""

    def __init__(self, stage_id: str):
        super().__init__(stage_id)
        self.stage_id = stage_id

    def __str__(self) -> str:
        return f"Stage not found: {self.stage_id}"


class InvalidFieldError(ChainError, ValueError):
    """The field name is not one of the five RICCE fields."""


class StageStateError(ChainError):
    """Illegal stage status transition."""


class ChainExecutionError(ChainError):
    """A chain run finished without completing every stage."""

    def __init__(self, message: str, failed_stage_id=None, cause=None):
        super().__init__(message)
        self.failed_stage_id = failed_stage_id
        self.cause = cause


class GenerationError(PromptForgeError):
    """The generation service could not complete a request."""


class StorageError(PromptForgeError):
    """Local template/history storage could not be read or written."""


class ChatBusyError(PromptForgeError):
    """A chat reply is still streaming; wait for it before sending again."""
