"""
Exceptions raised by the engine adapter and the conversion orchestrator.
"""
from typing import Optional, Sequence


class ConverterError(Exception):
    """Base exception for conversion errors"""
    def __init__(self, message: str, command: Optional[Sequence[str]] = None, output: Optional[str] = None):
        self.message = message
        self.command = list(command) if command is not None else None
        self.output = output
        super().__init__(self.message)


class LoadFailure(ConverterError):
    """The engine could not be located or initialized."""


class ValidationFailure(ConverterError):
    """A drop was rejected; the state machine is left untouched."""


class EngineIOError(ConverterError):
    """A virtual filesystem read, write or delete failed."""


class InvalidTransition(ConverterError):
    pass


class ExecutionFailure(ConverterError):
    """The engine exited with a non-zero code."""
    def __init__(self, message: str, exit_code: int, command: Optional[Sequence[str]] = None, output: Optional[str] = None):
        super().__init__(message, command=command, output=output)
        self.exit_code = exit_code
