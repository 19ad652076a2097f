"""
Error Types

Exceptions shared by the timeline model, the render graph compiler
and the export pipeline.

Hierarchy:
    TimelineError
    ├── ValidationError   - rejected edit or export request, no effect
    ├── CompilationError  - internal failure while building a render graph
    └── ExecutionError    - the media engine reported a failure
"""


class TimelineError(Exception):
    """Base class for all timeline editor errors."""


class ValidationError(TimelineError, ValueError):
    """
    Raised when an edit operation or export request is invalid.

    The operation that raised it has not changed any state.
    """


class CompilationError(TimelineError):
    """
    Raised when render graph construction fails after validation passed.

    Callers report it as a failed export instead of letting it crash
    the application.
    """


class ExecutionError(TimelineError):
    """Raised when the media engine fails to render a graph."""

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics
