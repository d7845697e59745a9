"""Exception hierarchy for Tandem."""

from __future__ import annotations

DUPLICATE_SERVICE_EXIT = 3
MULTIPLE_DEFAULTS_EXIT = 4


class TandemError(Exception):
    """Base class for Tandem errors."""


class ValidationFatal(TandemError):
    """A registry problem that makes any generated routing unsafe.

    Aborts the compilation before any configuration file is written and
    terminates the process with ``exit_code``.
    """

    exit_code: int = 1

    def __init__(self, message: str, service: str) -> None:
        super().__init__(message)
        self.service = service


class DuplicateServiceError(ValidationFatal):
    exit_code = DUPLICATE_SERVICE_EXIT

    def __init__(self, service: str, first_source: str, second_source: str) -> None:
        if first_source == second_source:
            message = f"Service '{service}' is defined more than once in {first_source}"
        else:
            message = f"Service '{service}' is defined in both {first_source} and {second_source}"
        super().__init__(message, service)
        self.first_source = first_source
        self.second_source = second_source


class MultipleDefaultsError(ValidationFatal):
    exit_code = MULTIPLE_DEFAULTS_EXIT

    def __init__(self, service: str, previous: str) -> None:
        super().__init__(
            f"Service '{service}' is marked default but '{previous}' already is",
            service,
        )
        self.previous = previous


class ProcessLifecycleError(TandemError):
    """A proxy process failed to start or died while settling."""

    def __init__(self, role: str, message: str) -> None:
        super().__init__(f"{role}: {message}")
        self.role = role
