"""Errors raised by the build dispatcher."""

from __future__ import annotations


class SchedulerStateError(RuntimeError):
    """Raised when the admission scheduler is used inconsistently."""

    @classmethod
    def not_active(cls, build_id: str) -> SchedulerStateError:
        """Return an error for releasing a build that holds no slot."""
        return cls(f"Build {build_id} does not hold a concurrency slot")

    @classmethod
    def closed(cls) -> SchedulerStateError:
        """Return an error for enqueueing into a closed scheduler."""
        return cls("Admission scheduler is closed")


class DispatcherConfigError(ValueError):
    """Raised when dispatcher configuration is missing or invalid."""

    def __init__(self, message: str, *, variable: str | None = None) -> None:
        """Initialise with a message and the offending setting name."""
        self.variable = variable
        super().__init__(message)

    @classmethod
    def missing(cls, variable: str) -> DispatcherConfigError:
        """Return an error for a required setting that is unset."""
        return cls(f"{variable} is required", variable=variable)

    @classmethod
    def invalid(
        cls, variable: str, raw: object, expectation: str
    ) -> DispatcherConfigError:
        """Return an error for a setting whose value cannot be used."""
        return cls(f"{variable} must be {expectation}, got: {raw!r}", variable=variable)
