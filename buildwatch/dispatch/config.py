"""Configuration for the build dispatcher.

Usage
-----
Create a configuration directly:

>>> config = DispatcherConfig(server_url="https://develocity.example.com")
>>> config.max_concurrent_builds
20

Or load it from environment variables:

>>> import os
>>> os.environ["BUILDWATCH_SERVER_URL"] = "https://develocity.example.com"
>>> os.environ["BUILDWATCH_MAX_CONCURRENT_BUILDS"] = "4"
>>> DispatcherConfig.from_env().max_concurrent_builds
4

"""

from __future__ import annotations

import dataclasses as dc
import math
import os
import urllib.parse

from buildwatch.common.time import NOW_MARKER, format_start_marker

from .errors import DispatcherConfigError
from .scheduler import DEFAULT_MAX_REMEMBERED, OverflowPolicy

ENV_PREFIX = "BUILDWATCH_"


@dc.dataclass(frozen=True, slots=True)
class DispatcherConfig:
    """Settings for the build dispatcher.

    Attributes
    ----------
    server_url
        Base URL of the build export server.
    since
        Start marker for the announcement feed: ``now`` or epoch
        milliseconds.
    max_concurrent_builds
        Maximum number of per-build streams open at once.
    max_pending_builds
        Optional bound on the pending queue; ``None`` leaves it unbounded.
    overflow_policy
        Behaviour when the bounded pending queue is full.
    idle_timeout_s
        Seconds of silence after which a per-build stream is abandoned;
        ``None`` disables the timeout.
    reconnect_delay_s, reconnect_max_delay_s
        Initial and maximum backoff between announcement feed reconnects.
    max_remembered_builds
        Number of finished build ids remembered so that replayed
        announcements are not processed again; 0 disables the record.
    handlers
        Names of the built-in handler variants to run; ``None`` runs all.
    log_level
        Log level passed to femtologging.

    """

    server_url: str
    since: str = NOW_MARKER
    max_concurrent_builds: int = 20
    max_pending_builds: int | None = None
    overflow_policy: OverflowPolicy = OverflowPolicy.REJECT_NEW
    idle_timeout_s: float | None = 300.0
    reconnect_delay_s: float = 1.0
    reconnect_max_delay_s: float = 60.0
    max_remembered_builds: int = DEFAULT_MAX_REMEMBERED
    handlers: tuple[str, ...] | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate values that the dataclass types cannot express."""
        parsed = urllib.parse.urlsplit(self.server_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise DispatcherConfigError.invalid(
                "server_url", self.server_url, "an http(s) URL"
            )
        try:
            object.__setattr__(self, "since", format_start_marker(self.since))
        except ValueError as exc:
            raise DispatcherConfigError.invalid(
                "since", self.since, "'now' or epoch milliseconds"
            ) from exc
        if self.max_concurrent_builds < 1:
            raise DispatcherConfigError.invalid(
                "max_concurrent_builds", self.max_concurrent_builds, "positive"
            )
        if self.max_pending_builds is not None and self.max_pending_builds < 1:
            raise DispatcherConfigError.invalid(
                "max_pending_builds", self.max_pending_builds, "positive"
            )
        if self.idle_timeout_s is not None and not self.idle_timeout_s > 0:
            raise DispatcherConfigError.invalid(
                "idle_timeout_s", self.idle_timeout_s, "positive"
            )
        if self.max_remembered_builds < 0:
            raise DispatcherConfigError.invalid(
                "max_remembered_builds", self.max_remembered_builds, "non-negative"
            )
        if self.reconnect_max_delay_s < self.reconnect_delay_s:
            raise DispatcherConfigError.invalid(
                "reconnect_max_delay_s",
                self.reconnect_max_delay_s,
                "at least reconnect_delay_s",
            )

    @staticmethod
    def _raw(name: str) -> str:
        return os.environ.get(f"{ENV_PREFIX}{name}", "").strip()

    @classmethod
    def _parse_positive_int(cls, name: str, default: int | None) -> int | None:
        """Read a positive integer env var, falling back to a default."""
        raw = cls._raw(name)
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise DispatcherConfigError.invalid(
                f"{ENV_PREFIX}{name}", raw, "an integer"
            ) from exc
        if value < 1:
            raise DispatcherConfigError.invalid(f"{ENV_PREFIX}{name}", raw, "positive")
        return value

    @classmethod
    def _parse_non_negative_int(cls, name: str, default: int) -> int:
        raw = cls._raw(name)
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise DispatcherConfigError.invalid(
                f"{ENV_PREFIX}{name}", raw, "an integer"
            ) from exc
        if value < 0:
            raise DispatcherConfigError.invalid(
                f"{ENV_PREFIX}{name}", raw, "non-negative"
            )
        return value

    @classmethod
    def _parse_positive_float(cls, name: str, default: float | None) -> float | None:
        """Read a positive, finite float env var, falling back to a default."""
        raw = cls._raw(name)
        if not raw:
            return default
        if raw.lower() == "none":
            return None
        try:
            value = float(raw)
        except ValueError as exc:
            raise DispatcherConfigError.invalid(
                f"{ENV_PREFIX}{name}", raw, "a number"
            ) from exc
        if not math.isfinite(value) or value <= 0:
            raise DispatcherConfigError.invalid(
                f"{ENV_PREFIX}{name}", raw, "a positive number"
            )
        return value

    @classmethod
    def _parse_overflow_policy(cls) -> OverflowPolicy:
        raw = cls._raw("OVERFLOW_POLICY")
        if not raw:
            return OverflowPolicy.REJECT_NEW
        try:
            return OverflowPolicy(raw.lower())
        except ValueError as exc:
            choices = ", ".join(policy.value for policy in OverflowPolicy)
            raise DispatcherConfigError.invalid(
                f"{ENV_PREFIX}OVERFLOW_POLICY", raw, f"one of {choices}"
            ) from exc

    @classmethod
    def _parse_handlers(cls) -> tuple[str, ...] | None:
        raw = cls._raw("HANDLERS")
        if not raw:
            return None
        names = tuple(name.strip() for name in raw.split(",") if name.strip())
        return names or None

    @classmethod
    def from_env(cls, *, server_url: str | None = None) -> DispatcherConfig:
        """Create configuration from environment variables.

        ``server_url`` takes the place of ``BUILDWATCH_SERVER_URL`` when given,
        so the variable may then be unset.

        Reads the following environment variables:

        - ``BUILDWATCH_SERVER_URL``: Required export server base URL.
        - ``BUILDWATCH_SINCE``: ``now`` (default) or epoch milliseconds.
        - ``BUILDWATCH_MAX_CONCURRENT_BUILDS``: Positive integer, default 20.
        - ``BUILDWATCH_MAX_PENDING_BUILDS``: Optional positive integer.
        - ``BUILDWATCH_OVERFLOW_POLICY``: ``reject_new`` or ``drop_oldest``.
        - ``BUILDWATCH_IDLE_TIMEOUT_S``: Positive seconds or ``none``.
        - ``BUILDWATCH_RECONNECT_DELAY_S``: Positive seconds, default 1.
        - ``BUILDWATCH_RECONNECT_MAX_DELAY_S``: Positive seconds, default 60.
        - ``BUILDWATCH_MAX_REMEMBERED_BUILDS``: Finished build ids kept for
          duplicate detection, default 4096.
        - ``BUILDWATCH_HANDLERS``: Comma-separated built-in handler names.
        - ``BUILDWATCH_LOG_LEVEL``: Log level, default ``INFO``.

        Raises
        ------
        DispatcherConfigError
            If a variable is missing or cannot be parsed.

        """
        server_url = server_url or cls._raw("SERVER_URL")
        if not server_url:
            raise DispatcherConfigError.missing(f"{ENV_PREFIX}SERVER_URL")

        reconnect_delay = cls._parse_positive_float("RECONNECT_DELAY_S", 1.0)
        reconnect_max_delay = cls._parse_positive_float("RECONNECT_MAX_DELAY_S", 60.0)
        return cls(
            server_url=server_url,
            since=cls._raw("SINCE") or NOW_MARKER,
            max_concurrent_builds=cls._parse_positive_int("MAX_CONCURRENT_BUILDS", 20)
            or 20,
            max_pending_builds=cls._parse_positive_int("MAX_PENDING_BUILDS", None),
            overflow_policy=cls._parse_overflow_policy(),
            idle_timeout_s=cls._parse_positive_float("IDLE_TIMEOUT_S", 300.0),
            reconnect_delay_s=reconnect_delay or 1.0,
            reconnect_max_delay_s=reconnect_max_delay or 60.0,
            max_remembered_builds=cls._parse_non_negative_int(
                "MAX_REMEMBERED_BUILDS", DEFAULT_MAX_REMEMBERED
            ),
            handlers=cls._parse_handlers(),
            log_level=cls._raw("LOG_LEVEL") or "INFO",
        )
