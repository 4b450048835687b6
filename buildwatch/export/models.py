"""Typed payloads carried by the build export feeds."""

from __future__ import annotations

import typing as typ

import msgspec


class Build(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """Build announced on the top-level feed.

    Attributes
    ----------
    build_id : str
        Opaque identifier of the build on the export server.
    plugin_version : str, optional
        Version of the build-scan plugin that published the build.
    build_tool_type : str, optional
        Build tool that ran the build, such as ``gradle`` or ``maven``.
    build_tool_version : str, optional
        Version of the build tool.
    available_at : int, optional
        Epoch milliseconds when the build became available for export.
    attributes : dict[str, Any]
        The complete announcement payload, including fields not modelled
        above.

    """

    build_id: str
    plugin_version: str | None = None
    build_tool_type: str | None = None
    build_tool_version: str | None = None
    available_at: int | None = None
    attributes: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class BuildEventType(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """Type descriptor of a build event."""

    event_type: str
    major_version: int | None = None
    minor_version: int | None = None


class BuildEvent(msgspec.Struct, frozen=True, kw_only=True):
    """Single event from a build's timeline."""

    type: BuildEventType
    timestamp: int
    data: dict[str, typ.Any] = msgspec.field(default_factory=dict)

    @property
    def event_type(self) -> str:
        """Return the event type name, such as ``BuildStarted``."""
        return self.type.event_type


def decode_build(payload: str | bytes) -> Build:
    """Decode a ``Build`` announcement payload.

    Raises
    ------
    msgspec.DecodeError
        If the payload is not valid JSON.
    msgspec.ValidationError
        If the payload is not an object carrying a string ``buildId``.

    """
    raw = msgspec.json.decode(payload)
    build = msgspec.convert(raw, Build)
    return msgspec.structs.replace(build, attributes=raw)


def decode_build_event(payload: str | bytes) -> BuildEvent:
    """Decode a ``BuildEvent`` payload from a per-build feed."""
    return msgspec.json.decode(payload, type=BuildEvent)
