"""Client primitives for the build export streaming API."""

from __future__ import annotations

from .client import BuildExportClient, BuildExportConfig, BuildExportSource
from .errors import ExportAPIError, ExportConfigError
from .models import Build, BuildEvent, BuildEventType, decode_build, decode_build_event
from .sse import ServerSentEvent, SSEDecoder, iter_sse

__all__ = [
    "Build",
    "BuildEvent",
    "BuildEventType",
    "BuildExportClient",
    "BuildExportConfig",
    "BuildExportSource",
    "ExportAPIError",
    "ExportConfigError",
    "SSEDecoder",
    "ServerSentEvent",
    "decode_build",
    "decode_build_event",
    "iter_sse",
]
