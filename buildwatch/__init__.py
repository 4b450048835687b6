"""buildwatch: follow a build export server and dispatch build events to handlers."""

from __future__ import annotations

__version__ = "0.1.0"
