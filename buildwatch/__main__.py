"""Allow ``python -m buildwatch``."""

from __future__ import annotations

from buildwatch.cli import main

raise SystemExit(main())
