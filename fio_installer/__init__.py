"""fiochat installer.

Core design goals:
- One immutable answer set per run
- Idempotent, re-runnable journeys
- Section-level config rewrites with backup first
- Checksum-verified release installs
- Centralized logging
"""

__all__ = []
