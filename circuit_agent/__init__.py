"""Circuit agent process.

A stdio agent process that supervises its own lifetime: it detects when the
host that launched it has gone away and shuts down cleanly, taking its
browser/app grandchildren with it.
"""

from __future__ import annotations

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
