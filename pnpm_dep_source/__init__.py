"""Switch pnpm dependencies between local, GitHub, GitLab and npm sources."""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
