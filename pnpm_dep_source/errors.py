"""Error kinds raised by dependency source switching.

Every error derives from :class:`DepSourceError`, itself a ``SystemExit``,
so an uncaught error aborts the CLI with its message and a non-zero exit
status while library callers can still catch the specific kind.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "AmbiguousSelectionError",
    "ConflictingFlagsError",
    "DepSourceError",
    "DependencyNotDeclaredError",
    "InstallFailedError",
    "MissingSourceConfigError",
    "NotFoundError",
    "RemoteResolutionFailedError",
]


class DepSourceError(SystemExit):
    """Base class for errors surfaced to the invoking command."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class MissingSourceConfigError(DepSourceError):
    """The requested source has no repo or path configured."""


class DependencyNotDeclaredError(DepSourceError):
    """The manifest does not declare the dependency in either group."""


class AmbiguousSelectionError(DepSourceError):
    """A dependency query matched more than one configured entry."""

    def __init__(self, message: str, candidates: cabc.Sequence[str]) -> None:
        super().__init__(message)
        self.candidates = tuple(candidates)


class NotFoundError(DepSourceError):
    """No configured entry (or project) matches the request."""


class RemoteResolutionFailedError(DepSourceError):
    """A platform or registry lookup failed."""

    def __init__(
        self,
        platform: str,
        repo: str,
        ref: str | None,
        detail: str = "",
    ) -> None:
        target = repo if ref is None else f"{repo}@{ref}"
        message = f"{platform} lookup failed for {target}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.platform = platform
        self.repo = repo
        self.ref = ref


class ConflictingFlagsError(DepSourceError):
    """Mutually exclusive ref options were supplied together."""


class InstallFailedError(DepSourceError):
    """A global package-manager install could not be completed."""
