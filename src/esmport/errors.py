"""Exception hierarchy shared by every conversion stage."""

from __future__ import annotations

from pathlib import Path


class ConversionError(Exception):
    """Base class for every error raised while converting packages."""


class DeclarationError(ConversionError):
    """A package declaration is malformed or uses an unsupported construct."""


class JsSyntaxError(ConversionError):
    """A JavaScript source file could not be parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        line: int | None = None,
        column: int | None = None,
        mode: str = "strict",
    ) -> None:
        self.path = path
        self.line = line
        self.column = column
        self.mode = mode
        location = ""
        if path is not None:
            location = str(path)
            if line is not None:
                location += f":{line}:{column or 0}"
            if mode != "strict":
                location += f" ({mode})"
            location += ": "
        super().__init__(f"{location}{message}")


class ResolutionError(ConversionError):
    """A dependency could not be resolved to a loadable package."""


class MissingPackageError(ResolutionError):
    """No source folder, converted manifest or archive provides a package."""


class VersionMismatchError(ResolutionError):
    """The loaded version of a package does not satisfy a requested constraint."""


class VersionConflictError(ResolutionError):
    """Transitive version requests for one or more packages cannot be reconciled.

    ``conflicts`` maps every conflicting package name to the full list of
    versions that were requested for it.
    """

    def __init__(self, conflicts: dict[str, list[str]]) -> None:
        self.conflicts = conflicts
        details = "; ".join(
            f"{name}: {', '.join(versions)}" for name, versions in sorted(conflicts.items())
        )
        super().__init__(f"conflicting versions requested: {details}")


def annotate(exc: ConversionError, context: str) -> ConversionError:
    """Return a copy of *exc* whose message is prefixed with *context*.

    The copy keeps the original type and attributes, so callers can still
    catch the specific error class; raise it ``from exc`` to keep the chain.
    """
    annotated = BaseException.__new__(type(exc))
    annotated.__dict__.update(exc.__dict__)
    annotated.args = (f"{context}: {exc}",)
    return annotated
