"""Exception types raised while assembling genetic-correlation matrices."""

from __future__ import annotations

from typing import Sequence


class GcorrError(RuntimeError):
    """Base class for pipeline errors surfaced to the command line."""


class ManifestError(GcorrError):
    """Raised when the sumstat manifest cannot be read or lacks required columns."""


class AmbiguousIdentifierError(GcorrError):
    """Raised when manifest resolution leaves zero or several candidates for a name."""

    def __init__(self, display_name: str, candidates: Sequence[str], stage: str):
        self.display_name = display_name
        self.candidates = list(candidates)
        self.stage = stage
        if self.candidates:
            detail = f"{len(self.candidates)} candidates after {stage}: {', '.join(self.candidates)}"
        else:
            detail = f"no candidates after {stage}"
        super().__init__(f"Cannot resolve '{display_name}' to a single sumstat file ({detail})")


class MalformedLogError(GcorrError):
    """Raised when an rg log does not match the estimator's summary layout."""

    def __init__(self, path: str, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class MissingJoinError(GcorrError):
    """A result references a sumstat file that is absent from the identifier map."""

    def __init__(self, source: str, file_key: str):
        self.source = str(source)
        self.file_key = file_key
        super().__init__(f"{self.source}: no manifest entry for sumstat file '{file_key}'")
