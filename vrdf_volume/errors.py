"""Exception hierarchy shared by the VRDF codec, resolver and loader.

Every failure that can abort a volume load derives from :class:`VRDFError`.
Decoding problems are grouped under :class:`DecodeError` so callers can tell
a corrupt container apart from a spatial-calibration problem
(:class:`DegenerateAffine`).  The orchestrator wraps all of them in a single
:class:`LoadError` carrying the pipeline stage that failed.
"""

from __future__ import annotations

from typing import Optional


class VRDFError(Exception):
    """Base class for all errors raised by :mod:`vrdf_volume`."""


class DecodeError(VRDFError):
    """The container bytes could not be turned into a volume."""


class BadMagic(DecodeError):
    """The file does not start with the expected ``VRDF0001`` tag."""

    def __init__(self, found: bytes, expected: bytes) -> None:
        self.found = found
        self.expected = expected
        super().__init__(f"Bad magic {found!r}, expected {expected!r}")


class UnexpectedEof(DecodeError):
    """A header field or block ended before its declared length."""

    def __init__(self, block: str, expected: int, actual: int) -> None:
        self.block = block
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Unexpected EOF in {block}: expected {expected} bytes, got {actual}"
        )


class MetadataParseError(DecodeError):
    """The metadata block is not valid JSON or misses required fields."""


class TransferFunctionParseError(DecodeError):
    """The transfer-function block is not valid JSON or is malformed."""


class SizeMismatch(DecodeError):
    """The raw block length disagrees with the declared dimensions."""

    def __init__(self, expected: int, actual: int, dim=None) -> None:
        self.expected = expected
        self.actual = actual
        self.dim = dim
        shape = "x".join(str(d) for d in dim) if dim else "?"
        super().__init__(
            f"RAW length mismatch: got {actual} bytes but expected {expected} "
            f"({shape} float32)"
        )


class DegenerateAffine(VRDFError):
    """The voxel-to-world matrix cannot be inverted."""

    def __init__(self, determinant: float) -> None:
        self.determinant = determinant
        super().__init__(
            f"Affine is not invertible (determinant={determinant!r})"
        )


class LoadError(VRDFError):
    """A volume load failed; previously loaded state was left untouched.

    ``stage`` names the pipeline step that failed: ``resolve``, ``read``,
    ``decode`` or ``affine``.  The original exception is kept as
    ``__cause__``.
    """

    def __init__(self, stage: str, path: Optional[str], detail: str) -> None:
        self.stage = stage
        self.path = path
        self.detail = detail
        where = f" ({path})" if path else ""
        super().__init__(f"[{stage}] {detail}{where}")


__all__ = [
    "VRDFError",
    "DecodeError",
    "BadMagic",
    "UnexpectedEof",
    "MetadataParseError",
    "TransferFunctionParseError",
    "SizeMismatch",
    "DegenerateAffine",
    "LoadError",
]
