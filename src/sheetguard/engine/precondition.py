"""Optimistic-concurrency precondition checks."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import PreconditionError, PreconditionFailedError, VersionMismatchError
from .models import ExpectedState, Fingerprint

logger = logging.getLogger(__name__)


@dataclass
class Mismatch:
    """First field whose observed value differs from the expectation."""

    field: str
    expected: Any
    observed: Any
    structural: bool

    def to_error(self) -> PreconditionError:
        error_cls = PreconditionFailedError if self.structural else VersionMismatchError
        return error_cls(self.field, self.expected, self.observed)


@dataclass
class VerificationResult:
    ok: bool
    mismatch: Optional[Mismatch] = None


def _compare_header(expected: list[Any], observed: list[Any]) -> Optional[Mismatch]:
    """Compare only the supplied prefix of the header row."""
    for i, value in enumerate(expected):
        actual = observed[i] if i < len(observed) else None
        if actual != value:
            return Mismatch(f"first_row_values[{i}]", value, actual, structural=False)
    return None


# (field, structural) in check order; structural mismatches mean the target itself moved
_SCALAR_CHECKS: list[tuple[str, bool]] = [
    ("title", True),
    ("row_count", False),
    ("column_count", False),
    ("checksum", False),
]


class PreconditionVerifier:
    """Compares a caller's ExpectedState with an observed Fingerprint.

    Only fields set on the expectation are compared, in a fixed order, and the
    first mismatch stops verification. No expectation at all is a pass.
    """

    def verify(self, expected: Optional[ExpectedState], observed: Fingerprint) -> VerificationResult:
        if expected is None:
            return VerificationResult(ok=True)

        for field, structural in _SCALAR_CHECKS:
            wanted = getattr(expected, field)
            if wanted is None:
                continue
            actual = getattr(observed, field)
            if wanted != actual:
                logger.info(f"Precondition mismatch on {field}: expected {wanted!r}, observed {actual!r}")
                return VerificationResult(ok=False, mismatch=Mismatch(field, wanted, actual, structural))

        if expected.first_row_values is not None:
            mismatch = _compare_header(expected.first_row_values, observed.first_row_values)
            if mismatch is not None:
                logger.info(f"Precondition mismatch on {mismatch.field}")
                return VerificationResult(ok=False, mismatch=mismatch)

        return VerificationResult(ok=True)

    def enforce(self, expected: Optional[ExpectedState], observed: Fingerprint) -> None:
        """Raise the mapped PreconditionError on mismatch."""
        result = self.verify(expected, observed)
        if not result.ok:
            raise result.mismatch.to_error()
