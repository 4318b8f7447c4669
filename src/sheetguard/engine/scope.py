"""Effect-scope (blast radius) enforcement."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import settings
from ..errors import AmbiguousRangeError, EffectScopeExceededError, ExplicitRangeRequiredError
from .models import ApplyOutcome, EffectScope, ScopePrediction

logger = logging.getLogger(__name__)


@dataclass
class ScopeViolation:
    """Represents a scope ceiling violation."""

    constraint: str
    current_value: int
    max_value: int
    message: str

    def to_error(self) -> EffectScopeExceededError:
        return EffectScopeExceededError(self.constraint, self.current_value, self.max_value)


class EffectScopeGuard:
    """Checks predicted and measured blast radius against caller ceilings."""

    def __init__(self, default_max_cells: Optional[int] = None):
        self.default_max_cells = default_max_cells or settings.default_max_cells_affected

    def _limits(self, scope: EffectScope) -> list[tuple[str, Optional[int]]]:
        return [
            ("max_cells_affected", scope.max_cells_affected or self.default_max_cells),
            ("max_rows_affected", scope.max_rows_affected),
            ("max_columns_affected", scope.max_columns_affected),
        ]

    def check_scope(
        self, predicted: ScopePrediction, scope: Optional[EffectScope]
    ) -> Optional[ScopeViolation]:
        """Return the first exceeded ceiling, or None when within scope."""
        if scope is None:
            return None

        counts = {
            "max_cells_affected": predicted.cells,
            "max_rows_affected": predicted.rows,
            "max_columns_affected": predicted.columns,
        }
        for name, limit in self._limits(scope):
            if limit is None:
                continue
            current = counts[name]
            if current > limit:
                return ScopeViolation(
                    constraint=name,
                    current_value=current,
                    max_value=limit,
                    message=f"Operation affects {current} ({name}), exceeds limit of {limit}. Narrow scope.",
                )
        return None

    def check_range(self, predicted: ScopePrediction, scope: Optional[EffectScope]) -> None:
        """Reject sheet-wide or open-ended ranges when the caller demands explicit ones."""
        if scope is None or not scope.require_explicit_range:
            return
        if predicted.explicit:
            return
        if predicted.range is None:
            raise ExplicitRangeRequiredError(
                "Explicit range required for this operation. Provide an A1 range or start/end indices.",
                details={"range": None},
            )
        if not predicted.bounded:
            raise AmbiguousRangeError(
                f"Range {predicted.range!r} is unbounded. Provide explicit start and end cells.",
                details={"range": predicted.range},
            )

    def enforce_pre_apply(self, predicted: ScopePrediction, scope: Optional[EffectScope]) -> None:
        """Fail fast before any write."""
        self.check_range(predicted, scope)
        violation = self.check_scope(predicted, scope)
        if violation is not None:
            logger.warning(f"Pre-apply scope check failed: {violation.message}")
            raise violation.to_error()

    def check_post_apply(self, outcome: ApplyOutcome, scope: Optional[EffectScope]) -> list[str]:
        """Report-only check against the exact counts; the write already happened."""
        measured = ScopePrediction(
            cells=outcome.actual_cells,
            rows=outcome.actual_rows,
            columns=outcome.actual_columns,
        )
        violation = self.check_scope(measured, scope)
        if violation is None:
            return []
        logger.warning(f"Post-apply scope overrun (write already applied): {violation.message}")
        return [f"Scope exceeded after apply: {violation.message}"]
