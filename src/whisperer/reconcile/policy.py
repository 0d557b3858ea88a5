"""Business-policy thresholds used by reconciliation."""

from dataclasses import dataclass

from whisperer.config import Settings


@dataclass(frozen=True)
class ReconciliationPolicy:
    """Thresholds the reconciliation rules compare against."""

    dscr_minimum: float = 1.25
    t12_required_months: int = 12
    tolerance_pct: float = 1.0
    tenant_concentration_limit: float = 0.40

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconciliationPolicy":
        return cls(
            dscr_minimum=settings.dscr_minimum,
            t12_required_months=settings.t12_required_months,
            tolerance_pct=settings.reconciliation_tolerance_pct,
            tenant_concentration_limit=settings.tenant_concentration_limit,
        )
