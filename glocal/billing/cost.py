from __future__ import annotations

from glocal.billing.models import BudgetConfig

BYTES_PER_MB = 1024 * 1024


def linear_cost(
    config: BudgetConfig,
    *,
    tokens_used: int | None = None,
    data_transferred: int | None = None,
) -> float:
    """Cost of one call: per-request fee plus per-token and per-MiB charges."""
    tokens = max(0, int(tokens_used or 0))
    transferred = max(0, int(data_transferred or 0))

    cost = config.cost_per_request
    cost += tokens * config.cost_per_token
    cost += (transferred / BYTES_PER_MB) * config.cost_per_mb
    return round(cost, 10)
