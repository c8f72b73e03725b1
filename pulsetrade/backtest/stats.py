"""Backtest statistics — pure functions over a simulated trade ledger."""

import math


def calculate_stats(ledger: list[dict], initial_amount: float) -> dict:
    """Risk statistics for a backtest ledger.

    Only ``"sell"`` entries carry a realised ``profit`` (percent) and the
    post-sale ``balance``; buys are ignored.

    Returns:
        ``{"max_drawdown": float, "sharpe_ratio": float,
        "average_profit": float}`` with ``max_drawdown`` as a percentage
        of the running peak balance.
    """
    sells = [t for t in ledger if t["type"] == "sell"]
    if not sells:
        return {"max_drawdown": 0.0, "sharpe_ratio": 0.0, "average_profit": 0.0}

    profits = [t["profit"] for t in sells]
    balances = [initial_amount] + [t["balance"] for t in sells]

    return {
        "max_drawdown": round(_max_drawdown_pct(balances), 4),
        "sharpe_ratio": round(_sharpe(profits), 4),
        "average_profit": round(sum(profits) / len(profits), 4),
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _sharpe(returns: list[float]) -> float:
    """Annualised Sharpe ratio from a per-trade return series.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(252)


def _max_drawdown_pct(balances: list[float]) -> float:
    """Largest peak-to-trough decline of *balances*, in percent of the peak."""
    peak = balances[0] if balances else 0.0
    max_dd = 0.0
    for b in balances:
        if b > peak:
            peak = b
        if peak > 0:
            dd = (peak - b) / peak * 100.0
            if dd > max_dd:
                max_dd = dd
    return max_dd
