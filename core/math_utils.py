"""
core/math_utils.py
Kelly criterion and expected-value math for binary contracts.

All inputs are fractions (0-1), not percentage points. Callers in the
pipeline convert from the 0-100 price scale before calling in.
"""


def _validate(p_win: float, profit_pct: float, loss_pct: float) -> None:
    if not 0.0 <= p_win <= 1.0:
        raise ValueError(f"p_win must be in [0, 1], got {p_win}")
    if profit_pct < 0.0:
        raise ValueError(f"profit_pct must be non-negative, got {profit_pct}")
    if loss_pct < 0.0:
        raise ValueError(f"loss_pct must be non-negative, got {loss_pct}")


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def expected_value(p_win: float, profit_pct: float, loss_pct: float) -> float:
    """
    Expected return per unit staked.

    EV = p * profit - (1 - p) * loss
    """
    _validate(p_win, profit_pct, loss_pct)
    return p_win * profit_pct - (1.0 - p_win) * loss_pct


def kelly_criterion(p_win: float, profit_pct: float, loss_pct: float) -> float:
    """
    Full-Kelly fraction of capital to stake, clamped to [0, 1].

    f* = (b * p - q) / b   with b = profit / loss, q = 1 - p
    """
    _validate(p_win, profit_pct, loss_pct)
    if profit_pct == 0.0:
        raise ValueError("profit_pct must be positive for Kelly sizing")
    if loss_pct == 0.0:
        raise ValueError("loss_pct must be positive for Kelly sizing")

    b = profit_pct / loss_pct
    q = 1.0 - p_win
    return clamp((b * p_win - q) / b, 0.0, 1.0)


def fractional_kelly(
    p_win: float,
    profit_pct: float,
    loss_pct: float,
    fraction: float,
) -> float:
    """Scaled Kelly stake (e.g. fraction=0.25 for quarter-Kelly)."""
    if not 0.0 < fraction <= 1.0:
        raise ValueError(f"fraction must be in (0, 1], got {fraction}")
    return kelly_criterion(p_win, profit_pct, loss_pct) * fraction


def binary_payoff(price: float, side_is_yes: bool) -> tuple[float, float]:
    """
    Profit-if-win and loss-if-lose per unit staked for a binary contract.

    `price` is the YES price in percentage points (0-100). A YES contract
    costs `price` and pays 100; a NO contract costs `100 - price`.
    """
    cost = price if side_is_yes else 100.0 - price
    if cost <= 0.0 or cost >= 100.0:
        raise ValueError(f"Contract cost must be inside (0, 100), got {cost}")
    return (100.0 - cost) / cost, 1.0
