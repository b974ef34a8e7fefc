"""Holdings accounting engine.

Pure functions computing the next (balance, holding) pair for a trade using
weighted-average cost. Nothing here performs I/O; business failures come back
as an ``AccountingResult`` carrying a rejection reason rather than as
exceptions.

Sells liquidate cost basis proportionally: selling a fraction of a position
removes the same fraction of ``total_invested``, so the average cost of the
remaining units does not move.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .models import NEGLIGIBLE_AMOUNT, Holding, TradeRejectionReason

ZERO = Decimal("0")


@dataclass(frozen=True)
class AccountingResult:
    """Outcome of applying a trade to a balance and holding.

    Attributes:
        balance: Balance after the trade (unchanged input on rejection)
        holding: Holding after the trade, None when closed or never opened
        total_base: Gross base-currency value of the trade
        realized_pnl: Profit/loss recognized by a sell, None for buys
        rejection_reason: Set when the trade cannot be applied
        message: Human-readable explanation for rejections
    """
    balance: Decimal
    holding: Optional[Holding]
    total_base: Decimal
    realized_pnl: Optional[Decimal] = None
    rejection_reason: Optional[TradeRejectionReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.rejection_reason is None


def _average_cost(total_invested: Decimal, amount: Decimal) -> Decimal:
    if amount == ZERO:
        return ZERO
    return total_invested / amount


def _reject(
    balance: Decimal,
    holding: Optional[Holding],
    reason: TradeRejectionReason,
    message: str,
    total_base: Decimal = ZERO,
) -> AccountingResult:
    return AccountingResult(
        balance=balance,
        holding=holding,
        total_base=total_base,
        rejection_reason=reason,
        message=message,
    )


def apply_buy(
    balance: Decimal,
    holding: Optional[Holding],
    amount: Decimal,
    unit_price: Decimal,
    token_address: str = "",
    token_symbol: str = "",
    token_name: str = "",
) -> AccountingResult:
    """Apply a buy of ``amount`` tokens at ``unit_price``.

    Args:
        balance: Available base-currency balance
        holding: Existing holding for the token, or None
        amount: Quantity to buy (must be positive)
        unit_price: Price per token in base currency (must be non-negative)
        token_address: Identity used when opening a new holding
        token_symbol: Symbol used when opening a new holding
        token_name: Name used when opening a new holding

    Returns:
        AccountingResult with the debited balance and merged holding,
        or a rejection with INSUFFICIENT_BALANCE when the cost exceeds balance
    """
    if amount <= ZERO:
        return _reject(balance, holding, TradeRejectionReason.INVALID_AMOUNT,
                       "Amount must be greater than zero")
    if unit_price < ZERO:
        return _reject(balance, holding, TradeRejectionReason.PRICE_UNAVAILABLE,
                       "Unit price must not be negative")

    total_base = amount * unit_price
    if total_base > balance:
        return _reject(
            balance,
            holding,
            TradeRejectionReason.INSUFFICIENT_BALANCE,
            f"Insufficient balance: need {total_base}, have {balance}",
            total_base,
        )

    if holding is None:
        new_holding = Holding(
            token_address=token_address,
            token_symbol=token_symbol,
            token_name=token_name,
            amount=amount,
            average_cost=unit_price,
            total_invested=total_base,
        )
    else:
        new_amount = holding.amount + amount
        new_total_invested = holding.total_invested + total_base
        new_holding = Holding(
            token_address=holding.token_address,
            token_symbol=holding.token_symbol or token_symbol,
            token_name=holding.token_name or token_name,
            amount=new_amount,
            average_cost=_average_cost(new_total_invested, new_amount),
            total_invested=new_total_invested,
        )

    return AccountingResult(
        balance=balance - total_base,
        holding=new_holding,
        total_base=total_base,
    )


def apply_sell(
    balance: Decimal,
    holding: Optional[Holding],
    amount: Decimal,
    unit_price: Decimal,
) -> AccountingResult:
    """Apply a sell of ``amount`` tokens at ``unit_price``.

    Returns:
        AccountingResult with the credited balance, the reduced holding
        (None when the remainder is negligible) and the realized PnL,
        or a rejection with NO_SUCH_HOLDING / INSUFFICIENT_HOLDINGS
    """
    if amount <= ZERO:
        return _reject(balance, holding, TradeRejectionReason.INVALID_AMOUNT,
                       "Amount must be greater than zero")
    if unit_price < ZERO:
        return _reject(balance, holding, TradeRejectionReason.PRICE_UNAVAILABLE,
                       "Unit price must not be negative")
    if holding is None:
        return _reject(balance, holding, TradeRejectionReason.NO_SUCH_HOLDING,
                       "No holding to sell for this token")
    if amount > holding.amount:
        return _reject(
            balance,
            holding,
            TradeRejectionReason.INSUFFICIENT_HOLDINGS,
            f"Insufficient holdings: need {amount}, have {holding.amount}",
        )

    total_base = amount * unit_price
    proportion_sold = amount / holding.amount
    invested_in_sold = holding.total_invested * proportion_sold
    realized_pnl = total_base - invested_in_sold

    new_amount = holding.amount - amount
    new_total_invested = holding.total_invested - invested_in_sold

    if new_amount <= NEGLIGIBLE_AMOUNT:
        new_holding = None
    else:
        new_holding = Holding(
            token_address=holding.token_address,
            token_symbol=holding.token_symbol,
            token_name=holding.token_name,
            amount=new_amount,
            average_cost=_average_cost(new_total_invested, new_amount),
            total_invested=new_total_invested,
        )

    return AccountingResult(
        balance=balance + total_base,
        holding=new_holding,
        total_base=total_base,
        realized_pnl=realized_pnl,
    )
