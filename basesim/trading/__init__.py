# Trading module
"""Paper trading ledger components: accounting engine, trade executor and PnL reporting."""

from .models import (
    NEGLIGIBLE_AMOUNT,
    STARTING_BALANCE,
    Holding,
    LedgerState,
    Trade,
    TradeRejectionReason,
    TradeSide,
)
from .accounting import AccountingResult, apply_buy, apply_sell
from .portfolio import LedgerSerializer, PortfolioView
from .executor import ITradeExecutor, TradeExecutor, TradeResult, TradeStatus
from .reporting import (
    HoldingDrift,
    IPnLReporting,
    PnLReporter,
    PnLSummary,
    PnLSummaryClient,
    TokenPnL,
    reconcile_holdings,
)
from .service import TradeService

__all__ = [
    "NEGLIGIBLE_AMOUNT",
    "STARTING_BALANCE",
    "Holding",
    "LedgerState",
    "Trade",
    "TradeRejectionReason",
    "TradeSide",
    "AccountingResult",
    "apply_buy",
    "apply_sell",
    "LedgerSerializer",
    "PortfolioView",
    "ITradeExecutor",
    "TradeExecutor",
    "TradeResult",
    "TradeStatus",
    "HoldingDrift",
    "IPnLReporting",
    "PnLReporter",
    "PnLSummary",
    "PnLSummaryClient",
    "TokenPnL",
    "reconcile_holdings",
    "TradeService",
]
