from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Side(str, Enum):
    YES = "YES"
    NO = "NO"


class SpikeDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class SuggestedAction(str, Enum):
    BUY_YES = "buy_yes"
    BUY_NO = "buy_no"
    WAIT = "wait"


class OpportunityKind(str, Enum):
    BINARY = "binary"
    MULTI_MARKET = "multi_market"
    CROSS_PLATFORM = "cross_platform"


class OpportunityStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    EXECUTED = "executed"


class Recommendation(str, Enum):
    STRONG_BUY = "strong_buy"
    BUY = "buy"
    HOLD = "hold"
    AVOID = "avoid"


class RiskScore(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MarketSnapshot:
    market_id: str
    question: str
    outcome_prices: tuple[float, ...]
    volume: float = 0.0
    liquidity: float = 0.0
    active: bool = True
    outcomes: tuple[str, ...] = ("Yes", "No")

    @property
    def yes_price(self) -> float:
        return self.outcome_prices[0]

    @property
    def no_price(self) -> float:
        return self.outcome_prices[1]

    @property
    def is_binary(self) -> bool:
        return len(self.outcomes) == 2 and len(self.outcome_prices) >= 2


@dataclass(frozen=True)
class PricePoint:
    market_id: str
    price: float
    timestamp: float
    volume: Optional[float] = None


@dataclass(frozen=True)
class SpikeEvent:
    id: str
    market_id: str
    market_question: str
    price_change: float
    price_change_percent: float
    direction: SpikeDirection
    previous_price: float
    current_price: float
    volume: float
    detected_at: str
    confidence: float
    suggested_action: SuggestedAction


@dataclass(frozen=True)
class OpportunityLeg:
    market_id: str
    question: str
    price: float
    platform: str = "polymarket"


@dataclass
class ArbitrageOpportunity:
    """A detected mispricing. Only ``status`` changes after creation."""

    id: str
    kind: OpportunityKind
    market1: OpportunityLeg
    market2: Optional[OpportunityLeg]
    total_cost: float
    profit: float
    profit_percent: float
    detected_at: float
    guaranteed_payout: float = 1.0
    status: OpportunityStatus = OpportunityStatus.ACTIVE

    @property
    def market_ids(self) -> tuple[str, ...]:
        if self.market2 is None:
            return (self.market1.market_id,)
        return (self.market1.market_id, self.market2.market_id)


@dataclass(frozen=True)
class CrossPlatformPrice:
    market_description: str
    polymarket_price: Optional[float]
    kalshi_price: Optional[float]
    price_difference: Optional[float]
    arbitrage_available: bool
    last_updated: str


@dataclass(frozen=True)
class KellyInput:
    """Sizing request. Expected ranges: prices 0.01-0.99, kelly_fraction
    0.1-1.0, max_position_percent 0.01-0.25, bankroll >= 1."""

    current_price: float
    estimated_probability: float
    bankroll: float
    kelly_fraction: float = 0.5
    max_position_percent: float = 0.05


@dataclass(frozen=True)
class KellyResult:
    fraction: float
    position_size: float
    edge: float
    confidence: float
    recommendation: Recommendation


@dataclass(frozen=True)
class TradeOutcome:
    profit_loss: float
    capital: float


@dataclass(frozen=True)
class HistoricalMetrics:
    win_rate: float
    avg_win: float
    avg_loss: float
    expectancy: float


@dataclass(frozen=True)
class Position:
    market_id: str
    side: Side
    entry_price: float
    current_price: float
    quantity: float
    market_question: str = ""
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None

    @property
    def cost_basis(self) -> float:
        return self.entry_price * self.quantity

    @property
    def unrealized_pnl(self) -> float:
        return (self.current_price - self.entry_price) * self.quantity


@dataclass(frozen=True)
class Trade:
    """A realised trade as reported by the execution layer."""

    market_id: str
    profit_loss: float
    side: Side = Side.YES
    market_question: str = ""


@dataclass(frozen=True)
class RiskMetrics:
    total_exposure: float
    exposure_percent: float
    largest_position: float
    portfolio_heat: float
    correlation_risk: float
    value_at_risk: float
    max_drawdown: float
    current_drawdown: float
    risk_score: RiskScore


@dataclass(frozen=True)
class PositionCheck:
    allowed: bool
    reason: str = ""
    adjusted_size: Optional[float] = None
