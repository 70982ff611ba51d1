import datetime as dt
import math
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

TradeType = Literal[
    "BUY",
    "SELL",
    "BUY_TO_OPEN",
    "SELL_TO_OPEN",
    "BUY_TO_CLOSE",
    "SELL_TO_CLOSE",
    "ASSIGNED",
    "EXERCISED",
    "EXPIRED",
]
DividendType = Literal["CASH", "REINVESTED", "QUALIFIED", "NON_QUALIFIED"]

# --- ACCOUNT SCHEMAS ---

class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Display name of the brokerage account")
    currency: str = Field("USD", description="Account currency")


class AccountRead(AccountCreate):
    id: int
    user_id: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# --- TRADE SCHEMAS ---
# Quantity is always positive; the direction is carried by `type`.

class TradeBase(BaseModel):
    symbol: str = Field(..., min_length=1, description="Ticker or option symbol")
    type: TradeType = Field(..., description="Trade action")
    quantity: float = Field(..., gt=0, description="Shares or contracts (positive)")
    price: float = Field(..., ge=0, description="Price per share")
    fee: float = Field(0.0, ge=0, description="Commission plus fees")
    currency: str = Field("USD")
    date: datetime = Field(..., description="Trade date (time of day is ignored for matching)")
    notes: Optional[str] = None
    instrument_type: Literal["Stock", "Option"] = Field("Stock")
    option_type: Optional[Literal["Call", "Put"]] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[datetime] = None
    underlying_symbol: Optional[str] = None
    contract_multiplier: Optional[int] = Field(None, description="Shares per contract, defaults to 100 for options")
    is_opening_trade: Optional[bool] = None

    @field_validator("symbol", "underlying_symbol", mode="before")
    @classmethod
    def _upper_symbol(cls, v):
        if isinstance(v, str):
            return v.strip().upper() or None
        return v


class TradeCreate(TradeBase):
    account_id: int


class TradeUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    symbol: Optional[str] = None
    type: Optional[TradeType] = None
    quantity: Optional[float] = Field(None, gt=0)
    price: Optional[float] = Field(None, ge=0)
    fee: Optional[float] = Field(None, ge=0)
    date: Optional[datetime] = None
    notes: Optional[str] = None
    option_type: Optional[Literal["Call", "Put"]] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[datetime] = None
    underlying_symbol: Optional[str] = None
    is_opening_trade: Optional[bool] = None

    @field_validator("symbol", "underlying_symbol", mode="before")
    @classmethod
    def _upper_symbol(cls, v):
        if isinstance(v, str):
            return v.strip().upper() or None
        return v


class TradeRead(TradeBase):
    id: int
    account_id: int
    spread_type: Optional[str] = None
    spread_group_id: Optional[str] = None
    spread_leg_number: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# --- DIVIDEND SCHEMAS ---

class DividendBase(BaseModel):
    symbol: str = Field(..., min_length=1)
    amount: float = Field(..., description="Signed amount; negative values are adjustments")
    quantity: Optional[float] = None
    per_share_amount: Optional[float] = None
    type: DividendType = "CASH"
    currency: str = "USD"
    payment_date: datetime
    ex_dividend_date: Optional[datetime] = None
    record_date: Optional[datetime] = None
    notes: Optional[str] = None
    tax_withheld: float = 0.0

    @field_validator("symbol", mode="before")
    @classmethod
    def _upper_symbol(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class DividendCreate(DividendBase):
    account_id: int


class DividendUpdate(BaseModel):
    amount: Optional[float] = None
    quantity: Optional[float] = None
    per_share_amount: Optional[float] = None
    type: Optional[DividendType] = None
    payment_date: Optional[datetime] = None
    ex_dividend_date: Optional[datetime] = None
    record_date: Optional[datetime] = None
    notes: Optional[str] = None
    tax_withheld: Optional[float] = None


class DividendRead(DividendBase):
    id: int
    account_id: int

    model_config = ConfigDict(from_attributes=True)


class DividendMonth(BaseModel):
    month: str
    amount: float
    count: int


class DividendSymbolTotal(BaseModel):
    symbol: str
    amount: float
    count: int


class DividendSummary(BaseModel):
    total_amount: float = 0.0
    total_tax_withheld: float = 0.0
    net_amount: float = 0.0
    count: int = 0
    year_to_date: float = 0.0
    last_30_days: float = 0.0
    monthly: List[DividendMonth] = []
    top_symbols: List[DividendSymbolTotal] = []

# --- PORTFOLIO SCHEMAS ---

class PortfolioRead(BaseModel):
    id: int
    account_id: int
    symbol: str
    quantity: float
    multiplier: float = 1.0
    average_price: float
    current_price: Optional[float] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PortfolioHolding(BaseModel):
    id: int
    account_id: int
    symbol: str
    quantity: float
    multiplier: float = 1.0
    average_price: float
    current_price: float
    cost_basis: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float
    change: Optional[float] = None
    change_percent: Optional[float] = None
    day_high: Optional[float] = None
    day_low: Optional[float] = None
    volume: Optional[int] = None
    market_state: Optional[str] = None


class PortfolioWithQuotes(BaseModel):
    holdings: List[PortfolioHolding]
    total_cost: float
    total_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float


class RecalculateResult(BaseModel):
    symbols_recalculated: int

# --- IMPORT SCHEMAS ---

class ImportResultRead(BaseModel):
    success: bool
    format: Optional[str] = None
    imported_count: int = 0
    dividends_imported_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: List[str] = []
    imported_trades: List[dict] = []
    spreads_detected: int = 0


class ImportFormat(BaseModel):
    name: str
    description: str

# --- SPREAD SCHEMAS ---

class OptionLegRead(BaseModel):
    trade_id: int
    action: str
    option_type: Optional[str] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[datetime] = None
    quantity: float
    price: float
    premium: float
    leg_number: Optional[int] = None


class OptionSpreadGroup(BaseModel):
    spread_group_id: str
    spread_type: Optional[str] = None
    strategy_name: Optional[str] = None
    underlying_symbol: Optional[str] = None
    expiration_date: Optional[datetime] = None
    trade_date: datetime
    net_premium: float
    leg_count: int
    is_open: bool
    legs: List[OptionLegRead]


class SpreadDetectionResult(BaseModel):
    groups_detected: int
    groups: List[dict] = []

# --- TRADE ANALYTICS SCHEMAS ---

class SymbolTradeSummary(BaseModel):
    symbol: str
    total_trades: int = 0
    buy_trades: int = 0
    sell_trades: int = 0
    total_bought: float = 0.0
    total_sold: float = 0.0
    average_buy_price: float = 0.0
    average_sell_price: float = 0.0
    current_quantity: float = 0.0
    cost_basis: float = 0.0
    realized_pnl: float = 0.0
    realized_pnl_percent: float = 0.0
    total_fees: float = 0.0
    first_trade_date: Optional[date] = None
    last_trade_date: Optional[date] = None


class SymbolBreakdown(BaseModel):
    symbol: str
    pnl: float
    trade_count: int


class TimePeriodSummary(BaseModel):
    period: str
    start_date: date
    end_date: date
    total_trades: int = 0
    buy_trades: int = 0
    sell_trades: int = 0
    total_volume: float = 0.0
    realized_pnl: float = 0.0
    total_fees: float = 0.0
    win_rate: float = 0.0
    symbols: List[SymbolBreakdown] = []


class TimeAnalysis(BaseModel):
    monthly: List[TimePeriodSummary] = []
    weekly: List[TimePeriodSummary] = []


class DuplicateCleanupResult(BaseModel):
    duplicates_found: int = 0
    duplicates_removed: int = 0
    affected_symbols: List[str] = []
    details: List[str] = []


class DeleteAllTradesResult(BaseModel):
    trades_deleted: int = 0
    positions_deleted: int = 0

# --- SUMMARY SCHEMAS ---
# Ratios may be +inf internally; JSON renders non-finite values as null.

def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


class PeriodBreakdown(BaseModel):
    period: str
    pnl: float = 0.0
    trade_count: int = 0
    win_rate: float = 0.0


class PerformanceScores(BaseModel):
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: float = 0.0
    gain_to_pain_ratio: float = 0.0
    win_loss_ratio: float = 0.0
    adjusted_win_loss_ratio: float = 0.0
    trading_expectancy: float = 0.0
    kelly_criterion: float = 0.0
    std_dev_pnl: float = 0.0
    std_dev_wins: float = 0.0
    std_dev_losses: float = 0.0
    system_quality_number: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    @field_serializer("profit_factor", "gain_to_pain_ratio", "win_loss_ratio", when_used="json")
    def _serialize_ratio(self, value: float) -> Optional[float]:
        return _finite_or_none(value)


class SymbolStat(BaseModel):
    symbol: str
    pnl: float = 0.0
    trade_count: int = 0
    win_rate: float = 0.0


class SymbolStatistics(BaseModel):
    best_symbol: Optional[SymbolStat] = None
    worst_symbol: Optional[SymbolStat] = None
    most_traded_symbol: Optional[SymbolStat] = None
    top_profitable: List[SymbolStat] = []
    top_losing: List[SymbolStat] = []
    most_active: List[SymbolStat] = []


class DayPnL(BaseModel):
    period: str
    pnl: float


class DayOfWeekStat(BaseModel):
    day_name: str
    pnl: float = 0.0
    trade_count: int = 0
    win_rate: float = 0.0


class TimeStatistics(BaseModel):
    best_day: Optional[DayPnL] = None
    worst_day: Optional[DayPnL] = None
    best_month: Optional[DayPnL] = None
    worst_month: Optional[DayPnL] = None
    average_winning_day: float = 0.0
    average_losing_day: float = 0.0
    day_of_week: List[DayOfWeekStat] = []


class CommissionStatistics(BaseModel):
    total_commissions: float = 0.0
    avg_commission_per_trade: float = 0.0
    avg_commission_per_day: float = 0.0
    commission_percent_of_profit: float = 0.0


class DividendStatistics(BaseModel):
    total_dividends: float = 0.0
    dividend_count: int = 0
    average_dividend: float = 0.0
    symbol_count: int = 0
    top_symbol: Optional[str] = None
    top_symbol_amount: float = 0.0


class TradeStatistics(BaseModel):
    total_trades: int = 0
    buy_trades: int = 0
    sell_trades: int = 0
    total_volume: float = 0.0
    trading_days: int = 0
    total_days_in_period: int = 0
    avg_trades_per_day: float = 0.0
    avg_trades_per_week: float = 0.0
    avg_trades_per_month: float = 0.0
    first_trade_date: Optional[date] = None
    last_trade_date: Optional[date] = None


class TradingSummary(BaseModel):
    total_realized_pnl: float = 0.0
    total_dividends: float = 0.0
    net_pnl: float = 0.0
    total_fees: float = 0.0
    total_trades: int = 0
    closed_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    breakeven_trades: int = 0
    win_rate: float = 0.0
    loss_rate: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    average_trade_pnl: float = 0.0
    performance: PerformanceScores = PerformanceScores()
    yearly: List[PeriodBreakdown] = []
    monthly: List[PeriodBreakdown] = []
    weekly: List[PeriodBreakdown] = []
    symbol_stats: SymbolStatistics = SymbolStatistics()
    time_stats: TimeStatistics = TimeStatistics()
    commission_stats: CommissionStatistics = CommissionStatistics()
    dividend_stats: DividendStatistics = DividendStatistics()
    trade_stats: TradeStatistics = TradeStatistics()

# --- DASHBOARD SCHEMAS ---

class DateValue(BaseModel):
    date: dt.date
    value: float


class DashboardMetrics(BaseModel):
    total_realized_pnl: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_pnl_per_day: float = 0.0
    total_dividends: float = 0.0
    portfolio_cost: float = 0.0
    portfolio_value: float = 0.0
    unrealized_pnl: float = 0.0
    daily_pnl: List[DateValue] = []
    cumulative_pnl: List[DateValue] = []
    equity_curve: List[DateValue] = []
    daily_dividends: List[DateValue] = []
    cumulative_dividends: List[DateValue] = []
