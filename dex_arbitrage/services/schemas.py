from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from dex_arbitrage.core.exceptions import ErrorKind
from dex_arbitrage.core.money import quantize, ratio, to_units, value_of

NATIVE_DECIMALS = 18


@dataclass(frozen=True, slots=True)
class Token:
    address: str
    symbol: str
    decimals: int
    price: Decimal  # numeraire value of one whole token
    coingecko_id: str | None = None

    def to_units(self, raw: int) -> Decimal:
        return to_units(raw, self.decimals)

    def value_of(self, raw: int) -> Decimal:
        return value_of(raw, self.decimals, self.price)

    def __str__(self) -> str:
        return self.symbol


@dataclass(frozen=True, slots=True)
class Route:
    venue: str
    path: tuple[Token, ...]
    pools: tuple[str, ...]

    @property
    def hops(self) -> int:
        return len(self.pools)

    @property
    def addresses(self) -> tuple[str, ...]:
        return tuple(token.address for token in self.path)

    def describe(self) -> str:
        return " -> ".join(token.symbol for token in self.path)


@dataclass(frozen=True, slots=True)
class Quote:
    venue: str
    token_in: Token
    token_out: Token
    amount_in: int
    amount_out: int
    price: Decimal  # output units per input unit
    route: Route
    liquidity: int = 0  # output-token reserve backing the quote
    quoted_at: float = 0.0

    @classmethod
    def from_amounts(
        cls,
        venue: str,
        route: Route,
        amount_in: int,
        amount_out: int,
        *,
        liquidity: int = 0,
        quoted_at: float = 0.0,
    ) -> Quote:
        token_in, token_out = route.path[0], route.path[-1]
        price = ratio(token_out.to_units(amount_out), token_in.to_units(amount_in))
        return cls(
            venue=venue,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            price=price,
            route=route,
            liquidity=liquidity,
            quoted_at=quoted_at,
        )


@dataclass(frozen=True, slots=True)
class QuoteUnavailable:
    venue: str
    token_in: Token
    token_out: Token
    reason: str


QuoteResult = Union[Quote, QuoteUnavailable]


@dataclass(frozen=True, slots=True)
class GasEstimate:
    gas_units: int
    gas_price_wei: int  # buffered
    native_price: Decimal
    observed_at: float = 0.0

    @property
    def fee_wei(self) -> int:
        return self.gas_units * self.gas_price_wei

    @property
    def cost(self) -> Decimal:
        """Fee expressed in the numeraire."""
        return quantize(value_of(self.fee_wei, NATIVE_DECIMALS, self.native_price))

    def with_units(self, gas_units: int) -> GasEstimate:
        """Same gas price observation applied to a different trade shape."""
        return replace(self, gas_units=gas_units)


class OpportunityKind(str, Enum):
    PAIR = "pair"
    TRIANGULAR = "triangular"


@dataclass(frozen=True, slots=True)
class Opportunity:
    kind: OpportunityKind
    legs: tuple[Quote, ...]
    gas: GasEstimate
    net_profit: Decimal
    alternatives: tuple[Quote, ...] = ()

    @property
    def venue(self) -> str:
        return self.legs[0].venue

    @property
    def token_in(self) -> Token:
        return self.legs[0].token_in

    @property
    def token_out(self) -> Token:
        return self.legs[-1].token_out

    @property
    def amount_in(self) -> int:
        return self.legs[0].amount_in

    @property
    def amount_out(self) -> int:
        return self.legs[-1].amount_out

    @property
    def route(self) -> Route:
        if len(self.legs) == 1:
            return self.legs[0].route
        path: list[Token] = [self.legs[0].token_in]
        pools: list[str] = []
        for leg in self.legs:
            path.extend(leg.route.path[1:])
            pools.extend(leg.route.pools)
        return Route(venue=self.venue, path=tuple(path), pools=tuple(pools))

    def describe(self) -> str:
        return f"{self.kind.value} {self.route.describe()} on {self.venue}: net {self.net_profit}"


@dataclass(frozen=True, slots=True)
class TradeDescriptor:
    venue: str
    route: Route
    amount_in: int
    expected_out: int
    min_amount_out: int
    deadline: int  # unix seconds
    opportunity: Opportunity

    def is_expired(self, now: float) -> bool:
        return now >= self.deadline


class SkipReason(str, Enum):
    THRESHOLD_NOT_MET = "threshold_not_met"
    NOT_PROFITABLE = "not_profitable"
    TRIANGULAR_DISABLED = "triangular_disabled"
    PENDING_TRADE = "pending_trade"
    DEADLINE_EXPIRED = "deadline_expired"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True, slots=True)
class Execute:
    descriptor: TradeDescriptor


@dataclass(frozen=True, slots=True)
class Skip:
    reason: SkipReason
    detail: str = ""


Decision = Union[Execute, Skip]


@dataclass(frozen=True, slots=True)
class TransactionHandle:
    tx_hash: str
    descriptor: TradeDescriptor
    submitted_at: float


@dataclass(frozen=True, slots=True)
class Receipt:
    tx_hash: str
    success: bool
    block_number: int | None = None
    gas_used: int | None = None


@dataclass(frozen=True, slots=True)
class PassResult:
    opportunity_found: bool
    executed: bool
    error: ErrorKind | None = None
    skip_reason: SkipReason | None = None
    opportunity: Opportunity | None = None


class EventKind(str, Enum):
    OPPORTUNITY_FOUND = "opportunity_found"
    NO_OPPORTUNITY = "no_opportunity"
    TRADE_SKIPPED = "trade_skipped"
    TRADE_SUBMITTED = "trade_submitted"
    TRADE_CONFIRMED = "trade_confirmed"
    TRADE_FAILED = "trade_failed"
    PASS_ERROR = "pass_error"


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    kind: EventKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)
