from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Sequence

from dex_arbitrage.core.money import difference, quantize
from dex_arbitrage.services.schemas import GasEstimate, Quote


class Direction(str, Enum):
    """Which side of the leg is being priced.

    ``SELL`` quotes are output per unit input, so the highest price wins.
    ``BUY`` quotes are cost per unit acquired, so the lowest price wins.
    """

    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True, slots=True)
class Comparison:
    best_quote: Quote
    net_profit: Decimal


class ProfitCalculator:
    """Net profit in the numeraire: value out - value in - gas cost."""

    def compare(
        self,
        quotes: Sequence[Quote],
        gas: GasEstimate,
        amount_in: int,
        direction: Direction = Direction.SELL,
    ) -> Comparison | None:
        """Pick the best quote; ``quotes`` must be in venue priority order.

        A later quote replaces the current best only on strict improvement,
        so the earliest venue wins ties.
        """
        if not quotes:
            return None
        reference = quotes[0]
        for quote in quotes:
            self._check_comparable(reference, quote, amount_in)

        best = reference
        for quote in quotes[1:]:
            if direction is Direction.SELL and quote.price > best.price:
                best = quote
            elif direction is Direction.BUY and quote.price < best.price:
                best = quote
        return Comparison(best_quote=best, net_profit=self.net_profit(best, gas))

    def net_profit(self, quote: Quote, gas: GasEstimate) -> Decimal:
        value_out = quote.token_out.value_of(quote.amount_out)
        value_in = quote.token_in.value_of(quote.amount_in)
        return quantize(difference(value_out, value_in, gas.cost))

    def triangular(self, legs: Sequence[Quote], gas: GasEstimate) -> Decimal:
        """Profit of a cycle whose hops feed each other and end in the start token."""
        if len(legs) < 2:
            raise ValueError("a cycle needs at least two legs")
        for previous, current in zip(legs, legs[1:]):
            if previous.token_out.address.lower() != current.token_in.address.lower():
                raise ValueError(f"leg {current.route.describe()} does not start where the previous leg ended")
            if previous.amount_out != current.amount_in:
                raise ValueError("each leg must spend exactly the previous leg's output")
        start, final = legs[0], legs[-1]
        if final.token_out.address.lower() != start.token_in.address.lower():
            raise ValueError("cycle does not return to its start token")

        token = start.token_in
        return quantize(difference(token.value_of(final.amount_out), token.value_of(start.amount_in), gas.cost))

    @staticmethod
    def _check_comparable(reference: Quote, quote: Quote, amount_in: int) -> None:
        # comparing quotes for different tokens or sizes would mix denominations
        if quote.amount_in != amount_in:
            raise ValueError(f"{quote.venue} quote is for {quote.amount_in}, expected {amount_in}")
        if (
            quote.token_in.address.lower() != reference.token_in.address.lower()
            or quote.token_out.address.lower() != reference.token_out.address.lower()
        ):
            raise ValueError(
                f"cannot compare {quote.route.describe()} on {quote.venue} "
                f"with {reference.route.describe()} on {reference.venue}"
            )
