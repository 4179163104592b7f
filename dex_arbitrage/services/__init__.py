from .profit import Direction, ProfitCalculator
from .schemas import Opportunity, PassResult, Quote, QuoteUnavailable, Token

__all__ = ["Direction", "ProfitCalculator", "Opportunity", "PassResult", "Quote", "QuoteUnavailable", "Token"]
