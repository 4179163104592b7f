from .balances import BalanceSource, Erc20BalanceSource
from .client import TokenDecimalsResolver, build_web3
from .gas import GasCostEstimator, web3_gas_price
from .wallet import DryRunExecutor, TradeExecutor, Web3TradeExecutor, load_account

__all__ = [
    "BalanceSource",
    "Erc20BalanceSource",
    "TokenDecimalsResolver",
    "build_web3",
    "GasCostEstimator",
    "web3_gas_price",
    "DryRunExecutor",
    "TradeExecutor",
    "Web3TradeExecutor",
    "load_account",
]
