from __future__ import annotations

from decimal import Decimal
from typing import Literal, Sequence, get_args

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, field_validator

DecisionMode = Literal["deterministic", "probabilistic"]
EventName = Literal[
    "opportunity_found",
    "no_opportunity",
    "trade_skipped",
    "trade_submitted",
    "trade_confirmed",
    "trade_failed",
    "pass_error",
]


class ChainConfig(BaseModel):
    name: str = "polygon"
    chain_id: int = 137
    rpc_url: str = Field(default="https://polygon-rpc.com/")
    # Polygon PoS blocks carry extra data, web3 needs the POA middleware
    poa: bool = True
    native_coingecko_id: str = "polygon-ecosystem-token"


class VenueConfig(BaseModel):
    name: str
    factory: str
    router: str
    fee_bps: int = Field(default=30, ge=0, lt=10_000)


def _default_venues() -> list[VenueConfig]:
    return [
        VenueConfig(
            name="quickswap",
            factory="0x5757371414417b8C6CAad45bAeF941aBc7d3Ab32",
            router="0xa5E0829CaCEd8fFDD4De3c43696c57F7D7A678ff",
        ),
        VenueConfig(
            name="sushiswap",
            factory="0xc35DADB65012eC5796536bD9864eD8773aBc74C4",
            router="0x1b02dA8Cb0d097eB8D57A175b88c7D8b47997506",
        ),
    ]


class TokenUniverseConfig(BaseModel):
    api_url: str = "https://api.coingecko.com/api/v3"
    api_key: str = Field(default="", repr=False)
    vs_currency: str = "usd"
    category: str | None = "polygon-ecosystem"
    platform: str = "polygon-pos"
    limit: PositiveInt = Field(default=20, le=100)
    cache_ttl_sec: float = Field(default=300.0, ge=0.0)


class GasConfig(BaseModel):
    single_hop_units: PositiveInt = 200_000
    per_hop_units: PositiveInt = 150_000
    buffer_pct: float = Field(default=10.0, ge=0.0)
    max_gas_price_gwei: PositiveFloat | None = None


class DecisionConfig(BaseModel):
    mode: DecisionMode = "deterministic"
    min_profit: Decimal = Field(default=Decimal("0.001"), gt=0)
    slippage_bps: int = Field(default=50, ge=0, lt=10_000)
    deadline_sec: PositiveInt = 20 * 60
    seed: int | None = None

    @field_validator("min_profit", mode="before")
    @classmethod
    def _parse_decimal(cls, value: object) -> object:
        # floats from YAML would carry binary noise into the threshold
        if isinstance(value, float):
            return Decimal(str(value))
        return value


class TriangularConfig(BaseModel):
    enabled: bool = True
    execute: bool = False
    # cycles grow cubically; only the largest tokens take part
    max_tokens: PositiveInt = 10


class ScanConfig(BaseModel):
    interval_sec: PositiveFloat = 30.0
    trade_amount: Decimal = Field(default=Decimal("1"), gt=0)
    max_concurrency: PositiveInt = 8
    balance_filter: bool = True

    @field_validator("trade_amount", mode="before")
    @classmethod
    def _parse_decimal(cls, value: object) -> object:
        if isinstance(value, float):
            return Decimal(str(value))
        return value


class TimeoutsConfig(BaseModel):
    quote_sec: PositiveFloat = 10.0
    gas_sec: PositiveFloat = 10.0
    balance_sec: PositiveFloat = 5.0
    http_sec: PositiveFloat = 15.0
    confirmation_sec: PositiveFloat = 180.0


class WalletConfig(BaseModel):
    private_key: str = Field(default="", repr=False)
    dry_run: bool = True


class TelegramConfig(BaseModel):
    enabled: bool = False
    bot_token: str = Field(default="", min_length=0, repr=False)
    chat_id: str = Field(default="", min_length=0)
    events: Sequence[EventName] = Field(default_factory=lambda: list(get_args(EventName)))
    quiet_interval_sec: float = Field(default=600.0, ge=0.0)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    level: str = Field(default="INFO")
    json_format: bool = Field(default=False, alias="json")
    directory: str = "logs"


class Settings(BaseModel):
    chain: ChainConfig = Field(default_factory=ChainConfig)
    venues: list[VenueConfig] = Field(default_factory=_default_venues, min_length=1)
    tokens: TokenUniverseConfig = Field(default_factory=TokenUniverseConfig)
    gas: GasConfig = Field(default_factory=GasConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    triangular: TriangularConfig = Field(default_factory=TriangularConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("venues")
    @classmethod
    def _unique_venues(cls, venues: list[VenueConfig]) -> list[VenueConfig]:
        names = [venue.name for venue in venues]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate venue names: {names}")
        return venues
