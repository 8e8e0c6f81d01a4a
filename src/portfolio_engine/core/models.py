"""Data models for networks, addresses, tokens, balances and portfolio rollups."""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Token decimals assumed when a token's precision is not known. A wrong value
# shifts every valuation of that token by a power of ten, so token lists
# should always state decimals explicitly.
DEFAULT_TOKEN_DECIMALS = 18

# Contract-address marker used for a network's native currency.
NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class NetworkHandle(BaseModel):
    """
    Liveness view of one registered network.

    Attributes
    ----------
    network_id : str
        Network name (e.g., 'ethereum', 'polygon')
    live : bool
        Result of the most recent liveness probe
    block_height : int | None
        Block height observed by that probe
    checked_at : datetime | None
        When the probe ran

    """

    network_id: str
    live: bool
    block_height: int | None = None
    checked_at: datetime | None = None


class TokenDescriptor(BaseModel):
    """
    Immutable token reference data, keyed by (network, contract_address).

    Attributes
    ----------
    network : str
        Network the contract lives on
    contract_address : str
        Token contract address (NATIVE_TOKEN_ADDRESS for the native currency)
    symbol : str
        Token symbol (e.g., 'USDC')
    name : str | None
        Full token name
    decimals : int
        Number of decimal places, DEFAULT_TOKEN_DECIMALS when unknown

    """

    model_config = ConfigDict(frozen=True)

    network: str
    contract_address: str
    symbol: str
    name: str | None = None
    decimals: int = Field(default=DEFAULT_TOKEN_DECIMALS, ge=0, le=77)

    @property
    def key(self) -> tuple[str, str]:
        """Registry key with the address lowercased."""
        return self.network, self.contract_address.lower()

    @property
    def is_native(self) -> bool:
        return self.contract_address == NATIVE_TOKEN_ADDRESS


class AddressRecord(BaseModel):
    """
    A watched address inside a portfolio.

    Attributes
    ----------
    id : str
        Record identifier
    portfolio_id : str
        Owning portfolio
    address : str
        Checksummed hex address
    network : str
        Network the address is tracked on
    label : str
        Free-form user label

    """

    id: str = Field(default_factory=new_id)
    portfolio_id: str
    address: str
    network: str
    label: str = ""

    @field_validator("address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        if not is_address(value):
            msg = f"invalid address format: {value}"
            raise ValueError(msg)
        return to_checksum_address(value)


class Portfolio(BaseModel):
    """
    User-defined set of addresses.

    The portfolio owns its address records; deleting it removes them.

    """

    id: str = Field(default_factory=new_id)
    owner_id: str
    name: str
    addresses: list[AddressRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RawBalance(BaseModel):
    """
    Integer balance in the token's smallest unit, with its token context.

    Attributes
    ----------
    address : AddressRecord
        Address the balance belongs to
    token : TokenDescriptor
        Token (or native currency) held
    amount : int
        Raw amount in smallest units
    native : bool
        True for the network's base currency

    """

    address: AddressRecord
    token: TokenDescriptor
    amount: int = Field(ge=0)
    native: bool = False


class ValuedBalance(BaseModel):
    """
    A raw balance scaled and priced within one refresh cycle.

    Attributes
    ----------
    raw : RawBalance
        Source balance
    scaled_amount : Decimal
        Human-scaled quantity
    unit_price : Decimal | None
        Fiat unit price, None when no price was available
    fiat_value : Decimal | None
        scaled_amount * unit_price at full precision, None when unpriced
    cycle_id : str | None
        Refresh cycle that produced the value
    fetched_at : datetime
        When the value was computed

    """

    raw: RawBalance
    scaled_amount: Decimal
    unit_price: Decimal | None = None
    fiat_value: Decimal | None = None
    cycle_id: str | None = None
    fetched_at: datetime = Field(default_factory=utcnow)

    @property
    def symbol(self) -> str:
        return self.raw.token.symbol

    @property
    def network(self) -> str:
        return self.raw.address.network

    @property
    def is_priced(self) -> bool:
        return self.fiat_value is not None

    @property
    def record_key(self) -> str:
        """Upsert key: (address id, token address)."""
        return f"{self.raw.address.id}:{self.raw.token.contract_address.lower()}"

    @property
    def portfolio_id(self) -> str:
        return self.raw.address.portfolio_id


class FetchFailure(BaseModel):
    """Per-address failure recorded during a refresh."""

    address_id: str
    address: str
    network: str
    error_type: str
    message: str


class RefreshResult(BaseModel):
    """
    Outcome of one portfolio refresh cycle.

    A refresh where every address failed is still a valid result: no
    balances and a failure count equal to the number of addresses.

    """

    portfolio_id: str
    cycle_id: str
    balances: list[ValuedBalance] = Field(default_factory=list)
    failures: list[FetchFailure] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=utcnow)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class PortfolioAsset(BaseModel):
    """Single asset line in a portfolio summary."""

    symbol: str
    name: str | None = None
    amount: Decimal
    value: Decimal | None = None
    network: str
    change_24h: Decimal = Decimal("0")


class PortfolioSummary(BaseModel):
    """
    Aggregated view over the current valued balances of a portfolio.

    Attributes
    ----------
    portfolio_id : str | None
        Portfolio the summary belongs to
    total_value : Decimal
        Sum of fiat values (unpriced balances count as zero)
    asset_count : int
        Number of balances
    priced_asset_count : int
        Number of balances that carry a fiat value
    network_count : int
        Number of distinct networks
    top_assets : list[PortfolioAsset]
        Largest balances by value, ties broken by symbol
    network_allocation : dict[str, Decimal]
        Fiat value per network
    total_change_24h, total_change_7d, total_change_30d : Decimal
        Change figures; zero until a price history source exists

    """

    portfolio_id: str | None = None
    total_value: Decimal = Decimal("0")
    asset_count: int = 0
    priced_asset_count: int = 0
    network_count: int = 0
    top_assets: list[PortfolioAsset] = Field(default_factory=list)
    network_allocation: dict[str, Decimal] = Field(default_factory=dict)
    total_change_24h: Decimal = Decimal("0")
    total_change_7d: Decimal = Decimal("0")
    total_change_30d: Decimal = Decimal("0")


class NetworkAllocation(BaseModel):
    """Share of portfolio value held on one network."""

    value: Decimal
    percentage: Decimal
    asset_count: int


class AssetAllocation(BaseModel):
    """Share of portfolio value held in one symbol across networks."""

    value: Decimal
    percentage: Decimal
    amount: Decimal
    networks: list[str] = Field(default_factory=list)


class PortfolioAllocation(BaseModel):
    """Allocation of portfolio value by network and by symbol (percent, 0-100)."""

    total_value: Decimal = Decimal("0")
    by_network: dict[str, NetworkAllocation] = Field(default_factory=dict)
    by_asset: dict[str, AssetAllocation] = Field(default_factory=dict)


class DataPoint(BaseModel):
    """One point of a performance or history series."""

    day: date
    value: Decimal
    change: Decimal = Decimal("0")
    volume: Decimal | None = None


class PortfolioPerformance(BaseModel):
    """Performance series for a period."""

    period: str
    data: list[DataPoint] = Field(default_factory=list)
    total_return: Decimal = Decimal("0")
    best_day: Decimal = Decimal("0")
    worst_day: Decimal = Decimal("0")


class PortfolioHistory(BaseModel):
    """Value history for a period."""

    period: str
    data: list[DataPoint] = Field(default_factory=list)
