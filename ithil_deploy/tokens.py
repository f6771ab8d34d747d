"""Tokens Ithil lends on Arbitrum One."""

from dataclasses import dataclass

from eth_typing import HexAddress


@dataclass(slots=True, frozen=True)
class TokenDescriptor:
    """A lendable token and its Chainlink price feed."""

    #: Ticker, e.g. ``USDC``
    symbol: str

    name: str

    #: CoinGecko API id, used by the frontend for prices
    coingecko_id: str

    #: Frontend icon file name
    icon_name: str

    decimals: int

    #: ERC-20 address
    address: HexAddress

    #: Chainlink aggregator used by the Oracle, lowercase as published
    price_feed: HexAddress

    #: Initial Ithil price quoted in this token, raw units, for the call option service
    initial_price_for_ithil: int

    @property
    def vault_ledger_name(self) -> str:
        """Ledger key of this token's vault, e.g. ``usdcVault``."""
        return f"{self.symbol.lower()}Vault"

    @property
    def call_option_ledger_name(self) -> str:
        """Ledger key of this token's call option service, e.g. ``usdcCallOption``."""
        return f"{self.symbol.lower()}CallOption"

    def convert_to_raw(self, amount: int | float) -> int:
        """Whole units to raw units."""
        return int(amount * 10**self.decimals)


@dataclass(slots=True, frozen=True)
class LendingToken:
    """A token with its vault, as listed in ``assets.json`` for the frontend."""

    token: TokenDescriptor

    vault_address: HexAddress

    #: ``None`` until the call option service for the token is deployed
    call_option_address: HexAddress | None = None

    def to_json(self) -> dict:
        """Frontend format."""
        return {
            "name": self.token.symbol,
            "coingeckoId": self.token.coingecko_id,
            "iconName": self.token.icon_name,
            "decimals": self.token.decimals,
            "tokenAddress": self.token.address,
            "oracleAddress": self.token.price_feed,
            "vaultAddress": self.vault_address,
            "callOptionAddress": self.call_option_address or "0x",
        }


USDC = TokenDescriptor(
    symbol="USDC",
    name="USD Coin (Arb1)",
    coingecko_id="usd-coin",
    icon_name="usdc",
    decimals=6,
    address="0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8",
    price_feed="0x50834f3163758fcc1df9973b6e91f0f0f0434ad3",
    initial_price_for_ithil=400_000,
)

USDT = TokenDescriptor(
    symbol="USDT",
    name="Tether USD",
    coingecko_id="tether",
    icon_name="usdt",
    decimals=6,
    address="0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9",
    price_feed="0x3f3f5df88dc9f13eac63df89ec16ef6e7e25dde7",
    initial_price_for_ithil=400_000,
)

WETH = TokenDescriptor(
    symbol="WETH",
    name="Wrapped Ether",
    coingecko_id="ethereum",
    icon_name="eth",
    decimals=18,
    address="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
    price_feed="0x639fe6ab55c921f74e7fac1ee960c0b6293ba612",
    initial_price_for_ithil=220_000_000_000_000,
)

WBTC = TokenDescriptor(
    symbol="WBTC",
    name="Wrapped BTC",
    coingecko_id="btc",
    icon_name="btc",
    decimals=8,
    address="0x2f2a2543B76A4166549F7aaB2e75Bef0aefC5B0f",
    price_feed="0xd0c7101eacbb49f3decccc166d238410d6d46d57",
    initial_price_for_ithil=1363,
)

#: Tokens in deployment order
TOKENS: tuple[TokenDescriptor, ...] = (USDC, USDT, WETH, WBTC)

#: Symbol -> token
TOKEN_MAP: dict[str, TokenDescriptor] = {t.symbol: t for t in TOKENS}


def get_token(symbol: str) -> TokenDescriptor:
    """Look up a built-in token by ticker, case insensitive."""
    try:
        return TOKEN_MAP[symbol.upper()]
    except KeyError:
        raise KeyError(f"Unknown token {symbol}, known tokens are {', '.join(TOKEN_MAP)}") from None

