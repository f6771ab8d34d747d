"""Token table and the frontend vault list format."""

import pytest

from ithil_deploy.tokens import USDC, WBTC, LendingToken, get_token


def test_get_token():
    assert get_token("usdc") is USDC
    with pytest.raises(KeyError):
        get_token("DOGE")


def test_ledger_names():
    assert USDC.vault_ledger_name == "usdcVault"
    assert WBTC.call_option_ledger_name == "wbtcCallOption"


def test_convert_to_raw():
    assert USDC.convert_to_raw(1000) == 1_000_000_000
    assert WBTC.convert_to_raw(4) == 400_000_000


def test_frontend_entry():
    """Vaults without a call option service list ``0x``."""
    entry = LendingToken(USDC, "0x5FbDB2315678afecb367f032d93F642f64180aa3").to_json()
    assert entry == {
        "name": "USDC",
        "coingeckoId": "usd-coin",
        "iconName": "usdc",
        "decimals": 6,
        "tokenAddress": USDC.address,
        "oracleAddress": "0x50834f3163758fcc1df9973b6e91f0f0f0434ad3",
        "vaultAddress": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        "callOptionAddress": "0x",
    }
