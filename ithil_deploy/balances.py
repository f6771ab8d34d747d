"""Token balance report for test accounts."""

import logging
from decimal import Decimal
from typing import Iterable

from eth_typing import HexAddress
from tabulate import tabulate
from web3 import Web3

from ithil_deploy.abi import ERC20_ABI
from ithil_deploy.retry import call_with_retry
from ithil_deploy.tokens import TOKENS, TokenDescriptor

logger = logging.getLogger(__name__)


def fetch_balances(
    web3: Web3,
    accounts: Iterable[HexAddress | str],
    tokens: Iterable[TokenDescriptor] = TOKENS,
) -> dict[HexAddress, dict[str, Decimal]]:
    """Read ETH and token balances.

    :return:
        Account -> symbol -> balance in whole units
    """
    tokens = list(tokens)
    contracts = {t.symbol: web3.eth.contract(address=Web3.to_checksum_address(t.address), abi=ERC20_ABI) for t in tokens}

    balances = {}
    for account in accounts:
        account = Web3.to_checksum_address(account)
        row = {"ETH": Decimal(call_with_retry(lambda: web3.eth.get_balance(account), "eth_getBalance")) / Decimal(10**18)}
        for token in tokens:
            raw = call_with_retry(contracts[token.symbol].functions.balanceOf(account).call, f"{token.symbol}.balanceOf")
            row[token.symbol] = Decimal(raw) / Decimal(10**token.decimals)
        balances[account] = row
    return balances


def format_balance_table(balances: dict[HexAddress, dict[str, Decimal]]) -> str:
    """Accounts as rows, assets as columns."""
    if not balances:
        return "No accounts"

    symbols = list(next(iter(balances.values())).keys())
    rows = [[account] + [f"{row[s]:,.4f}" for s in symbols] for account, row in balances.items()]
    return tabulate(rows, headers=["Account"] + symbols, tablefmt="fancy_grid", disable_numparse=True)
