"""Per-token vaults of the Manager.

- :py:func:`create_vaults` makes sure each token has a vault
- :py:func:`write_vault_list` persists them as ``assets.json`` for the frontend
- :py:func:`fill_vaults` seeds the vaults with depositor liquidity on devnets
"""

import json
import logging
from pathlib import Path
from typing import Iterable

from eth_typing import HexAddress
from web3 import Web3

from ithil_deploy.abi import ERC20_ABI, VAULT_ABI
from ithil_deploy.accounts import DEPOSITORS
from ithil_deploy.fork import ForkBackend, impersonate
from ithil_deploy.ledger import AddressLedger, LedgerIOError, write_with_mirror
from ithil_deploy.parallel import run_in_parallel
from ithil_deploy.services import Manager
from ithil_deploy.tokens import TOKENS, USDC, USDT, WBTC, WETH, LendingToken, TokenDescriptor
from ithil_deploy.transactions import DEFAULT_TX_TIMEOUT, send_transaction

logger = logging.getLogger(__name__)

#: Raw units the deployer approves to the Manager before creating a vault
VAULT_CREATION_APPROVAL = 100

#: Whole units each depositor puts in each vault
DEFAULT_DEPOSITS = {
    USDC: 1000,
    USDT: 78000,
    WETH: 9,
    WBTC: 4,
}

#: Gas for depositor transactions, estimation fails on some forks
DEPOSIT_GAS = 2_000_000


def create_vaults(
    manager: Manager,
    tokens: Iterable[TokenDescriptor] = TOKENS,
    ledger: AddressLedger | None = None,
) -> list[LendingToken]:
    """Create a vault for each token unless it already exists.

    Every vault is required: if any token fails, the first error is raised
    after all tokens have been tried.

    :param ledger:
        Record each vault as ``<symbol>Vault``
    """
    tokens = list(tokens)

    def _create(token: TokenDescriptor) -> HexAddress:
        if manager.vault_of(token.address) is None:
            erc20 = manager.web3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)
            send_transaction(
                manager.web3,
                erc20.functions.approve(manager.address, VAULT_CREATION_APPROVAL),
                manager.sender,
                f"{token.symbol}.approve",
                timeout=manager.tx_timeout,
            )
        return manager.create_vault(token.address)

    result = run_in_parallel([(t.symbol, lambda t=t: _create(t)) for t in tokens], "create vaults")
    result.raise_first()

    vaults = [LendingToken(token=t, vault_address=result.succeeded[t.symbol]) for t in tokens]

    if ledger is not None:
        for v in vaults:
            ledger.set(v.token.vault_ledger_name, v.vault_address)

    logger.info("%d vaults for manager %s", len(vaults), manager.address)
    return vaults


def write_vault_list(vaults: list[LendingToken], canonical_path: Path, consumer_path: Path | None = None) -> bool:
    """Write ``assets.json``.

    :return:
        True if the consumer copy is up to date
    """
    data = [v.to_json() for v in vaults]
    up_to_date = write_with_mirror(canonical_path, consumer_path, data)
    logger.info("Wrote %d vaults to %s", len(vaults), canonical_path)
    return up_to_date


def read_vault_list(path: Path) -> list[dict]:
    """Read ``assets.json`` as written by :py:func:`write_vault_list`.

    :raise LedgerIOError:
        If the file is missing or broken
    """
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise LedgerIOError(f"Could not read vault list {path}: {e}", path) from e


def fill_vaults(
    web3: Web3,
    backend: ForkBackend,
    manager: Manager,
    depositors: Iterable[HexAddress | str] = DEPOSITORS,
    deposits: dict[TokenDescriptor, int] | None = None,
    timeout: float = DEFAULT_TX_TIMEOUT,
) -> dict[tuple[HexAddress, str], Exception]:
    """Each depositor approves and deposits into each vault.

    Depositors must hold the tokens, see :py:func:`ithil_deploy.funding.fund_accounts`.
    A failing (depositor, token) pair is logged and skipped.

    :return:
        Failures by (depositor, symbol)
    """
    if deposits is None:
        deposits = DEFAULT_DEPOSITS

    depositors = [Web3.to_checksum_address(d) for d in depositors]

    vaults = {}
    for token in deposits:
        vault = manager.vault_of(token.address)
        assert vault, f"No vault for {token.symbol}, deploy vaults first"
        vaults[token] = vault

    def _deposit(depositor: HexAddress):
        failures = {}
        with impersonate(web3, backend, depositor):
            for token, amount in deposits.items():
                raw_amount = token.convert_to_raw(amount)
                erc20 = web3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)
                vault = web3.eth.contract(address=vaults[token], abi=VAULT_ABI)
                try:
                    send_transaction(web3, erc20.functions.approve(vault.address, raw_amount), depositor, f"{token.symbol}.approve", gas=DEPOSIT_GAS, timeout=timeout)
                    send_transaction(web3, vault.functions.deposit(raw_amount, depositor), depositor, f"{token.symbol} vault deposit", gas=DEPOSIT_GAS, timeout=timeout)
                except Exception as e:
                    logger.error("Depositing %s %s from %s failed: %s", amount, token.symbol, depositor, e)
                    failures[(depositor, token.symbol)] = e
        return failures

    result = run_in_parallel([(d, lambda d=d: _deposit(d)) for d in depositors], "fill vaults")

    failures = {}
    for depositor, e in result.failed.items():
        for token in deposits:
            failures[(depositor, token.symbol)] = e
    for depositor_failures in result.succeeded.values():
        failures.update(depositor_failures)

    for token, amount in deposits.items():
        logger.info("Filled %s vault with up to %s %s", token.symbol, amount * len(depositors), token.symbol)

    return failures
