"""Give test accounts ETH and tokens on forked networks.

How a token is minted depends on the network and the token:

- On Tenderly, ``tenderly_setErc20Balance`` sets any ERC-20 balance directly
- WETH is wrapped from ETH the recipient is given first
- Arbitrum bridged tokens (USDC, USDT, WBTC) are minted by impersonating
  their L2 gateway and calling ``bridgeMint``
- Anything else gets its balance written into the ``balanceOf`` storage slot

:py:func:`fund_accounts` runs one job per (recipient, token) pair in parallel.
A failing pair is logged and the rest carry on.

Storage tools for making the deployer the gateway of bridged tokens live
here too, see :py:func:`override_gateway`.
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Iterable

from eth_abi import encode
from eth_typing import HexAddress
from web3 import Web3

from ithil_deploy.abi import BRIDGED_TOKEN_ABI, ERC20_ABI, WETH_ABI
from ithil_deploy.accounts import BRIDGE_GATEWAYS
from ithil_deploy.fork import ForkBackend, add_balance, impersonate, set_balance, set_erc20_balance_tenderly, set_storage_at
from ithil_deploy.parallel import run_in_parallel
from ithil_deploy.tokens import TokenDescriptor
from ithil_deploy.transactions import DEFAULT_TX_TIMEOUT, send_transaction

logger = logging.getLogger(__name__)

#: Top up ETH only below this, wei
DEFAULT_ETH_THRESHOLD = 10**18

#: ETH balance after a top up, wei
DEFAULT_ETH_AMOUNT = 3 * 10**18

#: Extra ETH a WETH recipient gets to pay for the ``deposit()`` gas
WETH_GAS_BUFFER = 10**18


class StorageOverrideFailed(Exception):
    """Storage was written but the contract does not read back the wanted value."""


@dataclass(slots=True, frozen=True)
class StorageReplacement:
    """Where a value sits inside a storage word.

    ``start`` and ``end`` are offsets in the 64 character hex string of the word.
    """

    slot: int
    start: int
    end: int

    #: The word as it was read
    value: str = ""


#: Storage of the gateway address in Arbitrum bridged tokens, and the getter that reads it
GATEWAY_STORAGE: dict[str, tuple[StorageReplacement, str]] = {
    "USDC": (StorageReplacement(slot=204, start=24, end=64), "gatewayAddress"),
    "USDT": (StorageReplacement(slot=256, start=22, end=62), "l2Gateway"),
    "WBTC": (StorageReplacement(slot=204, start=24, end=64), "l2Gateway"),
}


@dataclass(slots=True)
class FundingReport:
    """Outcome of :py:func:`fund_accounts`."""

    #: (recipient, symbol) pairs that got their funds
    funded: list[tuple[HexAddress, str]] = field(default_factory=list)

    #: (recipient, symbol) -> exception
    failed: dict[tuple[HexAddress, str], Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def fund_eth(
    web3: Web3,
    backend: ForkBackend,
    address: HexAddress | str,
    amount: int = DEFAULT_ETH_AMOUNT,
    threshold: int = DEFAULT_ETH_THRESHOLD,
) -> bool:
    """Top up ETH if the balance is below ``threshold``.

    :return:
        True if the balance was changed
    """
    address = Web3.to_checksum_address(address)
    balance = web3.eth.get_balance(address)
    if balance >= threshold:
        logger.debug("%s has %s wei, no top up needed", address, balance)
        return False

    set_balance(web3, backend, address, amount)
    logger.info("Funded %s with %s ETH", address, Web3.from_wei(amount, "ether"))
    return True


def fund_erc20_tenderly(web3: Web3, token: TokenDescriptor, account: HexAddress | str, amount: int):
    """Set a token balance on a Tenderly fork.

    :param amount:
        Whole token units
    """
    set_erc20_balance_tenderly(web3, token.address, account, token.convert_to_raw(amount))
    logger.info("Funded %s with %s %s", account, amount, token.symbol)


def bridge_mint(
    web3: Web3,
    token: TokenDescriptor,
    gateway: HexAddress | str,
    receiver: HexAddress | str,
    amount: int,
    timeout: float = DEFAULT_TX_TIMEOUT,
):
    """Mint a bridged token as its gateway.

    The gateway must be impersonated, or be an account the node has unlocked.

    :param amount:
        Whole token units
    """
    contract = web3.eth.contract(address=Web3.to_checksum_address(token.address), abi=BRIDGED_TOKEN_ABI)
    receiver = Web3.to_checksum_address(receiver)
    raw_amount = token.convert_to_raw(amount)
    send_transaction(
        web3,
        contract.functions.bridgeMint(receiver, raw_amount),
        Web3.to_checksum_address(gateway),
        f"{token.symbol}.bridgeMint",
        timeout=timeout,
    )
    balance = contract.functions.balanceOf(receiver).call()
    logger.info("%s balance of %s: %s", token.symbol, receiver, balance / 10**token.decimals)


def mint_weth(
    web3: Web3,
    backend: ForkBackend,
    token: TokenDescriptor,
    receiver: HexAddress | str,
    amount: int,
    timeout: float = DEFAULT_TX_TIMEOUT,
):
    """Give the receiver ETH and wrap it.

    :param amount:
        Whole WETH units
    """
    receiver = Web3.to_checksum_address(receiver)
    raw_amount = token.convert_to_raw(amount)
    add_balance(web3, backend, receiver, raw_amount + WETH_GAS_BUFFER)

    contract = web3.eth.contract(address=Web3.to_checksum_address(token.address), abi=WETH_ABI)
    with impersonate(web3, backend, receiver):
        send_transaction(web3, contract.functions.deposit(), receiver, "WETH.deposit", value=raw_amount, timeout=timeout)

    logger.info("Wrapped %s WETH for %s", amount, receiver)


def _balance_slot_candidates(account: HexAddress, slot: int) -> list[bytes]:
    # Solidity mapping(address => uint) and Vyper HashMap[address, uint] hash their keys in opposite order
    return [
        Web3.keccak(encode(["address", "uint256"], [account, slot])),
        Web3.keccak(encode(["uint256", "address"], [slot, account])),
    ]


def set_erc20_balance_storage(
    web3: Web3,
    backend: ForkBackend,
    token: TokenDescriptor,
    account: HexAddress | str,
    amount: int,
    max_slot: int = 32,
) -> int:
    """Write a token balance straight into the ``balanceOf`` mapping.

    Each candidate mapping slot is tried until ``balanceOf`` reads back the
    new value. A wrong guess is restored.

    :param amount:
        Whole token units

    :return:
        Mapping slot found

    :raise StorageOverrideFailed:
        If no slot under ``max_slot`` works
    """
    account = Web3.to_checksum_address(account)
    contract = web3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)
    raw_amount = token.convert_to_raw(amount)
    value = "0x" + raw_amount.to_bytes(32, "big").hex()

    for slot in range(max_slot):
        for key in _balance_slot_candidates(account, slot):
            key_int = int.from_bytes(key, "big")
            original = web3.eth.get_storage_at(token.address, key_int)
            set_storage_at(web3, backend, token.address, key_int, value)
            if contract.functions.balanceOf(account).call() == raw_amount:
                logger.info("Set %s balance of %s to %s through mapping slot %d", token.symbol, account, amount, slot)
                return slot
            set_storage_at(web3, backend, token.address, key_int, "0x" + bytes(original).rjust(32, b"\0").hex())

    raise StorageOverrideFailed(f"Could not find balanceOf mapping of {token.symbol} in the first {max_slot} slots")


def find_storage_slot(web3: Web3, contract: HexAddress | str, needle: HexAddress | str, scan: int = 1000) -> StorageReplacement | None:
    """Find the storage word holding an address.

    Used to locate the gateway address in bridged token proxies.

    :param needle:
        Address to look for

    :param scan:
        Number of slots from zero to read

    :return:
        First match, or ``None``
    """
    contract = Web3.to_checksum_address(contract)
    needle_hex = needle[2:].lower()

    result = run_in_parallel(
        [(slot, lambda slot=slot: web3.eth.get_storage_at(contract, slot)) for slot in range(scan)],
        "scan storage",
        max_workers=16,
        progress=True,
    )
    result.raise_first()

    for slot in range(scan):
        word = bytes(result.succeeded[slot]).rjust(32, b"\0").hex()
        if int(word, 16) == 0:
            continue
        logger.debug("Slot %03d: 0x%s", slot, word)
        start = word.find(needle_hex)
        if start != -1:
            return StorageReplacement(slot=slot, start=start, end=start + len(needle_hex), value="0x" + word)

    return None


def replace_contract_storage(web3: Web3, backend: ForkBackend, contract: HexAddress | str, replacements: Iterable[StorageReplacement], value: str):
    """Overwrite part of storage words, keeping the rest of each word.

    :param value:
        Hex string that goes between ``start`` and ``end`` of each word, ``0x`` prefix optional
    """
    contract = Web3.to_checksum_address(contract)
    new_part = value.removeprefix("0x").lower()

    for r in replacements:
        assert len(new_part) == r.end - r.start, f"Value {value} does not fit {r}"
        word = bytes(web3.eth.get_storage_at(contract, r.slot)).rjust(32, b"\0").hex()
        new_word = word[: r.start] + new_part + word[r.end :]
        set_storage_at(web3, backend, contract, r.slot, "0x" + new_word)
        logger.info("Replaced slot %d of %s: 0x%s -> 0x%s", r.slot, contract, word, new_word)


def override_gateway(web3: Web3, backend: ForkBackend, token: TokenDescriptor, new_gateway: HexAddress | str) -> bool:
    """Make an address the gateway of a bridged token, so it can ``bridgeMint``.

    :return:
        False if it already was

    :raise StorageOverrideFailed:
        If the token does not report the new gateway afterwards
    """
    replacement, getter = GATEWAY_STORAGE[token.symbol]
    new_gateway = Web3.to_checksum_address(new_gateway)
    contract = web3.eth.contract(address=Web3.to_checksum_address(token.address), abi=BRIDGED_TOKEN_ABI)
    read_gateway = getattr(contract.functions, getter)

    current = Web3.to_checksum_address(read_gateway().call())
    if current == new_gateway:
        logger.info("%s gateway already %s", token.symbol, new_gateway)
        return False

    replace_contract_storage(web3, backend, token.address, [replacement], new_gateway)

    after = Web3.to_checksum_address(read_gateway().call())
    if after != new_gateway:
        raise StorageOverrideFailed(f"{token.symbol}.{getter}() is {after} after the storage write, wanted {new_gateway}")

    logger.info("%s gateway changed from %s to %s", token.symbol, current, new_gateway)
    return True


def fund_accounts(
    web3: Web3,
    backend: ForkBackend,
    recipients: Iterable[HexAddress | str],
    amounts: dict[TokenDescriptor, int],
    eth_amount: int | None = DEFAULT_ETH_AMOUNT,
    gateways: dict[str, HexAddress] | None = None,
    timeout: float = DEFAULT_TX_TIMEOUT,
    progress: bool = False,
) -> FundingReport:
    """Fund every recipient with every token.

    :param amounts:
        Token -> whole units per recipient

    :param eth_amount:
        Top up ETH of each recipient to this many wei if below 1 ETH. ``None`` to skip.

    :param gateways:
        Symbol -> minter of bridged tokens. Defaults to the Arbitrum gateways.
        Pass the deployer after :py:func:`override_gateway`.

    :return:
        Which pairs succeeded and which failed
    """
    if gateways is None:
        gateways = BRIDGE_GATEWAYS

    recipients = [Web3.to_checksum_address(r) for r in recipients]

    def _fund(recipient: HexAddress, token: TokenDescriptor, amount: int):
        if backend == ForkBackend.tenderly:
            fund_erc20_tenderly(web3, token, recipient, amount)
        elif token.symbol == "WETH":
            mint_weth(web3, backend, token, recipient, amount, timeout=timeout)
        elif token.symbol in gateways:
            bridge_mint(web3, token, gateways[token.symbol], recipient, amount, timeout=timeout)
        else:
            set_erc20_balance_storage(web3, backend, token, recipient, amount)

    # ETH top-ups finish before any token job touches the same balances
    eth_jobs = []
    if eth_amount is not None:
        eth_jobs = [((recipient, "ETH"), lambda recipient=recipient: fund_eth(web3, backend, recipient, eth_amount)) for recipient in recipients]

    eth_result = run_in_parallel(eth_jobs, "top up ETH", progress=progress)

    jobs = []
    for recipient in recipients:
        for token, amount in amounts.items():
            jobs.append(((recipient, token.symbol), lambda recipient=recipient, token=token, amount=amount: _fund(recipient, token, amount)))

    # Minters must be impersonated for the whole batch, jobs share them
    minters = set()
    if backend != ForkBackend.tenderly:
        minters = {Web3.to_checksum_address(gateways[t.symbol]) for t in amounts if t.symbol in gateways}

    with ExitStack() as stack:
        for minter in sorted(minters):
            fund_eth(web3, backend, minter)
            stack.enter_context(impersonate(web3, backend, minter))

        result = run_in_parallel(jobs, "fund accounts", progress=progress)

    report = FundingReport(
        funded=sorted([*eth_result.succeeded, *result.succeeded]),
        failed={**eth_result.failed, **result.failed},
    )

    for (recipient, symbol), e in report.failed.items():
        logger.error("Could not fund %s with %s: %s", recipient, symbol, e)

    logger.info("Funded %d of %d (recipient, token) pairs", len(report.funded), len(eth_jobs) + len(jobs))
    return report

