"""Privileged RPC of forked test networks.

Anvil, Hardhat node and Tenderly forks all let you set balances, write
storage and send transactions from any address, each with its own method
names. :py:class:`ForkBackend` picks the dialect:

.. list-table::
   :header-rows: 1

   * - Operation
     - Anvil
     - Hardhat node
     - Tenderly
   * - Set ETH balance
     - ``anvil_setBalance``
     - ``hardhat_setBalance``
     - ``tenderly_setBalance``
   * - Write storage
     - ``anvil_setStorageAt``
     - ``hardhat_setStorageAt``
     - ``tenderly_setStorageAt``
   * - Impersonate
     - ``anvil_impersonateAccount``
     - ``hardhat_impersonateAccount``
     - not needed, any ``from`` is accepted

This module also launches a local Anvil fork and creates Tenderly forks
through the Tenderly REST API.
"""

import enum
import logging
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from subprocess import PIPE
from typing import Any

import psutil
import requests
from eth_typing import HexAddress
from web3 import Web3

from ithil_deploy.utils import find_free_port, is_localhost_port_listening, shutdown_hard

logger = logging.getLogger(__name__)

#: Tenderly fork API
TENDERLY_FORK_API = "https://api.tenderly.co/api/v1/account/{user}/project/{project}/fork"

#: Tenderly fork JSON-RPC endpoint
TENDERLY_FORK_RPC = "https://rpc.tenderly.co/fork/{fork_id}"

#: Arbitrum One
DEFAULT_FORK_NETWORK_ID = "42161"

#: Arbitrum block forks start from
DEFAULT_FORK_BLOCK_NUMBER = 116901153

#: Chain id reported by forks
DEFAULT_FORK_CHAIN_ID = 54789


class ForkBackend(enum.Enum):
    """Privileged RPC dialect."""

    anvil = "anvil"
    hardhat = "hardhat"
    tenderly = "tenderly"

    @classmethod
    def from_config(cls, name: str) -> "ForkBackend | None":
        """``none`` means a real network with no privileged RPC."""
        if name == "none":
            return None
        return cls(name)


class RPCMethodFailed(Exception):
    """A node returned an error for a privileged RPC call."""

    def __init__(self, method: str, params: list, error: Any):
        super().__init__(f"{method}{params} failed: {error}")
        self.method = method
        self.params = params
        self.error = error


def rpc_request(web3: Web3, method: str, params: list) -> Any:
    """Send a raw JSON-RPC request.

    :raise RPCMethodFailed:
        If the response carries an error

    :return:
        ``result`` of the response
    """
    resp = web3.provider.make_request(method, params)
    if "error" in resp:
        raise RPCMethodFailed(method, params, resp["error"])
    return resp.get("result")


def _prefix(backend: ForkBackend) -> str:
    return backend.value


def set_balance(web3: Web3, backend: ForkBackend, address: HexAddress | str, amount: int):
    """Set the ETH balance of an address, in wei."""
    address = Web3.to_checksum_address(address)
    if backend == ForkBackend.tenderly:
        rpc_request(web3, "tenderly_setBalance", [[address], hex(amount)])
    else:
        rpc_request(web3, f"{_prefix(backend)}_setBalance", [address, hex(amount)])


def add_balance(web3: Web3, backend: ForkBackend, address: HexAddress | str, amount: int):
    """Add wei to the ETH balance of an address."""
    address = Web3.to_checksum_address(address)
    if backend == ForkBackend.tenderly:
        rpc_request(web3, "tenderly_addBalance", [[address], hex(amount)])
    else:
        set_balance(web3, backend, address, web3.eth.get_balance(address) + amount)


def set_storage_at(web3: Web3, backend: ForkBackend, address: HexAddress | str, slot: int, value: str):
    """Overwrite one storage word.

    :param value:
        32 bytes, hex with ``0x`` prefix
    """
    assert value.startswith("0x") and len(value) == 66, f"Storage value must be 32 bytes: {value}"
    address = Web3.to_checksum_address(address)
    slot_hex = "0x" + slot.to_bytes(32, "big").hex()
    rpc_request(web3, f"{_prefix(backend)}_setStorageAt", [address, slot_hex, value])


def set_erc20_balance_tenderly(web3: Web3, token: HexAddress | str, account: HexAddress | str, amount: int):
    """Tenderly cheat for any ERC-20 balance, raw units."""
    rpc_request(
        web3,
        "tenderly_setErc20Balance",
        [Web3.to_checksum_address(token), Web3.to_checksum_address(account), hex(amount)],
    )


@contextmanager
def impersonate(web3: Web3, backend: ForkBackend, address: HexAddress | str):
    """Allow ``eth_sendTransaction`` from an address we have no key for.

    Example:

    .. code-block:: python

        with impersonate(web3, ForkBackend.anvil, gateway):
            token.functions.bridgeMint(receiver, amount).transact({"from": gateway})
    """
    address = Web3.to_checksum_address(address)
    if backend == ForkBackend.tenderly:
        yield address
        return

    prefix = _prefix(backend)
    rpc_request(web3, f"{prefix}_impersonateAccount", [address])
    try:
        yield address
    finally:
        rpc_request(web3, f"{prefix}_stopImpersonatingAccount", [address])


def advance_time(web3: Web3, seconds: int, mine: bool = True):
    """Move the chain clock forward.

    :param mine:
        Mine a block so the new timestamp is visible to calls
    """
    rpc_request(web3, "evm_increaseTime", [hex(seconds)])
    if mine:
        rpc_request(web3, "evm_mine", [])
    logger.info("Advanced chain time by %d seconds", seconds)


def create_tenderly_fork(
    user: str,
    project: str,
    access_key: str,
    network_id: str = DEFAULT_FORK_NETWORK_ID,
    block_number: int | None = DEFAULT_FORK_BLOCK_NUMBER,
    chain_id: int = DEFAULT_FORK_CHAIN_ID,
    timeout: float = 60.0,
) -> str:
    """Create a Tenderly fork.

    :return:
        JSON-RPC URL of the new fork

    :raise requests.HTTPError:
        If Tenderly refuses
    """
    url = TENDERLY_FORK_API.format(user=user, project=project)
    body = {
        "network_id": network_id,
        "chain_config": {"chain_id": chain_id},
    }
    if block_number is not None:
        body["block_number"] = block_number

    logger.info("Creating Tenderly fork of network %s at block %s", network_id, block_number)
    resp = requests.post(
        url,
        json=body,
        headers={"X-Access-Key": access_key, "Content-Type": "application/json"},
        timeout=timeout,
    )
    resp.raise_for_status()
    data = resp.json()
    fork_id = data["simulation_fork"]["id"]
    rpc_url = TENDERLY_FORK_RPC.format(fork_id=fork_id)
    logger.info("Created Tenderly fork %s, RPC %s", fork_id, rpc_url)
    return rpc_url


@dataclass
class AnvilLaunch:
    """A running Anvil process."""

    #: Local port Anvil listens on
    port: int

    #: Command line used to start Anvil
    cmd: list[str]

    #: Local JSON-RPC URL
    json_rpc_url: str

    process: psutil.Popen = field(repr=False)

    def close(self, log_level: int | None = None, block=True, block_timeout=30) -> tuple[bytes, bytes]:
        """Stop Anvil.

        :param log_level:
            Dump Anvil output to the log at this level

        :param block:
            Wait until the port is free again
        """
        stdout, stderr = shutdown_hard(
            self.process,
            log_level=log_level,
            block_timeout=block_timeout,
            check_port=self.port if block else None,
        )
        logger.info("Anvil on port %d stopped", self.port)
        return stdout, stderr


def launch_anvil(
    fork_url: str | None = None,
    port: int | None = None,
    fork_block_number: int | None = None,
    chain_id: int | None = None,
    launch_wait_seconds: float = 20.0,
) -> AnvilLaunch:
    """Start Anvil, optionally forking a network.

    Example:

    .. code-block:: python

        anvil = launch_anvil(fork_url=os.environ["ARBITRUM_RPC_URL"])
        try:
            web3 = Web3(Web3.HTTPProvider(anvil.json_rpc_url))
            ...
        finally:
            anvil.close()

    :raise AssertionError:
        If ``anvil`` is not installed or does not start in time
    """
    anvil = shutil.which("anvil")
    assert anvil, "anvil not found in PATH, install Foundry: https://getfoundry.sh"

    if port is None:
        port = find_free_port()

    cmd = [anvil, "--port", str(port)]
    if fork_url:
        cmd += ["--fork-url", fork_url]
    if fork_block_number is not None:
        cmd += ["--fork-block-number", str(fork_block_number)]
    if chain_id is not None:
        cmd += ["--chain-id", str(chain_id)]

    logger.info("Launching Anvil on port %d, forking %s", port, fork_url or "nothing")
    process = psutil.Popen(cmd, stdout=PIPE, stderr=PIPE)

    deadline = time.time() + launch_wait_seconds
    while not is_localhost_port_listening(port):
        if process.poll() is not None or time.time() > deadline:
            stdout, stderr = shutdown_hard(process, log_level=logging.ERROR)
            raise AssertionError(f"Anvil did not start on port {port}: {stderr.decode('utf-8', errors='replace')}")
        time.sleep(0.1)

    return AnvilLaunch(port=port, cmd=cmd, json_rpc_url=f"http://localhost:{port}", process=process)
