"""Deployer account handling.

Transactions are sent either

- from a :py:class:`HotWallet` holding a private key, signed locally and
  broadcast with ``eth_sendRawTransaction``, or

- from an address unlocked on the node (Anvil, Hardhat node, Tenderly fork),
  with ``eth_sendTransaction``.

Both are accepted wherever a :py:data:`Sender` is expected.
"""

import logging
import threading

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from web3 import Web3

logger = logging.getLogger(__name__)


class HotWallet:
    """A private key with local nonce tracking.

    Nonces are allocated under a lock, so one wallet can be used from
    the worker threads of a fan-out batch.

    Example:

    .. code-block:: python

        wallet = HotWallet.from_private_key(os.environ["DEPLOYER_PRIVATE_KEY"])
        wallet.sync_nonce(web3)
    """

    def __init__(self, account: LocalAccount):
        self.account = account
        self.current_nonce: int | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<HotWallet {self.address}>"

    @property
    def address(self) -> HexAddress:
        return self.account.address

    @classmethod
    def from_private_key(cls, key: str) -> "HotWallet":
        assert key.startswith("0x"), "Private key must be 0x prefixed"
        return cls(Account.from_key(key))

    def sync_nonce(self, web3: Web3):
        """Read the next nonce from the chain."""
        with self._lock:
            self.current_nonce = web3.eth.get_transaction_count(self.address, "pending")
        logger.info("Synced nonce for %s to %d", self.address, self.current_nonce)

    def allocate_nonce(self) -> int:
        with self._lock:
            assert self.current_nonce is not None, "Call sync_nonce() first"
            nonce = self.current_nonce
            self.current_nonce += 1
            return nonce

    def sign_bound_call_with_new_nonce(self, func, web3: Web3, tx_params: dict | None = None) -> SignedTransaction:
        """Build and sign a contract call or a constructor.

        Gas and fee fields are filled in by web3.py from the node. A call that
        fails gas estimation does not consume a nonce.

        :param func:
            Bound ``ContractFunction`` or ``ContractConstructor``
        """
        tx_params = dict(tx_params or {})
        tx_params["from"] = self.address
        tx = func.build_transaction(tx_params)
        tx["nonce"] = self.allocate_nonce()
        return self.account.sign_transaction(tx)


#: Who signs a transaction: a hot wallet, or an address unlocked on the node
Sender = HotWallet | HexAddress | str


def get_sender_address(sender: Sender) -> HexAddress:
    if isinstance(sender, HotWallet):
        return sender.address
    return Web3.to_checksum_address(sender)


def create_sender(web3: Web3, private_key: str | None) -> Sender:
    """Pick the deployer.

    - With a private key, a nonce-synced :py:class:`HotWallet`
    - Without, the first account the node has unlocked
    """
    if private_key:
        wallet = HotWallet.from_private_key(private_key)
        wallet.sync_nonce(web3)
        return wallet

    accounts = web3.eth.accounts
    assert accounts, "No DEPLOYER_PRIVATE_KEY given and the node has no unlocked accounts"
    logger.info("Using unlocked node account %s as the deployer", accounts[0])
    return Web3.to_checksum_address(accounts[0])
