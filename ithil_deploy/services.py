"""Typed handles for the Ithil contracts the deployment configures.

Each class exposes only the calls the deployment needs, so configuration
code can check capabilities with ``isinstance`` instead of guessing
what a contract supports:

- :py:class:`OwnableContract`: ``owner()`` and ``transferOwnership()``
- :py:class:`ConfigurableService`: whitelist flag
- :py:class:`DebitService`: per-token risk parameters
- :py:class:`Manager`: vaults and service caps
- :py:class:`Oracle`: price feeds
"""

import logging

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError
from web3.types import TxReceipt

from ithil_deploy.config import ZERO_ADDRESS
from ithil_deploy.retry import call_with_retry
from ithil_deploy.transactions import DEFAULT_TX_TIMEOUT, TransactionFailed, send_transaction
from ithil_deploy.wallet import Sender

logger = logging.getLogger(__name__)


class ContractWrapper:
    """A deployed contract together with the account that transacts with it."""

    #: Compiled artifact name
    artifact_name: str = ""

    #: Default ledger key
    ledger_name: str = ""

    def __init__(
        self,
        web3: Web3,
        contract: Contract,
        sender: Sender,
        tx_timeout: float = DEFAULT_TX_TIMEOUT,
        ledger_name: str | None = None,
    ):
        self.web3 = web3
        if ledger_name:
            self.ledger_name = ledger_name
        self.contract = contract
        self.sender = sender
        self.tx_timeout = tx_timeout

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.address}>"

    @property
    def address(self) -> HexAddress:
        return self.contract.address

    @property
    def name(self) -> str:
        return self.ledger_name or self.__class__.__name__

    def _call(self, fn_name: str, *args):
        bound = getattr(self.contract.functions, fn_name)(*args)
        return call_with_retry(bound.call, f"{self.name}.{fn_name}")

    def _transact(self, fn_name: str, *args) -> TxReceipt:
        bound = getattr(self.contract.functions, fn_name)(*args)
        return send_transaction(self.web3, bound, self.sender, f"{self.name}.{fn_name}", timeout=self.tx_timeout)


class OwnableContract(ContractWrapper):
    """OpenZeppelin ``Ownable``."""

    def fetch_owner(self) -> HexAddress:
        return Web3.to_checksum_address(self._call("owner"))

    def transfer_ownership(self, new_owner: HexAddress | str) -> bool:
        """Hand the contract over.

        - Skipped if ``new_owner`` already owns it
        - A revert is logged, not raised

        :return:
            True if ``new_owner`` owns the contract afterwards
        """
        new_owner = Web3.to_checksum_address(new_owner)
        current = self.fetch_owner()
        if current == new_owner:
            logger.info("%s %s already owned by %s", self.name, self.address, new_owner)
            return True

        try:
            self._transact("transferOwnership", new_owner)
        except (ContractLogicError, TransactionFailed) as e:
            logger.error("Transferring ownership of %s %s from %s to %s failed: %s", self.name, self.address, current, new_owner, e)
            return False

        logger.info("Transferred ownership of %s %s to %s", self.name, self.address, new_owner)
        return True


class ConfigurableService(OwnableContract):
    """Ithil service with a whitelist gate."""

    def read_enabled_flag(self) -> bool:
        """Is the whitelist on."""
        return bool(self._call("enabled"))

    def toggle_whitelist(self):
        self._transact("toggleWhitelistFlag")


class DebitService(ConfigurableService):
    """Service that borrows from the vaults and carries per-token risk parameters."""

    def set_risk_params(self, token: HexAddress | str, spread: int, base_risk: int, half_life: int):
        self._transact("setRiskParams", Web3.to_checksum_address(token), spread, base_risk, half_life)


class AaveService(DebitService):
    artifact_name = "AaveService"
    ledger_name = "aaveService"


class GmxService(DebitService):
    artifact_name = "GmxService"
    ledger_name = "gmxService"


class FeeCollectorService(OwnableContract):
    artifact_name = "FeeCollectorService"
    ledger_name = "feeCollectorService"


class CallOptionService(OwnableContract):
    """Sells Ithil call options against deposits of one token."""

    artifact_name = "SeniorCallOption"


class FixedYieldService(OwnableContract):
    artifact_name = "FixedYieldService"
    ledger_name = "fixedYieldService"


class Manager(OwnableContract):
    """Creates vaults and allots them to services."""

    artifact_name = "Manager"
    ledger_name = "manager"

    def vault_of(self, token: HexAddress | str) -> HexAddress | None:
        """Vault for a token, ``None`` if not created yet."""
        address = self._call("vaults", Web3.to_checksum_address(token))
        if not address or address == ZERO_ADDRESS:
            return None
        return Web3.to_checksum_address(address)

    def create_vault(self, token: HexAddress | str) -> HexAddress:
        """Create the vault of a token unless it exists.

        :return:
            Vault address
        """
        existing = self.vault_of(token)
        if existing:
            logger.warning("Vault for %s already created by manager %s at %s", token, self.address, existing)
            return existing

        self._transact("create", Web3.to_checksum_address(token))
        vault = self.vault_of(token)
        assert vault, f"Manager.create({token}) succeeded but vaults() still returns zero address"
        logger.info("Created vault %s for token %s", vault, token)
        return vault

    def set_cap(self, service: HexAddress | str, token: HexAddress | str, capacity: int, cap: int):
        self._transact("setCap", Web3.to_checksum_address(service), Web3.to_checksum_address(token), capacity, cap)


class Oracle(OwnableContract):
    """Chainlink price aggregator registry."""

    artifact_name = "Oracle"
    ledger_name = "oracle"

    def set_price_feed(self, token: HexAddress | str, feed: HexAddress | str):
        self._transact("setPriceFeed", Web3.to_checksum_address(token), Web3.to_checksum_address(feed))


class IthilToken(ContractWrapper):
    artifact_name = "Ithil"
    ledger_name = "ithil"
