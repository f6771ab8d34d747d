"""Deploy a contract, or attach to the one the ledger already knows.

Each logical contract goes through the same steps:

1. Look up its ledger name
2. If found, attach a handle to the recorded address. No transaction is sent.
3. If not found, send the deployment, wait for the receipt and record
   the new address in the ledger

Running a deployment twice is therefore a no-op the second time.
"""

import logging
from dataclasses import dataclass

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract

from ithil_deploy.abi import ContractArtifact, get_deployed_contract, link_libraries
from ithil_deploy.ledger import AddressLedger
from ithil_deploy.transactions import DEFAULT_TX_TIMEOUT, send_transaction
from ithil_deploy.wallet import Sender

logger = logging.getLogger(__name__)


class DeploymentFailed(Exception):
    """Sending or confirming a contract deployment failed.

    The underlying exception is kept in ``cause`` and chained.
    """

    def __init__(self, contract: str, cause: Exception):
        super().__init__(f"Deploying {contract} failed: {cause}")
        self.contract = contract
        self.cause = cause


class LedgerVerificationFailed(Exception):
    """The ledger points to an address with no contract code."""

    def __init__(self, contract: str, address: HexAddress):
        super().__init__(f"Ledger entry {contract} points to {address}, which has no contract code. Stale ledger from another chain?")
        self.contract = contract
        self.address = address


@dataclass(slots=True)
class DeploymentResult:
    """What :py:func:`deploy_or_attach` did."""

    #: Ledger name
    name: str

    #: Handle to the deployed contract
    contract: Contract

    #: True if a deployment transaction was sent in this run
    deployed: bool

    #: Deployment transaction, if any
    tx_hash: HexBytes | None = None

    #: Block of the deployment, if any
    block_number: int | None = None

    @property
    def address(self) -> HexAddress:
        return self.contract.address


def deploy_contract(
    web3: Web3,
    artifact: ContractArtifact,
    deployer: Sender,
    constructor_args: tuple | list = (),
    libraries: dict[str, HexAddress] | None = None,
    timeout: float = DEFAULT_TX_TIMEOUT,
) -> tuple[Contract, HexBytes, int]:
    """Send a deployment and wait for it.

    :return:
        Contract handle, transaction hash, block number
    """
    if artifact.needs_linking():
        bytecode = link_libraries(artifact, libraries or {})
    else:
        bytecode = artifact.bytecode

    assert bytecode and bytecode != "0x", f"{artifact.name} has no creation bytecode, is it an interface or abstract?"

    factory = web3.eth.contract(abi=artifact.abi, bytecode=bytecode)
    constructor = factory.constructor(*constructor_args)
    receipt = send_transaction(web3, constructor, deployer, f"deploy {artifact.name}", timeout=timeout)

    address = receipt["contractAddress"]
    assert address, f"No contractAddress in the receipt of {artifact.name} deployment"
    contract = get_deployed_contract(web3, artifact, address)
    return contract, receipt["transactionHash"], receipt["blockNumber"]


def deploy_or_attach(
    web3: Web3,
    ledger: AddressLedger,
    name: str,
    artifact: ContractArtifact,
    deployer: Sender,
    constructor_args: tuple | list = (),
    libraries: dict[str, HexAddress] | None = None,
    force: bool = False,
    verify: bool = False,
    timeout: float = DEFAULT_TX_TIMEOUT,
) -> DeploymentResult:
    """Make sure a contract exists and is recorded in the ledger.

    :param name:
        Ledger name, e.g. ``manager``

    :param artifact:
        Compiled contract

    :param constructor_args:
        Passed to the constructor on a fresh deployment

    :param libraries:
        Library addresses to link, e.g. ``{"PriceConverter": "0x..."}``

    :param force:
        Deploy again even if the ledger has an address

    :param verify:
        Check the recorded address carries contract code before attaching

    :raise DeploymentFailed:
        If the deployment transaction fails or times out

    :raise LedgerVerificationFailed:
        If ``verify`` is set and the recorded address has no code
    """
    existing = ledger.get(name)

    if existing and not force:
        if verify:
            code = web3.eth.get_code(existing)
            if len(code) == 0:
                raise LedgerVerificationFailed(name, existing)

        logger.info("%s already deployed at %s, attaching", name, existing)
        return DeploymentResult(
            name=name,
            contract=get_deployed_contract(web3, artifact, existing),
            deployed=False,
        )

    if existing and force:
        logger.info("Forced redeploy of %s, replacing %s", name, existing)

    logger.info("Deploying %s (%s) with args %s", name, artifact.name, list(constructor_args))

    try:
        contract, tx_hash, block_number = deploy_contract(
            web3,
            artifact,
            deployer,
            constructor_args=constructor_args,
            libraries=libraries,
            timeout=timeout,
        )
    except Exception as e:
        logger.error("Deployment of %s failed: %s", name, e)
        raise DeploymentFailed(name, e) from e

    logger.info("%s deployed to %s at block %s", name, contract.address, block_number)

    ledger.set(name, contract.address)

    return DeploymentResult(
        name=name,
        contract=contract,
        deployed=True,
        tx_hash=tx_hash,
        block_number=block_number,
    )
