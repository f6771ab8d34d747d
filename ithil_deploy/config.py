"""Deployment configuration.

All scripts read their settings from environment variables exactly once,
into a :py:class:`DeploymentConfig`, which is then passed to every component.

Environment variables
---------------------

``JSON_RPC_URL``
    Node RPC URL. Defaults to ``http://localhost:8545`` (Anvil / Hardhat node).

``CHAIN_ID``
    Optional. If set, the connected chain must report this chain id.

``FORK_BACKEND``
    ``anvil`` (default), ``hardhat``, ``tenderly`` or ``none``.
    Selects the privileged RPC dialect used by the faucet scripts.

``TENDERLY_USER``, ``TENDERLY_PROJECT``, ``TENDERLY_ACCESS_KEY``
    Tenderly credentials. Only needed to create a new Tenderly fork.

``FRONTEND_PATH``
    Path to the frontend repository. Contract addresses are mirrored to
    ``<FRONTEND_PATH>/src/deploy/``. If missing, the mirror copy is skipped.

``DATA_DIR``
    Canonical ledger folder. Defaults to ``./data``.

``ARTIFACTS_PATH``
    Hardhat ``artifacts/`` or Foundry ``out/`` folder with compiled contracts.
    Defaults to ``./artifacts``.

``DEPLOYER_PRIVATE_KEY``
    Optional. Without it, transactions are sent from the first unlocked
    account of the node.

``GOVERNANCE``
    Address that receives ownership of all deployed contracts.

``FORCE_REDEPLOY``
    Comma separated ledger names that are deployed again even if the ledger
    already has an address for them.

``VERIFY_LEDGER``
    ``true`` to check that every ledger address carries contract code
    before attaching to it.

``RPC_TIMEOUT``, ``TX_TIMEOUT``
    Seconds to wait for a single HTTP request and for a transaction receipt.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from eth_typing import HexAddress
from web3 import Web3

logger = logging.getLogger(__name__)

#: Arbitrum One addresses used by the services
WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
AAVE_POOL_ON_ARBITRUM = "0x794a61358D6845594F94dc1DB02A252b5b4814aD"
GMX_ROUTER = "0xA906F338CB21815cBc4Bc87ace9e68c87eF8d8F1"
GMX_ROUTER_V2 = "0xB95DB5B167D75e6d04227CfFFA61069348d271F5"
WIZARDEX = "0xa05B704E88D43260F71861BB69C1851Fe77b63fD"

#: Default owner of everything once the deployment is complete
GOVERNANCE = "0x7778f7b568023379697451da178326D27682ADb8"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

#: Durations in seconds
ONE_HOUR = 3600
ONE_DAY = 24 * ONE_HOUR
ONE_MONTH = 30 * ONE_DAY

DEFAULT_MANAGER_CAPACITY = 10**18
DEFAULT_MANAGER_CAP = 10**36

DEFAULT_JSON_RPC_URL = "http://localhost:8545"

#: Ledger and vault list file names, same in the data folder and in the frontend
CONTRACTS_FILE_NAME = "contracts.json"
VAULTS_FILE_NAME = "assets.json"

FORK_BACKENDS = ("anvil", "hardhat", "tenderly", "none")


class ConfigMissing(Exception):
    """A required environment variable or file is not present."""


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(slots=True)
class DeploymentConfig:
    """Everything the scripts need to know about their environment."""

    #: Node RPC URL
    json_rpc_url: str = DEFAULT_JSON_RPC_URL

    #: Expected chain id, or ``None`` to accept any
    chain_id: int | None = None

    #: Privileged RPC dialect: ``anvil``, ``hardhat``, ``tenderly`` or ``none``
    fork_backend: str = "anvil"

    #: Canonical folder for ``contracts.json`` and ``assets.json``
    data_dir: Path = field(default_factory=lambda: Path("data").absolute())

    #: Frontend ``src/deploy`` folder, or ``None`` when the mirror copy is disabled
    frontend_dir: Path | None = None

    #: Compiled contracts
    artifacts_path: Path = field(default_factory=lambda: Path("artifacts").absolute())

    #: Deployer key. ``None`` means use an unlocked node account.
    deployer_private_key: str | None = None

    governance: HexAddress = Web3.to_checksum_address(GOVERNANCE)

    #: Ledger names to deploy again
    force_redeploy: frozenset[str] = frozenset()

    #: Check ledger addresses carry code before trusting them
    verify_ledger: bool = False

    tenderly_user: str | None = None
    tenderly_project: str | None = None
    tenderly_access_key: str | None = None

    #: Seconds for a single HTTP request to the node
    rpc_timeout: float = 60.0

    #: Seconds to wait for a transaction receipt
    tx_timeout: float = 180.0

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None, cwd: Path | None = None) -> "DeploymentConfig":
        """Read the configuration from environment variables.

        :param environ:
            Defaults to ``os.environ``.

        :param cwd:
            Relative paths are resolved against this folder.
            Defaults to the current working directory.
        """
        if environ is None:
            environ = os.environ

        if cwd is None:
            cwd = Path.cwd()

        def _path(value: str) -> Path:
            p = Path(value).expanduser()
            return p if p.is_absolute() else (cwd / p).resolve()

        fork_backend = environ.get("FORK_BACKEND", "anvil").strip().lower()
        if fork_backend not in FORK_BACKENDS:
            raise ValueError(f"FORK_BACKEND must be one of {FORK_BACKENDS}, got {fork_backend}")

        frontend_path = environ.get("FRONTEND_PATH", "").strip()
        if frontend_path:
            frontend_dir = _path(frontend_path) / "src" / "deploy"
        else:
            logger.warning("No FRONTEND_PATH set, contract addresses will not be mirrored to the frontend")
            frontend_dir = None

        chain_id = environ.get("CHAIN_ID", "").strip()
        force = environ.get("FORCE_REDEPLOY", "")

        governance = environ.get("GOVERNANCE", "").strip() or GOVERNANCE

        return cls(
            json_rpc_url=environ.get("JSON_RPC_URL", "").strip() or DEFAULT_JSON_RPC_URL,
            chain_id=int(chain_id) if chain_id else None,
            fork_backend=fork_backend,
            data_dir=_path(environ.get("DATA_DIR", "").strip() or "data"),
            frontend_dir=frontend_dir,
            artifacts_path=_path(environ.get("ARTIFACTS_PATH", "").strip() or "artifacts"),
            deployer_private_key=environ.get("DEPLOYER_PRIVATE_KEY", "").strip() or None,
            governance=Web3.to_checksum_address(governance),
            force_redeploy=frozenset(name.strip() for name in force.split(",") if name.strip()),
            verify_ledger=_parse_bool(environ.get("VERIFY_LEDGER")),
            tenderly_user=environ.get("TENDERLY_USER") or None,
            tenderly_project=environ.get("TENDERLY_PROJECT") or None,
            tenderly_access_key=environ.get("TENDERLY_ACCESS_KEY") or None,
            rpc_timeout=float(environ.get("RPC_TIMEOUT", "60")),
            tx_timeout=float(environ.get("TX_TIMEOUT", "180")),
        )

    @property
    def contracts_path(self) -> Path:
        return self.data_dir / CONTRACTS_FILE_NAME

    @property
    def vaults_path(self) -> Path:
        return self.data_dir / VAULTS_FILE_NAME

    @property
    def frontend_contracts_path(self) -> Path | None:
        return self.frontend_dir / CONTRACTS_FILE_NAME if self.frontend_dir else None

    @property
    def frontend_vaults_path(self) -> Path | None:
        return self.frontend_dir / VAULTS_FILE_NAME if self.frontend_dir else None

    def require_tenderly(self) -> tuple[str, str, str]:
        """Get Tenderly credentials.

        :raise ConfigMissing:
            If any of the three variables is unset.
        """
        missing = [
            name
            for name, value in (
                ("TENDERLY_USER", self.tenderly_user),
                ("TENDERLY_PROJECT", self.tenderly_project),
                ("TENDERLY_ACCESS_KEY", self.tenderly_access_key),
            )
            if not value
        ]
        if missing:
            raise ConfigMissing(f"Tenderly fork creation needs environment variables: {', '.join(missing)}")
        return self.tenderly_user, self.tenderly_project, self.tenderly_access_key


def create_web3(config: DeploymentConfig) -> Web3:
    """Connect to the node described by the configuration.

    Every HTTP request is bounded by ``config.rpc_timeout``.

    :raise ValueError:
        If the node reports a different chain id than ``CHAIN_ID``.
    """
    web3 = Web3(Web3.HTTPProvider(config.json_rpc_url, request_kwargs={"timeout": config.rpc_timeout}))
    chain_id = web3.eth.chain_id
    if config.chain_id is not None and chain_id != config.chain_id:
        raise ValueError(f"CHAIN_ID is {config.chain_id} but {config.json_rpc_url} reports chain {chain_id}")
    logger.info("Connected to chain %d, block %d", chain_id, web3.eth.block_number)
    return web3
