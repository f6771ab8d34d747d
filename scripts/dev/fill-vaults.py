"""Seed the vaults with depositor liquidity on a fork.

Each depositor deposits 1000 USDC, 78000 USDT, 9 WETH and 4 WBTC.
Run ``scripts/faucet/faucet-fork.py`` with ``RECIPIENTS`` set to the
depositors first so they hold the tokens.

Needs the Manager in the ledger, see ``scripts/deploy/deploy-lending.py``.
"""

import logging
import sys

from ithil_deploy.abi import get_deployed_contract, load_artifact
from ithil_deploy.config import DeploymentConfig, create_web3
from ithil_deploy.fork import ForkBackend
from ithil_deploy.ledger import AddressLedger
from ithil_deploy.services import Manager
from ithil_deploy.utils import setup_console_logging
from ithil_deploy.vaults import fill_vaults
from ithil_deploy.wallet import create_sender

logger = logging.getLogger(__name__)


def main():
    setup_console_logging("info", coloured_threads=True)

    config = DeploymentConfig.from_environment()
    backend = ForkBackend.from_config(config.fork_backend)
    assert backend is not None, "Filling vaults impersonates depositors and needs a fork"

    web3 = create_web3(config)
    ledger = AddressLedger(config.contracts_path)
    manager_address = ledger.get("manager")
    assert manager_address, f"No manager in {config.contracts_path}, deploy first"

    manager = Manager(
        web3,
        get_deployed_contract(web3, load_artifact(config.artifacts_path, "Manager"), manager_address),
        create_sender(web3, config.deployer_private_key),
        tx_timeout=config.tx_timeout,
    )

    failures = fill_vaults(web3, backend, manager, timeout=config.tx_timeout)
    if failures:
        logger.error("%d deposits failed", len(failures))
        sys.exit(1)


if __name__ == "__main__":
    main()
