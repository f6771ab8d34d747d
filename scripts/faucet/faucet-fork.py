"""Fund test accounts on a local Anvil or Hardhat fork of Arbitrum.

Each recipient gets ETH, 100k USDC, 100k USDT, 10 WBTC and 100 WETH.
Bridged tokens are minted by impersonating their Arbitrum gateway.

Environment variables
---------------------

``JSON_RPC_URL``
    Fork RPC. Defaults to ``http://localhost:8545``.

``FORK_BACKEND``
    ``anvil`` (default) or ``hardhat``.

``RECIPIENTS``
    Comma separated addresses. Defaults to the accounts of the Anvil and
    Hardhat test mnemonic.

Example:

.. code-block:: shell

    anvil --fork-url $ARBITRUM_RPC_URL &
    python scripts/faucet/faucet-fork.py

"""

import logging
import os
import sys

from ithil_deploy.accounts import TEST_ACCOUNTS
from ithil_deploy.balances import fetch_balances, format_balance_table
from ithil_deploy.config import DeploymentConfig, create_web3
from ithil_deploy.fork import ForkBackend
from ithil_deploy.funding import fund_accounts
from ithil_deploy.tokens import USDC, USDT, WBTC, WETH
from ithil_deploy.utils import setup_console_logging

logger = logging.getLogger(__name__)

AMOUNTS = {
    USDC: 100_000,
    USDT: 100_000,
    WBTC: 10,
    WETH: 100,
}


def main():
    setup_console_logging("info", coloured_threads=True)

    config = DeploymentConfig.from_environment()
    backend = ForkBackend.from_config(config.fork_backend)
    assert backend in (ForkBackend.anvil, ForkBackend.hardhat), f"This faucet needs an Anvil or Hardhat fork, FORK_BACKEND is {config.fork_backend}"

    recipients = [a.strip() for a in os.environ.get("RECIPIENTS", "").split(",") if a.strip()] or TEST_ACCOUNTS

    web3 = create_web3(config)
    report = fund_accounts(web3, backend, recipients, AMOUNTS, timeout=config.tx_timeout, progress=True)

    print(format_balance_table(fetch_balances(web3, recipients)))

    if not report.ok:
        logger.error("%d funding jobs failed", len(report.failed))
        sys.exit(1)


if __name__ == "__main__":
    main()
