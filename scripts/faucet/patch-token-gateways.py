"""Make the deployer the gateway of bridged USDC, USDT and WBTC, then mint.

Rewrites the gateway address in the token proxy storage so the deployer can
call ``bridgeMint`` without impersonation. Useful on forks where
impersonation is not available for the gateway contracts.

Each recipient then gets 100k USDC, 100k USDT, 10 WBTC and 20 WETH.

Environment variables
---------------------

``JSON_RPC_URL``, ``FORK_BACKEND``, ``DEPLOYER_PRIVATE_KEY``
    See :py:mod:`ithil_deploy.config`. The deployer must be an unlocked account
    of the node when no key is given.

``RECIPIENTS``
    Comma separated addresses. Defaults to the deployer, the depositors and
    the public faucet wallet.
"""

import logging
import os
import sys

from ithil_deploy.accounts import FAUCET_LIST
from ithil_deploy.config import DeploymentConfig, create_web3
from ithil_deploy.fork import ForkBackend
from ithil_deploy.funding import GATEWAY_STORAGE, fund_accounts, override_gateway
from ithil_deploy.tokens import TOKEN_MAP, USDC, USDT, WBTC, WETH
from ithil_deploy.utils import setup_console_logging
from ithil_deploy.wallet import create_sender, get_sender_address

logger = logging.getLogger(__name__)

AMOUNTS = {
    USDC: 100_000,
    USDT: 100_000,
    WBTC: 10,
    WETH: 20,
}


def main():
    setup_console_logging("info", coloured_threads=True)

    config = DeploymentConfig.from_environment()
    backend = ForkBackend.from_config(config.fork_backend)
    assert backend is not None, "Storage patching needs a fork, FORK_BACKEND is none"

    web3 = create_web3(config)
    deployer = get_sender_address(create_sender(web3, config.deployer_private_key))

    for symbol in GATEWAY_STORAGE:
        override_gateway(web3, backend, TOKEN_MAP[symbol], deployer)

    recipients = [a.strip() for a in os.environ.get("RECIPIENTS", "").split(",") if a.strip()] or FAUCET_LIST
    gateways = {symbol: deployer for symbol in GATEWAY_STORAGE}
    report = fund_accounts(web3, backend, recipients, AMOUNTS, gateways=gateways, timeout=config.tx_timeout, progress=True)

    if not report.ok:
        logger.error("%d funding jobs failed", len(report.failed))
        sys.exit(1)


if __name__ == "__main__":
    main()
