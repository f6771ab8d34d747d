"""Fund wallets on a Tenderly fork.

Each recipient gets ETH and 1000 of every token through Tenderly's
``tenderly_setErc20Balance`` cheat.

Environment variables
---------------------

``JSON_RPC_URL``
    Tenderly fork RPC, as printed by ``scripts/dev/create-tenderly-fork.py``.

``FORK_BACKEND``
    Must be ``tenderly``.

``RECIPIENTS``
    Comma separated addresses. Defaults to the deployer, the depositors and
    the public faucet wallet.

``TOKEN_AMOUNT``
    Whole units of each token per recipient. Defaults to ``1000``.

``TOKENS``
    Comma separated symbols to fund, e.g. ``USDC,WETH``. Defaults to all.
"""

import logging
import os
import sys

from ithil_deploy.accounts import FAUCET_LIST
from ithil_deploy.config import DeploymentConfig, create_web3
from ithil_deploy.fork import ForkBackend
from ithil_deploy.funding import fund_accounts
from ithil_deploy.tokens import TOKENS, get_token
from ithil_deploy.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    setup_console_logging("info", coloured_threads=True)

    config = DeploymentConfig.from_environment()
    assert config.fork_backend == "tenderly", f"Set FORK_BACKEND=tenderly, got {config.fork_backend}"

    recipients = [a.strip() for a in os.environ.get("RECIPIENTS", "").split(",") if a.strip()] or FAUCET_LIST
    amount = int(os.environ.get("TOKEN_AMOUNT", "1000"))
    tokens = [get_token(s.strip()) for s in os.environ.get("TOKENS", "").split(",") if s.strip()] or TOKENS

    web3 = create_web3(config)
    report = fund_accounts(web3, ForkBackend.tenderly, recipients, {token: amount for token in tokens}, timeout=config.tx_timeout)

    if not report.ok:
        logger.error("%d funding jobs failed", len(report.failed))
        sys.exit(1)

    logger.info("Funded %d accounts", len(recipients))


if __name__ == "__main__":
    main()
