"""Deploy and configure the whole Ithil protocol.

Contracts already in the ledger are attached to, not deployed again, so the
script can be rerun after a failure and picks up where it stopped.

See :py:mod:`ithil_deploy.config` for the environment variables.

Example against a local Anvil fork of Arbitrum:

.. code-block:: shell

    anvil --fork-url $ARBITRUM_RPC_URL &
    ARTIFACTS_PATH=../ithil-protocol/artifacts \\
    FRONTEND_PATH=../ithil-frontend \\
    python scripts/deploy/deploy-all.py

"""

import logging
import threading

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, deploy_all
from ithil_deploy.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    threading.current_thread().name = "main"
    setup_console_logging("info", coloured_threads=True)

    config = DeploymentConfig.from_environment()
    ctx = DeploymentContext.create(config)

    summary = deploy_all(ctx)

    if summary.fully_configured:
        logger.info("All done, everything owned by %s", config.governance)
    else:
        logger.warning("Deployment finished with unconfigured contracts, run again to retry")


if __name__ == "__main__":
    main()
