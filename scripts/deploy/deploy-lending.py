"""Deploy a minimal lending setup: Manager, AaveService and one vault per token.

AaveService gets capacity in every vault, its whitelist is turned off and it
is handed over to governance. The Manager stays with the deployer.

Vault list is written to ``assets.json`` next to the ledger.

See :py:mod:`ithil_deploy.config` for the environment variables.
"""

import threading

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, deploy_lending_setup
from ithil_deploy.utils import setup_console_logging


def main():
    threading.current_thread().name = "main"
    setup_console_logging("info", coloured_threads=True)

    config = DeploymentConfig.from_environment()
    ctx = DeploymentContext.create(config)
    deploy_lending_setup(ctx)


if __name__ == "__main__":
    main()
