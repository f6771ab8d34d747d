"""Create one vault per token under the Manager and write ``assets.json``.

Tokens that already have a vault are skipped.
"""

from tabulate import tabulate

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, deploy_manager, deploy_vaults
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info", coloured_threads=True)
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    manager = deploy_manager(ctx)
    vaults = deploy_vaults(ctx, manager)
    ctx.ledger.sync_consumer_copy()
    print(tabulate([[v.token.symbol, v.vault_address] for v in vaults], headers=["Token", "Vault"]))


if __name__ == "__main__":
    main()
