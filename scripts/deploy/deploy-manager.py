"""Deploy the Manager, or print the one in the ledger."""

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, deploy_manager
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info")
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    manager = deploy_manager(ctx)
    print(f"Manager: {manager.address}, owner {manager.fetch_owner()}")


if __name__ == "__main__":
    main()
