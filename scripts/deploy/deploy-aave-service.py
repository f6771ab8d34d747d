"""Deploy AaveService against the Manager in the ledger and configure it.

Deploys the Manager too if the ledger has none.
"""

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, configure_debit_service, deploy_aave_service, deploy_manager
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info", coloured_threads=True)
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    manager = deploy_manager(ctx)
    service = deploy_aave_service(ctx, manager)
    report = configure_debit_service(ctx, manager, service)
    print(f"AaveService: {service.address}, {report.state.value}")


if __name__ == "__main__":
    main()
