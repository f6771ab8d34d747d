"""Deploy FeeCollectorService, give it capacity and hand it to governance.

Needs the Manager and the Oracle, which are deployed first if the ledger lacks them.
"""

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import (
    DeploymentContext,
    configure_credit_service,
    configure_price_feeds,
    deploy_fee_collector_service,
    deploy_manager,
    deploy_oracle,
)
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info", coloured_threads=True)
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    manager = deploy_manager(ctx)
    oracle = deploy_oracle(ctx)
    configure_price_feeds(ctx, oracle)
    service = deploy_fee_collector_service(ctx, manager, oracle)
    report = configure_credit_service(ctx, manager, service)
    print(f"FeeCollectorService: {service.address}, {report.state.value}")


if __name__ == "__main__":
    main()
