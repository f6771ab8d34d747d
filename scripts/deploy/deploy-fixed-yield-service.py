"""Deploy FixedYieldService, give it capacity and hand it to governance."""

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, configure_credit_service, deploy_fixed_yield_service, deploy_manager
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info", coloured_threads=True)
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    manager = deploy_manager(ctx)
    service = deploy_fixed_yield_service(ctx, manager)
    report = configure_credit_service(ctx, manager, service)
    print(f"FixedYieldService: {service.address}, {report.state.value}")


if __name__ == "__main__":
    main()
