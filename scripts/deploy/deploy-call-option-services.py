"""Deploy one SeniorCallOption service per token.

Needs the Manager and the Ithil token, which are deployed first if the ledger
lacks them. Each service gets capacity in its own token vault and is handed
over to governance.
"""

from tabulate import tabulate

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, configure_credit_service, deploy_call_option_services, deploy_ithil, deploy_manager
from ithil_deploy.tokens import TOKEN_MAP
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info", coloured_threads=True)
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    manager = deploy_manager(ctx)
    ithil = deploy_ithil(ctx)
    services = deploy_call_option_services(ctx, manager, ithil)

    rows = []
    for symbol, service in services.items():
        report = configure_credit_service(ctx, manager, service, tokens=(TOKEN_MAP[symbol],))
        rows.append([symbol, service.address, report.state.value])

    print(tabulate(rows, headers=["Token", "Call option", "State"]))


if __name__ == "__main__":
    main()
