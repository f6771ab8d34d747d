"""Deploy the Oracle, register Chainlink feeds for all tokens and hand it to governance."""

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, configure_price_feeds, deploy_oracle
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info", coloured_threads=True)
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    oracle = deploy_oracle(ctx)
    report = configure_price_feeds(ctx, oracle)
    print(f"Oracle: {oracle.address}, {report.state.value}")


if __name__ == "__main__":
    main()
