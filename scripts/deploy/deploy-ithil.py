"""Deploy the Ithil token with its supply minted to ``GOVERNANCE``."""

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.pipeline import DeploymentContext, deploy_ithil
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info")
    ctx = DeploymentContext.create(DeploymentConfig.from_environment())
    ithil = deploy_ithil(ctx)
    print(f"Ithil: {ithil.address}")


if __name__ == "__main__":
    main()
