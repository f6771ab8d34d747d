"""Create a Tenderly fork of Arbitrum One.

Needs ``TENDERLY_USER``, ``TENDERLY_PROJECT`` and ``TENDERLY_ACCESS_KEY``.
``FORK_BLOCK_NUMBER`` overrides the block the fork starts from.

Prints the fork RPC URL, to be used as ``JSON_RPC_URL`` with ``FORK_BACKEND=tenderly``.
"""

import os

from ithil_deploy.config import DeploymentConfig
from ithil_deploy.fork import DEFAULT_FORK_BLOCK_NUMBER, create_tenderly_fork
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info")
    config = DeploymentConfig.from_environment()
    user, project, access_key = config.require_tenderly()
    block_number = int(os.environ.get("FORK_BLOCK_NUMBER", str(DEFAULT_FORK_BLOCK_NUMBER)))
    rpc_url = create_tenderly_fork(user, project, access_key, block_number=block_number)
    print(f"JSON_RPC_URL={rpc_url}")


if __name__ == "__main__":
    main()
