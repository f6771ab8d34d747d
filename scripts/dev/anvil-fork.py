"""Run a local Anvil fork of Arbitrum until interrupted.

``ARBITRUM_RPC_URL`` is the upstream node, ``ANVIL_PORT`` the local port
(defaults to ``8545``). ``FORK_BLOCK_NUMBER`` pins the fork block.
"""

import logging
import os
import time

from ithil_deploy.fork import launch_anvil
from ithil_deploy.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    setup_console_logging("info")

    fork_url = os.environ["ARBITRUM_RPC_URL"]
    port = int(os.environ.get("ANVIL_PORT", "8545"))
    block = os.environ.get("FORK_BLOCK_NUMBER")

    anvil = launch_anvil(fork_url=fork_url, port=port, fork_block_number=int(block) if block else None)
    logger.info("Anvil fork running at %s, Ctrl+C to stop", anvil.json_rpc_url)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        anvil.close()


if __name__ == "__main__":
    main()
