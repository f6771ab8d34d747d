"""Move fork time forward.

``SECONDS`` sets how far, defaults to one day.
"""

import os

from ithil_deploy.config import ONE_DAY, DeploymentConfig, create_web3
from ithil_deploy.fork import advance_time
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info")
    web3 = create_web3(DeploymentConfig.from_environment())
    seconds = int(os.environ.get("SECONDS", str(ONE_DAY)))
    before = web3.eth.get_block("latest")["timestamp"]
    advance_time(web3, seconds)
    after = web3.eth.get_block("latest")["timestamp"]
    print(f"Block timestamp {before} -> {after}")


if __name__ == "__main__":
    main()
