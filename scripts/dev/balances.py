"""Print ETH and token balances of the faucet accounts.

``RECIPIENTS`` overrides the accounts, comma separated.
"""

import os

from ithil_deploy.accounts import FAUCET_LIST
from ithil_deploy.balances import fetch_balances, format_balance_table
from ithil_deploy.config import DeploymentConfig, create_web3
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("warning")
    web3 = create_web3(DeploymentConfig.from_environment())
    accounts = [a.strip() for a in os.environ.get("RECIPIENTS", "").split(",") if a.strip()] or FAUCET_LIST
    print(format_balance_table(fetch_balances(web3, accounts)))


if __name__ == "__main__":
    main()
