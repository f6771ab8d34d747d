"""Locate the gateway address in the storage of bridged tokens.

Prints the slot and the hex offsets of the address inside the storage word,
the input :py:data:`ithil_deploy.funding.GATEWAY_STORAGE` is built from.

Environment variables
---------------------

``JSON_RPC_URL``
    Arbitrum node or fork.

``SCAN_SLOTS``
    How many slots to read from zero. Defaults to ``500``.
"""

import os

from tabulate import tabulate

from ithil_deploy.accounts import BRIDGE_GATEWAYS
from ithil_deploy.config import DeploymentConfig, create_web3
from ithil_deploy.funding import find_storage_slot
from ithil_deploy.tokens import TOKEN_MAP
from ithil_deploy.utils import setup_console_logging


def main():
    setup_console_logging("info")

    config = DeploymentConfig.from_environment()
    web3 = create_web3(config)
    scan = int(os.environ.get("SCAN_SLOTS", "500"))

    rows = []
    for symbol, gateway in BRIDGE_GATEWAYS.items():
        token = TOKEN_MAP[symbol]
        found = find_storage_slot(web3, token.address, gateway, scan=scan)
        if found:
            rows.append([symbol, gateway, found.slot, found.start, found.end, found.value])
        else:
            rows.append([symbol, gateway, "-", "-", "-", "not found"])

    print(tabulate(rows, headers=["Token", "Gateway", "Slot", "Start", "End", "Word"]))


if __name__ == "__main__":
    main()
