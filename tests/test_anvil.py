"""Privileged RPC against a real Anvil node.

Needs ``anvil`` from Foundry in ``PATH``. No fork URL is used, so no network access.
"""

import shutil

import pytest
from web3 import Web3

from ithil_deploy.fork import ForkBackend, advance_time, impersonate, launch_anvil, set_balance, set_storage_at
from ithil_deploy.transactions import send_value

pytestmark = pytest.mark.skipif(shutil.which("anvil") is None, reason="anvil not installed")

STRANGER = Web3.to_checksum_address("0x7778f7b568023379697451da178326d27682adb8")


@pytest.fixture()
def web3():
    """Web3 connected to a fresh Anvil."""
    anvil = launch_anvil()
    try:
        yield Web3(Web3.HTTPProvider(anvil.json_rpc_url, request_kwargs={"timeout": 10}))
    finally:
        anvil.close()


def test_set_balance(web3):
    set_balance(web3, ForkBackend.anvil, STRANGER, 5 * 10**18)
    assert web3.eth.get_balance(STRANGER) == 5 * 10**18


def test_impersonated_transfer(web3):
    """An impersonated account can send ETH without a key."""
    receiver = web3.eth.accounts[1]
    before = web3.eth.get_balance(receiver)
    set_balance(web3, ForkBackend.anvil, STRANGER, 5 * 10**18)

    with impersonate(web3, ForkBackend.anvil, STRANGER):
        send_value(web3, STRANGER, receiver, 10**18, timeout=10)

    assert web3.eth.get_balance(receiver) == before + 10**18


def test_storage_write(web3):
    value = "0x" + (1234).to_bytes(32, "big").hex()
    set_storage_at(web3, ForkBackend.anvil, STRANGER, 5, value)
    assert int.from_bytes(web3.eth.get_storage_at(STRANGER, 5), "big") == 1234


def test_advance_time(web3):
    before = web3.eth.get_block("latest")["timestamp"]
    advance_time(web3, 3600)
    assert web3.eth.get_block("latest")["timestamp"] >= before + 3600
