"""Deployer selection and nonce handling."""

from concurrent.futures import ThreadPoolExecutor

import pytest
from eth_account import Account
from web3.exceptions import ContractLogicError

from ithil_deploy.tokens import USDC
from ithil_deploy.transactions import send_transaction
from ithil_deploy.wallet import HotWallet, create_sender, get_sender_address

from conftest import FakeERC20, FakeManager, FakeOracle, FakeVault


def test_unlocked_account_without_key(web3, chain):
    """With no key, the first node account deploys."""
    sender = create_sender(web3, None)
    assert sender == chain.accounts[0]
    assert get_sender_address(sender) == chain.accounts[0]


def test_hot_wallet_nonces(web3, chain):
    """Nonces allocated from many threads are unique and consecutive."""
    account = Account.create()
    chain.nonces[account.address] = 7

    wallet = create_sender(web3, "0x" + bytes(account.key).hex())
    assert isinstance(wallet, HotWallet)
    assert get_sender_address(wallet) == account.address

    with ThreadPoolExecutor(max_workers=8) as executor:
        nonces = list(executor.map(lambda _: wallet.allocate_nonce(), range(50)))

    assert sorted(nonces) == list(range(7, 57))


@pytest.fixture()
def wallet(web3) -> HotWallet:
    """A hot wallet the node knows nothing about, synced at nonce 0."""
    account = Account.create()
    return create_sender(web3, "0x" + bytes(account.key).hex())


def test_reverting_call_does_not_consume_nonce(web3, chain, wallet):
    """After a call fails gas estimation the next transaction is still mined."""
    foreign = chain.new_address()
    chain.install(foreign, FakeOracle(chain, chain.accounts[0]))
    own = chain.new_address()
    chain.install(own, FakeOracle(chain, wallet.address))
    feed = chain.new_address()

    with pytest.raises(ContractLogicError):
        send_transaction(web3, web3.eth.contract(address=foreign, abi=[]).functions.transferOwnership(wallet.address), wallet, "transferOwnership")

    assert wallet.current_nonce == 0
    assert chain.contracts[foreign].owner() == chain.accounts[0]

    receipt = send_transaction(web3, web3.eth.contract(address=own, abi=[]).functions.setPriceFeed(USDC.address, feed), wallet, "setPriceFeed")

    assert receipt["status"] == 1
    assert chain.contracts[own].feeds[USDC.address] == feed
    assert chain.nonces[wallet.address] == 1 == wallet.current_nonce


def test_dry_run_leaves_no_state(web3, chain, wallet):
    """Gas estimation of a successful call does not apply it twice."""
    manager_address = chain.new_address()
    chain.install(manager_address, FakeManager(chain, wallet.address))
    token = chain.new_address()
    chain.install(token, FakeERC20(chain))
    chain.contracts[token].allowances[(wallet.address, manager_address)] = 1

    send_transaction(web3, web3.eth.contract(address=manager_address, abi=[]).functions.create(token), wallet, "create")

    assert chain.calls_to("create") == [(wallet.address, manager_address, "create", (token,))]
    vault = chain.contracts[manager_address].vaults(token)
    assert vault in chain.contracts
    assert sum(1 for impl in chain.contracts.values() if isinstance(impl, FakeVault)) == 1
