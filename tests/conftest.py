"""Shared fixtures.

Most tests run against :py:class:`FakeChain`, an in-memory stand-in for an
Arbitrum fork that implements the small part of web3.py the deployment
touches: contract factories and handles, receipts, balances, storage and the
privileged RPC methods of Anvil and Tenderly.

Contracts are Python classes. Methods called with ``.call()`` get the call
arguments; methods called with ``.transact()`` get the transaction dict first.
A :py:class:`Revert` raised by a contract surfaces as
:py:class:`web3.exceptions.ContractLogicError`, like gas estimation on a real node.

Locally signed transactions are supported too: ``build_transaction`` dry-runs
the call and returns a dynamic fee transaction whose data is a handle to the
call, and ``send_raw_transaction`` checks the signer and the nonce before mining.
"""

import copy
import itertools
import json
import threading
from pathlib import Path

import pytest
from eth_abi import encode
from eth_account import Account
from eth_account.typed_transactions import TypedTransaction
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError

from ithil_deploy.accounts import BRIDGE_GATEWAYS, TEST_ACCOUNTS
from ithil_deploy.config import GOVERNANCE, ZERO_ADDRESS, DeploymentConfig
from ithil_deploy.funding import GATEWAY_STORAGE
from ithil_deploy.ledger import AddressLedger
from ithil_deploy.pipeline import DeploymentContext
from ithil_deploy.tokens import TOKENS, WETH

#: Contracts the fake chain can deploy, by artifact name
ARTIFACT_NAMES = [
    "Ithil",
    "PriceConverter",
    "Oracle",
    "Manager",
    "AaveService",
    "GmxService",
    "FeeCollectorService",
    "SeniorCallOption",
    "FixedYieldService",
]


class Revert(Exception):
    """Raised by fake contracts."""


def _bytecode_prefix(name: str) -> str:
    return "0x" + name.encode().hex()


class FakeOwnable:
    def __init__(self, chain: "FakeChain", deployer: str, *args):
        self.chain = chain
        self.address = None
        self.constructor_args = args
        self._owner = deployer

    def owner(self):
        return self._owner

    def transferOwnership(self, tx, new_owner):
        self._only_owner(tx)
        self._owner = new_owner

    def _only_owner(self, tx):
        if tx["from"] != self._owner:
            raise Revert("Ownable: caller is not the owner")


class FakeLibrary:
    def __init__(self, chain, deployer, *args):
        self.address = None


class FakeIthil:
    def __init__(self, chain, deployer, governance):
        self.address = None
        self.governance = governance


class FakeOracle(FakeOwnable):
    def __init__(self, chain, deployer, *args):
        super().__init__(chain, deployer, *args)
        self.feeds = {}

    def setPriceFeed(self, tx, token, feed):
        self._only_owner(tx)
        self.feeds[token] = feed


class FakeManager(FakeOwnable):
    def __init__(self, chain, deployer, *args):
        super().__init__(chain, deployer, *args)
        self._vaults = {}
        self.caps = {}

    def vaults(self, token):
        return self._vaults.get(token, ZERO_ADDRESS)

    def create(self, tx, token):
        self._only_owner(tx)
        if token in self._vaults:
            raise Revert("Vault already exists")
        erc20 = self.chain.contracts[token]
        if erc20.allowances.get((tx["from"], self.address), 0) == 0:
            raise Revert("ERC20: insufficient allowance")
        vault = FakeVault(self.chain, token)
        self.chain.install(self.chain.new_address(), vault, b"vault")
        self._vaults[token] = vault.address

    def setCap(self, tx, service, token, capacity, cap):
        self._only_owner(tx)
        self.caps[(service, token)] = (capacity, cap)


class FakeService(FakeOwnable):
    """Debit service with a whitelist and risk parameters."""

    def __init__(self, chain, deployer, *args):
        super().__init__(chain, deployer, *args)
        self._enabled = True
        self.risk_params = {}

    def enabled(self):
        return self._enabled

    def toggleWhitelistFlag(self, tx):
        self._only_owner(tx)
        self._enabled = not self._enabled

    def setRiskParams(self, tx, token, spread, base_risk, half_life):
        self._only_owner(tx)
        if token in self.chain.reject_risk_tokens:
            raise Revert("Unsupported token")
        self.risk_params[token] = (spread, base_risk, half_life)


class FakeCreditService(FakeOwnable):
    pass


class FakeERC20:
    def __init__(self, chain):
        self.chain = chain
        self.address = None
        self.balances = {}
        self.allowances = {}

    def balanceOf(self, account):
        return self.balances.get(account, 0)

    def approve(self, tx, spender, amount):
        self.allowances[(tx["from"], spender)] = amount
        return True


class FakeBridgedToken(FakeERC20):
    """Arbitrum bridged token reading its gateway from a storage word."""

    def __init__(self, chain, slot: int, start: int, end: int):
        super().__init__(chain)
        self.slot = slot
        self.start = start
        self.end = end

    def _gateway(self):
        word = self.chain.storage.get((self.address, self.slot), b"\0" * 32).hex()
        return Web3.to_checksum_address("0x" + word[self.start : self.end])

    def gatewayAddress(self):
        return self._gateway()

    def l2Gateway(self):
        return self._gateway()

    def bridgeMint(self, tx, account, amount):
        if tx["from"] != self._gateway():
            raise Revert("ONLY_GATEWAY")
        if (self.address, account) in self.chain.reject_mint_to:
            raise Revert("Blocked receiver")
        self.balances[account] = self.balances.get(account, 0) + amount


class FakeWETH(FakeERC20):
    def deposit(self, tx):
        sender = tx["from"]
        value = tx.get("value", 0)
        if self.chain.balances.get(sender, 0) < value:
            raise Revert("Insufficient ETH")
        self.chain.balances[sender] -= value
        self.balances[sender] = self.balances.get(sender, 0) + value


class FakeVault(FakeERC20):
    """ERC-4626 vault shares, one to one with assets."""

    def __init__(self, chain, asset):
        super().__init__(chain)
        self._asset = asset

    def asset(self):
        return self._asset

    def deposit(self, tx, assets, receiver):
        token = self.chain.contracts[self._asset]
        sender = tx["from"]
        if token.allowances.get((sender, self.address), 0) < assets:
            raise Revert("ERC20: insufficient allowance")
        if token.balanceOf(sender) < assets:
            raise Revert("ERC20: transfer amount exceeds balance")
        token.balances[sender] -= assets
        token.balances[self.address] = token.balances.get(self.address, 0) + assets
        self.balances[receiver] = self.balances.get(receiver, 0) + assets


class FakeStorageToken(FakeERC20):
    """ERC-20 whose balances live in a Solidity mapping at ``mapping_slot``."""

    def __init__(self, chain, mapping_slot: int):
        super().__init__(chain)
        self.mapping_slot = mapping_slot

    def balanceOf(self, account):
        key = int.from_bytes(Web3.keccak(encode(["address", "uint256"], [account, self.mapping_slot])), "big")
        return int.from_bytes(self.chain.storage.get((self.address, key), b"\0" * 32), "big")


CONTRACT_CLASSES = {
    "Ithil": FakeIthil,
    "PriceConverter": FakeLibrary,
    "Oracle": FakeOracle,
    "Manager": FakeManager,
    "AaveService": FakeService,
    "GmxService": FakeService,
    "FeeCollectorService": FakeCreditService,
    "SeniorCallOption": FakeCreditService,
    "FixedYieldService": FakeCreditService,
}


class FakeChain:
    """State of the fake network."""

    def __init__(self):
        self.lock = threading.RLock()
        self.block_number = 1
        self.chain_id = 42161
        self._address_counter = itertools.count(0xC0FFEE000000)
        self._tx_counter = itertools.count(1)

        self.contracts = {}
        self.code = {}
        self.balances = {}
        self.storage = {}
        self.receipts = {}
        self.nonces = {}

        #: Handle -> call of every built but not yet broadcast transaction
        self.built_calls = {}
        self._call_handles = itertools.count(1)

        #: Unlocked node accounts
        self.accounts = [Web3.to_checksum_address(a) for a in TEST_ACCOUNTS]
        self.impersonated = set()

        #: Send from anyone, as on Tenderly
        self.require_unlocked = True

        #: (sender, contract address, function name, args) of every mined transaction
        self.transactions = []

        #: (artifact name, address) of every deployment
        self.deployments = []

        #: Every privileged RPC request
        self.rpc_requests = []

        # Failure hooks
        self.failing_deployments = set()
        self.reject_risk_tokens = set()
        self.reject_mint_to = set()
        self.failing_rpc_addresses = set()

        self._seed_tokens()

    def _seed_tokens(self):
        for token in TOKENS:
            address = Web3.to_checksum_address(token.address)
            if token.symbol in GATEWAY_STORAGE:
                replacement, _ = GATEWAY_STORAGE[token.symbol]
                impl = FakeBridgedToken(self, replacement.slot, replacement.start, replacement.end)
                gateway_hex = BRIDGE_GATEWAYS[token.symbol][2:].lower()
                word = "0" * replacement.start + gateway_hex + "0" * (64 - replacement.end)
                self.storage[(address, replacement.slot)] = bytes.fromhex(word)
            elif token == WETH:
                impl = FakeWETH(self)
            else:
                impl = FakeERC20(self)
            self.install(address, impl, b"token")

    def new_address(self) -> str:
        return Web3.to_checksum_address(f"0x{next(self._address_counter):040x}")

    def install(self, address: str, impl, code: bytes = b"fake"):
        impl.address = address
        self.contracts[address] = impl
        self.code[address] = code

    def _mine(self, status: int, contract_address: str | None = None) -> HexBytes:
        tx_hash = HexBytes(next(self._tx_counter).to_bytes(32, "big"))
        self.block_number += 1
        self.receipts[tx_hash] = {
            "status": status,
            "transactionHash": tx_hash,
            "blockNumber": self.block_number,
            "contractAddress": contract_address,
        }
        return tx_hash

    def _check_sender(self, sender: str):
        if not self.require_unlocked:
            return
        if sender not in self.accounts and sender not in self.impersonated:
            raise ValueError(f"Unknown account {sender}")

    def deploy(self, bytecode: str, args: tuple, tx: dict, check_sender=True) -> HexBytes:
        with self.lock:
            sender = tx["from"]
            if check_sender:
                self._check_sender(sender)
            matches = [name for name in ARTIFACT_NAMES if bytecode.startswith(_bytecode_prefix(name))]
            assert matches, f"Unknown bytecode {bytecode[:40]}"
            name = max(matches, key=len)
            assert "__$" not in bytecode, f"{name} deployed with unlinked libraries"

            self.nonces[sender] = self.nonces.get(sender, 0) + 1
            if name in self.failing_deployments:
                return self._mine(status=0)

            impl = CONTRACT_CLASSES[name](self, sender, *args)
            address = self.new_address()
            self.install(address, impl, bytecode.encode())
            self.deployments.append((name, address))
            return self._mine(status=1, contract_address=address)

    def execute(self, address: str, fn_name: str, args: tuple, tx: dict, check_sender=True) -> HexBytes:
        with self.lock:
            sender = tx["from"]
            if check_sender:
                self._check_sender(sender)
            impl = self.contracts[address]
            try:
                getattr(impl, fn_name)(tx, *args)
            except Revert as e:
                raise ContractLogicError(f"execution reverted: {e}") from e
            self.transactions.append((sender, address, fn_name, args))
            self.nonces[sender] = self.nonces.get(sender, 0) + 1
            return self._mine(status=1)

    def estimate(self, address: str, fn_name: str, args: tuple, tx: dict):
        """Dry-run a transaction and roll back its state changes."""
        with self.lock:
            saved = copy.deepcopy((self.contracts, self.balances, self.storage), {id(self): self})
            try:
                getattr(self.contracts[address], fn_name)(tx, *args)
            except Revert as e:
                raise ContractLogicError(f"execution reverted: {e}") from e
            finally:
                contracts, balances, storage = saved
                for created in set(self.contracts) - set(contracts):
                    del self.contracts[created]
                    self.code.pop(created, None)
                for existing, impl in contracts.items():
                    self.contracts[existing].__dict__.update(impl.__dict__)
                self.balances.clear()
                self.balances.update(balances)
                self.storage.clear()
                self.storage.update(storage)

    def build_transaction(self, call: tuple, tx: dict, to: str) -> dict:
        handle = next(self._call_handles).to_bytes(32, "big")
        with self.lock:
            self.built_calls[handle] = call
        return {
            "from": tx["from"],
            "to": to,
            "data": "0x" + handle.hex(),
            "value": tx.get("value", 0),
            "gas": tx.get("gas", 1_000_000),
            "maxFeePerGas": 2 * 10**9,
            "maxPriorityFeePerGas": 10**9,
            "chainId": self.chain_id,
        }

    def send_raw(self, raw_transaction) -> HexBytes:
        raw_transaction = HexBytes(raw_transaction)
        sender = Account.recover_transaction(raw_transaction)
        fields = TypedTransaction.from_bytes(raw_transaction).as_dict()
        with self.lock:
            expected = self.nonces.get(sender, 0)
            if fields["nonce"] != expected:
                raise ValueError(f"Nonce {fields['nonce']} from {sender}, chain expects {expected}")
            kind, *call = self.built_calls.pop(bytes(HexBytes(fields["data"])))
            tx = {"from": sender, "value": fields["value"]}
            if kind == "deploy":
                return self.deploy(*call, tx, check_sender=False)
            return self.execute(*call, tx, check_sender=False)

    def call(self, address: str, fn_name: str, args: tuple):
        with self.lock:
            return getattr(self.contracts[address], fn_name)(*args)

    def calls_to(self, fn_name: str) -> list:
        return [t for t in self.transactions if t[2] == fn_name]


class FakeBoundCall:
    def __init__(self, chain: FakeChain, address: str, fn_name: str, args: tuple):
        self.chain = chain
        self.address = address
        self.fn_name = fn_name
        self.args = args

    def call(self):
        return self.chain.call(self.address, self.fn_name, self.args)

    def transact(self, tx: dict | None = None) -> HexBytes:
        return self.chain.execute(self.address, self.fn_name, self.args, dict(tx or {}))

    def build_transaction(self, tx: dict | None = None) -> dict:
        tx = dict(tx or {})
        self.chain.estimate(self.address, self.fn_name, self.args, tx)
        return self.chain.build_transaction(("call", self.address, self.fn_name, self.args), tx, to=self.address)


class FakeFunctions:
    def __init__(self, chain: FakeChain, address: str):
        self._chain = chain
        self._address = address

    def __getattr__(self, fn_name):
        return lambda *args: FakeBoundCall(self._chain, self._address, fn_name, args)


class FakeContract:
    def __init__(self, chain: FakeChain, address: str):
        self.address = address
        self.functions = FakeFunctions(chain, address)


class FakeConstructor:
    def __init__(self, chain: FakeChain, bytecode: str, args: tuple):
        self.chain = chain
        self.bytecode = bytecode
        self.args = args

    def transact(self, tx: dict | None = None) -> HexBytes:
        return self.chain.deploy(self.bytecode, self.args, dict(tx or {}))

    def build_transaction(self, tx: dict | None = None) -> dict:
        return self.chain.build_transaction(("deploy", self.bytecode, self.args), dict(tx or {}), to=ZERO_ADDRESS)


class FakeContractFactory:
    def __init__(self, chain: FakeChain, bytecode: str):
        self.chain = chain
        self.bytecode = bytecode

    def constructor(self, *args):
        return FakeConstructor(self.chain, self.bytecode, args)


class FakeEth:
    def __init__(self, chain: FakeChain):
        self._chain = chain

    @property
    def chain_id(self):
        return self._chain.chain_id

    @property
    def accounts(self):
        return list(self._chain.accounts)

    @property
    def block_number(self):
        return self._chain.block_number

    def contract(self, address=None, abi=None, bytecode=None):
        if bytecode is not None:
            return FakeContractFactory(self._chain, bytecode)
        return FakeContract(self._chain, Web3.to_checksum_address(address))

    def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        return self._chain.receipts[HexBytes(tx_hash)]

    def get_code(self, address):
        return HexBytes(self._chain.code.get(Web3.to_checksum_address(address), b""))

    def get_balance(self, address):
        return self._chain.balances.get(Web3.to_checksum_address(address), 0)

    def get_storage_at(self, address, slot):
        return HexBytes(self._chain.storage.get((Web3.to_checksum_address(address), slot), b"\0" * 32))

    def get_transaction_count(self, address, block_identifier="latest"):
        return self._chain.nonces.get(Web3.to_checksum_address(address), 0)

    def send_raw_transaction(self, raw_transaction):
        return self._chain.send_raw(raw_transaction)


class FakeProvider:
    """Privileged RPC of Anvil and Tenderly."""

    def __init__(self, chain: FakeChain):
        self._chain = chain

    def make_request(self, method: str, params: list) -> dict:
        chain = self._chain
        with chain.lock:
            chain.rpc_requests.append((method, params))

            flat = [p for param in params for p in (param if isinstance(param, list) else [param])]
            if any(isinstance(p, str) and p in chain.failing_rpc_addresses for p in flat):
                return {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "node says no"}}

            if method in ("anvil_setBalance", "hardhat_setBalance"):
                chain.balances[params[0]] = int(params[1], 16)
            elif method == "tenderly_setBalance":
                for address in params[0]:
                    chain.balances[address] = int(params[1], 16)
            elif method == "tenderly_addBalance":
                for address in params[0]:
                    chain.balances[address] = chain.balances.get(address, 0) + int(params[1], 16)
            elif method in ("anvil_impersonateAccount", "hardhat_impersonateAccount"):
                chain.impersonated.add(params[0])
            elif method in ("anvil_stopImpersonatingAccount", "hardhat_stopImpersonatingAccount"):
                chain.impersonated.discard(params[0])
            elif method in ("anvil_setStorageAt", "hardhat_setStorageAt", "tenderly_setStorageAt"):
                chain.storage[(params[0], int(params[1], 16))] = bytes.fromhex(params[2][2:])
            elif method == "tenderly_setErc20Balance":
                token = chain.contracts[params[0]]
                token.balances[params[1]] = int(params[2], 16)
            elif method == "evm_increaseTime":
                pass
            elif method == "evm_mine":
                chain.block_number += 1
            else:
                return {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": f"Method {method} not found"}}

            return {"jsonrpc": "2.0", "id": 1, "result": None}


class FakeWeb3:
    def __init__(self, chain: FakeChain):
        self.chain = chain
        self.eth = FakeEth(chain)
        self.provider = FakeProvider(chain)


def write_artifact(artifacts_path: Path, name: str, link_references: dict | None = None, foundry=False):
    """Write a compiled artifact the fake chain knows how to deploy."""
    bytecode = _bytecode_prefix(name)
    if link_references:
        # One placeholder per reference, 20 bytes each
        for libs in link_references.values():
            for refs in libs.values():
                for _ in refs:
                    bytecode += "__$" + "0" * 34 + "$__"

    if foundry:
        data = {"abi": [], "bytecode": {"object": bytecode, "linkReferences": link_references or {}}, "deployedBytecode": {"object": "0x"}}
        path = artifacts_path / f"{name}.sol" / f"{name}.json"
    else:
        data = {"contractName": name, "abi": [], "bytecode": bytecode, "deployedBytecode": "0x", "linkReferences": link_references or {}}
        path = artifacts_path / "contracts" / f"{name}.sol" / f"{name}.json"

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


#: Oracle links PriceConverter right after its own name prefix
ORACLE_LINK_REFERENCES = {
    "contracts/libraries/PriceConverter.sol": {
        "PriceConverter": [{"start": len(b"Oracle"), "length": 20}],
    }
}


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def web3(chain) -> FakeWeb3:
    return FakeWeb3(chain)


@pytest.fixture()
def deployer(chain) -> str:
    return chain.accounts[0]


@pytest.fixture()
def artifacts_path(tmp_path) -> Path:
    path = tmp_path / "artifacts"
    for name in ARTIFACT_NAMES:
        write_artifact(path, name, ORACLE_LINK_REFERENCES if name == "Oracle" else None)
    return path


@pytest.fixture()
def deployment_config(tmp_path, artifacts_path) -> DeploymentConfig:
    return DeploymentConfig(
        data_dir=tmp_path / "data",
        frontend_dir=tmp_path / "frontend" / "src" / "deploy",
        artifacts_path=artifacts_path,
        governance=Web3.to_checksum_address(GOVERNANCE),
        tx_timeout=5,
    )


@pytest.fixture()
def ledger(deployment_config) -> AddressLedger:
    return AddressLedger(deployment_config.contracts_path, deployment_config.frontend_contracts_path)


@pytest.fixture()
def ctx(deployment_config, web3, ledger, deployer) -> DeploymentContext:
    return DeploymentContext(config=deployment_config, web3=web3, ledger=ledger, deployer=deployer)
