"""Compiled contract artifacts and minimal ABIs.

Ithil contracts are compiled by Hardhat (``artifacts/``) or Foundry (``out/``).
Both toolchains write one JSON file per contract, named after the contract,
carrying the ABI, the creation bytecode and library link references.

Example:

.. code-block:: python

    artifact = load_artifact(Path("artifacts"), "Manager")
    manager = get_deployed_contract(web3, artifact, "0x...")
"""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

logger = logging.getLogger(__name__)


class ArtifactNotFound(Exception):
    """No compiled artifact for the contract name."""


@dataclass(slots=True, frozen=True)
class ContractArtifact:
    """Compiled contract as read from a Hardhat or Foundry build."""

    #: Contract name, e.g. ``Manager``
    name: str

    abi: list = field(hash=False)

    #: Creation bytecode, hex, possibly with unlinked library placeholders
    bytecode: str

    #: Runtime bytecode, hex
    deployed_bytecode: str

    #: ``{source file: {library name: [{"start": byte offset, "length": 20}]}}``
    link_references: dict = field(default_factory=dict, hash=False)

    def needs_linking(self) -> bool:
        return any(self.link_references.values())


def _bytecode_of(data: dict, key: str) -> str:
    value = data.get(key, "")
    # Foundry nests bytecode under "object"
    if isinstance(value, dict):
        return value.get("object", "")
    return value


def _parse_artifact(path: Path) -> ContractArtifact:
    data = json.loads(path.read_text())

    bytecode = _bytecode_of(data, "bytecode")
    link_references = data.get("linkReferences")
    if link_references is None and isinstance(data.get("bytecode"), dict):
        link_references = data["bytecode"].get("linkReferences", {})

    if bytecode and not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode

    return ContractArtifact(
        name=data.get("contractName", path.stem),
        abi=data["abi"],
        bytecode=bytecode,
        deployed_bytecode=_bytecode_of(data, "deployedBytecode"),
        link_references=link_references or {},
    )


@lru_cache(maxsize=64)
def load_artifact(artifacts_path: Path, contract_name: str) -> ContractArtifact:
    """Find and read a compiled contract.

    Searches ``artifacts_path`` recursively for ``<contract_name>.json``,
    skipping Hardhat ``.dbg.json`` debug files.

    :raise ArtifactNotFound:
        If there is no artifact, or the name is ambiguous.
    """
    assert isinstance(artifacts_path, Path), f"Expected Path, got {artifacts_path}"

    candidates = [p for p in artifacts_path.rglob(f"{contract_name}.json") if not p.name.endswith(".dbg.json")]
    # Hardhat places interfaces and build-info next to contracts, prefer real bytecode
    candidates = sorted(candidates, key=lambda p: len(p.parts))

    if not candidates:
        raise ArtifactNotFound(f"No compiled artifact {contract_name}.json under {artifacts_path}. Did you compile the contracts?")

    artifact = _parse_artifact(candidates[0])
    logger.debug("Loaded artifact %s from %s", contract_name, candidates[0])
    return artifact


def link_libraries(artifact: ContractArtifact, libraries: dict[str, HexAddress]) -> str:
    """Fill library addresses into the creation bytecode.

    :param libraries:
        Library name to deployed address, e.g. ``{"PriceConverter": "0x..."}``

    :return:
        Linked creation bytecode, hex with ``0x`` prefix
    """
    bytecode = artifact.bytecode
    assert bytecode.startswith("0x")
    body = bytecode[2:]

    for source, libs in artifact.link_references.items():
        for lib_name, offsets in libs.items():
            if lib_name not in libraries:
                raise ValueError(f"{artifact.name} needs library {lib_name} ({source}) but it was not given")
            address_hex = Web3.to_checksum_address(libraries[lib_name])[2:].lower()
            for ref in offsets:
                start = ref["start"] * 2
                length = ref["length"] * 2
                assert length == 40, f"Unexpected link length {ref}"
                body = body[:start] + address_hex + body[start + length :]

    return "0x" + body


def get_deployed_contract(web3: Web3, artifact: ContractArtifact, address: HexAddress | str) -> Contract:
    """Attach to an already deployed contract."""
    return web3.eth.contract(address=Web3.to_checksum_address(address), abi=artifact.abi)


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[str] = (), mutability: str = "nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
        "stateMutability": mutability,
    }


#: Enough of ERC-20 for approvals and balance checks
ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], ["uint256"], "view"),
    _fn("decimals", [], ["uint8"], "view"),
    _fn("symbol", [], ["string"], "view"),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], ["bool"]),
]

#: Arbitrum bridged tokens: the gateway mints with ``bridgeMint``
BRIDGED_TOKEN_ABI = ERC20_ABI + [
    _fn("bridgeMint", [("account", "address"), ("amount", "uint256")]),
    _fn("mint", [("account", "address"), ("amount", "uint256")]),
    _fn("gatewayAddress", [], ["address"], "view"),
    _fn("l2Gateway", [], ["address"], "view"),
]

#: Arbitrum WETH
WETH_ABI = ERC20_ABI + [
    _fn("deposit", [], [], "payable"),
    _fn("depositTo", [("account", "address")], [], "payable"),
]

#: ERC-4626 vault deposit
VAULT_ABI = ERC20_ABI + [
    _fn("deposit", [("assets", "uint256"), ("receiver", "address")], ["uint256"]),
    _fn("asset", [], ["address"], "view"),
]
