"""End to end deployment runs against the in-memory chain."""

import json

from web3 import Web3

from ithil_deploy.configuration import ContractState
from ithil_deploy.ledger import AddressLedger
from ithil_deploy.pipeline import deploy_all, deploy_lending_setup
from ithil_deploy.tokens import TOKENS, WBTC
from ithil_deploy.vaults import read_vault_list

LENDING_LEDGER_NAMES = {"manager", "aaveService", "usdcVault", "usdtVault", "wethVault", "wbtcVault"}


def test_lending_setup(chain, ctx, deployment_config):
    """Manager, AaveService and four vaults, recorded and configured."""
    summary = deploy_lending_setup(ctx)

    assert set(ctx.ledger.as_dict()) == LENDING_LEDGER_NAMES
    assert set(summary.deployed) == {"manager", "aaveService"}
    assert summary.fully_configured

    aave = chain.contracts[ctx.ledger.get("aaveService")]
    assert not aave.enabled()
    assert aave.owner() == ctx.governance
    assert len(aave.risk_params) == len(TOKENS)

    # Manager stays with the deployer for further services
    manager = chain.contracts[ctx.ledger.get("manager")]
    assert manager.owner() == ctx.deployer_address
    assert len(manager.caps) == len(TOKENS)

    # Both copies of both files agree
    assert json.loads(deployment_config.contracts_path.read_text()) == json.loads(deployment_config.frontend_contracts_path.read_text())
    vaults = read_vault_list(deployment_config.vaults_path)
    assert vaults == read_vault_list(deployment_config.frontend_vaults_path)
    assert [v["name"] for v in vaults] == [t.symbol for t in TOKENS]
    assert all(v["callOptionAddress"] == "0x" for v in vaults)
    assert vaults[0]["vaultAddress"] == ctx.ledger.get("usdcVault")


def test_lending_setup_is_idempotent(chain, ctx, deployment_config, web3):
    """A second run from a fresh process sends no transactions."""
    deploy_lending_setup(ctx)
    tx_count = len(chain.transactions)
    deployments = list(chain.deployments)

    ctx.ledger = AddressLedger(deployment_config.contracts_path, deployment_config.frontend_contracts_path)
    summary = deploy_lending_setup(ctx)

    assert summary.deployed == []
    assert chain.deployments == deployments
    assert len(chain.transactions) == tx_count
    assert all(r.skipped for r in summary.reports)


def test_deploy_all(chain, ctx):
    """Everything is deployed, configured and handed to governance."""
    summary = deploy_all(ctx)

    ledger = ctx.ledger.as_dict()
    expected = {
        "ithil",
        "priceConverter",
        "oracle",
        "manager",
        "aaveService",
        "gmxService",
        "feeCollectorService",
        "fixedYieldService",
    }
    expected |= {t.call_option_ledger_name for t in TOKENS}
    expected |= {t.vault_ledger_name for t in TOKENS}
    assert set(ledger) == expected

    assert summary.fully_configured
    for report in summary.reports:
        assert report.state == ContractState.configured, report

    for name in ledger:
        contract = chain.contracts.get(ledger[name])
        if hasattr(contract, "owner"):
            assert contract.owner() == ctx.governance, f"{name} not handed over"

    # Each call option service only gets capacity in its own token
    manager = chain.contracts[ledger["manager"]]
    wbtc = Web3.to_checksum_address(WBTC.address)
    assert [token for service, token in manager.caps if service == ledger["wbtcCallOption"]] == [wbtc]

    vaults = read_vault_list(ctx.config.vaults_path)
    assert [v["callOptionAddress"] for v in vaults] == [ledger[t.call_option_ledger_name] for t in TOKENS]


def test_deploy_all_keeps_manager_on_failure(chain, ctx):
    """A failed configuration call leaves the Manager with the deployer for the retry."""
    chain.reject_risk_tokens.add(Web3.to_checksum_address(WBTC.address))

    summary = deploy_all(ctx)
    assert not summary.fully_configured

    manager = chain.contracts[ctx.ledger.get("manager")]
    assert manager.owner() == ctx.deployer_address

    failed = {r.contract for r in summary.reports if not r.ok}
    assert failed == {"aaveService", "gmxService", "manager"}

    # Retry after the fix completes the hand over
    chain.reject_risk_tokens.clear()
    summary = deploy_all(ctx)
    assert summary.fully_configured
    assert summary.deployed == []
    assert manager.owner() == ctx.governance


def test_oracle_attached_without_library(chain, ctx):
    """A recorded Oracle does not pull in a new PriceConverter."""
    deploy_all(ctx)
    ctx.ledger._entries.pop("priceConverter")
    deployments = len(chain.deployments)

    deploy_all(ctx)
    assert len(chain.deployments) == deployments
