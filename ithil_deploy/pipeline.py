"""The Ithil deployment, step by step.

Each ``deploy_*`` function deploys one logical contract, or attaches to it
if the ledger has it, and returns a typed handle. The ``configure_*``
functions bring a contract into its wanted state. Both are safe to run
again.

Dependency order of a full deployment:

1. Ithil token
2. PriceConverter library and the Oracle linked against it
3. Manager
4. AaveService, GmxService
5. FeeCollectorService, needs the Oracle
6. One SeniorCallOption service per token, needs the Ithil token
7. FixedYieldService
8. Vaults
9. Configuration of all services and the Oracle
10. Manager ownership to governance

Example:

.. code-block:: python

    config = DeploymentConfig.from_environment()
    ctx = DeploymentContext.create(config)
    summary = deploy_all(ctx)
"""

import logging
from dataclasses import dataclass, field

from eth_typing import HexAddress
from web3 import Web3

from ithil_deploy.abi import ContractArtifact, load_artifact
from ithil_deploy.config import (
    AAVE_POOL_ON_ARBITRUM,
    GMX_ROUTER,
    GMX_ROUTER_V2,
    ONE_DAY,
    ONE_HOUR,
    ONE_MONTH,
    WETH,
    WIZARDEX,
    DeploymentConfig,
    create_web3,
)
from ithil_deploy.configuration import (
    DEFAULT_RISK_PARAMS,
    ConfigurationReport,
    ContractState,
    ServiceConfig,
    apply_service_config,
    configure_oracle,
)
from ithil_deploy.deployment import DeploymentResult, deploy_or_attach
from ithil_deploy.ledger import AddressLedger
from ithil_deploy.services import (
    AaveService,
    CallOptionService,
    ContractWrapper,
    DebitService,
    FeeCollectorService,
    FixedYieldService,
    GmxService,
    IthilToken,
    Manager,
    Oracle,
    OwnableContract,
)
from ithil_deploy.tokens import TOKENS, LendingToken, TokenDescriptor
from ithil_deploy.vaults import create_vaults, write_vault_list
from ithil_deploy.wallet import Sender, create_sender, get_sender_address

logger = logging.getLogger(__name__)

#: FeeCollectorService staking fee, 1e18 = 100%
FEE_COLLECTOR_FEE = 10**17

#: FixedYieldService yield, 1e18 = 100%
FIXED_YIELD = 10**16

#: FixedYieldService lock time
FIXED_YIELD_DURATION = 30 * ONE_DAY


@dataclass(slots=True)
class DeploymentContext:
    """Everything a deployment step needs."""

    config: DeploymentConfig
    web3: Web3
    ledger: AddressLedger
    deployer: Sender

    #: Tokens that get vaults and services
    tokens: tuple[TokenDescriptor, ...] = TOKENS

    @classmethod
    def create(cls, config: DeploymentConfig) -> "DeploymentContext":
        """Connect to the node and open the ledger."""
        web3 = create_web3(config)
        ledger = AddressLedger(config.contracts_path, config.frontend_contracts_path)
        deployer = create_sender(web3, config.deployer_private_key)
        logger.info("Deployer is %s, governance is %s", get_sender_address(deployer), config.governance)
        return cls(config=config, web3=web3, ledger=ledger, deployer=deployer)

    @property
    def deployer_address(self) -> HexAddress:
        return get_sender_address(self.deployer)

    @property
    def governance(self) -> HexAddress:
        return self.config.governance

    def artifact(self, name: str) -> ContractArtifact:
        return load_artifact(self.config.artifacts_path, name)

    def deploy(
        self,
        ledger_name: str,
        artifact_name: str,
        constructor_args: tuple = (),
        libraries: dict[str, HexAddress] | None = None,
    ) -> DeploymentResult:
        return deploy_or_attach(
            self.web3,
            self.ledger,
            ledger_name,
            self.artifact(artifact_name),
            self.deployer,
            constructor_args=constructor_args,
            libraries=libraries,
            force=ledger_name in self.config.force_redeploy,
            verify=self.config.verify_ledger,
            timeout=self.config.tx_timeout,
        )

    def wrap(self, wrapper_class: type, result: DeploymentResult):
        return wrapper_class(self.web3, result.contract, self.deployer, tx_timeout=self.config.tx_timeout, ledger_name=result.name)


@dataclass(slots=True)
class DeploymentSummary:
    """Outcome of a pipeline run."""

    #: Ledger name -> address of everything touched in this run
    contracts: dict[str, HexAddress] = field(default_factory=dict)

    #: Ledger names deployed in this run, the rest were attached
    deployed: list[str] = field(default_factory=list)

    #: Configuration outcome per contract
    reports: list[ConfigurationReport] = field(default_factory=list)

    vaults: list[LendingToken] = field(default_factory=list)

    @property
    def fully_configured(self) -> bool:
        return all(r.ok for r in self.reports)

    def add(self, result: DeploymentResult):
        self.contracts[result.name] = result.address
        if result.deployed:
            self.deployed.append(result.name)


def _deploy(ctx: DeploymentContext, wrapper_class: type, constructor_args: tuple = (), summary: DeploymentSummary | None = None, ledger_name: str | None = None, libraries=None) -> ContractWrapper:
    result = ctx.deploy(ledger_name or wrapper_class.ledger_name, wrapper_class.artifact_name, constructor_args, libraries=libraries)
    if summary is not None:
        summary.add(result)
    return ctx.wrap(wrapper_class, result)


def deploy_ithil(ctx: DeploymentContext, summary: DeploymentSummary | None = None) -> IthilToken:
    """Ithil token, supply minted to governance."""
    return _deploy(ctx, IthilToken, (ctx.governance,), summary)


def deploy_oracle(ctx: DeploymentContext, summary: DeploymentSummary | None = None) -> Oracle:
    """Oracle, linked against a PriceConverter library deployed first.

    An Oracle already in the ledger is attached without touching the library.
    """
    if ctx.ledger.get(Oracle.ledger_name) and Oracle.ledger_name not in ctx.config.force_redeploy:
        return _deploy(ctx, Oracle, summary=summary)

    price_converter = ctx.deploy("priceConverter", "PriceConverter")
    if summary is not None:
        summary.add(price_converter)
    return _deploy(ctx, Oracle, summary=summary, libraries={"PriceConverter": price_converter.address})


def deploy_manager(ctx: DeploymentContext, summary: DeploymentSummary | None = None) -> Manager:
    return _deploy(ctx, Manager, summary=summary)


def deploy_aave_service(ctx: DeploymentContext, manager: Manager, summary: DeploymentSummary | None = None) -> AaveService:
    return _deploy(ctx, AaveService, (manager.address, Web3.to_checksum_address(AAVE_POOL_ON_ARBITRUM), ONE_MONTH), summary)


def deploy_gmx_service(ctx: DeploymentContext, manager: Manager, summary: DeploymentSummary | None = None) -> GmxService:
    return _deploy(
        ctx,
        GmxService,
        (manager.address, Web3.to_checksum_address(GMX_ROUTER), Web3.to_checksum_address(GMX_ROUTER_V2), ONE_MONTH),
        summary,
    )


def deploy_fee_collector_service(ctx: DeploymentContext, manager: Manager, oracle: Oracle, summary: DeploymentSummary | None = None) -> FeeCollectorService:
    return _deploy(
        ctx,
        FeeCollectorService,
        (manager.address, Web3.to_checksum_address(WETH), FEE_COLLECTOR_FEE, oracle.address, Web3.to_checksum_address(WIZARDEX)),
        summary,
    )


def deploy_call_option_services(
    ctx: DeploymentContext,
    manager: Manager,
    ithil: IthilToken,
    summary: DeploymentSummary | None = None,
) -> dict[str, CallOptionService]:
    """One SeniorCallOption service per token, ledger names like ``usdcCallOption``.

    Options run for a month, with an hour of price half life and three hours of
    minimum time between purchases.
    """
    services = {}
    for token in ctx.tokens:
        args = (
            manager.address,
            ctx.governance,
            ithil.address,
            token.initial_price_for_ithil,
            ONE_MONTH,
            ONE_HOUR,
            3 * ONE_HOUR,
            Web3.to_checksum_address(token.address),
        )
        services[token.symbol] = _deploy(ctx, CallOptionService, args, summary, ledger_name=token.call_option_ledger_name)
    return services


def deploy_fixed_yield_service(ctx: DeploymentContext, manager: Manager, summary: DeploymentSummary | None = None) -> FixedYieldService:
    return _deploy(ctx, FixedYieldService, (manager.address, FIXED_YIELD, FIXED_YIELD_DURATION), summary)


def deploy_vaults(ctx: DeploymentContext, manager: Manager, summary: DeploymentSummary | None = None) -> list[LendingToken]:
    """Create the vaults, record them and write ``assets.json``."""
    vaults = create_vaults(manager, ctx.tokens, ledger=ctx.ledger)

    # Call option services deployed so far go to the frontend list too
    vaults = [LendingToken(token=v.token, vault_address=v.vault_address, call_option_address=ctx.ledger.get(v.token.call_option_ledger_name)) for v in vaults]

    write_vault_list(vaults, ctx.config.vaults_path, ctx.config.frontend_vaults_path)

    if summary is not None:
        for v in vaults:
            summary.contracts[v.token.vault_ledger_name] = v.vault_address
        summary.vaults = vaults
    return vaults


def configure_debit_service(ctx: DeploymentContext, manager: Manager, service: DebitService) -> ConfigurationReport:
    """Capacity, risk parameters, whitelist off, ownership to governance."""
    config = ServiceConfig(
        owner=ctx.governance,
        risk=DEFAULT_RISK_PARAMS,
        whitelist_enabled=False,
        tokens=ctx.tokens,
    )
    return apply_service_config(manager, service, config, ctx.deployer_address)


def configure_credit_service(
    ctx: DeploymentContext,
    manager: Manager,
    service: OwnableContract,
    tokens: tuple[TokenDescriptor, ...] | None = None,
) -> ConfigurationReport:
    """Capacity and ownership to governance."""
    config = ServiceConfig(owner=ctx.governance, tokens=tokens or ctx.tokens)
    return apply_service_config(manager, service, config, ctx.deployer_address)


def configure_price_feeds(ctx: DeploymentContext, oracle: Oracle) -> ConfigurationReport:
    return configure_oracle(oracle, ctx.governance, ctx.deployer_address, ctx.tokens)


def hand_over_manager(ctx: DeploymentContext, manager: Manager, summary: DeploymentSummary) -> ConfigurationReport:
    """Give the Manager to governance, unless some contract still needs configuring."""
    if not summary.fully_configured:
        pending = [r.contract for r in summary.reports if not r.ok]
        logger.warning("Keeping Manager ownership, unfinished configuration of: %s", ", ".join(pending))
        return ConfigurationReport(manager.name, ContractState.deployed_unconfigured)

    transferred = manager.transfer_ownership(ctx.governance)
    state = ContractState.configured if transferred else ContractState.deployed_unconfigured
    return ConfigurationReport(manager.name, state, ownership_transferred=transferred)


def finish(ctx: DeploymentContext, summary: DeploymentSummary) -> DeploymentSummary:
    """Bring a stale frontend copy of the ledger up to date and log the outcome.

    :raise ithil_deploy.ledger.LedgerIOError:
        If the frontend copy still cannot be written
    """
    ctx.ledger.sync_consumer_copy()

    for name, address in summary.contracts.items():
        logger.info("  %-24s %s%s", name, address, " (new)" if name in summary.deployed else "")

    for report in summary.reports:
        if not report.ok:
            logger.warning("%s left %s, failed calls: %s", report.contract, report.state.value, ", ".join(report.failures) or "ownership transfer")

    logger.info("Deployed %d contracts, attached %d", len(summary.deployed), len(summary.contracts) - len(summary.deployed))
    return summary


def deploy_lending_setup(ctx: DeploymentContext) -> DeploymentSummary:
    """Manager, AaveService and vaults, enough for lending on a devnet.

    The Manager stays with the deployer so more services can be added.
    """
    summary = DeploymentSummary()
    manager = deploy_manager(ctx, summary)
    aave = deploy_aave_service(ctx, manager, summary)
    deploy_vaults(ctx, manager, summary)
    summary.reports.append(configure_debit_service(ctx, manager, aave))
    return finish(ctx, summary)


def deploy_all(ctx: DeploymentContext) -> DeploymentSummary:
    """Full Ithil deployment in dependency order."""
    summary = DeploymentSummary()

    ithil = deploy_ithil(ctx, summary)
    oracle = deploy_oracle(ctx, summary)
    manager = deploy_manager(ctx, summary)
    aave = deploy_aave_service(ctx, manager, summary)
    gmx = deploy_gmx_service(ctx, manager, summary)
    fee_collector = deploy_fee_collector_service(ctx, manager, oracle, summary)
    call_options = deploy_call_option_services(ctx, manager, ithil, summary)
    fixed_yield = deploy_fixed_yield_service(ctx, manager, summary)
    deploy_vaults(ctx, manager, summary)

    summary.reports.append(configure_price_feeds(ctx, oracle))
    summary.reports.append(configure_debit_service(ctx, manager, aave))
    summary.reports.append(configure_debit_service(ctx, manager, gmx))
    summary.reports.append(configure_credit_service(ctx, manager, fee_collector))
    for token in ctx.tokens:
        summary.reports.append(configure_credit_service(ctx, manager, call_options[token.symbol], tokens=(token,)))
    summary.reports.append(configure_credit_service(ctx, manager, fixed_yield))

    summary.reports.append(hand_over_manager(ctx, manager, summary))

    return finish(ctx, summary)
