"""Post-deployment settings.

After a service is deployed the Manager must allot it capacity in every
vault, debit services need risk parameters, the whitelist flag needs to
be in its wanted state and finally ownership goes to governance.

Every step is safe to repeat:

- capacities are set unconditionally, setting the same cap twice is harmless
- the whitelist flag is read first and toggled only if it differs
- ownership transfer is skipped when the wanted owner already has it

Per-token calls within a step run in parallel. A failing token is logged
and the rest continue, but then ownership is kept so that the next run
can retry the failed calls.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable

from eth_typing import HexAddress
from web3 import Web3

from ithil_deploy.config import DEFAULT_MANAGER_CAP, DEFAULT_MANAGER_CAPACITY, ONE_DAY
from ithil_deploy.parallel import run_in_parallel
from ithil_deploy.services import ConfigurableService, DebitService, Manager, OwnableContract, Oracle
from ithil_deploy.tokens import TOKENS, TokenDescriptor

logger = logging.getLogger(__name__)


class ConfigurationCallFailed(Exception):
    """A configuration call reverted or could not be sent."""

    def __init__(self, contract: str, step: str, cause: Exception):
        super().__init__(f"{contract}: {step} failed: {cause}")
        self.contract = contract
        self.step = step
        self.cause = cause


class ContractState(enum.Enum):
    """Lifecycle of a contract in the deployment."""

    undeployed = "undeployed"
    deployed_unconfigured = "deployed_unconfigured"
    configured = "configured"


@dataclass(slots=True, frozen=True)
class RiskParams:
    """Debit service per-token risk setting, as ``setRiskParams`` takes it."""

    #: Minimum interest spread, 1e18 = 100%
    spread: int

    #: Base risk, 1e18 = 100%
    base_risk: int

    #: Risk decay half life, seconds
    half_life: int


#: 0.3% spread, 1% base risk, three day half life
DEFAULT_RISK_PARAMS = RiskParams(spread=3 * 10**15, base_risk=10**16, half_life=3 * ONE_DAY)


@dataclass(slots=True)
class ServiceConfig:
    """Wanted state of a service."""

    #: Who owns the service when configuration is complete
    owner: HexAddress

    #: Per-token capacity given by the Manager
    capacity: int = DEFAULT_MANAGER_CAPACITY

    #: Per-token absolute cap given by the Manager
    cap: int = DEFAULT_MANAGER_CAP

    #: Risk parameters for debit services, ``None`` to skip
    risk: RiskParams | None = None

    #: Wanted whitelist flag, ``None`` to leave it as is
    whitelist_enabled: bool | None = None

    #: Tokens the service gets capacity for
    tokens: tuple[TokenDescriptor, ...] = TOKENS


@dataclass(slots=True)
class ConfigurationReport:
    """What :py:func:`apply_service_config` achieved."""

    #: Ledger name of the contract
    contract: str

    state: ContractState

    #: Failed calls, e.g. ``setCap USDC``
    failures: dict[str, Exception] = field(default_factory=dict)

    #: Ownership is now with the wanted owner
    ownership_transferred: bool = False

    #: Configuration was skipped because the contract had already been handed over
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.state == ContractState.configured


def set_capacities(
    manager: Manager,
    service_address: HexAddress,
    tokens: Iterable[TokenDescriptor],
    capacity: int = DEFAULT_MANAGER_CAPACITY,
    cap: int = DEFAULT_MANAGER_CAP,
) -> dict[str, Exception]:
    """Allot a service capacity in each token vault.

    :return:
        Failed calls by step name
    """
    jobs = [(token.symbol, lambda token=token: manager.set_cap(service_address, token.address, capacity, cap)) for token in tokens]
    result = run_in_parallel(jobs, "set capacity")
    logger.info("Set capacity %d for %d tokens for service %s", capacity, len(result.succeeded), service_address)
    return {f"setCap {symbol}": ConfigurationCallFailed(service_address, f"setCap {symbol}", e) for symbol, e in result.failed.items()}


def set_risk_params(
    service: DebitService,
    tokens: Iterable[TokenDescriptor],
    risk: RiskParams = DEFAULT_RISK_PARAMS,
) -> dict[str, Exception]:
    """Set risk parameters per token, continuing past failures.

    :return:
        Failed calls by step name
    """
    jobs = [
        (
            token.symbol,
            lambda token=token: service.set_risk_params(token.address, risk.spread, risk.base_risk, risk.half_life),
        )
        for token in tokens
    ]
    result = run_in_parallel(jobs, "set risk params")
    logger.info("Set risk params for %d tokens for service %s", len(result.succeeded), service.address)
    return {f"setRiskParams {symbol}": ConfigurationCallFailed(service.name, f"setRiskParams {symbol}", e) for symbol, e in result.failed.items()}


def ensure_whitelist(service: ConfigurableService, enabled: bool) -> bool:
    """Put the whitelist flag into the wanted state.

    :return:
        True if a toggle transaction was sent

    :raise ConfigurationCallFailed:
        If the toggle fails
    """
    current = service.read_enabled_flag()
    if current == enabled:
        logger.info("Whitelist of %s already %s", service.name, "ON" if enabled else "OFF")
        return False

    try:
        service.toggle_whitelist()
    except Exception as e:
        raise ConfigurationCallFailed(service.name, "toggleWhitelistFlag", e) from e

    logger.info("Changed whitelist of %s %s to %s", service.name, service.address, "ON" if enabled else "OFF")
    return True


def set_price_feeds(oracle: Oracle, tokens: Iterable[TokenDescriptor] = TOKENS) -> dict[str, Exception]:
    """Register the Chainlink feed of each token.

    :return:
        Failed calls by step name
    """
    jobs = [(token.symbol, lambda token=token: oracle.set_price_feed(token.address, token.price_feed)) for token in tokens]
    result = run_in_parallel(jobs, "set price feed")
    logger.info("Set price feed for %d tokens", len(result.succeeded))
    return {f"setPriceFeed {symbol}": ConfigurationCallFailed(oracle.name, f"setPriceFeed {symbol}", e) for symbol, e in result.failed.items()}


def _handed_over(contract: OwnableContract, owner: HexAddress, deployer: HexAddress) -> bool:
    current = contract.fetch_owner()
    return current == owner and current != deployer


def _finish(contract: OwnableContract, owner: HexAddress, failures: dict[str, Exception]) -> ConfigurationReport:
    if failures:
        logger.warning(
            "%s %s: %d configuration calls failed (%s), keeping ownership so the next run can retry",
            contract.name,
            contract.address,
            len(failures),
            ", ".join(failures),
        )
        return ConfigurationReport(contract.name, ContractState.deployed_unconfigured, failures=failures)

    transferred = contract.transfer_ownership(owner)
    state = ContractState.configured if transferred else ContractState.deployed_unconfigured
    return ConfigurationReport(contract.name, state, ownership_transferred=transferred)


def apply_service_config(
    manager: Manager,
    service: OwnableContract,
    config: ServiceConfig,
    deployer: HexAddress,
) -> ConfigurationReport:
    """Bring a freshly deployed or attached service into its wanted state.

    Steps run in order: capacity, risk parameters, whitelist, ownership.

    A service already handed over to ``config.owner`` is not touched again,
    the deployer can no longer configure it.

    :param deployer:
        Address sending the configuration transactions

    :raise ConfigurationCallFailed:
        If the whitelist cannot be set
    """
    owner = Web3.to_checksum_address(config.owner)
    deployer = Web3.to_checksum_address(deployer)

    if _handed_over(service, owner, deployer):
        logger.info("%s %s already handed over to %s, skipping configuration", service.name, service.address, owner)
        return ConfigurationReport(service.name, ContractState.configured, ownership_transferred=True, skipped=True)

    failures = {}

    if manager.fetch_owner() == deployer:
        failures.update(set_capacities(manager, service.address, config.tokens, config.capacity, config.cap))
    else:
        logger.warning("Manager %s is not owned by the deployer %s, cannot set capacity for %s", manager.address, deployer, service.name)

    if config.risk is not None:
        assert isinstance(service, DebitService), f"{service.name} does not take risk parameters"
        failures.update(set_risk_params(service, config.tokens, config.risk))

    if config.whitelist_enabled is not None:
        assert isinstance(service, ConfigurableService), f"{service.name} has no whitelist"
        ensure_whitelist(service, config.whitelist_enabled)

    return _finish(service, owner, failures)


def configure_oracle(
    oracle: Oracle,
    owner: HexAddress,
    deployer: HexAddress,
    tokens: Iterable[TokenDescriptor] = TOKENS,
) -> ConfigurationReport:
    """Register price feeds and hand the Oracle over."""
    owner = Web3.to_checksum_address(owner)
    deployer = Web3.to_checksum_address(deployer)

    if _handed_over(oracle, owner, deployer):
        logger.info("Oracle %s already handed over to %s, skipping price feeds", oracle.address, owner)
        return ConfigurationReport(oracle.name, ContractState.configured, ownership_transferred=True, skipped=True)

    failures = set_price_feeds(oracle, tokens)
    return _finish(oracle, owner, failures)
