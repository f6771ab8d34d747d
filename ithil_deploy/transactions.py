"""Send a transaction and wait until it is mined."""

import logging

from hexbytes import HexBytes
from web3 import Web3
from web3.types import TxReceipt

from ithil_deploy.wallet import HotWallet, Sender

logger = logging.getLogger(__name__)

#: Seconds to wait for a receipt unless told otherwise
DEFAULT_TX_TIMEOUT = 180.0


class TransactionFailed(Exception):
    """Transaction was mined but reverted."""

    def __init__(self, msg: str, tx_hash: HexBytes | str | None = None, receipt: TxReceipt | dict | None = None):
        super().__init__(msg)
        self.tx_hash = tx_hash
        self.receipt = receipt


def send_transaction(
    web3: Web3,
    func,
    sender: Sender,
    description: str,
    gas: int | None = None,
    value: int | None = None,
    timeout: float = DEFAULT_TX_TIMEOUT,
) -> TxReceipt:
    """Send a contract call or deployment and wait for the receipt.

    - A :py:class:`HotWallet` signs locally, anything else is treated
      as an address unlocked on the node

    - Waiting is bounded by ``timeout``

    :param func:
        Bound ``ContractFunction`` or ``ContractConstructor``

    :param description:
        What we are doing, for the logs and error messages

    :raise TransactionFailed:
        If the receipt status is not success

    :raise web3.exceptions.TimeExhausted:
        If the receipt does not appear in time

    :return:
        Transaction receipt
    """
    tx_params = {}
    if gas is not None:
        tx_params["gas"] = gas
    if value is not None:
        tx_params["value"] = value

    if isinstance(sender, HotWallet):
        signed = sender.sign_bound_call_with_new_nonce(func, web3, tx_params)
        tx_hash = web3.eth.send_raw_transaction(signed.raw_transaction)
    else:
        tx_params["from"] = sender
        tx_hash = func.transact(tx_params)

    logger.debug("Sent %s, tx %s", description, _format_hash(tx_hash))

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    if receipt["status"] != 1:
        raise TransactionFailed(f"{description} reverted, tx {_format_hash(tx_hash)}", tx_hash=tx_hash, receipt=receipt)

    return receipt


def send_value(web3: Web3, sender: Sender, to: str, value: int, timeout: float = DEFAULT_TX_TIMEOUT) -> TxReceipt:
    """Plain ETH transfer."""
    to = Web3.to_checksum_address(to)
    if isinstance(sender, HotWallet):
        tx = {
            "from": sender.address,
            "to": to,
            "value": value,
            "gas": 21_000,
            "gasPrice": web3.eth.gas_price,
            "chainId": web3.eth.chain_id,
        }
        tx["nonce"] = sender.allocate_nonce()
        tx_hash = web3.eth.send_raw_transaction(sender.account.sign_transaction(tx).raw_transaction)
    else:
        tx_hash = web3.eth.send_transaction({"from": sender, "to": to, "value": value})

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    if receipt["status"] != 1:
        raise TransactionFailed(f"ETH transfer to {to} reverted", tx_hash=tx_hash, receipt=receipt)
    return receipt


def _format_hash(tx_hash) -> str:
    if isinstance(tx_hash, (bytes, bytearray)):
        return "0x" + bytes(tx_hash).hex()
    return str(tx_hash)
