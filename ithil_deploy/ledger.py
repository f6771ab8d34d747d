"""Persisted contract address book.

The ledger is a flat JSON object, ``{"manager": "0x...", "aaveService": "0x..."}``.
It is read before every deployment step and written after every successful one.

Two copies are kept:

- the canonical file in ``DATA_DIR``, which decides whether a contract is
  already deployed

- the consumer copy in the frontend repository, which is a mirror and
  never read back

The canonical copy is written first. If the mirror write fails, the canonical
write stays committed and the mirror is marked stale, to be brought up to date
on the next write or by :py:meth:`AddressLedger.sync_consumer_copy`.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path

from eth_typing import HexAddress
from web3 import Web3

from ithil_deploy.config import ZERO_ADDRESS
from ithil_deploy.utils import wait_other_writers

logger = logging.getLogger(__name__)

#: Attempts to write the consumer copy before marking it stale
CONSUMER_WRITE_ATTEMPTS = 3


class LedgerIOError(Exception):
    """Reading, parsing or writing a ledger file failed."""

    def __init__(self, msg: str, path: Path):
        super().__init__(msg)
        self.path = path


def _is_placeholder(value) -> bool:
    return not value or value in ("0x", ZERO_ADDRESS)


def write_json_file(path: Path, data: dict | list):
    """Atomically replace a JSON file.

    Writes to a temporary file in the same folder and renames it over
    the target, under a lock file.

    :raise OSError:
        On any filesystem failure
    """
    assert path.is_absolute(), f"Did not get an absolute path: {path}"
    with wait_other_writers(path):
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wt", encoding="utf-8") as out:
                json.dump(data, out, indent=2)
                out.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


def write_with_mirror(
    canonical_path: Path,
    consumer_path: Path | None,
    data: dict | list,
    attempts: int = CONSUMER_WRITE_ATTEMPTS,
) -> bool:
    """Write the canonical file, then its mirror.

    :raise LedgerIOError:
        If the canonical write fails

    :return:
        True if the consumer copy is up to date (or there is none)
    """
    try:
        write_json_file(canonical_path, data)
    except OSError as e:
        logger.error("Could not write %s: %s", canonical_path, e)
        raise LedgerIOError(f"Could not write {canonical_path}: {e}", canonical_path) from e

    if consumer_path is None:
        return True

    for attempt in range(1, attempts + 1):
        try:
            write_json_file(consumer_path, data)
            return True
        except OSError as e:
            logger.warning("Writing consumer copy %s failed, attempt %d/%d: %s", consumer_path, attempt, attempts, e)
            if attempt < attempts:
                time.sleep(0.1 * attempt)

    logger.error("Consumer copy %s is stale, canonical file %s is up to date", consumer_path, canonical_path)
    return False


class AddressLedger:
    """Name to address map backed by JSON files.

    Example:

    .. code-block:: python

        ledger = AddressLedger(config.contracts_path, config.frontend_contracts_path)
        if ledger.get("manager") is None:
            ...
            ledger.set("manager", manager.address)
    """

    def __init__(self, canonical_path: Path, consumer_path: Path | None = None):
        """
        :param canonical_path:
            ``contracts.json`` in the data folder. Missing file means empty ledger.

        :param consumer_path:
            Frontend mirror, or ``None`` to skip it.

        :raise LedgerIOError:
            If the canonical file exists but cannot be read or parsed
        """
        self.canonical_path = Path(canonical_path).absolute()
        self.consumer_path = Path(consumer_path).absolute() if consumer_path else None
        self.consumer_stale = False
        self._entries: dict[str, str | None] = self._load()

    def __repr__(self) -> str:
        return f"<AddressLedger {self.canonical_path}, {len(self._entries)} entries>"

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self.as_dict())

    def _load(self) -> dict[str, str | None]:
        if not self.canonical_path.exists():
            logger.info("No ledger at %s, starting empty", self.canonical_path)
            return {}

        try:
            data = json.loads(self.canonical_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Could not read ledger %s: %s", self.canonical_path, e)
            raise LedgerIOError(f"Could not read ledger {self.canonical_path}: {e}", self.canonical_path) from e

        if not isinstance(data, dict):
            raise LedgerIOError(f"Ledger {self.canonical_path} is not a JSON object", self.canonical_path)

        logger.info("Loaded %d ledger entries from %s", len(data), self.canonical_path)
        # null is a placeholder, same as the zero address
        return {str(k): (None if v is None else str(v)) for k, v in data.items()}

    def get(self, name: str) -> HexAddress | None:
        """Look up a contract address.

        :return:
            Checksummed address, or ``None`` if absent or a zero placeholder
        """
        value = self._entries.get(name)
        if _is_placeholder(value):
            return None
        return Web3.to_checksum_address(value)

    def set(self, name: str, address: HexAddress | str):
        """Record a contract address and persist both copies.

        :raise LedgerIOError:
            If the canonical file cannot be written. The in-memory entry is
            rolled back so memory matches disk.
        """
        assert not _is_placeholder(address), f"Refusing to record placeholder address for {name}"
        address = Web3.to_checksum_address(address)

        had_entry = name in self._entries
        previous = self._entries.get(name)
        self._entries[name] = address

        try:
            up_to_date = write_with_mirror(self.canonical_path, self.consumer_path, self._entries)
        except LedgerIOError:
            if not had_entry:
                del self._entries[name]
            else:
                self._entries[name] = previous
            raise

        self.consumer_stale = not up_to_date

        if _is_placeholder(previous):
            logger.info("Ledger: added %s at %s", name, address)
        elif previous != address:
            logger.info("Ledger: updated %s from %s to %s", name, previous, address)
        else:
            logger.info("Ledger: %s unchanged at %s", name, address)

    def sync_consumer_copy(self):
        """Bring a stale consumer copy up to date.

        :raise LedgerIOError:
            If the consumer copy still cannot be written
        """
        if self.consumer_path is None or not self.consumer_stale:
            return

        for attempt in range(1, CONSUMER_WRITE_ATTEMPTS + 1):
            try:
                write_json_file(self.consumer_path, self._entries)
                self.consumer_stale = False
                logger.info("Consumer copy %s synced", self.consumer_path)
                return
            except OSError as e:
                last_error = e
                logger.warning("Syncing %s failed, attempt %d/%d: %s", self.consumer_path, attempt, CONSUMER_WRITE_ATTEMPTS, e)

        raise LedgerIOError(f"Consumer copy {self.consumer_path} could not be written: {last_error}", self.consumer_path) from last_error

    def as_dict(self) -> dict[str, HexAddress]:
        """Non-placeholder entries, checksummed."""
        return {name: Web3.to_checksum_address(value) for name, value in self._entries.items() if not _is_placeholder(value)}
