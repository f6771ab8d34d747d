"""Process, port, logging and file locking helpers shared by the scripts."""

import logging
import os
import random
import socket
import time
from contextlib import contextmanager
from pathlib import Path

import psutil
from filelock import FileLock

logger = logging.getLogger(__name__)

#: Libraries that log every request at INFO
NOISY_LOGGERS = (
    "web3.providers.HTTPProvider",
    "web3.RequestManager",
    "web3.manager.RequestManager",
    "urllib3.connectionpool",
)


def is_localhost_port_listening(port: int, host="localhost") -> bool:
    """Does something accept TCP connections on the port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) == 0


def find_free_port(min_port: int = 20_000, max_port: int = 40_000, max_attempt: int = 20) -> int:
    """Pick a random unused local port for Anvil.

    Another process may grab the port before we bind it, retry the launch if so.

    :raise RuntimeError:
        If every attempt hit a busy port
    """
    for _ in range(max_attempt):
        port = random.randrange(min_port, max_port)
        if not is_localhost_port_listening(port, "127.0.0.1"):
            logger.info("Using local port %d", port)
            return port

    raise RuntimeError(f"Could not find a free port in range {min_port} - {max_port} after {max_attempt} attempts")


def _drain(process: psutil.Popen, stream_name: str, log_level: int | None) -> bytes:
    stream = getattr(process, stream_name)
    if stream is None or stream.closed:
        return b""

    data = stream.read()
    stream.close()

    if log_level is not None:
        for line in data.decode("utf-8", errors="replace").splitlines():
            logger.log(log_level, "%s: %s", stream_name, line.rstrip())

    return data


def shutdown_hard(
    process: psutil.Popen,
    log_level: int | None = None,
    block_timeout=30,
    check_port: int | None = None,
) -> tuple[bytes, bytes]:
    """Kill a node process we started and collect its output.

    :param log_level:
        Write the process output to our log at this level

    :param check_port:
        Wait until nothing listens on this port any more

    :return:
        stdout, stderr
    """
    if process.poll() is None:
        process.kill()

    stdout = _drain(process, "stdout", log_level)
    stderr = _drain(process, "stderr", log_level)
    process.wait()

    if check_port is None:
        return stdout, stderr

    deadline = time.time() + block_timeout
    while is_localhost_port_listening(check_port):
        if time.time() > deadline:
            raise AssertionError(f"Port {check_port} still busy {block_timeout} seconds after kill")
        time.sleep(0.1)

    return stdout, stderr


class ThreadColourFormatter(logging.Formatter):
    """Paint each thread name in its own colour.

    Fan-out workers are named ``<batch>-<key>``, e.g. ``set-cap-USDC``,
    so colouring them keeps interleaved output readable.
    """

    PALETTE = ("\033[1;36m", "\033[1;33m", "\033[1;35m", "\033[1;32m", "\033[1;34m", "\033[1;91m")
    RESET = "\033[0m"

    def __init__(self, inner: logging.Formatter | None = None, fmt=None, datefmt=None):
        super().__init__(fmt, datefmt)
        self.inner = inner
        self.colours: dict[str, str] = {}

    def colour_of(self, thread_name: str) -> str:
        return self.colours.setdefault(thread_name, self.PALETTE[len(self.colours) % len(self.PALETTE)])

    def format(self, record: logging.LogRecord) -> str:
        name = record.threadName
        painted = f"{self.colour_of(name)}{name}{self.RESET}"

        if self.inner is not None:
            return self.inner.format(record).replace(name, painted, 1)

        record.threadName = painted
        try:
            return super().format(record)
        finally:
            record.threadName = name


def setup_console_logging(default_log_level="info", coloured_threads=False) -> logging.Logger:
    """Console logging for scripts.

    ``LOG_LEVEL`` overrides ``default_log_level``. Output is coloured when
    ``coloredlogs`` is installed.

    :param coloured_threads:
        Colour thread names, for scripts that fan out

    :return:
        Root logger
    """
    level_name = os.environ.get("LOG_LEVEL", default_log_level).upper()
    level = getattr(logging, level_name, None)
    assert isinstance(level, int), f"Bad LOG_LEVEL: {level_name}"

    fmt = "%(asctime)s %(name)-30s [%(threadName)s] %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    try:
        import coloredlogs

        coloredlogs.install(level=level, fmt=fmt, datefmt=datefmt)
    except ImportError:
        logging.basicConfig(level=level, format=fmt, datefmt=datefmt)

    root = logging.getLogger()

    if coloured_threads:
        for handler in root.handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(ThreadColourFormatter(inner=handler.formatter))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


@contextmanager
def wait_other_writers(path: Path | str, timeout: int = 120):
    """Hold ``<path>.lock`` while writing ``path``.

    Two scripts sharing a data folder take turns writing the ledger.
    The parent folder is created if missing.

    :param path:
        Absolute path of the file about to be written

    :raise filelock.Timeout:
        If another writer holds the lock longer than ``timeout`` seconds
    """
    path = Path(path)
    assert path.is_absolute(), f"Did not get an absolute path: {path}"

    path.parent.mkdir(parents=True, exist_ok=True)

    lock = FileLock(path.parent / f"{path.name}.lock", timeout=timeout)
    if lock.is_locked:
        logger.info("%s is being written by another process, waiting up to %d seconds", path, timeout)

    with lock:
        yield
