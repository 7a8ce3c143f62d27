"""Filesystem and socket helpers shared by the service handles."""

import logging
import os
import shutil
import socket
from typing import Any, Mapping, Optional

from embedded_kafka.errors import KafkaNotFoundError

logger = logging.getLogger(__name__)


def port_open(host: str, port: int, timeout: float = 1.0) -> bool:
    """Return True if something accepts TCP connections on host:port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


def four_letter_word(host: str, port: int, word: str, timeout: float = 1.0) -> Optional[str]:
    """
    Send a ZooKeeper four letter command (ruok, srvr, ...) and return the reply.

    Returns None when nothing is listening or the connection drops.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout) as sock:
            sock.sendall(word.encode('ascii'))
            chunks = []
            while True:
                data = sock.recv(4096)
                if not data:
                    break
                chunks.append(data)
    except OSError:
        return None
    return b"".join(chunks).decode('utf-8', errors='replace')


def write_properties(path: str, properties: Mapping[str, Any]) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        for key, value in properties.items():
            f.write(f"{key}={value}\n")
    return path


def delete_recursively(path: str) -> None:
    if not os.path.lexists(path):
        return
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)
    logger.debug(f"Deleted {path}")


def find_script(kafka_home: Optional[str], name: str) -> str:
    """
    Locate a Kafka start script.

    With kafka_home set the script must exist under <kafka_home>/bin.
    Otherwise PATH is searched for both "name.sh" and "name" (packaged
    installs such as Homebrew drop the suffix).
    """
    if kafka_home:
        path = os.path.join(kafka_home, "bin", f"{name}.sh")
        if os.path.isfile(path):
            return path
        raise KafkaNotFoundError(f"{path} not found, check KAFKA_HOME")

    for candidate in (f"{name}.sh", name):
        found = shutil.which(candidate)
        if found:
            return found
    raise KafkaNotFoundError(f"{name} not found on PATH, set KAFKA_HOME to a Kafka distribution")
