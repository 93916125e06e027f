"""
Network helpers for the launcher - port selection and LAN addresses
"""
import logging
import socket
from typing import List

logger = logging.getLogger(__name__)


class NoAvailablePortError(Exception):
    pass


def is_port_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(host: str, base_port: int, max_port: int) -> int:
    """
    First free port in [base_port, max_port]

    Raises:
        NoAvailablePortError: every candidate port is taken
    """
    for port in range(base_port, max_port + 1):
        if is_port_free(host, port):
            return port
        logger.warning(f"Port {port} is already in use, trying port {port + 1}...")

    raise NoAvailablePortError(
        f"All ports {base_port}-{max_port} are in use. Close the applications using them."
    )


def local_ipv4_addresses() -> List[str]:
    """Non-loopback IPv4 addresses students can reach over the hotspot"""
    addresses = []

    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
        addresses.extend(info[4][0] for info in infos)
    except socket.gaierror:
        pass

    # Address of the default route interface; no packet is sent for UDP connect
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            addresses.append(s.getsockname()[0])
    except OSError:
        pass

    return [a for a in dict.fromkeys(addresses) if not a.startswith("127.")]
