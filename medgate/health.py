import socket
from typing import Dict
from urllib.parse import urlparse

from .config import get_settings


def tcp_check(host: str, port: int, timeout: float = 0.5) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def readiness() -> Dict[str, bool]:
    settings = get_settings()
    checks = {}

    # Optional deps, only checked when configured
    if settings.redis_host:
        checks["redis"] = tcp_check(settings.redis_host, settings.redis_port)

    if settings.openai_api_key:
        url = urlparse(settings.openai_base_url)
        if url.hostname:
            port = url.port or (443 if url.scheme == "https" else 80)
            checks["upstream"] = tcp_check(url.hostname, port)

    return checks


def liveness() -> Dict[str, str]:
    """
    Only check that the process is alive :>
    """
    return {"status": "alive"}
