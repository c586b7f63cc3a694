"""
Client storage capability.

The gate only ever talks to client-held identifiers through this small
interface, so its logic runs the same against browser cookies and against
a plain dict in tests.
"""

from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional, Iterable
import hashlib
import logging

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Headers that stay stable for one browser on one device
FINGERPRINT_HEADERS = (
    "user-agent",
    "accept-language",
    "sec-ch-ua",
    "sec-ch-ua-platform",
    "sec-ch-ua-mobile",
)


def compute_device_fingerprint(headers: Mapping[str, str]) -> str:
    """Stable SHA-256 hash of device/browser characteristics"""
    normalized = {k.lower(): v for k, v in headers.items()}
    material = "|".join(f"{name}={normalized.get(name, '').strip()}" for name in FINGERPRINT_HEADERS)
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class ClientStorage(ABC):
    """get/set/remove over client-held string values, plus fingerprinting"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass

    def compute_fingerprint(self) -> Optional[str]:
        """Fingerprint of the current device, None if it cannot be computed"""
        return None

    def remove_all(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.remove(key)


class InMemoryClientStorage(ClientStorage):
    """Dict-backed storage for tests and non-HTTP callers"""

    def __init__(self, values: Optional[Dict[str, str]] = None, fingerprint: Optional[str] = None):
        self.values: Dict[str, str] = dict(values or {})
        self.fingerprint = fingerprint

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)

    def compute_fingerprint(self) -> Optional[str]:
        return self.fingerprint


class CookieClientStorage(ClientStorage):
    """
    Cookie-backed storage for one HTTP request.

    Reads come from the request cookies, overlaid with writes staged during
    this request. ``apply`` copies the staged writes and deletions onto the
    outgoing response.
    """

    def __init__(self, request: Request, secure: bool = True, max_age: Optional[int] = None):
        self.request = request
        self.secure = secure
        self.max_age = max_age
        self._pending: Dict[str, Optional[str]] = {}

    def get(self, key: str) -> Optional[str]:
        if key in self._pending:
            return self._pending[key]
        return self.request.cookies.get(key) or None

    def set(self, key: str, value: str) -> None:
        self._pending[key] = value

    def remove(self, key: str) -> None:
        self._pending[key] = None

    def compute_fingerprint(self) -> Optional[str]:
        return compute_device_fingerprint(self.request.headers)

    def apply(self, response: Response) -> Response:
        for key, value in self._pending.items():
            if value is None:
                response.delete_cookie(key, path="/", secure=self.secure, httponly=True, samesite="strict")
            else:
                response.set_cookie(
                    key,
                    value,
                    max_age=self.max_age,
                    path="/",
                    secure=self.secure,
                    httponly=True,
                    samesite="strict"
                )
        self._pending.clear()
        return response
