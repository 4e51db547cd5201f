# proxyai/api/auth.py
"""
Credential handling for the gateway.

The client never holds the real service key. It holds a *partial key*, and
for every authorization it exchanges that key together with its session
identifier and a fresh device attestation for a short-lived authorization
minted by the gateway.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import jwt
import requests

from ..constants import HEADER_AUTHORIZATION
from ..exceptions import (
    APIRateLimitError, AttestationUnavailable, AuthorizationDenied,
    TransportError, TransportTimeoutError
)
from ..utils.logging import redact
from .models import APIErrorDetail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authorization:
    """
    A resolved, short-lived request authorization.

    Instances are immutable; a refresh replaces the whole value.

    Attributes:
        value: Token minted by the gateway
        token_type: Scheme used in the Authorization header
        expires_at: Epoch seconds after which the token is invalid (None = unknown)
        session_id: Session the token was minted for
    """

    value: str = field(repr=False)
    token_type: str = "Bearer"
    expires_at: Optional[float] = None
    session_id: Optional[str] = None

    def is_valid(self, margin: float = 0.0, now: Optional[float] = None) -> bool:
        """True while the token is outside ``margin`` seconds of its expiry."""
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now < self.expires_at - margin

    @property
    def header_value(self) -> str:
        return f"{self.token_type} {self.value}"

    def as_headers(self) -> Dict[str, str]:
        return {HEADER_AUTHORIZATION: self.header_value}


# --- Device attestation ---

class AttestationProvider(ABC):
    """
    Source of device-integrity proofs.

    ``get_token`` is called once per credential exchange and must return a
    fresh token, or raise ``AttestationUnavailable`` when the platform cannot
    attest.
    """

    @abstractmethod
    def get_token(self) -> str:
        """Produce a fresh attestation token."""


class UnavailableAttestationProvider(AttestationProvider):
    """Provider for hosts without an attestation capability."""

    def get_token(self) -> str:
        raise AttestationUnavailable()


class StaticAttestationProvider(AttestationProvider):
    """Provider returning a fixed token, for tests and trusted environments."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("Attestation token must not be empty")
        self._token = token

    def get_token(self) -> str:
        return self._token


class CallableAttestationProvider(AttestationProvider):
    """
    Provider delegating to a platform callback.

    Example:
        >>> provider = CallableAttestationProvider(platform.generate_device_token)
    """

    def __init__(self, factory: Callable[[], Optional[str]]):
        self._factory = factory

    def get_token(self) -> str:
        token = self._factory()
        if not token:
            raise AttestationUnavailable("Attestation callback returned no token")
        return token


class CredentialProvider:
    """
    Resolves request authorizations from a partial key.

    Each resolution POSTs ``{partial_key, session_id, device_check}`` to the
    gateway's exchange endpoint. By default a new authorization is resolved
    for every outgoing request; with ``reuse_authorization`` the current one is
    kept in a shared slot until it comes within ``refresh_margin`` seconds of
    expiring.

    The slot is the only shared mutable state of a client. Readers take the
    current reference without locking; writers hold ``_lock`` and replace the
    immutable ``Authorization`` as a whole.

    Args:
        partial_key: Partial key issued by the gateway dashboard
        session_id: Identifier of the owning client instance
        exchange_url: Absolute URL of the credential exchange
        attestation_provider: Source of device attestations
        device_check_bypass: Value sent when the provider cannot attest
        session: HTTP session used for the exchange
        timeout: Exchange timeout in seconds
        reuse_authorization: Keep authorizations until they near expiry
        refresh_margin: Seconds before expiry at which a reused authorization is refreshed

    Example:
        >>> provider = CredentialProvider(
        ...     partial_key="v2|abc|123",
        ...     session_id=str(uuid.uuid4()),
        ...     exchange_url="https://api.aiproxy.pro/v1/auth/exchange",
        ...     device_check_bypass=os.getenv("AIPROXY_DEVICE_CHECK_BYPASS"),
        ... )
        >>> authorization = provider.resolve_authorization()
    """

    def __init__(
        self,
        partial_key: str,
        session_id: str,
        exchange_url: str,
        attestation_provider: Optional[AttestationProvider] = None,
        device_check_bypass: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        reuse_authorization: bool = False,
        refresh_margin: float = 30.0
    ):
        if not partial_key:
            raise ValueError("A partial key is required")
        if not session_id:
            raise ValueError("A session identifier is required")

        self._partial_key = partial_key
        self._session_id = session_id
        self.exchange_url = exchange_url
        self.attestation_provider = attestation_provider or UnavailableAttestationProvider()
        self.device_check_bypass = device_check_bypass
        self.session = session or requests.Session()
        self.timeout = timeout
        self.reuse_authorization = reuse_authorization
        self.refresh_margin = refresh_margin

        self._authorization: Optional[Authorization] = None
        self._lock = threading.Lock()
        self._exchange_count = 0

        logger.debug(
            f"Initialized credential provider for session {session_id} "
            f"(partial key {redact(partial_key)})"
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def current(self) -> Optional[Authorization]:
        """The authorization currently held in the slot, if any."""
        return self._authorization

    @property
    def exchange_count(self) -> int:
        return self._exchange_count

    def resolve_authorization(self, force_refresh: bool = False) -> Authorization:
        """
        Return an authorization for one outgoing request.

        Args:
            force_refresh: Ignore any reusable authorization and exchange again

        Returns:
            Authorization: A non-empty authorization

        Raises:
            AttestationUnavailable: If no attestation or bypass is available
            AuthorizationDenied: If the gateway rejects the exchange
            APIRateLimitError: If the gateway rate-limits the exchange
            TransportError: If the gateway cannot be reached
        """
        if not self.reuse_authorization:
            # One exchange per request; concurrent requests exchange independently
            authorization = self._exchange()
            with self._lock:
                self._authorization = authorization
            return authorization

        if not force_refresh:
            current = self._authorization
            if current is not None and current.is_valid(self.refresh_margin):
                return current

        with self._lock:
            # Another thread may have refreshed while this one waited
            current = self._authorization
            if not force_refresh and current is not None and current.is_valid(self.refresh_margin):
                return current

            authorization = self._exchange()
            self._authorization = authorization
            return authorization

    def invalidate(self, authorization: Optional[Authorization] = None):
        """
        Drop the held authorization.

        When ``authorization`` is given, the slot is cleared only if it still
        holds that value, so a newer authorization installed by a concurrent
        refresh survives.
        """
        with self._lock:
            if authorization is None or self._authorization is authorization:
                self._authorization = None
                logger.debug("Authorization invalidated")

    def clear(self):
        """Destroy the held authorization; called when the client closes."""
        with self._lock:
            self._authorization = None

    def _attestation(self) -> str:
        """Fresh attestation token, or the configured bypass."""
        try:
            return self.attestation_provider.get_token()
        except AttestationUnavailable:
            if self.device_check_bypass:
                logger.debug("Device attestation unavailable; using configured bypass")
                return self.device_check_bypass
            logger.error("Device attestation unavailable and no bypass configured")
            raise

    def _exchange(self) -> Authorization:
        payload = {
            "partial_key": self._partial_key,
            "session_id": self._session_id,
            "device_check": self._attestation(),
        }

        try:
            response = self.session.post(
                self.exchange_url,
                json=payload,
                headers={"Accept": "application/json"},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Credential exchange timed out: {e}")
            raise TransportTimeoutError(
                f"Credential exchange timed out: {e}", url=self.exchange_url, original_error=e
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Credential exchange request failed: {e}")
            raise TransportError(
                f"Credential exchange failed: {e}", url=self.exchange_url, original_error=e
            ) from e

        self._exchange_count += 1

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code == 429:
            retry_after = parse_retry_after(response)
            logger.warning(f"Credential exchange rate limited (retry after {retry_after})")
            raise APIRateLimitError(
                "Credential exchange rate limit exceeded",
                error=APIErrorDetail.from_payload(body),
                body=response.text,
                retry_after=retry_after
            )

        if not 200 <= response.status_code < 300:
            error = APIErrorDetail.from_payload(body)
            reason = error.code or error.message if error else None
            logger.warning(f"Credential exchange rejected: {response.status_code} {reason or ''}".rstrip())
            raise AuthorizationDenied(
                f"Credential exchange rejected with status {response.status_code}"
                + (f": {error.message}" if error else ""),
                status_code=response.status_code,
                reason=reason
            )

        authorization = self._parse_authorization(body)
        logger.debug(
            f"Resolved authorization for session {self._session_id}"
            + (f", expires in {authorization.expires_at - time.time():.0f}s"
               if authorization.expires_at else "")
        )
        return authorization

    def _parse_authorization(self, body: Any) -> Authorization:
        if not isinstance(body, dict):
            raise AuthorizationDenied("Credential exchange returned no authorization")

        token = body.get("authorization") or body.get("token") or body.get("access_token")
        if not token or not isinstance(token, str):
            raise AuthorizationDenied("Credential exchange returned no authorization")

        token_type = body.get("token_type") or "Bearer"
        # "Bearer abc" is accepted as well as a bare token
        scheme, _, rest = token.partition(" ")
        if rest and scheme.lower() == token_type.lower():
            token = rest

        expires_at = None
        expires_in = body.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = time.time() + float(expires_in)
        else:
            expires_at = _jwt_expiry(token)

        return Authorization(
            value=token,
            token_type=token_type,
            expires_at=expires_at,
            session_id=self._session_id
        )

    def get_token_info(self) -> Dict[str, Any]:
        """Information about the held authorization, without the secret itself."""
        current = self._authorization
        info = {
            "session_id": self._session_id,
            "has_authorization": current is not None,
            "reuse_authorization": self.reuse_authorization,
            "exchanges": self._exchange_count,
        }
        if current is not None and current.expires_at:
            info["expires_at"] = current.expires_at
            info["expires_in"] = max(0.0, current.expires_at - time.time())
        return info

    def __repr__(self) -> str:
        return (
            f"CredentialProvider(session_id={self._session_id}, "
            f"partial_key={redact(self._partial_key)}, "
            f"reuse_authorization={self.reuse_authorization})"
        )


def _jwt_expiry(token: str) -> Optional[float]:
    """The ``exp`` claim of a JWT, read without verifying its signature."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    return float(exp) if isinstance(exp, (int, float)) else None


def parse_retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
