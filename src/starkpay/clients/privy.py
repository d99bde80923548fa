"""
Identity Provider (Privy) Client

Async HTTP client for the Privy REST API, built on httpx. Covers everything the
wallet core needs from the identity provider:

    - verify_credential: ES256 access-token verification (PyJWT)
    - get_wallet / get_starknet_wallet / create_wallet: wallet records
    - get_user / list_starknet_wallets: a user's linked Starknet wallets
    - raw_sign: the signing oracle used by RemoteSigner
    - generate_user_signer / get_authorization_key: short-lived per-user
      authorization keys, cached in an AuthorizationKeyCache

Authentication:
    App-level endpoints use HTTP Basic auth (app id / app secret) plus the
    ``privy-app-id`` header. Signing requests additionally carry the caller's
    bearer credential and, when an authorization key is available, a
    ``privy-authorization-signature`` header: a P-256 ECDSA signature over the
    canonical JSON of the request.

Error Mapping:
    httpx.TransportError -> NetworkError
    HTTP status >= 400   -> ProviderError (provider message verbatim)
"""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..config import DEFAULT_PRIVY_API_URL, Settings
from ..engine.exceptions import (
    ConfigurationError,
    InvalidArgument,
    MalformedSignature,
    NetworkError,
    ProviderError,
)
from ..schemas.bases import AuthorizationKey
from ..schemas.https import CredentialClaims, WalletRecord
from ..utils import canonical_json
from .caches import AuthorizationKeyCache

logger = logging.getLogger(__name__)

PRIVY_ISSUER = "privy.io"
CREDENTIAL_ALGORITHMS = ["ES256"]
AUTHORIZATION_KEY_PREFIX = "wallet-auth:"

#: ``expires_at`` values above this are epoch milliseconds, not seconds.
_MILLISECONDS_THRESHOLD = 1e12


def _load_authorization_key(authorization_key: str) -> ec.EllipticCurvePrivateKey:
    """Parse a ``wallet-auth:<base64 PKCS#8 DER>`` (or PEM) P-256 private key."""
    text = authorization_key.strip()
    try:
        if text.startswith("-----BEGIN"):
            key = serialization.load_pem_private_key(text.encode(), password=None)
        else:
            if text.startswith(AUTHORIZATION_KEY_PREFIX):
                text = text[len(AUTHORIZATION_KEY_PREFIX):]
            key = serialization.load_der_private_key(base64.b64decode(text), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError("Invalid wallet authorization key") from e
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ConfigurationError("Wallet authorization key must be a P-256 EC key")
    return key


def build_authorization_signature(
    *,
    url: str,
    body: Dict[str, Any],
    app_id: str,
    authorization_key: str,
    method: str = "POST",
) -> str:
    """
    Compute the ``privy-authorization-signature`` header value.

    The signed payload is the canonical JSON (sorted keys, no whitespace) of::

        {"version": 1, "method": ..., "url": ..., "body": ...,
         "headers": {"privy-app-id": ...}}

    Returns:
        str: base64-encoded DER ECDSA(P-256, SHA-256) signature

    Raises:
        ConfigurationError: If the authorization key cannot be parsed.
    """
    payload = {
        "version": 1,
        "method": method,
        "url": url,
        "body": body,
        "headers": {"privy-app-id": app_id},
    }
    key = _load_authorization_key(authorization_key)
    signature = key.sign(canonical_json(payload).encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    return base64.b64encode(signature).decode("ascii")


class PrivyClient:
    """
    Async client for the Privy REST API.

    Args:
        app_id: Privy application id
        app_secret: Privy application secret
        api_url: API base URL
        verification_key: PEM public key used to verify access tokens
        authorization_private_key: Static wallet authorization key; when set it
            is used for every signing request instead of per-user keys
        authorization_keys: Cache for per-user authorization keys
        http_client: Pre-configured httpx.AsyncClient (tests inject one built
            on httpx.MockTransport)
        timeout: Request timeout in seconds

    Usage:
        ```python
        async with PrivyClient.from_settings(settings) as privy:
            wallet = await privy.get_starknet_wallet(wallet_id)
        ```
    """

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        *,
        api_url: str = DEFAULT_PRIVY_API_URL,
        verification_key: Optional[str] = None,
        authorization_private_key: Optional[str] = None,
        authorization_keys: Optional[AuthorizationKeyCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        if not app_id or not app_secret:
            raise ConfigurationError("PRIVY_APP_ID and PRIVY_APP_SECRET must be set")
        self.app_id = app_id
        self._app_secret = app_secret
        self.api_url = api_url.rstrip("/")
        self._verification_key = verification_key
        self._static_authorization_key = authorization_private_key
        self.authorization_keys = authorization_keys or AuthorizationKeyCache()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "PrivyClient":
        return cls(
            settings.privy_app_id,
            settings.privy_app_secret,
            api_url=settings.privy_api_url,
            verification_key=settings.privy_verification_key,
            authorization_private_key=settings.privy_wallet_auth_private_key,
            timeout=settings.request_timeout,
            **kwargs,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "PrivyClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    def _url(self, path: str) -> str:
        return f"{self.api_url}{path}"

    def _app_headers(self) -> Dict[str, str]:
        token = base64.b64encode(f"{self.app_id}:{self._app_secret}".encode()).decode("ascii")
        return {
            "Authorization": f"Basic {token}",
            "privy-app-id": self.app_id,
            "Content-Type": "application/json",
        }

    async def _send(
        self,
        method: str,
        path: str,
        *,
        headers: Dict[str, str],
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(method, self._url(path), headers=headers, json=json)
        except httpx.TransportError as e:
            raise NetworkError(f"Privy request failed: {method} {path}: {e}") from e

        if response.status_code >= 400:
            try:
                body: Any = response.json()
            except ValueError:
                body = response.text
            message = None
            if isinstance(body, dict):
                message = body.get("error") or body.get("message")
            raise ProviderError(
                str(message or f"HTTP {response.status_code}: {response.text}"),
                provider_status=response.status_code,
                payload=body,
            )
        return response

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response = await self._send(method, path, headers=self._app_headers(), json=json)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"Invalid JSON response from Privy: {response.text}",
                provider_status=response.status_code,
            ) from e

    # =========================================================================
    # Credentials
    # =========================================================================

    def verify_credential(self, token: str) -> CredentialClaims:
        """
        Verify a Privy access token (ES256, audience = app id, issuer privy.io).

        Raises:
            ConfigurationError: No verification key configured.
            InvalidArgument: Token missing, expired or not signed by Privy.
        """
        if not self._verification_key:
            raise ConfigurationError("PRIVY_VERIFICATION_KEY is not configured")
        if not token:
            raise InvalidArgument("Missing access token")
        try:
            claims = jwt.decode(
                token,
                self._verification_key,
                algorithms=CREDENTIAL_ALGORITHMS,
                audience=self.app_id,
                issuer=PRIVY_ISSUER,
            )
        except jwt.PyJWTError as e:
            raise InvalidArgument(f"Invalid access token: {e}") from e
        if not claims.get("sub"):
            raise InvalidArgument("Access token has no subject")
        return CredentialClaims(
            user_id=claims["sub"],
            session_id=claims.get("sid"),
            issuer=claims.get("iss"),
            expires_at=claims.get("exp"),
        )

    # =========================================================================
    # Wallets and users
    # =========================================================================

    async def get_wallet(self, wallet_id: str) -> WalletRecord:
        if not wallet_id:
            raise InvalidArgument("wallet_id is required")
        payload = await self._request_json("GET", f"/v1/wallets/{wallet_id}")
        return WalletRecord.from_provider(payload)

    async def get_starknet_wallet(self, wallet_id: str) -> WalletRecord:
        """
        Fetch a wallet and require it to be a usable Starknet wallet.

        Raises:
            InvalidArgument: Wrong chain, or no public key / address reported.
        """
        wallet = await self.get_wallet(wallet_id)
        if not wallet.is_starknet:
            raise InvalidArgument("Provided wallet is not a Starknet wallet")
        if not wallet.public_key:
            raise InvalidArgument("Wallet missing Starknet public key")
        if not wallet.address:
            raise InvalidArgument("Wallet missing address")
        return wallet

    async def create_wallet(self, user_id: str) -> WalletRecord:
        """Create a provider-managed Starknet wallet owned by ``user_id``."""
        if not user_id:
            raise InvalidArgument("user_id is required")
        payload = await self._request_json(
            "POST",
            "/v1/wallets",
            json={"chain_type": "starknet", "owner": {"user_id": user_id}},
        )
        wallet = WalletRecord.from_provider(payload)
        if not wallet.address:
            raise ProviderError("Wallet missing address", payload=payload)
        logger.info(f"Created Starknet wallet {wallet.id} for user {user_id}")
        return wallet

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        if not user_id:
            raise InvalidArgument("user_id is required")
        return await self._request_json("GET", f"/v1/users/{user_id}")

    async def list_starknet_wallets(self, user_id: str) -> List[WalletRecord]:
        """
        Starknet wallets linked to a user.

        Each linked wallet account is re-fetched for its chain type; wallets on
        other chains, wallets without an address and wallets that fail to load
        are skipped.
        """
        user = await self.get_user(user_id)
        accounts = user.get("linked_accounts") or user.get("linkedAccounts") or []
        wallets: List[WalletRecord] = []
        for account in accounts:
            if not isinstance(account, dict) or account.get("type") != "wallet" or not account.get("id"):
                continue
            try:
                wallet = await self.get_wallet(account["id"])
            except (NetworkError, ProviderError) as e:
                logger.warning(f"Failed to fetch wallet {account['id']}: {e}")
                continue
            if not wallet.is_starknet:
                continue
            if not wallet.address:
                logger.warning(f"Wallet {wallet.id} missing address, skipping")
                continue
            wallets.append(wallet)
        return wallets

    # =========================================================================
    # Authorization keys
    # =========================================================================

    async def generate_user_signer(self, credential: str) -> AuthorizationKey:
        """Exchange a user's access token for a short-lived authorization key."""
        payload = await self._request_json(
            "POST",
            "/v1/user_signers/authenticate",
            json={"user_jwt": credential},
        )
        if not isinstance(payload, dict) or not payload.get("authorization_key"):
            raise ProviderError("No authorization key returned by Privy", payload=payload)
        expires_at = float(payload.get("expires_at") or 0)
        if expires_at > _MILLISECONDS_THRESHOLD:
            expires_at = expires_at / 1000
        return AuthorizationKey(
            authorization_key=payload["authorization_key"],
            expires_at=expires_at,
        )

    async def get_authorization_key(self, credential: str, user_id: str) -> str:
        """
        Authorization key for ``user_id``, served from cache while fresh.

        A cached key is reused while ``now < expires_at - 5s``; otherwise a new
        one is generated and stored.
        """
        cached = self.authorization_keys.get(user_id)
        if cached is not None:
            return cached.authorization_key
        key = await self.generate_user_signer(credential)
        self.authorization_keys.put(user_id, key)
        logger.debug(f"Refreshed authorization key for user {user_id}")
        return key.authorization_key

    async def _resolve_authorization_key(self, credential: str, user_id: Optional[str]) -> Optional[str]:
        if self._static_authorization_key:
            return self._static_authorization_key
        if user_id:
            return await self.get_authorization_key(credential, user_id)
        return None

    # =========================================================================
    # Signing oracle
    # =========================================================================

    async def raw_sign(
        self,
        wallet_id: str,
        message_hash: str,
        credential: str,
        *,
        user_id: Optional[str] = None,
    ) -> Any:
        """
        Ask the provider to sign ``message_hash`` with the wallet's key.

        Args:
            wallet_id: Provider wallet id
            message_hash: 0x-prefixed hash to sign
            credential: Caller's access token (bearer)
            user_id: Owner user id, for per-user authorization keys

        Returns:
            Decoded JSON body; the signature is located by ``extract_signature``.

        Raises:
            NetworkError: Transport failure.
            ProviderError: HTTP status >= 400.
            MalformedSignature: Body is not JSON.
        """
        if not wallet_id:
            raise InvalidArgument("wallet_id is required")
        path = f"/v1/wallets/{wallet_id}/raw_sign"
        body = {"params": {"hash": message_hash}}
        headers = {
            "Content-Type": "application/json",
            "privy-app-id": self.app_id,
            "privy-app-secret": self._app_secret,
            "Authorization": f"Bearer {credential}",
        }
        authorization_key = await self._resolve_authorization_key(credential, user_id)
        if authorization_key:
            headers["privy-authorization-signature"] = build_authorization_signature(
                url=self._url(path),
                body=body,
                app_id=self.app_id,
                authorization_key=authorization_key,
            )

        response = await self._send("POST", path, headers=headers, json=body)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedSignature(f"Invalid JSON response from Privy: {response.text}") from e
