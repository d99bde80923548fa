"""
Paymaster Clients

Two ways of obtaining fee abstraction from a paymaster service:

    - PaymasterRpc: SNIP-29 JSON-RPC (``paymaster_*`` methods). The paymaster
      builds the transaction as typed data, the account signs it and the
      paymaster submits it.
    - LegacySponsorClient: the older HTTP ``/sponsor`` endpoint. The paymaster
      approves a list of calls and returns data that the sender attaches to a
      transaction it submits itself.

Both raise NetworkError on transport failures and ProviderError when the
service rejects a request.
"""

import itertools
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import DEFAULT_PAYMASTER_URL, Settings
from ..engine.exceptions import ConfigurationError, NetworkError, ProviderError
from ..schemas.bases import Call, StarknetSignature, TransactionIntent
from ..schemas.https import PaymasterBuildResult, PaymasterExecuteResult, PaymasterToken

logger = logging.getLogger(__name__)

PAYMASTER_API_KEY_HEADER = "x-paymaster-api-key"
PAYMASTER_EXECUTION_VERSION = "0x1"

SPONSOR_API_KEY_HEADER = "X-API-Key"
SPONSOR_TIMEOUT = 20.0


class PaymasterRpc:
    """
    SNIP-29 paymaster JSON-RPC client.

    Args:
        url: Paymaster endpoint
        api_key: Sent as ``x-paymaster-api-key`` when set
        http_client: Pre-configured httpx.AsyncClient (tests inject one built
            on httpx.MockTransport)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        url: str = DEFAULT_PAYMASTER_URL,
        *,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.url = url.rstrip("/")
        self._api_key = api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "PaymasterRpc":
        return cls(
            settings.paymaster_url,
            api_key=settings.paymaster_api_key,
            timeout=settings.request_timeout,
            **kwargs,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers[PAYMASTER_API_KEY_HEADER] = self._api_key
        return headers

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or {}}
        try:
            response = await self._http.post(self.url, json=request, headers=self._headers())
        except httpx.TransportError as e:
            raise NetworkError(f"Paymaster request failed: {method}: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Paymaster HTTP {response.status_code}: {response.text}",
                provider_status=response.status_code,
            ) from e

        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(
                f"Paymaster {method} failed: {message}",
                provider_status=response.status_code,
                payload=error,
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"Paymaster HTTP {response.status_code}",
                provider_status=response.status_code,
                payload=body,
            )
        if not isinstance(body, dict) or "result" not in body:
            raise ProviderError(f"Paymaster {method} returned no result", payload=body)
        return body["result"]

    # =========================================================================
    # paymaster_* methods
    # =========================================================================

    async def is_available(self) -> bool:
        return bool(await self._call("paymaster_isAvailable"))

    async def get_supported_tokens(self) -> List[PaymasterToken]:
        result = await self._call("paymaster_getSupportedTokens")
        return [PaymasterToken(**token) for token in result or []]

    @staticmethod
    def _transaction(user_address: str, intent: TransactionIntent, invoke: Dict[str, Any]) -> Dict[str, Any]:
        transaction: Dict[str, Any] = {"type": intent.transaction_type}
        if intent.calls:
            transaction["invoke"] = {"user_address": user_address, **invoke}
        if intent.deployment is not None:
            transaction["deployment"] = intent.deployment.to_paymaster_deployment()
        return transaction

    @staticmethod
    def _parameters(intent: TransactionIntent) -> Dict[str, Any]:
        return {"version": PAYMASTER_EXECUTION_VERSION, "fee_mode": intent.fee_mode.to_rpc()}

    async def build_transaction(self, user_address: str, intent: TransactionIntent) -> PaymasterBuildResult:
        """
        ``paymaster_buildTransaction``: quote fees and obtain the typed data
        the account must sign.
        """
        params = {
            "transaction": self._transaction(
                user_address,
                intent,
                {"calls": [call.to_paymaster_call() for call in intent.calls]},
            ),
            "parameters": self._parameters(intent),
        }
        return PaymasterBuildResult(**await self._call("paymaster_buildTransaction", params))

    async def execute_transaction(
        self,
        user_address: str,
        intent: TransactionIntent,
        typed_data: Optional[Dict[str, Any]],
        signature: Optional[StarknetSignature],
    ) -> PaymasterExecuteResult:
        """``paymaster_executeTransaction``: hand the signed transaction over for submission."""
        invoke: Dict[str, Any] = {"typed_data": typed_data}
        if signature is not None:
            invoke["signature"] = signature.as_hex_list()
        params = {
            "transaction": self._transaction(user_address, intent, invoke),
            "parameters": self._parameters(intent),
        }
        return PaymasterExecuteResult(**await self._call("paymaster_executeTransaction", params))


class LegacySponsorClient:
    """
    Client for the HTTP ``POST {PAYMASTER_URL}/sponsor`` endpoint.

    Args:
        url: Paymaster base URL
        api_key: Sent as ``X-API-Key``; required
        chain_id: Chain name placed in the request body
        http_client: Pre-configured httpx.AsyncClient
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str],
        *,
        chain_id: str = "SN_SEPOLIA",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = SPONSOR_TIMEOUT,
    ):
        if not url or not api_key:
            raise ConfigurationError("Paymaster not configured. Set PAYMASTER_URL and PAYMASTER_API_KEY")
        self.url = url.rstrip("/")
        self._api_key = api_key
        self.chain_id = chain_id
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "LegacySponsorClient":
        return cls(settings.paymaster_url, settings.paymaster_api_key, chain_id=settings.chain, **kwargs)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def sponsor(self, sender: str, calls: Sequence[Call]) -> Dict[str, Any]:
        """
        Request sponsorship for ``calls`` sent from ``sender``.

        Returns:
            Dict[str, Any]: Sponsorship approval as returned by the service

        Raises:
            NetworkError: Transport failure or timeout.
            ProviderError: The service rejected the request.
        """
        body = {
            "chain_id": self.chain_id,
            "sender": sender,
            "calls": [call.to_sponsor_call() for call in calls],
        }
        headers = {"Content-Type": "application/json", SPONSOR_API_KEY_HEADER: self._api_key}
        try:
            response = await self._http.post(f"{self.url}/sponsor", json=body, headers=headers)
        except httpx.TransportError as e:
            raise NetworkError(f"Paymaster sponsorship request failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail: Any = response.json()
            except ValueError:
                detail = response.text
            message = detail.get("message") if isinstance(detail, dict) else None
            raise ProviderError(
                f"Paymaster failed: {message or f'HTTP {response.status_code}'}",
                provider_status=response.status_code,
                payload=detail,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("Invalid paymaster response", provider_status=response.status_code) from e
        if not isinstance(data, dict):
            raise ProviderError("Paymaster returned an invalid sponsorship payload", payload=data)
        logger.info(f"Paymaster approved sponsorship sender={sender} calls={len(calls)}")
        return data
