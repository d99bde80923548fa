"""
Paymaster Negotiator

Decides how a transaction's fee is paid before it is built:

    sponsored  -> a third party pays; no gas token, no fee estimate
    default    -> the account pays in a gas token through the paymaster

The mode comes from configuration. In self-paid mode the gas token is
resolved against the paymaster's supported-token list with a fixed fallback
order. Fee estimates returned by the paymaster are widened by a 1.5x safety
margin before being used as the transaction's maximum fee.
"""

import logging
from typing import Any, Optional, Sequence

from ...config import Settings
from ...engine.exceptions import (
    ConfigurationError,
    InvalidArgument,
    NetworkError,
    NoSupportedGasToken,
    ProviderError,
)
from ...schemas.bases import (
    Call,
    DeploymentPayload,
    FeeMode,
    FeeNegotiation,
    SelfPaidFeeMode,
    SponsoredFeeMode,
)
from ...utils import to_padded_hex

logger = logging.getLogger(__name__)


def apply_fee_margin(suggested_fee: int) -> int:
    """
    1.5x safety margin, rounded up: ``(s * 3 + 1) // 2``.

    >>> apply_fee_margin(0), apply_fee_margin(1), apply_fee_margin(2)
    (0, 2, 3)
    """
    if suggested_fee < 0:
        raise InvalidArgument("fee must be non-negative")
    return (suggested_fee * 3 + 1) // 2


class PaymasterNegotiator:
    """
    Negotiates the fee mode and fee ceiling with the paymaster.

    Args:
        paymaster_rpc: PaymasterRpc used for availability, token list and quotes
        settings: Runtime settings (mode, API key, configured gas token)
    """

    def __init__(self, paymaster_rpc: Any, settings: Settings):
        self.rpc = paymaster_rpc
        self.settings = settings

    async def negotiate(self) -> FeeNegotiation:
        """
        Determine the fee mode for the next transaction.

        Flow:
            1. Read the mode; sponsored mode requires an API key
            2. Probe paymaster availability (failure is logged, not raised)
            3. Self-paid only: resolve the gas token

        Raises:
            ConfigurationError: Sponsored mode without PAYMASTER_API_KEY.
            NoSupportedGasToken: Self-paid mode and no token can be determined.
        """
        sponsored = self.settings.is_sponsored
        if sponsored and not self.settings.paymaster_api_key:
            raise ConfigurationError("PAYMASTER_API_KEY is required when PAYMASTER_MODE is 'sponsored'")

        try:
            if not await self.rpc.is_available():
                logger.warning("Paymaster reports it is not available; continuing")
        except (NetworkError, ProviderError) as e:
            logger.warning(f"Paymaster availability check failed: {e}")

        if sponsored:
            negotiation = FeeNegotiation(fee_mode=SponsoredFeeMode())
        else:
            negotiation = FeeNegotiation(fee_mode=SelfPaidFeeMode(gas_token=await self._resolve_gas_token()))
        logger.info(
            f"Paymaster mode={'sponsored' if negotiation.is_sponsored else 'default'}"
            + (f" gas_token={negotiation.gas_token}" if negotiation.gas_token else "")
        )
        return negotiation

    async def _resolve_gas_token(self) -> str:
        """
        Gas token for self-paid mode, in order of preference:

            1. configured token, if the paymaster supports it
            2. configured token anyway (warning logged)
            3. first supported token
            4. NoSupportedGasToken

        If the supported-token list cannot be fetched the configured token is
        used as is.
        """
        configured = self.settings.gas_token_address
        configured = to_padded_hex(configured) if configured else None
        try:
            supported = [to_padded_hex(token.token_address) for token in await self.rpc.get_supported_tokens()]
        except (NetworkError, ProviderError) as e:
            logger.warning(f"Could not get supported tokens: {e}")
            if configured:
                return configured
            raise NoSupportedGasToken(
                "No supported gas tokens available (and GAS_TOKEN_ADDRESS not set)"
            ) from e

        if configured:
            if configured not in supported:
                logger.warning(f"Configured gas token {configured} is not in the paymaster's supported list")
            return configured
        if supported:
            return supported[0]
        raise NoSupportedGasToken("No supported gas tokens available (and GAS_TOKEN_ADDRESS not set)")

    async def estimate_fee(
        self,
        account: Any,
        calls: Sequence[Call],
        fee_mode: FeeMode,
        deployment: Optional[DeploymentPayload] = None,
    ) -> Optional[int]:
        """
        Maximum fee for a paymaster transaction.

        Returns:
            Optional[int]: ``None`` in sponsored mode (the paymaster is not
            asked); otherwise the paymaster's suggested fee with the 1.5x margin.
        """
        if isinstance(fee_mode, SponsoredFeeMode):
            return None
        suggested = await account.estimate_paymaster_fee(calls, fee_mode, deployment=deployment)
        max_fee = apply_fee_margin(suggested)
        logger.info(f"Estimated paymaster fee suggested={suggested} max_fee={max_fee}")
        return max_fee
