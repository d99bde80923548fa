"""
Starknet Signer Adapters

A signer is a capability object: it knows a public key and can sign a raw
Starknet hash. Accounts are composed with a signer instead of subclassing a
signing base class, so the same account code drives both the remote
signing oracle (custodial user wallets) and a local operator key.

Main Components:
    - Signer: Protocol implemented by every signer
    - SIGNATURE_EXTRACTORS / extract_signature: Ordered strategies for locating
      the signature inside a signing-oracle response
    - RemoteSigner: Delegates the private-key operation to the identity provider
    - LocalKeySigner: Signs with a private key held in process (operator account)
"""

import logging
from typing import Any, Callable, Optional, Protocol, Tuple, Union, runtime_checkable

from starknet_py.hash.utils import message_signature
from starknet_py.net.signer.key_pair import KeyPair

from ...engine.exceptions import MalformedSignature
from ...schemas.bases import StarknetSignature
from ...utils import short_hex, to_felt, to_padded_hex

logger = logging.getLogger(__name__)


@runtime_checkable
class Signer(Protocol):
    """Signing capability composed into a Starknet account."""

    @property
    def public_key(self) -> str:
        ...

    async def sign_raw(self, message_hash: Union[int, str]) -> StarknetSignature:
        ...


# ============================================================================
# Signature extraction
# ============================================================================

def _path(*keys: str) -> Callable[[Any], Any]:
    def extract(payload: Any) -> Any:
        current = payload
        for key in keys:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current
    extract.__name__ = ".".join(keys)
    return extract


#: Locations probed in order; the first non-empty string wins.
SIGNATURE_EXTRACTORS: Tuple[Callable[[Any], Any], ...] = (
    _path("data", "signature"),
    _path("signature"),
    _path("result", "signature"),
    _path("result"),
)


def extract_signature(
    payload: Any,
    extractors: Tuple[Callable[[Any], Any], ...] = SIGNATURE_EXTRACTORS,
) -> str:
    """
    Locate the hex signature in a signing-oracle response body.

    Args:
        payload: Decoded JSON body
        extractors: Ordered extraction strategies

    Returns:
        str: Signature with a ``0x`` prefix

    Raises:
        MalformedSignature: If no strategy yields a non-empty string.
    """
    for extractor in extractors:
        value = extractor(payload)
        if isinstance(value, str) and value:
            return value if value.startswith("0x") else "0x" + value
    raise MalformedSignature("No signature returned by signing oracle")


# ============================================================================
# Signers
# ============================================================================

class RemoteSigner:
    """
    Signer backed by the identity provider's raw-sign endpoint.

    The provider holds the private key; this adapter only forwards the hash,
    validates the returned signature shape and splits it into (r, s). Nothing
    is cached: every call reaches the provider.

    Args:
        privy_client: PrivyClient (or any object with a compatible ``raw_sign``)
        wallet_id: Provider wallet id
        public_key: Stark public key of the wallet
        credential: Caller's access token, forwarded as bearer credential
        user_id: Provider user id, used to look up a per-user authorization key
    """

    def __init__(
        self,
        privy_client: Any,
        wallet_id: str,
        public_key: Union[int, str],
        credential: str,
        user_id: Optional[str] = None,
    ):
        self._privy = privy_client
        self._wallet_id = wallet_id
        self._public_key = to_padded_hex(public_key)
        self._credential = credential
        self._user_id = user_id

    @property
    def public_key(self) -> str:
        return self._public_key

    @property
    def wallet_id(self) -> str:
        return self._wallet_id

    async def sign_raw(self, message_hash: Union[int, str]) -> StarknetSignature:
        """
        Sign a Starknet hash through the provider.

        Raises:
            NetworkError: Transport failure reaching the provider.
            ProviderError: The provider rejected the request.
            MalformedSignature: The response carried no 64-byte signature.
        """
        hash_hex = to_padded_hex(message_hash)
        logger.debug(f"Requesting remote signature wallet={self._wallet_id} hash={short_hex(hash_hex, 18)}")
        payload = await self._privy.raw_sign(
            self._wallet_id,
            hash_hex,
            self._credential,
            user_id=self._user_id,
        )
        signature = StarknetSignature.from_oracle_hex(extract_signature(payload))
        logger.debug(f"Remote signature received wallet={self._wallet_id}")
        return signature

    def __repr__(self) -> str:
        return f"RemoteSigner(wallet_id={self._wallet_id!r}, public_key={short_hex(self._public_key)})"


class LocalKeySigner:
    """
    Signer holding a Stark private key in process.

    Used for the operator account that distributes tokens; user wallets never
    go through this class.
    """

    def __init__(self, private_key: Union[int, str]):
        self._key_pair = KeyPair.from_private_key(to_felt(private_key))

    @property
    def public_key(self) -> str:
        return to_padded_hex(self._key_pair.public_key)

    async def sign_raw(self, message_hash: Union[int, str]) -> StarknetSignature:
        r, s = message_signature(to_felt(message_hash), self._key_pair.private_key)
        return StarknetSignature(r=to_padded_hex(r), s=to_padded_hex(s))

    def __repr__(self) -> str:
        return f"LocalKeySigner(public_key={short_hex(self.public_key)})"
