from .caches import ProviderCache, PaymasterCache, AuthorizationKeyCache
from .privy import PrivyClient, build_authorization_signature
from .paymaster import PaymasterRpc, LegacySponsorClient

__all__ = [
    "ProviderCache",
    "PaymasterCache",
    "AuthorizationKeyCache",
    "PrivyClient",
    "build_authorization_signature",
    "PaymasterRpc",
    "LegacySponsorClient",
]
