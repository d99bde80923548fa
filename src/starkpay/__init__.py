"""
starkpay: custodial Starknet wallet core.

Counterfactual account derivation, remote (identity-provider) signing,
paymaster fee negotiation and deploy / execute orchestration.
"""

from .config import Settings
from .engine.exceptions import StarkpayError
from .services.wallet import WalletService
from .utils import setup_logger

__version__ = "0.1.0"

__all__ = ["Settings", "StarkpayError", "WalletService", "setup_logger", "__version__"]
