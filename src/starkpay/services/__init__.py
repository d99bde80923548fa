from .wallet import WalletService

__all__ = ["WalletService"]
