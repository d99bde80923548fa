"""
Environment-driven configuration.

Values are read from the process environment after ``.env`` has been loaded
with python-dotenv, then validated by the ``Settings`` model. Missing or invalid
entries are collected and reported together as a single ConfigurationError.
"""

import os
from typing import Dict, Literal, Mapping, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .engine.exceptions import ConfigurationError

DEFAULT_PAYMASTER_URL = "https://sepolia.paymaster.avnu.fi"
DEFAULT_PRIVY_API_URL = "https://api.privy.io"

#: Environment variable -> Settings field.
ENV_FIELDS: Dict[str, str] = {
    "RPC_URL": "rpc_url",
    "READY_CLASSHASH": "account_class_hash",
    "STARKNET_CHAIN": "chain",
    "PRIVY_APP_ID": "privy_app_id",
    "PRIVY_APP_SECRET": "privy_app_secret",
    "PRIVY_API_URL": "privy_api_url",
    "PRIVY_VERIFICATION_KEY": "privy_verification_key",
    "PRIVY_WALLET_AUTH_PRIVATE_KEY": "privy_wallet_auth_private_key",
    "PAYMASTER_URL": "paymaster_url",
    "PAYMASTER_MODE": "paymaster_mode",
    "PAYMASTER_API_KEY": "paymaster_api_key",
    "GAS_TOKEN_ADDRESS": "gas_token_address",
    "EARNS_TOKEN_ADDRESS": "earns_token_address",
    "EARNS_TOKEN_SYMBOL": "earns_token_symbol",
    "EARNSTARK_MANAGER_ADDRESS": "earns_manager_address",
    "EARNS_TOKEN_OWNER": "operator_address",
    "EARNS_TOKEN_OWNER_PRIVATE_KEY": "operator_private_key",
    "REQUEST_TIMEOUT": "request_timeout",
    "STARKPAY_LOG_LEVEL": "log_level",
}


class Settings(BaseModel):
    """
    Runtime configuration for the wallet core.

    Attributes:
        rpc_url: Starknet JSON-RPC endpoint
        account_class_hash: Class hash of the Ready (Argent) account contract
        chain: Chain name, ``SN_SEPOLIA`` or ``SN_MAIN``
        paymaster_mode: ``sponsored`` (third party pays) or ``default`` (self-paid)
        gas_token_address: Token used to pay fees in self-paid mode; falls back
            to ``earns_token_address`` when unset
    """

    rpc_url: str = Field(..., min_length=1)
    account_class_hash: str = Field(..., min_length=1)
    chain: Literal["SN_SEPOLIA", "SN_MAIN"] = "SN_SEPOLIA"

    privy_app_id: str = Field(..., min_length=1)
    privy_app_secret: str = Field(..., min_length=1)
    privy_api_url: str = DEFAULT_PRIVY_API_URL
    privy_verification_key: Optional[str] = None
    privy_wallet_auth_private_key: Optional[str] = None

    paymaster_url: str = DEFAULT_PAYMASTER_URL
    paymaster_mode: Literal["sponsored", "default"] = "sponsored"
    paymaster_api_key: Optional[str] = None
    gas_token_address: Optional[str] = None

    earns_token_address: Optional[str] = None
    earns_token_symbol: str = "EARN"
    earns_manager_address: Optional[str] = None
    operator_address: Optional[str] = None
    operator_private_key: Optional[str] = None

    request_timeout: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"

    @field_validator("rpc_url", "paymaster_url", "privy_api_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"must be an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @field_validator("paymaster_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _default_gas_token(self) -> "Settings":
        if not self.gas_token_address and self.earns_token_address:
            self.gas_token_address = self.earns_token_address
        return self

    @property
    def is_sponsored(self) -> bool:
        return self.paymaster_mode == "sponsored"

    @property
    def has_operator(self) -> bool:
        return bool(self.operator_address and self.operator_private_key)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        load_dotenv: bool = True,
    ) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)
            load_dotenv: Load a ``.env`` file into ``os.environ`` first

        Raises:
            ConfigurationError: Listing every missing or invalid variable.
        """
        if environ is None:
            if load_dotenv:
                dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))
            environ = os.environ

        values = {
            field: environ[name]
            for name, field in ENV_FIELDS.items()
            if environ.get(name) not in (None, "")
        }
        try:
            return cls(**values)
        except ValidationError as e:
            field_to_env = {field: name for name, field in ENV_FIELDS.items()}
            problems = []
            for error in e.errors():
                loc = error["loc"][0] if error["loc"] else ""
                problems.append(f"{field_to_env.get(loc, loc)}: {error['msg']}")
            raise ConfigurationError(
                "Invalid environment configuration: " + "; ".join(problems)
            ) from e
