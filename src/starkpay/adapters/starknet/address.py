"""
Counterfactual Address Derivation

Pure functions computing Starknet account addresses from a public key and an
account class hash before the account exists on-chain. The same functions are
used to predict an address, to build a deployment payload and to cross-check
an address reported by the wallet-custody service.

Ready (Argent) account constructor layout:
    owner:    Signer::Starknet(pubkey)  -> [0, pubkey]
    guardian: Option::None              -> [1]

Dependencies:
    - starknet-py: ``compute_address`` (Pedersen-based contract address)
    - eth-utils: keccak-256 for user-id based key prediction
"""

from typing import List, Union

from eth_utils import keccak
from starknet_py.hash.address import compute_address

from ...engine.exceptions import AddressMismatch, InvalidArgument
from ...schemas.bases import DeploymentPayload
from ...utils import to_felt, to_padded_hex

#: Deployer used for counterfactual deployments (deploy-account transactions).
COUNTERFACTUAL_DEPLOYER: int = 0

#: Cairo enum variant index of ``Signer::Starknet``.
SIGNER_STARKNET_VARIANT: int = 0

#: Cairo ``Option::None`` variant index.
OPTION_NONE_VARIANT: int = 1

_MASK_251_BITS: int = (1 << 251) - 1


def build_constructor_calldata(public_key: Union[int, str]) -> List[int]:
    """
    Serialize the account constructor arguments for a single-key owner and no
    guardian.

    Args:
        public_key: Stark public key as int or hex string

    Returns:
        List[int]: ``[SIGNER_STARKNET_VARIANT, public_key, OPTION_NONE_VARIANT]``

    Raises:
        InvalidArgument: If the public key is not a valid felt.
    """
    return [SIGNER_STARKNET_VARIANT, to_felt(public_key), OPTION_NONE_VARIANT]


def derive_address(public_key: Union[int, str], class_hash: Union[int, str]) -> str:
    """
    Compute the counterfactual account address.

    The salt is the public key and the deployer is the zero address, so the
    result depends only on (public_key, class_hash).

    Returns:
        str: 0x-prefixed, 64-hex-char address

    Raises:
        InvalidArgument: On malformed hex input.
    """
    key = to_felt(public_key)
    address = compute_address(
        class_hash=to_felt(class_hash),
        constructor_calldata=build_constructor_calldata(key),
        salt=key,
        deployer_address=COUNTERFACTUAL_DEPLOYER,
    )
    return to_padded_hex(address)


def verify_address(
    reported: Union[int, str],
    public_key: Union[int, str],
    class_hash: Union[int, str],
) -> str:
    """
    Check an externally reported address against local derivation.

    Returns:
        str: The derived (and matching) address

    Raises:
        AddressMismatch: If the reported address differs from the derived one.
        InvalidArgument: On malformed hex input.
    """
    derived = derive_address(public_key, class_hash)
    reported_hex = to_padded_hex(reported)
    if reported_hex != derived:
        raise AddressMismatch(reported=reported_hex, derived=derived)
    return derived


def build_deployment_payload(
    public_key: Union[int, str],
    class_hash: Union[int, str],
) -> DeploymentPayload:
    """Deployment payload for the counterfactual account of ``public_key``."""
    return DeploymentPayload(
        class_hash=class_hash,
        contract_address=derive_address(public_key, class_hash),
        constructor_calldata=build_constructor_calldata(public_key),
        address_salt=public_key,
    )


def predict_user_public_key(user_id: str) -> str:
    """
    Deterministic pseudo public key for an identity-provider user id.

    keccak-256 of the UTF-8 user id, masked to 251 bits so it is a valid felt.
    """
    if not user_id:
        raise InvalidArgument("user_id is required")
    digest = int.from_bytes(keccak(text=user_id), "big")
    return to_padded_hex(digest & _MASK_251_BITS)


def predict_user_address(user_id: str, class_hash: Union[int, str]) -> str:
    """Predicted counterfactual address for an identity-provider user id."""
    return derive_address(predict_user_public_key(user_id), class_hash)
