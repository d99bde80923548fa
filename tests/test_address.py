"""
Address Deriver Test Suite

Covers counterfactual address derivation, constructor calldata layout,
cross-checking of provider-reported addresses and user-id based prediction.

Usage:
    pytest tests/test_address.py -v
"""

import pytest
from starknet_py.hash.address import compute_address

from test_mocks import (
    MOCK_CLASS_HASH,
    MOCK_OTHER_PUBLIC_KEY,
    MOCK_PUBLIC_KEY,
    MOCK_USER_ID,
)

from starkpay.adapters.starknet.address import (
    build_constructor_calldata,
    build_deployment_payload,
    derive_address,
    predict_user_address,
    predict_user_public_key,
    verify_address,
)
from starkpay.engine.exceptions import AddressMismatch, InvalidArgument


class TestConstructorCalldata:
    """Ready account constructor serialization."""

    def test_layout_is_signer_variant_key_and_no_guardian(self):
        calldata = build_constructor_calldata(MOCK_PUBLIC_KEY)
        assert calldata == [0, int(MOCK_PUBLIC_KEY, 16), 1]

    def test_same_key_in_any_notation_gives_identical_calldata(self):
        as_int = int(MOCK_PUBLIC_KEY, 16)
        short_hex = hex(as_int)
        assert build_constructor_calldata(MOCK_PUBLIC_KEY) == build_constructor_calldata(as_int)
        assert build_constructor_calldata(short_hex) == build_constructor_calldata(str(as_int))

    def test_invalid_key_rejected(self):
        with pytest.raises(InvalidArgument):
            build_constructor_calldata("0xnothex")


class TestDeriveAddress:
    """Counterfactual address computation."""

    def test_deterministic(self):
        first = derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)
        second = derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)
        assert first == second

    def test_matches_compute_address_with_zero_deployer(self):
        key = int(MOCK_PUBLIC_KEY, 16)
        expected = compute_address(
            class_hash=int(MOCK_CLASS_HASH, 16),
            constructor_calldata=[0, key, 1],
            salt=key,
            deployer_address=0,
        )
        assert derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH) == "0x" + format(expected, "064x")

    def test_padded_output(self):
        address = derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)
        assert address.startswith("0x")
        assert len(address) == 66

    def test_different_keys_give_different_addresses(self):
        assert derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH) != derive_address(
            MOCK_OTHER_PUBLIC_KEY, MOCK_CLASS_HASH
        )

    def test_different_class_hash_gives_different_address(self):
        other_class_hash = "0x" + "0" * 63 + "1"
        assert derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH) != derive_address(
            MOCK_PUBLIC_KEY, other_class_hash
        )

    @pytest.mark.parametrize("bad_value", ["", "0x", "0xzz", "not-a-number"])
    def test_malformed_hex_rejected(self, bad_value):
        with pytest.raises(InvalidArgument):
            derive_address(bad_value, MOCK_CLASS_HASH)

    def test_out_of_field_value_rejected(self):
        with pytest.raises(InvalidArgument):
            derive_address("0x" + "f" * 64, MOCK_CLASS_HASH)


class TestVerifyAddress:
    """Cross-check of externally reported addresses."""

    def test_matching_address_accepted_in_short_form(self):
        derived = derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)
        short_form = hex(int(derived, 16))
        assert verify_address(short_form, MOCK_PUBLIC_KEY, MOCK_CLASS_HASH) == derived

    def test_mismatch_raises(self):
        other = derive_address(MOCK_OTHER_PUBLIC_KEY, MOCK_CLASS_HASH)
        with pytest.raises(AddressMismatch) as exc_info:
            verify_address(other, MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)
        assert exc_info.value.reported == other
        assert exc_info.value.derived == derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)

    def test_mismatch_is_an_invalid_argument(self):
        assert issubclass(AddressMismatch, InvalidArgument)


class TestDeploymentPayload:

    def test_payload_uses_public_key_as_salt(self):
        payload = build_deployment_payload(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)
        assert payload.address_salt == MOCK_PUBLIC_KEY
        assert payload.contract_address == derive_address(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH)
        assert payload.constructor_calldata == build_constructor_calldata(MOCK_PUBLIC_KEY)

    def test_paymaster_deployment_shape(self):
        deployment = build_deployment_payload(MOCK_PUBLIC_KEY, MOCK_CLASS_HASH).to_paymaster_deployment()
        assert deployment["version"] == 1
        assert deployment["class_hash"] == MOCK_CLASS_HASH
        assert deployment["calldata"] == ["0x0", hex(int(MOCK_PUBLIC_KEY, 16)), "0x1"]


class TestUserPrediction:
    """User-id based key and address prediction."""

    def test_predicted_key_is_stable_and_in_field(self):
        key = predict_user_public_key(MOCK_USER_ID)
        assert key == predict_user_public_key(MOCK_USER_ID)
        assert int(key, 16) < 2**251

    def test_predicted_address_uses_same_derivation(self):
        key = predict_user_public_key(MOCK_USER_ID)
        assert predict_user_address(MOCK_USER_ID, MOCK_CLASS_HASH) == derive_address(key, MOCK_CLASS_HASH)

    def test_distinct_users_get_distinct_addresses(self):
        assert predict_user_address("user-a", MOCK_CLASS_HASH) != predict_user_address("user-b", MOCK_CLASS_HASH)

    def test_empty_user_id_rejected(self):
        with pytest.raises(InvalidArgument):
            predict_user_public_key("")
