import pytest
from starknet_py.constants import EC_ORDER, FIELD_PRIME
from starknet_py.hash.utils import verify_message_signature

from signer import ConfigError, StarkSigner, parse_felt, parse_private_key


KEY_HEX = "0x1234567890abcdef1234567890abcdef"


def test_parse_felt_accepts_prefixed_and_bare_hex():
    assert parse_felt("0x1f", "value") == 31
    assert parse_felt(" 1F ", "value") == 31


@pytest.mark.parametrize("value", ["", "0xzz", "hello"])
def test_parse_felt_rejects_garbage(value):
    with pytest.raises(ConfigError):
        parse_felt(value, "user address")


def test_parse_felt_rejects_out_of_field():
    with pytest.raises(ConfigError, match="outside the Starknet field"):
        parse_felt(hex(FIELD_PRIME), "user address")


@pytest.mark.parametrize("value", ["0x0", hex(EC_ORDER)])
def test_parse_private_key_range(value):
    with pytest.raises(ConfigError):
        parse_private_key(value)


def test_repr_hides_key():
    assert "1234567890abcdef" not in repr(StarkSigner.from_hex(KEY_HEX))


def test_signature_verifies_against_public_key():
    signer = StarkSigner.from_hex(KEY_HEX)
    message_hash = 0x2A
    signature = signer.sign_hash(message_hash)
    assert len(signature) == 2
    assert verify_message_signature(message_hash, signature, signer.public_key)


def test_signing_is_deterministic():
    signer = StarkSigner.from_hex(KEY_HEX)
    assert signer.sign_hash(0x99) == signer.sign_hash(0x99)


def test_typed_data_signature(typed_data):
    signer = StarkSigner.from_hex(KEY_HEX)
    account = 0x59E0E
    message_hash = signer.message_hash(typed_data, account)
    assert message_hash != signer.message_hash(typed_data, account + 1)
    signature = signer.sign_typed_data(typed_data, account)
    assert signature == signer.sign_hash(message_hash)
    assert verify_message_signature(message_hash, signature, signer.public_key)
