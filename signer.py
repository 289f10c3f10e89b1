from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from starknet_py.constants import EC_ORDER, FIELD_PRIME
from starknet_py.hash.utils import message_signature, private_to_stark_key
from starknet_py.utils.typed_data import TypedData


class ConfigError(ValueError):
    """Setup input (key, address) that cannot be used to start a run."""


def parse_felt(value: str, label: str) -> int:
    text = value.strip()
    try:
        parsed = int(text, 16)
    except ValueError as exc:
        raise ConfigError(f"{label} is not a valid hex value: {value!r}") from exc
    if parsed < 0 or parsed >= FIELD_PRIME:
        raise ConfigError(f"{label} is outside the Starknet field: {value!r}")
    return parsed


def parse_private_key(value: str) -> int:
    key = parse_felt(value, "private key")
    if key == 0 or key >= EC_ORDER:
        raise ConfigError("private key must satisfy 0 < key < EC_ORDER")
    return key


@dataclass(frozen=True)
class StarkSigner:
    """Signs SNIP-12 typed data with a Stark-curve key.

    Signing is a pure function of the message hash and the key, so one
    instance is shared by every in-flight submission.
    """

    private_key: int = field(repr=False)

    @classmethod
    def from_hex(cls, value: str) -> StarkSigner:
        return cls(private_key=parse_private_key(value))

    @property
    def public_key(self) -> int:
        return private_to_stark_key(self.private_key)

    def message_hash(self, typed_data: dict[str, Any], account_address: int) -> int:
        return TypedData.from_dict(typed_data).message_hash(account_address)

    def sign_hash(self, message_hash: int) -> list[int]:
        r, s = message_signature(msg_hash=message_hash, priv_key=self.private_key)
        return [r, s]

    def sign_typed_data(self, typed_data: dict[str, Any], account_address: int) -> list[int]:
        return self.sign_hash(self.message_hash(typed_data, account_address))
