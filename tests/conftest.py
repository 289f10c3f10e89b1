import asyncio
import copy

import pytest


class FakeClock:
    """Virtual monotonic clock; sleeping advances time and yields to the loop."""

    def __init__(self, overshoot=0.0):
        self.now = 0.0
        self.overshoot = overshoot
        self.sleeps = []

    def time(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += max(delay, 0.0) + self.overshoot
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_clock():
    return FakeClock


# SNIP-12 revision 1 layout, as returned by paymaster_buildTransaction
TYPED_DATA = {
    "types": {
        "StarknetDomain": [
            {"name": "name", "type": "shortstring"},
            {"name": "version", "type": "shortstring"},
            {"name": "chainId", "type": "shortstring"},
            {"name": "revision", "type": "shortstring"},
        ],
        "Transfer": [
            {"name": "recipient", "type": "ContractAddress"},
            {"name": "amount", "type": "u128"},
        ],
    },
    "primaryType": "Transfer",
    "domain": {"name": "Stress", "version": "1", "chainId": "SN_SEPOLIA", "revision": "1"},
    "message": {"recipient": "0x1234", "amount": "0x1"},
}


@pytest.fixture
def typed_data():
    return copy.deepcopy(TYPED_DATA)
