"""Shared fakes for the invisible account tests."""
from __future__ import annotations

from typing import List, Optional

import pytest

from alcancia.chain import DeployOutcome
from alcancia.config import Settings
from alcancia.protocol import TELEGRAM, InboundMessage, Reply


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EmitRecorder:
    def __init__(self) -> None:
        self.replies: List[Reply] = []

    async def __call__(self, reply: Reply) -> None:
        self.replies.append(reply)

    @property
    def texts(self) -> List[str]:
        return [reply.text for reply in self.replies]


class FakeGateway:
    """Stands in for :class:`alcancia.chain.StarknetGateway`."""

    def __init__(
        self,
        settings: Settings,
        *,
        deploy: Optional[DeployOutcome] = None,
        balance: Optional[int] = None,
    ) -> None:
        self.settings = settings
        self.deploy_outcome = deploy or DeployOutcome(error="missing endpoint")
        self.balance = balance
        self.deploy_calls: List[str] = []
        self.balance_calls: List[str] = []
        self.closed = False

    @property
    def available(self) -> bool:
        return bool(self.settings.rpc_endpoint)

    async def try_deploy(self, private_key_hex: str, variant: Optional[str] = None) -> DeployOutcome:
        self.deploy_calls.append(variant or self.settings.account_variant)
        return self.deploy_outcome

    async def get_balance_wei(self, address_hex: str) -> Optional[int]:
        self.balance_calls.append(address_hex)
        return self.balance

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def settings() -> Settings:
    return Settings(shared_derivation_secret="test-secret", account_variant="oz")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def recorder() -> EmitRecorder:
    return EmitRecorder()


@pytest.fixture()
def gateway_factory():
    return FakeGateway


@pytest.fixture()
def make_message():
    def _make(
        text: str,
        *,
        entity_id: str = "u1",
        room_id: Optional[str] = "room-1",
        message_id: Optional[str] = None,
        source: str = TELEGRAM,
    ) -> InboundMessage:
        return InboundMessage(
            entity_id=entity_id,
            room_id=room_id,
            text=text,
            source=source,
            message_id=message_id,
        )

    return _make
