"""
Shared fixtures for the member captcha tests.
"""

import asyncio
import random
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from aiogram import types

from handlers.member_captcha.session import Registry
from handlers.member_captcha.verification import MemberCaptcha

CHANNEL_ID = -1001234567890
OTHER_CHANNEL_ID = -1009999999999


class FakeGateway:
    """Records every gateway call; all calls succeed unless reconfigured."""

    def __init__(self):
        self._message_id = 100
        self.restrict = AsyncMock(return_value=True)
        self.kick = AsyncMock(return_value=True)
        self.delete_message = AsyncMock(return_value=True)
        self.send = AsyncMock(side_effect=self._next_message_id)
        self.answer = AsyncMock(return_value=True)

    def _next_message_id(self, *args, **kwargs):
        self._message_id += 1
        return self._message_id


def make_user(
    user_id: int = 5_000_000,
    username="cleanuser123",
    first_name: str = "Clean",
    last_name=None,
    is_bot: bool = False,
) -> types.User:
    return types.User(
        id=user_id,
        is_bot=is_bot,
        first_name=first_name,
        last_name=last_name,
        username=username,
    )


@pytest.fixture
def now():
    return datetime(2026, 10, 19, 12, 0, 0)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def registry():
    return Registry()


@pytest_asyncio.fixture
async def captcha(gateway, registry):
    captcha = MemberCaptcha(gateway, CHANNEL_ID, registry=registry, rnd=random.Random(7))
    yield captcha
    captcha.cancel_timers()
    await asyncio.sleep(0)
