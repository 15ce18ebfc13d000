import asyncio
import importlib
from configparser import ConfigParser
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram import Dispatcher
from aiogram.exceptions import TelegramBadRequest

from handlers.member_captcha.config import AnswerText
from handlers.member_captcha.security import RESTRICTED_PERMISSIONS
from manager import Manager
from manager.settings import ENVIRONMENT_OVERRIDES
from tests.conftest import CHANNEL_ID, OTHER_CHANNEL_ID

member_captcha_module = importlib.import_module("handlers.member_captcha.member_captcha")
manager_module = importlib.import_module("manager.manager")


@pytest.fixture
def fresh_manager(monkeypatch):
    for env in ENVIRONMENT_OVERRIDES:
        monkeypatch.delenv(env, raising=False)

    m = Manager()
    m.config = ConfigParser()
    m.handlers = []
    m.tasks = {}
    m.bot = MagicMock()
    return m


class TestConfig:
    def test_defaults(self, fresh_manager, tmp_path):
        fresh_manager.load_config(str(tmp_path / "missing.ini"))

        assert fresh_manager.config["telegram"]["token"] == ""
        assert fresh_manager.channel == ""
        assert fresh_manager.config["captcha"].getint("timeout") == 120
        assert fresh_manager.config["default"].getboolean("debug") is False

    def test_file(self, fresh_manager, tmp_path):
        path = tmp_path / "main.ini"
        path.write_text("[telegram]\ntoken = abc\nchannel = -100\n\n[captcha]\ntimeout = 30\n", encoding="utf-8")

        fresh_manager.load_config(str(path))

        assert fresh_manager.config["telegram"]["token"] == "abc"
        assert fresh_manager.channel == "-100"
        assert fresh_manager.config["captcha"].getint("timeout") == 30
        assert fresh_manager.config["captcha"].getint("sweep_interval") == 60

    def test_environment_wins(self, fresh_manager, tmp_path, monkeypatch):
        path = tmp_path / "main.ini"
        path.write_text("[telegram]\ntoken = from_file\n", encoding="utf-8")
        monkeypatch.setenv("BOT_TOKEN", "from_env")
        monkeypatch.setenv("CHANNEL_ID", str(CHANNEL_ID))
        monkeypatch.setenv("ADMIN_ID", "1")

        fresh_manager.load_config(str(path))

        assert fresh_manager.config["telegram"]["token"] == "from_env"
        assert fresh_manager.channel == str(CHANNEL_ID)
        assert fresh_manager.config["telegram"]["admin"] == "1"

    def test_setup_exits_without_channel(self, fresh_manager, monkeypatch):
        monkeypatch.setenv("BOT_TOKEN", "123:abc")
        monkeypatch.chdir("/")

        with pytest.raises(SystemExit):
            fresh_manager.setup()


class TestRegistration:
    def test_register_and_setup_handlers(self, fresh_manager):
        fresh_manager.dp = Dispatcher()

        @fresh_manager.register("message")
        async def on_message(msg):
            return msg

        @fresh_manager.register("unknown_type")
        async def on_unknown(msg):
            return msg

        fresh_manager.setup_handlers()

        assert [h.callback for h in fresh_manager.dp.message.handlers] == [on_message.__wrapped__]

    @pytest.mark.asyncio
    async def test_tasks_are_stopped(self, fresh_manager):
        @fresh_manager.register_task("sleeper")
        async def sleeper():
            await asyncio.sleep(10)

        assert fresh_manager.tasks == {"sleeper": sleeper}

        task = asyncio.create_task(sleeper())
        fresh_manager._running_tasks.append(task)
        await fresh_manager.stop_tasks()

        assert task.cancelled()
        assert fresh_manager._running_tasks == []


class TestGateway:
    @pytest.mark.asyncio
    async def test_restrict(self, fresh_manager):
        fresh_manager.bot.restrict_chat_member = AsyncMock()

        assert await fresh_manager.restrict(CHANNEL_ID, 1, RESTRICTED_PERMISSIONS) is True
        fresh_manager.bot.restrict_chat_member.assert_awaited_once_with(
            CHANNEL_ID, 1, permissions=RESTRICTED_PERMISSIONS
        )

    @pytest.mark.asyncio
    async def test_restrict_failure_is_swallowed(self, fresh_manager):
        fresh_manager.bot.restrict_chat_member = AsyncMock(side_effect=RuntimeError("network"))

        assert await fresh_manager.restrict(CHANNEL_ID, 1, RESTRICTED_PERMISSIONS) is False

    @pytest.mark.asyncio
    async def test_kick_is_ban_then_unban(self, fresh_manager):
        calls = MagicMock()
        calls.ban_chat_member = AsyncMock()
        calls.unban_chat_member = AsyncMock()
        fresh_manager.bot = calls

        assert await fresh_manager.kick(CHANNEL_ID, 1) is True

        assert [c[0] for c in calls.mock_calls] == ["ban_chat_member", "unban_chat_member"]
        calls.unban_chat_member.assert_awaited_once_with(CHANNEL_ID, 1, only_if_banned=True)

    @pytest.mark.asyncio
    async def test_kick_failure_skips_unban(self, fresh_manager):
        fresh_manager.bot.ban_chat_member = AsyncMock(side_effect=RuntimeError("no rights"))
        fresh_manager.bot.unban_chat_member = AsyncMock()

        assert await fresh_manager.kick(CHANNEL_ID, 1) is False
        fresh_manager.bot.unban_chat_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unban_failure_reports_member_left_banned(self, fresh_manager, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr(manager_module, "logger", logger)
        fresh_manager.bot.ban_chat_member = AsyncMock()
        fresh_manager.bot.unban_chat_member = AsyncMock(side_effect=RuntimeError("network"))

        assert await fresh_manager.kick(CHANNEL_ID, 1) is False

        fresh_manager.bot.ban_chat_member.assert_awaited_once()
        assert any("left banned" in c.args[0] for c in logger.error.call_args_list)

    @pytest.mark.asyncio
    async def test_send_returns_message_id(self, fresh_manager):
        fresh_manager.bot.send_message = AsyncMock(return_value=MagicMock(message_id=77))

        assert await fresh_manager.send(CHANNEL_ID, "hello", parse_mode="HTML") == 77
        fresh_manager.bot.send_message.assert_awaited_once_with(CHANNEL_ID, "hello", parse_mode="HTML")

    @pytest.mark.asyncio
    async def test_send_failure(self, fresh_manager):
        fresh_manager.bot.send_message = AsyncMock(side_effect=RuntimeError("network"))

        assert await fresh_manager.send(CHANNEL_ID, "hello") is None

    @pytest.mark.asyncio
    async def test_delete_missing_message(self, fresh_manager):
        fresh_manager.bot.delete_message = AsyncMock(
            side_effect=TelegramBadRequest(method=MagicMock(), message="message to delete not found")
        )

        assert await fresh_manager.delete_message(CHANNEL_ID, 5) is True

    @pytest.mark.asyncio
    async def test_delete_failure(self, fresh_manager):
        fresh_manager.bot.delete_message = AsyncMock(side_effect=RuntimeError("network"))

        assert await fresh_manager.delete_message(CHANNEL_ID, 5) is False

    @pytest.mark.asyncio
    async def test_delete_nothing(self, fresh_manager):
        fresh_manager.bot.delete_message = AsyncMock()

        assert await fresh_manager.delete_message(CHANNEL_ID, None) is True
        fresh_manager.bot.delete_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_answer(self, fresh_manager):
        fresh_manager.bot.answer_callback_query = AsyncMock(side_effect=[True, RuntimeError("too old")])

        assert await fresh_manager.answer("q1", "ok") is True
        assert await fresh_manager.answer("q2", "ok") is False


class TestHandlers:
    @pytest.mark.asyncio
    async def test_callback_without_message_is_ignored(self, monkeypatch):
        answer = AsyncMock(return_value=True)
        monkeypatch.setattr(member_captcha_module.manager, "answer", answer)

        await member_captcha_module.new_member_callback(MagicMock(id="q1", message=None))

        answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_callback_is_routed(self, monkeypatch, captcha, gateway):
        monkeypatch.setattr(member_captcha_module, "_captcha", captcha)
        query = MagicMock(id="q1", data="captcha_5")
        query.message.chat.id = CHANNEL_ID
        query.message.message_id = 10
        query.from_user.id = 42

        await member_captcha_module.new_member_callback(query)

        gateway.answer.assert_awaited_once_with("q1", AnswerText.EXPIRED)

    @pytest.mark.asyncio
    async def test_new_members_other_chat(self, monkeypatch, captcha, gateway):
        monkeypatch.setattr(member_captcha_module, "_captcha", captcha)
        msg = MagicMock(new_chat_members=[MagicMock(is_bot=False)])
        msg.chat.id = OTHER_CHANNEL_ID

        await member_captcha_module.member_captcha(msg)

        gateway.kick.assert_not_awaited()
        gateway.restrict.assert_not_awaited()
