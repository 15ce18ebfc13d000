import asyncio
import os
import sys
from configparser import ConfigParser
from functools import wraps
from typing import Dict, List, Optional, Union

import loguru
from aiogram import Bot, Dispatcher, types
from aiogram.exceptions import TelegramBadRequest

from .settings import ENVIRONMENT_OVERRIDES, SETTINGS_TEMPLATE

logger = loguru.logger


class Manager:
    """管理模块"""

    # aiogram instance
    bot: Bot
    dp: Dispatcher = Dispatcher()  # static dispatcher

    # global config
    config = ConfigParser()

    # routes
    handlers = []
    tasks: Dict = {}

    # running status
    is_running = False

    logger = logger

    def __init__(self):
        self._running_tasks: List[asyncio.Task] = []

    def setup(self):
        self.load_config()

        self.setup_logger()

        token = self.config["telegram"]["token"]
        if not token:
            logger.error("telegram token is missing")
            sys.exit(1)

        if not self.channel:
            logger.error("telegram channel is missing")
            sys.exit(1)

        self.bot = Bot(token)
        logger.info("bot is setup")

        self.setup_handlers()

    def load_config(self, path: str = "main.ini"):
        """加载 main.ini 与环境变量，默认会配置相关代码"""
        config = self.config

        # 设置默认模板
        for key, section in SETTINGS_TEMPLATE.items():
            config.setdefault(key, section)

        # 从文件读取
        if os.path.isfile(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    config.read_file(f)

                logger.info(f"settings is loaded from {path}")
            except IOError:
                logger.warning(f"settings file {path} is not readable")

        # 环境变量优先
        for env, (section, option) in ENVIRONMENT_OVERRIDES.items():
            value = os.environ.get(env)
            if value:
                config[section][option] = value
                logger.debug(f"settings {section}.{option} is loaded from ${env}")

    def setup_logger(self):
        """设置logger"""
        logger = self.logger

        if self.config["default"].getboolean("debug", False):
            logger.remove()
            logger.add(sys.stderr, level=10)
            logger.debug("logger is setup with debug level")
            return

        logger.remove()
        logger.add(sys.stderr, level=20)
        logger.info("logger is setup")

    def setup_handlers(self):
        """
        设置事件处理
        """
        for func, type_name, args, kwargs in self.handlers:
            observer = self.dp.observers.get(type_name, None)
            if not observer or not hasattr(observer, "register"):
                logger.warning(f"dispatcher:unknown type {type_name}")
                continue

            observer.register(func, *args, **kwargs)
            logger.info(f"dispatcher {func.__name__}:{observer.event_name}.register({args}, {kwargs})")

    def register(self, type_name, *args, **kwargs):
        """
        延迟注册到 Dispatcher
        """

        def wrapper(func):
            self.handlers.append((func, type_name, args, kwargs))

            @wraps(func)
            async def _wrapper(*args, **kwargs):
                return await func(*args, **kwargs)

            return _wrapper

        return wrapper

    def register_task(self, name: str):
        """
        注册后台任务，start() 时启动，stop() 时取消

        函数会这样 await func() 调用
        """

        def wrapper(func):
            self.tasks[name] = func
            return func

        return wrapper

    @property
    def channel(self) -> str:
        """monitored chat id"""
        return self.config["telegram"].get("channel", "").strip()

    async def start(self):
        self.is_running = True

        logger.info(f"monitoring channel {self.channel}")

        for name, func in self.tasks.items():
            self._running_tasks.append(asyncio.create_task(func(), name=name))
            logger.info(f"task {name} is started")

        await self.notification("bot is started")

        try:
            await self.dp.start_polling(self.bot)
        finally:
            await self.stop_tasks()

    async def stop(self):
        self.is_running = False

        await self.stop_tasks()
        await self.dp.stop_polling()

    async def stop_tasks(self):
        tasks, self._running_tasks = self._running_tasks, []
        for task in tasks:
            task.cancel()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"{len(tasks)} tasks are stopped")

    def username(self, _user: Union[types.ChatMember, types.User]):
        """获取用户名"""

        if isinstance(_user, types.ChatMember):
            return _user.user.full_name  # type: ignore

        return _user.full_name

    async def restrict(self, chat: int, member: int, permissions: types.ChatPermissions) -> bool:
        """
        修改成员权限
        chat: chat id
        member: member id
        permissions: new permissions of the member
        """
        try:
            await self.bot.restrict_chat_member(chat, member, permissions=permissions)
            logger.info(f"chat {chat} member {member} permissions updated")
        except Exception:
            logger.exception(f"chat {chat} member {member} restrict failed")
            return False

        return True

    async def kick(self, chat: int, member: int) -> bool:
        """
        移除成员，随即解除封禁以便再次加入
        chat: chat id
        member: member id
        """
        try:
            await self.bot.ban_chat_member(chat, member)
        except Exception:
            logger.exception(f"chat {chat} member {member} kick failed")
            return False

        try:
            await self.bot.unban_chat_member(chat, member, only_if_banned=True)
        except Exception:
            logger.exception(f"chat {chat} member {member} unban failed")
            logger.error(f"chat {chat} member {member} is left banned, lift the ban manually")
            return False

        logger.info(f"chat {chat} member {member} is kicked")
        return True

    async def delete_message(self, chat: Union[int, types.Chat], msg: Union[int, types.Message, None]) -> bool:
        """
        删除消息
        chat: chat with msg
        msg: msg will be deleted
        """
        if msg is None:
            return True

        id_chat: int = chat.id if isinstance(chat, types.Chat) else chat
        id_message: int = msg.message_id if isinstance(msg, types.Message) else msg

        try:
            await self.bot.delete_message(id_chat, id_message)
            logger.info(f"chat {id_chat} message {id_message} deleted")
        except TelegramBadRequest:
            logger.warning(f"chat {id_chat} message {id_message} not found")
        except Exception:
            logger.exception(f"chat {id_chat} message {id_message} delete failed")
            return False

        return True

    async def send(self, chat: int, msg: str, **kwargs) -> Optional[int]:
        """
        发送消息，返回消息 id
        chat: chat with msg
        msg: msg will be sent
        """
        try:
            resp = await self.bot.send_message(chat, msg, **kwargs)
            logger.info(f"chat {chat} message {resp.message_id} sent")
        except Exception:
            logger.exception(f"chat {chat} message {msg} send error")
            return None

        return resp.message_id

    async def answer(self, query_id: str, text: str, show_alert: bool = False) -> bool:
        """
        回应按钮点击
        query_id: callback query id
        text: text shown to the user
        """
        try:
            await self.bot.answer_callback_query(query_id, text=text, show_alert=show_alert)
            logger.debug(f"callback query {query_id} answered: {text}")
        except Exception:
            logger.exception(f"callback query {query_id} answer error")
            return False

        return True

    async def notification(self, content: str):
        if "admin" in self.config["telegram"]:
            admin = self.config["telegram"]["admin"]
            try:
                await self.bot.send_message(admin, content)
            except Exception:
                logger.exception(f"admin {admin} notification error")
