"""
成员验证主模块
Member captcha main module
"""

from typing import Optional

from aiogram import F, types
from loguru import logger

from manager import manager

from .config import CALLBACK_PREFIX, AnswerText
from .verification import MemberCaptcha

_captcha: Optional[MemberCaptcha] = None


def get_captcha() -> MemberCaptcha:
    """按 manager.config 创建验证流程，配置需已加载"""
    global _captcha
    if _captcha is None:
        _captcha = MemberCaptcha.from_config(manager, manager.config)
    return _captcha


@manager.register("message", F.new_chat_members)
async def member_captcha(msg: types.Message):
    """
    处理新成员加入群组的验证逻辑
    """
    chat = msg.chat
    captcha = get_captcha()

    if not captcha.is_monitored(chat.id):
        return

    try:
        await captcha.on_new_members(chat.id, msg.new_chat_members or [])
    except Exception:
        logger.exception(f"chat {chat.id}({chat.title}) msg {msg.message_id} new members handling failed")


@manager.register("callback_query", F.data.startswith(CALLBACK_PREFIX))
async def new_member_callback(query: types.CallbackQuery):
    """
    处理用户点击验证按钮后的逻辑
    """
    msg = query.message
    # 无法判断来自哪个群组
    if msg is None:
        return

    captcha = get_captcha()
    if not captcha.is_monitored(msg.chat.id):
        return

    try:
        await captcha.on_answer(msg.chat.id, query.id, query.from_user.id, query.data, msg.message_id)
    except Exception:
        logger.exception(f"chat {msg.chat.id} member {query.from_user.id} callback handling failed")
        await manager.answer(query.id, AnswerText.ERROR)


@manager.register_task("captcha_sweeper")
async def captcha_sweeper():
    await get_captcha().run_sweeper()
