from aiogram import F
from aiogram.types import Message

from manager import manager

from .member_captcha import get_captcha


@manager.register("message", F.left_chat_member)
async def left_member(msg: Message):
    chat = msg.chat
    user = msg.from_user
    member = msg.left_chat_member
    captcha = get_captcha()

    # chat checked
    if not captcha.is_monitored(chat.id):
        return

    # 机器人移除成员产生的消息
    if user and manager.bot.id == user.id:
        await manager.delete_message(chat, msg)

    manager.logger.info(
        f"chat {chat.id}({chat.title}) message {msg.message_id} " f"member {member.id}({manager.username(member)}) is left"
    )

    try:
        await captcha.on_member_left(chat.id, member.id)
    except Exception:
        manager.logger.exception(f"chat {chat.id} member {member.id} left handling failed")
