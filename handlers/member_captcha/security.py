"""
成员权限设置
Member permission sets

验证期间禁止一切发言；验证通过后恢复发言权限，
但修改群信息、邀请、置顶仍保持禁止。
"""

from aiogram import types

RESTRICTED_PERMISSIONS = types.ChatPermissions(
    can_send_messages=False,
    can_send_audios=False,
    can_send_documents=False,
    can_send_photos=False,
    can_send_videos=False,
    can_send_video_notes=False,
    can_send_voice_notes=False,
    can_send_polls=False,
    can_send_other_messages=False,
    can_add_web_page_previews=False,
    can_change_info=False,
    can_invite_users=False,
    can_pin_messages=False,
)

VERIFIED_PERMISSIONS = types.ChatPermissions(
    can_send_messages=True,
    can_send_audios=True,
    can_send_documents=True,
    can_send_photos=True,
    can_send_videos=True,
    can_send_video_notes=True,
    can_send_voice_notes=True,
    can_send_polls=True,
    can_send_other_messages=True,
    can_add_web_page_previews=True,
    can_change_info=False,
    can_invite_users=False,
    can_pin_messages=False,
)


async def restrict_member_permissions(gateway, chat_id: int, member_id: int) -> bool:
    """禁止成员发言"""
    return await gateway.restrict(chat_id, member_id, RESTRICTED_PERMISSIONS)


async def restore_member_permissions(gateway, chat_id: int, member_id: int) -> bool:
    """恢复成员发言权限"""
    return await gateway.restrict(chat_id, member_id, VERIFIED_PERMISSIONS)
