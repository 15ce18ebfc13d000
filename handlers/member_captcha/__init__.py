"""
成员验证模块
Member captcha module

这个模块提供了Telegram群组新成员验证功能，包括：
- 新成员基础检查（用户名、资料、账号年龄）
- 算术验证码生成和验证
- 超时移除与定期清理
"""

from .member_captcha import captcha_sweeper, get_captcha, member_captcha, new_member_callback
from .verification import MemberCaptcha

# 导出主要功能
__all__ = [
    "MemberCaptcha",
    "captcha_sweeper",
    "get_captcha",
    "member_captcha",
    "new_member_callback",
]
