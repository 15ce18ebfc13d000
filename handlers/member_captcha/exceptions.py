"""
成员验证模块异常定义
Member captcha module exceptions
"""

from typing import Optional


class MemberVerificationError(Exception):
    """成员验证相关错误基类"""

    pass


class ConfigurationError(MemberVerificationError):
    """配置错误"""

    pass


class LogContext:
    """日志上下文管理器"""

    def __init__(
        self,
        chat_id: int,
        member_id: int,
        member_name: Optional[str] = None,
        member_fullname: Optional[str] = None,
        prefix: str = "[captcha]",
    ):
        self.chat_id = chat_id
        self.member_id = member_id
        self.member_name = member_name
        self.member_fullname = member_fullname
        self.prefix = prefix
        self._log_prefix = None

    @classmethod
    def from_user(cls, chat_id: int, user, prefix: str = "[captcha]") -> "LogContext":
        return cls(chat_id, user.id, user.username, user.full_name, prefix)

    @property
    def log_prefix(self) -> str:
        """获取格式化的日志前缀"""
        if self._log_prefix is None:
            self._log_prefix = f"{self.prefix} chat:{self.chat_id} member:{self.member_id}"
            if self.member_name:
                self._log_prefix += f"(@{self.member_name})"
            if self.member_fullname:
                self._log_prefix += f" name:{self.member_fullname}"
        return self._log_prefix
