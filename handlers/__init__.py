from . import left_member, member_captcha  # noqa: F401 注册处理器
