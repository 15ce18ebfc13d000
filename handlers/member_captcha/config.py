"""
成员验证模块配置和常量
Member captcha module configuration and constants
"""

import re
from typing import Tuple

# 时间配置 (秒)
CAPTCHA_TIMEOUT = 120  # 验证超时时间
SWEEP_INTERVAL = 60  # 清理过期验证的间隔

# 账号年龄估算: id / 1e6 => 自纪元起的天数
MIN_ACCOUNT_AGE_DAYS = 30
ID_PER_DAY = 1_000_000
MS_PER_DAY = 24 * 60 * 60 * 1000

# 可疑关键词
SUSPICIOUS_KEYWORDS: Tuple[str, ...] = ("bot", "police", "telegram", "remove", "deleted")

# 正则表达式
RE_TG_NAME = re.compile(r"^[a-zA-Z0-9_]{5,32}$")

# 验证码
CALLBACK_PREFIX = "captcha_"
OPERAND_RANGE = (1, 10)
DECOY_COUNT = 3
DECOY_OFFSET_RANGE = (-10, 9)
MAX_DECOY_ATTEMPTS = 100


# 验证状态
class VerificationState:
    """验证状态常量"""

    SCREENED_REJECT = "screened_reject"  # 基础检查未通过，已移除
    CHALLENGED = "challenged"  # 已发送验证码
    VERIFIED = "verified"  # 回答正确
    FAILED = "failed"  # 回答错误
    TIMED_OUT = "timed_out"  # 超时未回答
    LEFT = "left"  # 验证期间离开


# 回应文字
class AnswerText:
    """按钮回应文字"""

    EXPIRED = "Verification expired!"
    NOT_YOURS = "This challenge is not for you."
    SUCCESS = "✅ Verified successfully!"
    FAILURE = "❌ Wrong answer! You have been removed."
    ERROR = "Error processing verification!"
