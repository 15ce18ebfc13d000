"""
新成员基础检查
Heuristic screening of newly joined members

所有函数均无副作用，只依赖传入的用户资料和当前时间。
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from .config import ID_PER_DAY, MIN_ACCOUNT_AGE_DAYS, MS_PER_DAY, RE_TG_NAME, SUSPICIOUS_KEYWORDS


def _contains_keyword(text: str, keywords: Iterable[str]) -> bool:
    text = text.lower()
    return any(keyword.lower() in text for keyword in keywords)


def is_valid_username(username: Optional[str], keywords: Iterable[str] = SUSPICIOUS_KEYWORDS) -> bool:
    """
    用户名必须存在，不含可疑关键词，且为 5-32 位字母、数字或下划线
    """
    if not username:
        return False

    if _contains_keyword(username, keywords):
        return False

    return RE_TG_NAME.match(username) is not None


def has_clean_profile(user, keywords: Iterable[str] = SUSPICIOUS_KEYWORDS) -> bool:
    """
    名字与用户名中不能出现可疑关键词

    用户名在 is_valid_username 中已经检查过一次，这里再次检查是有意为之。
    """
    profile = " ".join([user.first_name or "", user.last_name or "", user.username or ""])
    return not _contains_keyword(profile, keywords)


def estimated_creation_ms(user_id: int) -> float:
    """
    根据用户 id 估算注册时间 (毫秒时间戳)

    假定 id 随时间线性增长，每天约 1,000,000 个。这只是粗略估计，
    低 id 或者 id 分配方式变化时会出现误判。
    """
    return (user_id / ID_PER_DAY) * MS_PER_DAY


def is_account_old_enough(
    user_id: int, now: Optional[datetime] = None, min_age_days: int = MIN_ACCOUNT_AGE_DAYS
) -> bool:
    if now is None:
        now = datetime.now()

    threshold_ms = (now - timedelta(days=min_age_days)).timestamp() * 1000
    return estimated_creation_ms(user_id) < threshold_ms


def passes_basic_validation(
    user,
    now: Optional[datetime] = None,
    keywords: Iterable[str] = SUSPICIOUS_KEYWORDS,
    min_age_days: int = MIN_ACCOUNT_AGE_DAYS,
) -> bool:
    keywords = tuple(keywords)

    valid_username = is_valid_username(user.username, keywords)
    clean_profile = has_clean_profile(user, keywords)
    old_enough = is_account_old_enough(user.id, now, min_age_days)

    return valid_username and clean_profile and old_enough
