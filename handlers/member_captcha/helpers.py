import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from aiogram import types
from aiogram.utils.text_decorations import html_decoration

from .config import (
    CALLBACK_PREFIX,
    DECOY_COUNT,
    DECOY_OFFSET_RANGE,
    MAX_DECOY_ATTEMPTS,
    OPERAND_RANGE,
)

# parse_mode=HTML, 名字需要转义
WELCOME_TEXT = (
    '🔐 Welcome <a href="tg://user?id=%(user_id)d">%(title)s</a>!\n\n'
    "To join this channel, please solve this simple math problem:\n\n"
    "<b>%(question)s = ?</b>\n\n"
    "Click the correct answer below within <b>%(timeout)d seconds</b>:"
)

VERIFIED_TEXT = (
    '✅ Welcome <a href="tg://user?id=%(user_id)d">%(title)s</a>! '
    "You have been verified and can now participate in the channel."
)


@dataclass
class Captcha:
    question: str
    answer: int


def generate_captcha(rnd: random.Random = random) -> Captcha:  # type: ignore[assignment]
    """
    生成简单的四则运算验证码，减法总是用大数减小数
    """
    a = rnd.randint(*OPERAND_RANGE)
    b = rnd.randint(*OPERAND_RANGE)
    operator = rnd.choice(["+", "-", "*"])

    if operator == "+":
        return Captcha(f"{a} + {b}", a + b)

    if operator == "-":
        high, low = max(a, b), min(a, b)
        return Captcha(f"{high} - {low}", high - low)

    return Captcha(f"{a} × {b}", a * b)


def generate_options(
    answer: int,
    rnd: random.Random = random,  # type: ignore[assignment]
    count: int = DECOY_COUNT,
    max_attempts: int = MAX_DECOY_ATTEMPTS,
) -> List[int]:
    """
    生成包含正确答案的乱序选项

    干扰项为 answer + [-10, 9] 内的随机偏移，必须为正数且互不相同。
    尝试 max_attempts 次仍不够时，按 answer+1, answer+2, ... 顺序补齐。
    """
    decoys: List[int] = []

    for _ in range(max_attempts):
        if len(decoys) >= count:
            break

        candidate = answer + rnd.randint(*DECOY_OFFSET_RANGE)
        if candidate == answer or candidate <= 0 or candidate in decoys:
            continue

        decoys.append(candidate)

    candidate = answer
    while len(decoys) < count:
        candidate += 1
        if candidate > 0 and candidate not in decoys:
            decoys.append(candidate)

    options = [answer, *decoys]
    rnd.shuffle(options)
    return options


def build_captcha_keyboard(options: List[int]) -> types.InlineKeyboardMarkup:
    buttons = [
        [types.InlineKeyboardButton(text=str(option), callback_data=f"{CALLBACK_PREFIX}{option}")]
        for option in options
    ]
    return types.InlineKeyboardMarkup(inline_keyboard=buttons)


def parse_callback_data(data: Optional[str]) -> Optional[int]:
    """
    解析按钮数据 captcha_<value>，格式不正确时返回 None
    """
    if not data or not data.startswith(CALLBACK_PREFIX):
        return None

    try:
        return int(data[len(CALLBACK_PREFIX):])
    except ValueError:
        return None


def build_captcha_message(
    user: types.User,
    captcha: Captcha,
    timeout: int,
    rnd: random.Random = random,  # type: ignore[assignment]
) -> Tuple[str, types.InlineKeyboardMarkup]:
    """
    构建新用户验证信息的按钮和文字内容
    """
    content = WELCOME_TEXT % {
        "title": html_decoration.quote(user.full_name),
        "user_id": user.id,
        "question": captcha.question,
        "timeout": timeout,
    }
    options = generate_options(captcha.answer, rnd)

    return content, build_captcha_keyboard(options)


def build_verified_message(member_id: int, title: str) -> str:
    return VERIFIED_TEXT % {"title": html_decoration.quote(title), "user_id": member_id}
