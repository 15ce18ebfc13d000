"""
新成员验证流程
Member verification state machine

新成员 -> 基础检查 -> (移除 | 发送验证码) -> (回答正确 | 回答错误 | 超时) -> 结束

每个成员最多只有一条 PendingVerification。回答、超时和清理任务都通过
Registry.pop 争夺记录，拿到的一方执行最终操作，其余的直接放弃。
"""

import asyncio
import random
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .config import (
    CAPTCHA_TIMEOUT,
    MIN_ACCOUNT_AGE_DAYS,
    SUSPICIOUS_KEYWORDS,
    SWEEP_INTERVAL,
    AnswerText,
    VerificationState,
)
from .exceptions import ConfigurationError, LogContext
from .helpers import build_captcha_message, build_verified_message, generate_captcha, parse_callback_data
from .security import restore_member_permissions, restrict_member_permissions
from .session import PendingVerification, Registry
from .validators import passes_basic_validation


class MemberCaptcha:
    """
    gateway 需要提供 restrict / send / delete_message / kick / answer 协程，
    参见 manager.Manager
    """

    def __init__(
        self,
        gateway,
        channel,
        registry: Optional[Registry] = None,
        timeout: float = CAPTCHA_TIMEOUT,
        sweep_interval: float = SWEEP_INTERVAL,
        min_account_age_days: int = MIN_ACCOUNT_AGE_DAYS,
        keywords: Iterable[str] = SUSPICIOUS_KEYWORDS,
        rnd: random.Random = random,  # type: ignore[assignment]
    ):
        self.gateway = gateway
        self.channel = str(channel).strip()
        self.registry = registry if registry is not None else Registry()
        self.timeout = timeout
        self.sweep_interval = sweep_interval
        self.min_account_age_days = min_account_age_days
        self.keywords = tuple(keywords)
        self.rnd = rnd

        self._timers: Dict[int, asyncio.Task] = {}

    @classmethod
    def from_config(cls, gateway, config, registry: Optional[Registry] = None) -> "MemberCaptcha":
        channel = config["telegram"].get("channel", "").strip()
        if not channel:
            raise ConfigurationError("telegram channel is missing")

        section = config["captcha"]
        try:
            timeout = section.getfloat("timeout", CAPTCHA_TIMEOUT)
            sweep_interval = section.getfloat("sweep_interval", SWEEP_INTERVAL)
            min_account_age_days = section.getint("min_account_age_days", MIN_ACCOUNT_AGE_DAYS)
        except ValueError as e:
            raise ConfigurationError(f"captcha settings are invalid: {e}")

        if timeout <= 0 or sweep_interval <= 0:
            raise ConfigurationError("captcha timeout and sweep_interval must be positive")

        raw_keywords = section.get("keywords", ",".join(SUSPICIOUS_KEYWORDS))
        keywords = [i.strip().lower() for i in raw_keywords.split(",") if i.strip()]

        return cls(
            gateway,
            channel,
            registry=registry,
            timeout=timeout,
            sweep_interval=sweep_interval,
            min_account_age_days=min_account_age_days,
            keywords=keywords,
        )

    def is_monitored(self, chat_id) -> bool:
        return str(chat_id) == self.channel

    # 新成员

    async def on_new_members(self, chat_id: int, users, now: Optional[datetime] = None) -> Dict[int, Optional[str]]:
        """
        处理新加入的成员，返回每个成员的处理结果
        """
        results: Dict[int, Optional[str]] = {}
        if not self.is_monitored(chat_id):
            return results

        for user in users:
            if user.is_bot:
                continue

            try:
                results[user.id] = await self.on_new_member(chat_id, user, now)
            except Exception:
                logger.exception(f"[captcha] chat:{chat_id} member:{user.id} | new member handling failed")
                results[user.id] = None

        return results

    async def on_new_member(self, chat_id: int, user, now: Optional[datetime] = None) -> Optional[str]:
        log_context = LogContext.from_user(chat_id, user)
        logger.info(f"{log_context.log_prefix} | new member")

        if not passes_basic_validation(user, now, self.keywords, self.min_account_age_days):
            if await self.gateway.kick(chat_id, user.id):
                logger.info(f"{log_context.log_prefix} | basic validation failed | removed")
            else:
                logger.error(f"{log_context.log_prefix} | basic validation failed | remove failed")
            return VerificationState.SCREENED_REJECT

        return await self.issue_challenge(chat_id, user, now)

    async def issue_challenge(self, chat_id: int, user, now: Optional[datetime] = None) -> Optional[str]:
        log_context = LogContext.from_user(chat_id, user)

        # 重新加入的成员，先结束旧的验证
        stale = self.registry.pop(user.id)
        if stale is not None:
            await self._discard(stale)
            logger.info(f"{log_context.log_prefix} | previous verification discarded")

        if not await restrict_member_permissions(self.gateway, chat_id, user.id):
            logger.error(f"{log_context.log_prefix} | restrict failed | captcha skipped")
            return None

        captcha = generate_captcha(self.rnd)
        content, reply_markup = build_captcha_message(user, captcha, int(self.timeout), self.rnd)

        message_id = await self.gateway.send(chat_id, content, parse_mode="HTML", reply_markup=reply_markup)
        if message_id is None:
            # 成员已被禁言，移除后可以重新加入再试
            await self.gateway.kick(chat_id, user.id)
            logger.error(f"{log_context.log_prefix} | captcha send failed | removed")
            return None

        pending = PendingVerification(
            member_id=user.id,
            chat_id=chat_id,
            answer=captcha.answer,
            message_id=message_id,
            created_at=now or datetime.now(),
            label=user.username or user.full_name,
        )
        previous = self.registry.add(pending)
        if previous is not None:
            await self._discard(previous)

        self._schedule(user.id)

        logger.info(f"{log_context.log_prefix} | captcha sent | message:{message_id} question:{captcha.question}")
        return VerificationState.CHALLENGED

    # 回答

    async def on_answer(
        self,
        chat_id: int,
        query_id: str,
        member_id: int,
        data: Optional[str],
        message_id: Optional[int] = None,
    ) -> Optional[str]:
        if not self.is_monitored(chat_id):
            return None

        prefix = f"[callback] chat:{chat_id} member:{member_id}"

        pending = self.registry.get(member_id)
        if pending is None:
            await self.gateway.answer(query_id, AnswerText.EXPIRED)
            logger.info(f"{prefix} | verification expired")
            return None

        if message_id is not None and message_id != pending.message_id:
            await self.gateway.answer(query_id, AnswerText.NOT_YOURS)
            logger.info(f"{prefix} | clicked message:{message_id} but owns message:{pending.message_id}")
            return None

        pending = self.registry.pop(member_id)
        if pending is None:
            await self.gateway.answer(query_id, AnswerText.EXPIRED)
            return None

        if parse_callback_data(data) == pending.answer:
            return await self._accept(pending, query_id)

        return await self._reject(pending, query_id)

    async def _accept(self, pending: PendingVerification, query_id: str) -> Optional[str]:
        log_context = LogContext(pending.chat_id, pending.member_id, pending.label)

        self._cancel_timer(pending.member_id)

        if not await restore_member_permissions(self.gateway, pending.chat_id, pending.member_id):
            await self.gateway.answer(query_id, AnswerText.ERROR)
            logger.error(f"{log_context.log_prefix} | restore permissions failed")
            return await self._retry_later(pending)

        await self.gateway.delete_message(pending.chat_id, pending.message_id)
        await self.gateway.send(
            pending.chat_id, build_verified_message(pending.member_id, pending.label), parse_mode="HTML"
        )
        await self.gateway.answer(query_id, AnswerText.SUCCESS)

        logger.info(f"{log_context.log_prefix} | captcha passed")
        return VerificationState.VERIFIED

    async def _retry_later(self, pending: PendingVerification) -> Optional[str]:
        """
        验证消息还在，放回记录允许再次点击，并按剩余时间重新计时；
        已经超时则直接按超时处理
        """
        log_context = LogContext(pending.chat_id, pending.member_id, pending.label)

        if not self.registry.add_if_absent(pending):
            # 期间成员重新加入，新的验证接管
            await self.gateway.delete_message(pending.chat_id, pending.message_id)
            logger.info(f"{log_context.log_prefix} | superseded by a newer verification")
            return None

        elapsed = (datetime.now() - pending.created_at).total_seconds()
        remaining = self.timeout - elapsed
        if remaining <= 0:
            return await self.expire(pending.member_id)

        self._schedule(pending.member_id, remaining)
        logger.info(f"{log_context.log_prefix} | verification kept | {remaining:.1f}s left")
        return None

    async def _reject(self, pending: PendingVerification, query_id: str) -> str:
        log_context = LogContext(pending.chat_id, pending.member_id, pending.label)

        self._cancel_timer(pending.member_id)
        kicked = await self._remove(pending)
        await self.gateway.answer(query_id, AnswerText.FAILURE if kicked else AnswerText.ERROR)

        logger.info(f"{log_context.log_prefix} | captcha failed | removed:{kicked}")
        return VerificationState.FAILED

    # 超时

    def _schedule(self, member_id: int, delay: Optional[float] = None):
        self._cancel_timer(member_id)
        self._timers[member_id] = asyncio.create_task(
            self._deadline(member_id, self.timeout if delay is None else delay),
            name=f"captcha_deadline:{member_id}",
        )

    def _cancel_timer(self, member_id: int):
        task = self._timers.pop(member_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def cancel_timers(self):
        for member_id in list(self._timers):
            self._cancel_timer(member_id)

    async def _deadline(self, member_id: int, delay: float):
        await asyncio.sleep(delay)

        if self._timers.get(member_id) is asyncio.current_task():
            del self._timers[member_id]

        try:
            await self.expire(member_id)
        except Exception:
            logger.exception(f"[captcha] member:{member_id} | timeout handling failed")

    async def expire(self, member_id: int) -> Optional[str]:
        """超时：记录已不存在时什么也不做"""
        pending = self.registry.pop(member_id)
        if pending is None:
            logger.debug(f"[captcha] member:{member_id} | deadline ignored, already resolved")
            return None

        self._cancel_timer(member_id)
        await self._remove(pending)

        log_context = LogContext(pending.chat_id, pending.member_id, pending.label)
        logger.info(f"{log_context.log_prefix} | timed out")
        return VerificationState.TIMED_OUT

    async def sweep(self, now: Optional[datetime] = None) -> List[PendingVerification]:
        """
        清理超过 timeout 的记录，防止某个超时任务丢失
        """
        now = now or datetime.now()
        expired = self.registry.pop_expired(now, timedelta(seconds=self.timeout))

        for pending in expired:
            self._cancel_timer(pending.member_id)
            await self._remove(pending)

            log_context = LogContext(pending.chat_id, pending.member_id, pending.label)
            logger.warning(f"{log_context.log_prefix} | swept | created at {pending.created_at}")

        if expired:
            logger.info(f"[captcha] sweep removed {len(expired)} verifications")
        return expired

    async def run_sweeper(self):
        logger.info(f"[captcha] sweeper started, interval {self.sweep_interval}s")
        try:
            while True:
                await asyncio.sleep(self.sweep_interval)

                try:
                    await self.sweep()
                except Exception:
                    logger.exception("[captcha] sweep failed")
        finally:
            self.cancel_timers()

    # 离开

    async def on_member_left(self, chat_id: int, member_id: int) -> Optional[str]:
        if not self.is_monitored(chat_id):
            return None

        pending = self.registry.pop(member_id)
        if pending is None:
            return None

        await self._discard(pending)

        log_context = LogContext(pending.chat_id, pending.member_id, pending.label)
        logger.info(f"{log_context.log_prefix} | left during verification")
        return VerificationState.LEFT

    async def _remove(self, pending: PendingVerification) -> bool:
        """移除成员并删除验证消息"""
        kicked = await self.gateway.kick(pending.chat_id, pending.member_id)
        await self.gateway.delete_message(pending.chat_id, pending.message_id)
        return kicked

    async def _discard(self, pending: PendingVerification):
        """结束记录但不移除成员"""
        self._cancel_timer(pending.member_id)
        await self.gateway.delete_message(pending.chat_id, pending.message_id)
