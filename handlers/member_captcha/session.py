import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class PendingVerification:
    member_id: int
    chat_id: int
    answer: int
    message_id: int  # 验证消息，结束时删除
    created_at: datetime
    label: str  # 用户名或名字，用于日志

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at > ttl


class Registry:
    """
    正在验证的成员，member_id => PendingVerification

    pop 是唯一的同步点：拿到记录的一方负责执行最终操作，
    其余的回答、超时或清理任务都会拿到 None 并放弃。
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Dict[int, PendingVerification] = {}

    def add(self, pending: PendingVerification) -> Optional[PendingVerification]:
        """写入记录，返回被替换的旧记录"""
        with self._lock:
            previous = self._pending.get(pending.member_id)
            self._pending[pending.member_id] = pending
            return previous

    def add_if_absent(self, pending: PendingVerification) -> bool:
        """仅在没有记录时写入"""
        with self._lock:
            if pending.member_id in self._pending:
                return False
            self._pending[pending.member_id] = pending
            return True

    def get(self, member_id: int) -> Optional[PendingVerification]:
        with self._lock:
            return self._pending.get(member_id)

    def pop(self, member_id: int) -> Optional[PendingVerification]:
        with self._lock:
            return self._pending.pop(member_id, None)

    def pop_expired(self, now: datetime, ttl: timedelta) -> List[PendingVerification]:
        with self._lock:
            expired = [i for i in self._pending.values() if i.is_expired(now, ttl)]
            for pending in expired:
                del self._pending[pending.member_id]
            return expired

    def items(self) -> List[Tuple[int, PendingVerification]]:
        with self._lock:
            return list(self._pending.items())

    def __contains__(self, member_id: int) -> bool:
        with self._lock:
            return member_id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
