"""时间来源。

所有过期、窗口与时间戳判断都经由注入的时钟完成，测试中可替换为可拨动的时钟。
"""

from datetime import datetime, timezone


class Clock:
    """返回当前 UTC 时间的时钟。"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """为数据库读回的无时区时间补齐 UTC 时区（SQLite 不保存时区）。"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
