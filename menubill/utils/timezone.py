from datetime import datetime, timedelta
from datetime import timezone as dt_timezone

UTC = dt_timezone.utc


class TimeZone:
    """All timestamps in the billing core are timezone-aware UTC."""

    def now(self) -> datetime:
        """获取当前时间"""
        return datetime.now(UTC)

    def from_datetime(self, t: datetime) -> datetime:
        """
        Normalise a datetime to aware UTC. Naive values are assumed to be UTC already.

        :param t: datetime
        :return:
        """
        if t.tzinfo is None:
            return t.replace(tzinfo=UTC)
        return t.astimezone(UTC)

    def from_timestamp(self, ts: int | float | None) -> datetime | None:
        """Convert a provider unix timestamp (seconds) into an aware datetime."""
        if ts is None:
            return None
        return datetime.fromtimestamp(int(ts), UTC)

    def parse(self, value: str | int | float | None) -> datetime | None:
        """
        Parse a webhook timestamp: ISO-8601 text, or unix seconds / milliseconds.

        :param value: raw value
        :return: aware datetime, or None if it cannot be read
        """
        if value is None or value == '':
            return None
        if isinstance(value, str) and not value.strip().isdigit():
            try:
                return self.from_datetime(datetime.fromisoformat(value.strip().replace('Z', '+00:00')))
            except ValueError:
                return None
        ts = float(value)
        # 毫秒时间戳
        if ts > 1e12:
            ts = ts / 1000
        return datetime.fromtimestamp(ts, UTC)

    def to_timestamp(self, t: datetime) -> int:
        return int(self.from_datetime(t).timestamp())

    def add_days(self, t: datetime, days: int) -> datetime:
        return self.from_datetime(t) + timedelta(days=days)

    def to_str(self, t: datetime, format_str: str = '%Y-%m-%d %H:%M:%S') -> str:
        """
        时间格式化

        :param t: datetime
        :param format_str: 时间格式
        :return:
        """
        return self.from_datetime(t).strftime(format_str)


timezone: TimeZone = TimeZone()
