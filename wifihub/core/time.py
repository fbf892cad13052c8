from datetime import datetime, timezone, timedelta


# Costa Rica, no DST
CR = timezone(timedelta(hours=-6))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_tz(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def fmt_dt_cr(dt: datetime | None) -> str:
    if not dt:
        return "—"
    return ensure_tz(dt).astimezone(CR).strftime("%d/%m/%Y %H:%M CR")


def fmt_remaining(delta: timedelta | None) -> str:
    """'2 días' when at least a day is left, otherwise '5 horas'."""
    if delta is None:
        return "—"
    seconds = max(0, int(delta.total_seconds()))
    hours = (seconds + 3599) // 3600
    if hours >= 24:
        days = (hours + 23) // 24
        return f"{days} días" if days != 1 else "1 día"
    return f"{hours} horas" if hours != 1 else "1 hora"


def fmt_minutes(minutes: int | None) -> str:
    m = int(minutes or 0)
    hours, rem = divmod(m, 60)
    if hours and rem:
        return f"{hours} h {rem} min"
    if hours:
        return f"{hours} h"
    return f"{rem} min"
