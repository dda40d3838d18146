from datetime import datetime, timedelta


def in_soft_close(end_at: datetime, now: datetime, window_seconds: int) -> bool:
    return (end_at - now).total_seconds() <= window_seconds


def extend_end_at(
    end_at: datetime,
    now: datetime,
    window_seconds: int,
    extension_seconds: int,
) -> datetime:
    """
    End time after a bid accepted at *now*.

    A bid landing within *window_seconds* of the close pushes the close to
    ``now + extension_seconds``. The result is never earlier than *end_at*,
    and applying it again with the same *now* changes nothing.
    """
    if not in_soft_close(end_at, now, window_seconds):
        return end_at
    return max(end_at, now + timedelta(seconds=extension_seconds))
