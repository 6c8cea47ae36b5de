# classroom-bazaar/app/utils/time_utils.py
"""
タイムゾーン関連のユーティリティ関数
"""

from datetime import datetime
from pytz import timezone as tz

from app.core.config import settings

APP_TZ = tz(settings.APP_TIMEZONE)


def get_now() -> datetime:
    """アプリのタイムゾーンでの現在時刻を取得"""
    return datetime.now(APP_TZ)


def to_app_tz(dt: datetime) -> datetime:
    """日時をアプリのタイムゾーンに変換"""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(APP_TZ)
    return APP_TZ.localize(dt)
