# classroom-bazaar/app/utils/__init__.py
"""
ユーティリティモジュール
"""

from .time_utils import (
    get_now,
    to_app_tz,
    APP_TZ,
)
