# classroom-bazaar/app/core/config.py

import os
from dotenv import load_dotenv

# .envファイルを読み込む（ローカル開発用）
# 本番環境（Cloud Runなど）ではファイルがないため無視されます
load_dotenv()


class Settings:
    # API設定
    API_V1_STR: str = "/api/v1"

    # DB設定
    # DATABASE_URL があればそちらを優先（ローカル/テストは sqlite を想定）
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_USER: str = os.getenv("DB_USER", "postgres")

    # .envではDB_PASSとなっているため、ここで名前を合わせて読み込みます
    DB_PASSWORD: str = os.getenv("DB_PASS", "password")

    # Cloud SQL接続名、またはローカルホスト
    DB_HOST: str = os.getenv("INSTANCE_CONNECTION_NAME", "localhost")
    DB_NAME: str = os.getenv("DB_NAME", "classroom_bazaar")

    # ミステリーボックスの既定値（作成時に省略された場合）
    DEFAULT_LUCK_MULTIPLIER: float = float(os.getenv("DEFAULT_LUCK_MULTIPLIER", "1.5"))
    DEFAULT_PITY_THRESHOLD: int = int(os.getenv("DEFAULT_PITY_THRESHOLD", "10"))
    DEFAULT_PITY_MINIMUM_RARITY: str = os.getenv("DEFAULT_PITY_MINIMUM_RARITY", "rare")

    # 台帳コミット: 一時的な競合時のリトライ回数
    LEDGER_MAX_RETRIES: int = int(os.getenv("LEDGER_MAX_RETRIES", "3"))
    # ボックス開封のタイムアウト（秒）。0以下なら無制限
    DRAW_TIMEOUT_SECONDS: float = float(os.getenv("DRAW_TIMEOUT_SECONDS", "5"))

    # タイムスタンプのタイムゾーン
    APP_TIMEZONE: str = os.getenv("APP_TIMEZONE", "Asia/Tokyo")

    # CORS設定
    CORS_ORIGINS: list = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ]

    # DEBUG mode
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"


# 設定インスタンスを作成してエクスポート
settings = Settings()
