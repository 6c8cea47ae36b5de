# classroom-bazaar/app/main.py

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.db import models  # noqa: F401  テーブル定義を Base に登録する
from app.db.database import engine, Base
from app.api.v1.api import api_router
from app.core.config import settings
from app.core.errors import DrawError, draw_error_handler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Classroom Bazaar API", version="1.0.0")


@app.on_event("startup")
def startup_event():
    # 1. DBエンジンの確認
    if engine is None:
        print("⚠️ Database engine is None. Skipping operations.")
        # DB接続が失敗しても、FastAPI自体は起動させておく（ヘルスチェックをパスするため）
        return

    try:
        # 2. テーブル作成 (存在しない場合のみ作成されるため高速)
        Base.metadata.create_all(bind=engine)
        print("✅ Tables check passed.")

    except Exception as e:
        print(f"⚠️ Startup error: {e}")
        # 例外発生時も起動プロセスを停止させず、アプリを起動させる


# --- エラーハンドラ ---
# DrawError 系は {"ok": false, "error": {...}} で返す
app.add_exception_handler(DrawError, draw_error_handler)


# --- CORS設定 ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- ルーター ---
app.include_router(api_router, prefix=settings.API_V1_STR)


# --- 簡易エンドポイント ---
@app.get("/api/v1/ping")
def ping():
    return {"status": "success"}
