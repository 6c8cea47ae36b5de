# classroom-bazaar/app/core/errors.py
"""
ミステリーボックス関連のエラー定義

すべて DrawError を継承し、code / message / details と HTTP ステータスを持つ。
エンドポイント側では main.py の例外ハンドラが JSON に変換する。
"""

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


WEIGHT_SUM_INVALID = "WEIGHT_SUM_INVALID"
DUPLICATE_CANDIDATE = "DUPLICATE_CANDIDATE"
UNKNOWN_PRIZE = "UNKNOWN_PRIZE"
INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
MAX_OPENS_REACHED = "MAX_OPENS_REACHED"
POOL_MISCONFIGURED = "POOL_MISCONFIGURED"
BOX_NOT_FOUND = "BOX_NOT_FOUND"
LEDGER_CONFLICT = "LEDGER_CONFLICT"
DRAW_TIMEOUT = "DRAW_TIMEOUT"


class DrawError(Exception):
    """ミステリーボックス処理の基底エラー"""

    code: str = "DRAW_ERROR"
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            },
        }


# --- 設定エラー（保存時・開封前の再検証） ---

class WeightSumInvalid(DrawError):
    code = WEIGHT_SUM_INVALID


class DuplicateCandidate(DrawError):
    code = DUPLICATE_CANDIDATE


class UnknownPrize(DrawError):
    code = UNKNOWN_PRIZE


# --- プレイヤー向けエラー ---

class InsufficientBalance(DrawError):
    code = INSUFFICIENT_BALANCE


class MaxOpensReached(DrawError):
    code = MAX_OPENS_REACHED


class BoxNotFound(DrawError):
    code = BOX_NOT_FOUND
    status_code = 404


# --- 運用者（先生）向けエラー ---

class PoolMisconfigured(DrawError):
    code = POOL_MISCONFIGURED
    status_code = 500


# --- 一時的な失敗（もう一度試してください） ---

class LedgerConflict(DrawError):
    code = LEDGER_CONFLICT
    status_code = 409


class DrawTimeout(DrawError):
    code = DRAW_TIMEOUT
    status_code = 503


def draw_error_response(error: DrawError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def draw_error_handler(request: Request, exc: DrawError) -> JSONResponse:
    return draw_error_response(exc)
