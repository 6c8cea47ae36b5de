# classroom-bazaar/app/api/v1/endpoints/users.py

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    status,
    Header,
)
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.db import models

router = APIRouter()


def get_current_user(
    db: Session = Depends(get_db),
    # フロントエンドから "X-Firebase-Uid" というヘッダーでUIDを受け取る
    x_firebase_uid: str | None = Header(default=None),
):
    """
    リクエストヘッダーのUIDを元に、現在のユーザーを特定する。
    """
    if x_firebase_uid is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="認証情報(X-Firebase-Uid)が不足しています",
        )

    # DBからユーザーを検索
    user = (
        db.query(models.User).filter(models.User.firebase_uid == x_firebase_uid).first()
    )

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="ユーザーが見つかりません。先に登録してください。",
        )
    return user


def get_current_teacher(current_user: models.User = Depends(get_current_user)):
    """先生のみ許可"""
    if current_user.role != "teacher":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only teachers can perform this action",
        )
    return current_user


@router.get("/me/wallets")
def read_my_wallets(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    クラスごとの残高とラックを取得します。
    """
    wallets = (
        db.query(models.Wallet)
        .filter(models.Wallet.user_id == current_user.id)
        .order_by(models.Wallet.classroom_id)
        .all()
    )
    return {
        "luck": current_user.luck if current_user.luck is not None else 1.0,
        "wallets": [
            {"classroom_id": w.classroom_id, "balance": w.balance} for w in wallets
        ],
    }
