# classroom-bazaar/app/api/v1/endpoints/transactions.py

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.db import models
from app.schemas import mystery_box as mystery_box_schema
from app.api.v1.endpoints.users import get_current_user


router = APIRouter()


@router.get(
    "",
    response_model=list[mystery_box_schema.LedgerTransactionOut],
    summary="取引履歴（クラス・ボックスで絞り込み）",
)
def list_transactions(
    classroom_id: str | None = None,
    box_id: int | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    q = db.query(models.LedgerTransaction).filter(
        models.LedgerTransaction.user_id == current_user.id
    )

    if classroom_id:
        q = q.filter(models.LedgerTransaction.classroom_id == classroom_id)
    if box_id is not None:
        q = q.filter(models.LedgerTransaction.box_id == box_id)

    txs = (
        q.order_by(
            models.LedgerTransaction.created_at.desc(),
            models.LedgerTransaction.id.desc(),
        )
        .offset(offset)
        .limit(limit)
        .all()
    )
    return txs
