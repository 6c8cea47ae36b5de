from fastapi import APIRouter
from .endpoints import (
    users,
    mystery_box,
    transactions,
    notification,
)

api_router = APIRouter()

api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(
    mystery_box.router, prefix="/mystery-boxes", tags=["Mystery Boxes"]
)
api_router.include_router(
    transactions.router, prefix="/transactions", tags=["Transactions"]
)  # 取引履歴
api_router.include_router(
    notification.router,
    tags=["Notifications"],
)
