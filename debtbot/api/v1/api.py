from fastapi import APIRouter
from debtbot.api.v1.endpoints import records, telegram

api_router = APIRouter()

api_router.include_router(records.router, prefix="/records", tags=["records"])
api_router.include_router(telegram.router, prefix="/telegram", tags=["telegram"])
