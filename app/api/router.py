from fastapi import APIRouter
from app.modules.messaging.router import router as messaging_router, inbox_router

api_router = APIRouter()
api_router.include_router(messaging_router, prefix="/messaging", tags=["messaging"])
api_router.include_router(inbox_router, prefix="/inbox", tags=["inbox"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
