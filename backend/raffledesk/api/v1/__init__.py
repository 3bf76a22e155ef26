from fastapi import APIRouter

from raffledesk.api.v1.raffles import router as raffles_router
from raffledesk.api.v1.registration import router as registration_router

router = APIRouter()
router.include_router(raffles_router)
router.include_router(registration_router)
