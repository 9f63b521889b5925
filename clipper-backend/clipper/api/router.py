from fastapi import APIRouter
from clipper.api.routes.health import router as health
from clipper.api.routes.payouts import router as payouts
from clipper.api.routes.throttle import router as throttle
from clipper.api.routes.budget import router as budget

router = APIRouter()
router.include_router(health)
router.include_router(payouts)
router.include_router(throttle)
router.include_router(budget)
