from fastapi import APIRouter
from turnstile.api.v1.routes.auth import router as auth_router
from turnstile.api.v1.routes.webhooks import router as webhooks_router
from turnstile.api.v1.routes.orders import router as orders_router
from turnstile.api.v1.routes.tickets import router as tickets_router
from turnstile.api.v1.routes.cron import router as cron_router
from turnstile.api.v1.routes.ops import router as ops_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(webhooks_router)
api_router.include_router(orders_router)
api_router.include_router(tickets_router)
api_router.include_router(cron_router)
api_router.include_router(ops_router)
