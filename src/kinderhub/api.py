from fastapi import APIRouter

from kinderhub.modules.auth.router import router as auth_router
from kinderhub.modules.billing.router import router as subscriptions_router
from kinderhub.modules.children.router import router as children_router
from kinderhub.modules.classes.router import router as classes_router
from kinderhub.modules.homework.router import router as homework_router
from kinderhub.modules.messaging.router import router as messaging_router
from kinderhub.modules.notifications.router import router as notifications_router
from kinderhub.modules.push.router import router as push_router
from kinderhub.modules.users.router import router as admin_router
from kinderhub.modules.webhooks.router import router as webhooks_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["Authentication"])
api_router.include_router(children_router, prefix="/children", tags=["Children"])
api_router.include_router(classes_router, prefix="/classes", tags=["Classes"])
api_router.include_router(homework_router, prefix="/homework", tags=["Homework"])
api_router.include_router(messaging_router, prefix="/messaging", tags=["Messaging"])
api_router.include_router(subscriptions_router, prefix="/subscriptions", tags=["Subscriptions"])
api_router.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])
api_router.include_router(push_router, prefix="/push", tags=["Push Notifications"])
api_router.include_router(admin_router, prefix="/admin", tags=["Admin"])

# Mounted outside /api: gateways are configured with these exact URLs.
webhooks_api_router = APIRouter()
webhooks_api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])
