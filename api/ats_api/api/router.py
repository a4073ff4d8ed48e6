from fastapi import APIRouter

from ats_api.api.routes import auth, billing, careers, health, integrations, oauth, scorecards, storage, subscription

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(integrations.router, prefix="/org/integrations", tags=["integrations"])
api_router.include_router(oauth.router, prefix="/org/integrations", tags=["integrations"])
api_router.include_router(subscription.router, prefix="/org/subscription", tags=["billing"])
api_router.include_router(careers.page_router, prefix="/org/career-page", tags=["career-page"])
api_router.include_router(storage.router, prefix="/storage", tags=["storage"])
api_router.include_router(scorecards.templates_router, prefix="/scorecard-templates", tags=["scorecards"])
api_router.include_router(scorecards.router, prefix="/scorecards", tags=["scorecards"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(billing.public_router, prefix="/public", tags=["public"])
api_router.include_router(careers.public_router, prefix="/careers", tags=["public"])
