"""
Main API router aggregator
"""
from fastapi import APIRouter, Depends

from pjn_sync.api.v1.deps import verify_service_auth
from pjn_sync.api.v1.endpoints import (
    accounts,
    case_history,
    cases,
    health,
    links,
    participants,
    scrape,
    sync,
)

# Every /api/v1 route requires X-Service-Auth; only the root /health is open.
api_router = APIRouter(dependencies=[Depends(verify_service_auth)])

# Scraper
api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(scrape.router, prefix="/scrape", tags=["Scrape"])
api_router.include_router(case_history.router, prefix="/case-history", tags=["Case History"])
api_router.include_router(accounts.reauth_router, prefix="/reauth", tags=["Accounts"])
api_router.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])

# Sync orchestration
api_router.include_router(sync.router, prefix="/sync", tags=["Sync"])

# Entity matching
api_router.include_router(participants.router, prefix="/participants", tags=["Participants"])
api_router.include_router(links.router, prefix="/links", tags=["Links"])
api_router.include_router(cases.router, prefix="/cases", tags=["Cases"])
