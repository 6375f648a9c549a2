from fastapi import APIRouter

from veridicus.api.v1.endpoints import analysis, cases, evidence, health

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(cases.router, prefix="/cases", tags=["Cases"])
api_router.include_router(evidence.router, prefix="/evidence", tags=["Evidence"])
api_router.include_router(analysis.query_router, prefix="/analysis", tags=["Analysis"])
api_router.include_router(analysis.analyses_router, prefix="/analyses", tags=["Analysis"])
api_router.include_router(
    analysis.contradictions_router, prefix="/contradictions", tags=["Contradictions"]
)

__all__ = ["api_router"]
