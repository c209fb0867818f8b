"""ExpenseFlow — FastAPI Application Factory."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from expenseflow.audit.router import router as audit_router
from expenseflow.budget.router import router as budget_router
from expenseflow.categories.router import router as categories_router
from expenseflow.common.exceptions import register_exception_handlers
from expenseflow.common.rate_limit import limiter
from expenseflow.config import settings
from expenseflow.employees.router import router as employees_router
from expenseflow.expenses.router import router as requests_router

VERSION = "1.0.0"


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="ExpenseFlow",
        description="Expense reimbursement and benefit budget workflow",
        version=VERSION,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(requests_router, prefix="/api/v1/requests", tags=["requests"])
    app.include_router(budget_router, prefix="/api/v1/budget", tags=["budget"])
    app.include_router(categories_router, prefix="/api/v1/categories", tags=["categories"])
    app.include_router(employees_router, prefix="/api/v1/employees", tags=["employees"])
    app.include_router(audit_router, prefix="/api/v1/audit", tags=["audit"])

    return app


app = create_app()
