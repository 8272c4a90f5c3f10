"""API routes."""

from fastapi import APIRouter

from restopos.api.routes import auth, orders, print_jobs, tables

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(tables.router, prefix="/tables", tags=["tables"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders", "kot", "billing"])
api_router.include_router(print_jobs.router, prefix="/print-jobs", tags=["print-agent"])
