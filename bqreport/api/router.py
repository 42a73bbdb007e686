from fastapi import APIRouter
from bqreport.api.endpoints import report

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(report.router)
