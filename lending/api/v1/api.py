# lending/api/v1/api.py
from fastapi import APIRouter

from lending.api.v1.endpoints import items, requests, notifications, profiles, overdue

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(items.router, prefix="/items")
api_router_v1.include_router(requests.router, prefix="/requests")
api_router_v1.include_router(notifications.router, prefix="/notifications")
api_router_v1.include_router(profiles.router, prefix="/profiles")
api_router_v1.include_router(overdue.router)
