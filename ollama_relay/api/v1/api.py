"""
API v1 Router
Aggregates all API endpoints.
"""
from fastapi import APIRouter

from ollama_relay.api.v1.endpoints import clients, ws_chat, ws_generate

api_router = APIRouter()

# Health check for API
@api_router.get("/ping", tags=["Health"])
async def ping():
    """Simple ping endpoint to verify API is responding"""
    return {"message": "pong", "api_version": "v1"}

# Include endpoint routers
api_router.include_router(clients.router, tags=["Clients"])
api_router.include_router(ws_chat.router, tags=["WebSocket Chat"])
api_router.include_router(ws_generate.router, tags=["WebSocket Generate"])
