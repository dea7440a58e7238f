"""Liveness endpoint."""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    learning = request.app.state.learning_loop
    return {
        "status": "ok",
        "providers": [k.value for k in request.app.state.providers.kinds()],
        "learning_loop": {
            "running": learning.running,
            **vars(learning.stats),
        },
    }
