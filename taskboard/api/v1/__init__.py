from fastapi import APIRouter
from taskboard.api.v1.boards import router as boards_router
from taskboard.api.v1.lists import router as lists_router
from taskboard.api.v1.tasks import router as tasks_router
from taskboard.api.v1.board_members import router as board_members_router
from taskboard.api.v1.websockets import router as websocket_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# Include routers
api_router.include_router(boards_router)
api_router.include_router(lists_router)
api_router.include_router(tasks_router)
api_router.include_router(board_members_router)
api_router.include_router(websocket_router)
