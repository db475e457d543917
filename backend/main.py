import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import fastapi_users, auth_backend
from core.config import settings
from db.database import create_db_and_tables, get_async_session
from routers.allocations import router as allocations_router
from routers.categories import router as categories_router
from routers.movements import router as movements_router
from routers.requests import router as requests_router
from routers.specialties import router as specialties_router
from routers.stock_items import router as stock_items_router
from routers.users import router as users_router
from schemas.users import UserRead, UserCreate, UserUpdate
from services.errors import InventoryError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    logger.info("Database ready")
    yield


app = FastAPI(
    title="Promo Inventory API",
    description="API for managing promotional materials stock, allocations and requests",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"],)
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(users_router, prefix="/users", tags=["users"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Catalog
app.include_router(categories_router, prefix="/categories", tags=["categories"])
app.include_router(specialties_router, prefix="/specialties", tags=["specialties"])

# Stock
app.include_router(stock_items_router, prefix="/stock-items", tags=["stock-items"])
app.include_router(allocations_router, prefix="/allocations", tags=["allocations"])
app.include_router(movements_router, prefix="/movements", tags=["movements"])

# Requests workflow
app.include_router(requests_router, prefix="/requests", tags=["requests"])


@app.get("/health", tags=["health"])
async def health(db: AsyncSession = Depends(get_async_session)):
    await db.execute(text("SELECT 1"))
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
