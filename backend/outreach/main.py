from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from outreach.core.config import settings
from outreach.core.logging import init_logging
from outreach.core.exceptions import register_exception_handlers
from outreach.api.v1 import router as api_router
from outreach.core.db import init_db as create_tables, engine
from outreach.db.init_db import init_db as seed_admin
from outreach.core.middleware import SecurityMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_logging()
    create_tables()
    with Session(engine) as session:
        seed_admin(session)
    yield


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.add_middleware(SecurityMiddleware)
register_exception_handlers(app)


@app.get(f"{settings.API_V1_STR}/health")
def health_check():
    return {
        "status": "ok",
        "email_provider": bool(settings.RESEND_API_KEY),
        "llm": bool(settings.LLM_API_KEY),
        "send_timezone": settings.SEND_TIMEZONE,
    }


app.include_router(api_router, prefix=settings.API_V1_STR)
