from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from conversai.api_utils import http_exception_handler, unhandled_exception_handler, validation_exception_handler
from conversai.config import settings
from conversai.deps import init_db
from conversai.logging_config import configure_structlog
from conversai.middleware import RequestIdMiddleware
from conversai.services import scheduler

# Routers
from conversai.routers import ai, analytics, app_owner, auth, posts, scheduler_api
from conversai.routers import social_accounts, social_connect, user

configure_structlog()

app = FastAPI(title="ConversAI Social API", version="1.0.0")
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


@app.on_event("startup")
def _startup():
    init_db()
    if settings.scheduler_autostart:
        scheduler.start_scheduler()


@app.on_event("shutdown")
def _shutdown():
    scheduler.stop_scheduler()


@app.get("/")
def root():
    return {"message": "ConversAI Social API is running!"}


# Mount routes
app.include_router(auth.router)              # /api/auth/*
app.include_router(user.router)              # /api/user/*
app.include_router(posts.router)             # /api/posts/*
app.include_router(social_accounts.router)   # /api/social/accounts/*
app.include_router(social_connect.router)    # /api/social/{platform}/connect|callback
app.include_router(analytics.router)         # /api/analytics/*
app.include_router(ai.router)                # /api/ai/*
app.include_router(app_owner.router)         # /api/app-owner/*
app.include_router(scheduler_api.router)     # /api/scheduler/*
