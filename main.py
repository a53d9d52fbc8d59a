import os
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

import database
import notifications
import routes_admin
import routes_analytics
import routes_audio
import routes_auth
import routes_challenges
import routes_coach
import routes_community
import routes_focus
import routes_game_media
import routes_games
import routes_licenses
import routes_users
import storage
from security import JWT_ISSUER, JWT_AUDIENCE, JWT_EXP_HOURS

logger = logging.getLogger("refocus")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.error("Database not available, skipping index creation")
    else:
        database.ensure_indexes()
        logger.info("Indexes ensured on %s", database.db.name)
    yield


app = FastAPI(title="ReFocus API", version="1.0.0", lifespan=lifespan)

# ---------------------------------------------------------------------
# CORS: frontend origin plus allowlist from env
# ---------------------------------------------------------------------
_raw_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
if _raw_origins:
    ALLOWED_ORIGINS = [o.strip().rstrip("/") for o in _raw_origins.split(",") if o.strip()]
else:
    # Safe defaults for local dev only
    ALLOWED_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]
if notifications.FRONTEND_URL not in ALLOWED_ORIGINS:
    ALLOWED_ORIGINS.append(notifications.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------
# Error envelope: every failure answers {"message": ...}
# ---------------------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        body = dict(exc.detail)
        body.setdefault("message", "Request failed")
    else:
        body = {"message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
    return JSONResponse(status_code=400, content={"message": "Validation error", "errors": errors})


@app.exception_handler(Exception)
async def server_error(request: Request, exc: Exception):
    error_id = uuid.uuid4().hex[:12]
    logger.exception("Unhandled error %s on %s %s", error_id, request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error", "errorId": error_id})


# ---------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------
for r in (
    routes_auth.router,
    routes_users.router,
    routes_admin.router,
    routes_coach.router,
    routes_focus.sessions_router,
    routes_focus.goals_router,
    routes_focus.survey_router,
    routes_community.router,
    routes_challenges.templates_router,
    routes_challenges.challenges_router,
    routes_games.dev_router,
    routes_games.reviews_router,
    routes_games.library_router,
    routes_game_media.router,
    routes_analytics.dev_router,
    routes_analytics.admin_router,
    routes_licenses.dev_router,
    routes_licenses.admin_router,
    routes_audio.router,
    routes_audio.admin_router,
):
    app.include_router(r)

os.makedirs(storage.UPLOAD_DIR, exist_ok=True)
app.mount(storage.UPLOAD_URL_PREFIX, StaticFiles(directory=storage.UPLOAD_DIR), name="uploads")


@app.get("/")
def read_root():
    return {"message": "ReFocus backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "email": {
            "transport": notifications.email_transport(),
            "from": notifications.EMAIL_FROM,
        },
        "jwt": {
            "secret": "✅ Set" if os.getenv("JWT_SECRET") else "⚠️ Using development default",
            "issuer": JWT_ISSUER,
            "audience": JWT_AUDIENCE,
            "exp_hours": JWT_EXP_HOURS,
        },
        "cors": {
            "allowed_origins": ALLOWED_ORIGINS,
        },
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if database.DATABASE_URL else "❌ Not Set (in-memory)"
            response["database_name"] = database.db.name
            response["connection_status"] = "In-memory" if database.USING_MEMORY else "Connected"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("APP_PORT") or os.getenv("PORT", 5050))
    uvicorn.run(app, host="0.0.0.0", port=port)
