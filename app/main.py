from __future__ import annotations

import time
import logging

from fastapi import FastAPI, Request, Depends, HTTPException
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse
from sqlalchemy.orm import aliased

from app.core.config import settings
from app.core.errors import WorkflowError
from app.db.session import get_db
from app.auth.deps import get_current_user
from app.utils.badges import get_badge_count

# Import models to populate SQLAlchemy metadata (needed for create_all)
import app.db.models  # noqa: F401

from app.db.models.assignment import AssignmentStatus, FormAssignment
from app.db.models.form_template import FormTemplate
from app.db.models.submission import Submission

from app.auth.router import router as auth_router
from app.modules.labs.router import router as labs_router
from app.modules.forms.router import router as forms_router
from app.modules.users.router import router as users_router
from app.modules.notifications.router import router as notifications_router
from app.modules.submissions.router import router as submissions_router
from app.modules.workflow.router import router as workflow_router


logger = logging.getLogger("form_portal")


app = FastAPI(title=settings.APP_NAME)

# CORS (Access-Control-Allow-*) - configurable
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
)

# Compression for JSON (helps under load)
app.add_middleware(GZipMiddleware, minimum_size=800)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start = time.perf_counter()
    resp = await call_next(request)
    resp.headers["X-Process-Time-ms"] = f"{(time.perf_counter() - start) * 1000:.2f}"
    return resp


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    resp = await call_next(request)
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["X-Frame-Options"] = "SAMEORIGIN"
    resp.headers["Referrer-Policy"] = "same-origin"
    resp.headers["Permissions-Policy"] = "geolocation=(), camera=(), microphone=()"
    return resp


@app.exception_handler(WorkflowError)
async def workflow_exc_handler(request: Request, exc: WorkflowError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(HTTPException)
async def http_exc_handler(request: Request, exc: HTTPException):
    # 401: tell the client to log in again and drop the stale cookie
    if exc.status_code == 401:
        resp = JSONResponse(status_code=401, content={"detail": exc.detail, "login_url": "/login"})
        resp.headers["X-Session-Expired"] = "1"
        resp.delete_cookie("sid")
        return resp
    return await http_exception_handler(request, exc)


@app.exception_handler(Exception)
async def unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# Routers
app.include_router(auth_router)
app.include_router(labs_router)
app.include_router(forms_router)
app.include_router(users_router)
app.include_router(notifications_router)
app.include_router(submissions_router)
app.include_router(workflow_router)


@app.get("/health", response_class=JSONResponse)
def health():
    return {"status": "ok", "app": settings.APP_NAME}


@app.get("/health/auth", response_class=JSONResponse)
def health_auth(user=Depends(get_current_user)):
    return {"status": "ok", "authenticated": True, "user_id": user.id}


@app.get("/")
def home(db=Depends(get_db), user=Depends(get_current_user)):
    root = aliased(FormAssignment)
    kpi = {
        "unread_notifications": get_badge_count(db, user),
        # live nodes the user holds; the root's leaf pointer marks the holder
        "my_queue": db.query(FormAssignment)
        .join(root, root.id == FormAssignment.root_assignment_id)
        .filter(
            root.leaf_assignment_id == FormAssignment.id,
            FormAssignment.assigned_to_id == user.id,
            FormAssignment.status != AssignmentStatus.SUBMITTED,
        )
        .count(),
        "forms_distributed": db.query(FormTemplate).filter(FormTemplate.created_by_id == user.id).count(),
        "responses_received": db.query(Submission)
        .join(FormTemplate, FormTemplate.id == Submission.template_id)
        .filter(FormTemplate.created_by_id == user.id, Submission.status == AssignmentStatus.SUBMITTED)
        .count(),
    }
    return {"user_id": user.id, "kpi": kpi}
