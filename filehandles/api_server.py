"""
File handle console API server

FastAPI backend exposing:
- GET  /file-handles            open-handle dump (text/plain) or the "not running" view
- POST /file-handles/activate   attach the file-leak-detector agent (POST only)
- GET  /file-handles/status     agent residency as JSON
- Ed25519 admin login (/auth/*)
- Management link metadata (/manage)

Run: uvicorn filehandles.api_server:app
"""
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import Cookie, Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from filehandles.agent import DiagnosticsAgent
from filehandles.auth import AdminAuth
from filehandles.config import (
    FHC_VERSION,
    HOST,
    JWT_TTL_HOURS,
    PORT,
    SESSION_COOKIE,
    get_cors_origins,
    get_db_path,
)
from filehandles.console import FILE_HANDLES_LINK, ActivationFailed, HandleConsole
from filehandles.observability import configure_logging, configure_observability, instrument_app

# =============================================================================
# SETUP
# =============================================================================

DB_PATH = get_db_path()
DB_PATH.parent.mkdir(parents=True, exist_ok=True)

TEMPLATE_DIR = Path(__file__).parent / "templates"

_auth = AdminAuth(db_path=DB_PATH)
_console = HandleConsole(DiagnosticsAgent.from_config())

templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    public_key_hex: str

class ChallengeRequest(BaseModel):
    address: str

class VerifyRequest(BaseModel):
    address: str
    signature_hex: str

class StatusResponse(BaseModel):
    active: bool
    listener: str
    agent_main: str
    pid: int

# =============================================================================
# AUTH DEPENDENCY
# =============================================================================

async def get_current_admin(
    authorization: Optional[str] = Header(None),
    fhc_session: Optional[str] = Cookie(None),
) -> dict:
    if authorization:
        token = authorization[7:] if authorization.startswith("Bearer ") else authorization
    elif fhc_session:
        token = fhc_session
    else:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    payload = _auth.verify_jwt(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    admin = _auth.get_admin(payload["sub"])
    if not admin:
        raise HTTPException(status_code=401, detail="Key not found or revoked")
    return {"address": admin.address, "name": admin.name}


async def require_admin(admin: dict = Depends(get_current_admin)) -> dict:
    if not _auth.is_admin(admin["address"]):
        raise HTTPException(status_code=403, detail="Admin access required")
    return admin

# =============================================================================
# APP
# =============================================================================

configure_observability()

app = FastAPI(
    title="Open File Handles",
    description="Open file handle monitoring for the server process",
    version=FHC_VERSION,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

instrument_app(app)


@app.exception_handler(ActivationFailed)
async def activation_failed_handler(request: Request, exc: ActivationFailed):
    # The captured helper output is the useful part; no traceback.
    return PlainTextResponse(exc.message, status_code=400)

# =============================================================================
# AUTH
# =============================================================================

@app.post("/auth/register", status_code=201)
async def register_key(req: RegisterRequest):
    try:
        address = _auth.register(req.name, req.public_key_hex)
    except ValueError as e:
        status = 409 if "already registered" in str(e) else 400
        raise HTTPException(status_code=status, detail=str(e))
    return {"address": address, "name": req.name}


@app.post("/auth/challenge")
async def create_challenge(req: ChallengeRequest):
    try:
        challenge = _auth.create_challenge(req.address)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"challenge": challenge.hex()}


@app.post("/auth/verify")
async def verify_challenge(req: VerifyRequest):
    result = _auth.verify_challenge(req.address, req.signature_hex)
    if not result.success:
        raise HTTPException(status_code=401, detail=result.error)
    response = JSONResponse({
        "token": result.token,
        "address": result.admin.address,
        "expires_at": result.expires_at,
    })
    response.set_cookie(
        SESSION_COOKIE, result.token,
        max_age=JWT_TTL_HOURS * 3600, httponly=True, samesite="strict",
    )
    return response

# =============================================================================
# OPEN FILE HANDLES
# =============================================================================

@app.get("/file-handles")
def file_handles(request: Request, admin: dict = Depends(require_admin)):
    dump = _console.report()
    if dump is None:
        return templates.TemplateResponse(request, "file_handles/not_running.html", {
            "link": FILE_HANDLES_LINK,
        })
    return PlainTextResponse(dump)


@app.post("/file-handles/activate", response_class=PlainTextResponse)
async def activate(request: Request, admin: dict = Depends(require_admin)):
    opts = request.query_params.get("opts")
    if opts is None and request.headers.get("content-type", "").startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        opts = form.get("opts")
    result = await run_in_threadpool(_console.activate, opts)
    return PlainTextResponse(result.message)


@app.get("/file-handles/status", response_model=StatusResponse)
def file_handles_status(admin: dict = Depends(require_admin)):
    agent = _console.agent
    return StatusResponse(
        active=_console.is_active(),
        listener=agent.listener_name,
        agent_main=agent.main_module,
        pid=os.getpid(),
    )

# =============================================================================
# MANAGEMENT / HEALTH
# =============================================================================

@app.get("/manage")
async def management_links():
    return [FILE_HANDLES_LINK.to_dict()]


@app.get("/health")
async def health():
    return {"status": "healthy", "version": FHC_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/", response_class=HTMLResponse)
async def root(request: Request):
    accept = request.headers.get("accept", "")
    if "text/html" in accept:
        return templates.TemplateResponse(request, "index.html", {
            "links": [FILE_HANDLES_LINK],
            "version": FHC_VERSION,
        })
    return JSONResponse({
        "name": "Open File Handles",
        "version": FHC_VERSION,
        "docs": "/docs",
        "manage": "/manage",
    })


def main() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
