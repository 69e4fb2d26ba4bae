import logging
import os
import time
import uuid
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from wirecode import llm_client
from wirecode.auth import current_identity, extract_client_key, keys_required, require_api_key
from wirecode.isolation import prepare
from wirecode.lifecycle import DEFAULT_HEIGHT, PreviewController
from wirecode.render import render_host_panel, render_index
from wirecode.store import DuplicateRecordError, RecordNotFoundError, StoreError, get_store


if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

_rl_mod = None
try:
    import wirecode.ratelimit as _rl_mod
except Exception:
    _rl_mod = None

_rr_cls = None
try:
    from wirecode.redis_ratelimit import RedisRateLimiter as _rr_cls
except Exception:
    _rr_cls = None


app = FastAPI(title="wirecode")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class PreviewRequest(BaseModel):
    code: Optional[str] = Field(default=None, description="Generated source; empty shows the placeholder")
    language: Optional[str] = Field(default=None, description="Optional hint, e.g. 'html' or 'react'")


class PreviewRenderRequest(PreviewRequest):
    height: str = DEFAULT_HEIGHT
    wait_for_load: bool = False


class ConvertRequest(BaseModel):
    image_url: str = Field(..., min_length=1, description="data: URL or http(s) URL of the wireframe")
    description: str = ""
    model_id: str = "gemini"


class AnalyzeRequest(BaseModel):
    image_url: str = Field(..., min_length=1)
    model_id: str = "gemini"


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
    password: str = Field(..., min_length=6)


class ProjectCreate(BaseModel):
    user_id: int
    title: str = Field(..., min_length=1)
    image_url: str
    ai_model: str
    generated_code: str


class ProjectUpdate(BaseModel):
    title: Optional[str] = None
    image_url: Optional[str] = None
    ai_model: Optional[str] = None
    generated_code: Optional[str] = None


class AIModelCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""


# Choose rate limiter based on environment
_REDIS_URL = os.getenv("REDIS_URL", "").strip()
_rl_instance = None
if _REDIS_URL and _rr_cls and not os.getenv("PYTEST_CURRENT_TEST"):
    try:
        _rl_instance = _rr_cls(_REDIS_URL)
    except Exception as e:
        log.warning("ratelimit: redis limiter unavailable (%s); using in-process limiter", e)
        _rl_instance = None


def _safe_rate_check(bucket: str, key: str) -> Tuple[bool, int, int]:
    """
    Return (allowed, remaining, reset_ts).
    Redis first when configured, then the in-process limiter; fails open.
    """
    if _rl_instance and not os.getenv("PYTEST_CURRENT_TEST"):
        try:
            return _rl_instance.check_and_increment(bucket, key)
        except Exception as e:
            log.warning("ratelimit: redis check failed (%s); falling back", e)
    if _rl_mod:
        return _rl_mod.check_and_increment(bucket, key)
    return True, 9999, int(time.time()) + 60


def _rate_limit_headers(remaining: int, reset_ts: int, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_ts),
    }
    if limited:
        wait_seconds = max(0, reset_ts - int(time.time()))
        headers["Retry-After"] = str(wait_seconds)
    return headers


def _rate_limit_payload(reset_ts: int) -> Dict[str, Any]:
    wait_seconds = max(0, reset_ts - int(time.time()))
    return {
        "error": "rate limit exceeded",
        "reset": reset_ts,
        "retry_after_seconds": wait_seconds,
        "message": f"Rate limit exceeded. Try again in {wait_seconds} seconds.",
    }


def _offline_allowed() -> bool:
    return os.getenv("ALLOW_OFFLINE_GENERATION", "0").lower() in {"1", "true", "yes", "on"}


def _client_key(api_key: str, request: Request) -> str:
    return extract_client_key(api_key, request.client.host if request.client else "anon")


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    log.error("store failure on %s: %s", request.url.path, exc)
    return _message(500, "Server error")


# --- pages and status --------------------------------------------------------

@app.get("/", response_class=HTMLResponse)
def root(request: Request) -> str:
    return render_index(identity=current_identity(request), keys_required=keys_required())


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_client.status()


@app.get("/llm/probe")
def llm_probe_endpoint() -> Dict[str, Any]:
    return llm_client.probe()


@app.get("/me")
def me(request: Request) -> Dict[str, Any]:
    return current_identity(request).as_dict()


# --- preview -----------------------------------------------------------------

@app.post("/preview")
def preview(req: PreviewRequest) -> Dict[str, Any]:
    """Describe the isolation document the code would be previewed in."""
    return prepare(req.code, req.language).as_dict()


@app.post("/preview/render", response_class=HTMLResponse)
def preview_render(req: PreviewRenderRequest) -> HTMLResponse:
    """
    Full host panel page: loading state plus the sandboxed frame. Timing
    after this point is driven by the host script in the browser.
    """
    controller = PreviewController(height=req.height, wait_for_load=req.wait_for_load)
    try:
        controller.update(req.code, req.language)
        view = controller.view()
    finally:
        controller.dispose()
    return HTMLResponse(render_host_panel(view))


# --- generation --------------------------------------------------------------

@app.post("/convert")
def convert(req: ConvertRequest, request: Request, api_key: str = Depends(require_api_key)):
    info = llm_client.status()
    llm_available = bool(info.get("has_token"))
    if not llm_available and not _offline_allowed():
        return JSONResponse(
            status_code=503,
            content={"error": "LLM unavailable", "message": "No model provider is configured"},
        )

    allowed, remaining, reset_ts = _safe_rate_check("convert", _client_key(api_key, request))
    log.info("rate_limit convert allowed=%s remaining=%s", allowed, remaining)
    if not allowed:
        return JSONResponse(
            status_code=429,
            content=_rate_limit_payload(reset_ts),
            headers=_rate_limit_headers(remaining, reset_ts, limited=True),
        )

    if llm_available:
        try:
            result = llm_client.generate_code(req.image_url, req.description, req.model_id)
        except llm_client.GenerationError as e:
            log.warning("convert failed: %s", e)
            return JSONResponse(
                status_code=502,
                content={"error": "generation failed", "message": str(e)},
                headers=_rate_limit_headers(remaining, reset_ts),
            )
    else:
        language = llm_client.output_format(req.description)
        result = llm_client.GeneratedCode(llm_client.offline_code(language), language, "offline")

    document = prepare(result.code, result.language)
    body = result.as_dict()
    body["preview"] = document.as_dict()
    return JSONResponse(content=body, headers=_rate_limit_headers(remaining, reset_ts))


@app.post("/analyze")
def analyze(req: AnalyzeRequest, request: Request, api_key: str = Depends(require_api_key)):
    if not llm_client.status().get("has_token"):
        return JSONResponse(
            status_code=503,
            content={"error": "LLM unavailable", "message": "No model provider is configured"},
        )
    allowed, remaining, reset_ts = _safe_rate_check("analyze", _client_key(api_key, request))
    if not allowed:
        return JSONResponse(
            status_code=429,
            content=_rate_limit_payload(reset_ts),
            headers=_rate_limit_headers(remaining, reset_ts, limited=True),
        )
    try:
        analysis = llm_client.analyze_image(req.image_url, req.model_id)
    except llm_client.GenerationError as e:
        log.warning("analyze failed: %s", e)
        return JSONResponse(status_code=502, content={"error": "analysis failed", "message": str(e)})
    return JSONResponse(content=analysis, headers=_rate_limit_headers(remaining, reset_ts))


# --- records -----------------------------------------------------------------

@app.post("/api/users", status_code=201)
def create_user(req: UserCreate):
    try:
        user = get_store().create_user(req.name, req.email, req.password)
    except DuplicateRecordError as e:
        return _message(400, str(e))
    return JSONResponse(status_code=201, content={"success": True, "data": user})


@app.get("/api/users/{user_id}")
def get_user(user_id: int):
    try:
        user = get_store().get_user(user_id)
    except RecordNotFoundError as e:
        return _message(404, str(e))
    return {"success": True, "data": user}


@app.post("/api/projects", status_code=201)
def create_project(req: ProjectCreate):
    try:
        project = get_store().create_project(
            req.user_id, req.title, req.image_url, req.ai_model, req.generated_code
        )
    except RecordNotFoundError as e:
        return _message(404, str(e))
    return JSONResponse(status_code=201, content={"success": True, "data": project})


@app.get("/api/projects/user/{user_id}")
def list_user_projects(user_id: int):
    projects = get_store().list_projects(user_id)
    return {"success": True, "count": len(projects), "data": projects}


@app.get("/api/projects/{project_id}")
def get_project(project_id: int):
    try:
        project = get_store().get_project(project_id)
    except RecordNotFoundError as e:
        return _message(404, str(e))
    return {"success": True, "data": project}


@app.patch("/api/projects/{project_id}")
def update_project(project_id: int, req: ProjectUpdate):
    try:
        project = get_store().update_project(project_id, req.model_dump(exclude_none=True))
    except RecordNotFoundError as e:
        return _message(404, str(e))
    return {"success": True, "data": project}


@app.delete("/api/projects/{project_id}")
def delete_project(project_id: int):
    try:
        get_store().delete_project(project_id)
    except RecordNotFoundError as e:
        return _message(404, str(e))
    return {"success": True, "data": {"project_id": project_id}}


@app.post("/api/aimodels", status_code=201)
def create_ai_model(req: AIModelCreate):
    try:
        model = get_store().create_ai_model(req.name, req.description)
    except DuplicateRecordError as e:
        return _message(400, str(e))
    return JSONResponse(status_code=201, content={"success": True, "data": model})


@app.get("/api/aimodels")
def list_ai_models():
    models = get_store().list_ai_models()
    return {"success": True, "count": len(models), "data": models}
