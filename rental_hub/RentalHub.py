import logging
import os

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from db.deps import get_store
from db.session import UPLOAD_DIR
from db.store import DocumentStore
from schemas.catalog import ToolUpsert
from schemas.rentals import LogActionRequest, LoginRequest, RentRequest
from services.account_service import login
from services.catalog_service import delete_tool, get_tool, list_tools, replace_before_image, upsert_tool
from services.errors import RentalHubError, StoreUnavailable, ValidationError
from services.image_storage import ALLOWED_IMAGE_TYPES, ImageStorage, UploadedImage
from services.rental_service import list_logs, list_user_rentals, rent_tool, resolve_log
from services.return_pipeline import ReturnPipeline, ReturnSubmission
from services.scoring import AuthenticityScorer, HeuristicAuthenticityScorer, SizeRatioSimilarityScorer

APP_LOGGER = logging.getLogger("rental_hub.api")

app = FastAPI(title="RentalHub")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)
_APP_SESSION_SECRET = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
if len(_APP_SESSION_SECRET) >= 32:
    app.add_middleware(
        SessionMiddleware,
        secret_key=_APP_SESSION_SECRET,
        session_cookie="rental_hub_session",
        same_site="lax",
        https_only=False,
    )

_IMAGE_STORAGE = ImageStorage(UPLOAD_DIR)
_IMAGE_STORAGE.ensure_dirs()
_AUTHENTICITY_SCORER = HeuristicAuthenticityScorer()
_SIMILARITY_SCORER = SizeRatioSimilarityScorer()


def get_image_storage() -> ImageStorage:
    return _IMAGE_STORAGE


def get_authenticity_scorer() -> AuthenticityScorer:
    return _AUTHENTICITY_SCORER


def get_return_pipeline(
    store: DocumentStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
    authenticity: AuthenticityScorer = Depends(get_authenticity_scorer),
) -> ReturnPipeline:
    return ReturnPipeline(store, images, authenticity, _SIMILARITY_SCORER)


@app.exception_handler(RentalHubError)
async def handle_rental_hub_error(request: Request, exc: RentalHubError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"success": False, "code": "ValidationError", "message": "; ".join(problems) or "Invalid request."},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    APP_LOGGER.exception("Unhandled error path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "code": "InternalError", "message": "Internal server error."})


def _parse_user_id(raw: str | None) -> int | None:
    value = (raw or "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValidationError("userId must be numeric.", code="InvalidUserId") from exc


def _require_image(file: UploadFile | None) -> UploadFile | None:
    if file is None or not file.filename:
        return None
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(
            "Unsupported file type. Please upload an image (jpg, png, webp, gif).",
            code="UnsupportedImageType",
        )
    return file


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(store: DocumentStore = Depends(get_store)):
    try:
        store.load(strict=True)
        return {"status": "ok"}
    except StoreUnavailable as exc:
        return JSONResponse(status_code=503, content=exc.to_payload())


@app.post("/api/login")
def api_login(payload: LoginRequest, request: Request, store: DocumentStore = Depends(get_store)):
    result = login(store, payload.email, payload.password, payload.role)
    if "session" in request.scope:
        request.session["user"] = {"userId": result["userId"], "role": result["role"]}
    return result


@app.get("/api/tools")
def get_tools(store: DocumentStore = Depends(get_store)):
    return list_tools(store)


@app.get("/api/tools/{tool_id}")
def get_tool_item(tool_id: str, store: DocumentStore = Depends(get_store)):
    return get_tool(store, tool_id)


@app.post("/api/admin/tools")
def save_tool(payload: ToolUpsert, store: DocumentStore = Depends(get_store)):
    message, tool = upsert_tool(store, payload)
    return {"success": True, "message": message, "tool": tool}


@app.delete("/api/admin/tools/{tool_id}")
def remove_tool(tool_id: str, store: DocumentStore = Depends(get_store)):
    delete_tool(store, tool_id)
    return {"success": True, "message": "Tool deleted successfully."}


@app.post("/api/admin/tools/{tool_id}/before-image")
def upload_before_image(
    tool_id: str,
    image: UploadFile | None = File(None),
    store: DocumentStore = Depends(get_store),
    images: ImageStorage = Depends(get_image_storage),
):
    file = _require_image(image)
    if file is None:
        raise ValidationError("No image uploaded.", code="NoImage")
    tool = replace_before_image(store, images, tool_id, file.file, file.filename)
    return {"success": True, "message": "Reference image saved.", "tool": tool}


@app.post("/api/rent")
def rent(payload: RentRequest, store: DocumentStore = Depends(get_store)):
    rental = rent_tool(store, payload)
    return {"success": True, "message": "Tool rented successfully.", "rental": rental}


@app.get("/api/rentals/user/{user_id}")
def get_user_rentals(user_id: int, store: DocumentStore = Depends(get_store)):
    return list_user_rentals(store, user_id)


@app.post("/api/ai/detect")
def detect_synthetic_image(
    image: UploadFile | None = File(None),
    scorer: AuthenticityScorer = Depends(get_authenticity_scorer),
):
    file = _require_image(image)
    if file is None:
        raise ValidationError("No image uploaded.", code="NoImage")
    size = len(file.file.read())
    return scorer.score(None, file.filename, size).to_dict()


@app.post("/api/return/check")
def check_return(
    afterImage: UploadFile | None = File(None),
    toolId: str = Form(""),
    rentalId: str = Form(""),
    userId: str | None = Form(None),
    images: ImageStorage = Depends(get_image_storage),
    pipeline: ReturnPipeline = Depends(get_return_pipeline),
):
    tool_id = toolId.strip()
    user_id = _parse_user_id(userId)
    file = _require_image(afterImage)
    upload: UploadedImage | None = None
    if file is not None:
        upload = images.save_after(user_id if user_id is not None else "admin", tool_id or "temp", file.file, file.filename)

    submission = ReturnSubmission(tool_id=tool_id, rental_id=rentalId.strip(), user_id=user_id)
    return pipeline.process(submission, upload)


@app.get("/api/admin/logs")
def get_logs(store: DocumentStore = Depends(get_store)):
    return list_logs(store)


@app.post("/api/admin/logs/action")
def resolve_log_action(payload: LogActionRequest, store: DocumentStore = Depends(get_store)):
    resolve_log(store, payload.logId, payload.action)
    return {"success": True, "message": f"Log {payload.logId} resolved."}


@app.get("/db")
def dump_document(store: DocumentStore = Depends(get_store)):
    return store.load()


@app.get("/api/debug/db-status")
def db_status(store: DocumentStore = Depends(get_store)):
    return store.status()


app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR), check_dir=False), name="uploads")


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    port = int(os.getenv("PORT", "3000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
