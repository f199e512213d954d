import os
import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from answer_crypto import AnswerCipherError, cipher_from_env
from errors import BadPayload, SubmissionError
from form_schema import FormSchemaError
from notify import NotificationDispatcher, SmtpSettings
from participants import Participant, load_participants, require_participant
from payloads import normalize_digital, read_submission
from pipeline import SubmissionPipeline
from submissions import JsonFileStore

from concurrent.futures import ThreadPoolExecutor

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
FORMS_PATH = os.getenv("FORMS_PATH", os.path.join(BASE_DIR, "forms.json"))
SUBMISSIONS_PATH = os.getenv("SUBMISSIONS_PATH", os.path.join(BASE_DIR, "data", "submissions.json"))
# Token sources
TOKENS_PATH = os.getenv("TOKENS_PATH", os.path.join(BASE_DIR, "tokens.json"))
PARTICIPANT_TOKENS = os.getenv("PARTICIPANT_TOKENS", "")  # format: token:participant[:email],...
# Threads for store calls; SMTP sends get their own pool so a stuck send never holds a store worker
STORE_WORKERS = int(os.getenv("STORE_WORKERS", "4"))
NOTIFY_WORKERS = int(os.getenv("NOTIFY_WORKERS", "2"))

# Logging configuration (includes filename and line number)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s [%(process)d] %(filename)s:%(lineno)d - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)
logger = logging.getLogger("studyforms")

app = FastAPI(title="Study Forms", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# In-memory state
_state: Dict[str, Any] = {
    "participants": {},  # token -> Participant
    "store": None,
    "pipeline": None,
    "executor": None,
    "notify_executor": None,
}


def _load_participants() -> Dict[str, Participant]:
    return load_participants(
        os.getenv("PARTICIPANT_TOKENS", PARTICIPANT_TOKENS),
        os.getenv("TOKENS_PATH", TOKENS_PATH),
    )


@app.exception_handler(SubmissionError)
async def submission_error_handler(request: Request, exc: SubmissionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.on_event("startup")
async def startup_event() -> None:
    forms_path = os.getenv("FORMS_PATH", FORMS_PATH)
    submissions_path = os.getenv("SUBMISSIONS_PATH", SUBMISSIONS_PATH)
    try:
        cipher = cipher_from_env()
    except AnswerCipherError as exc:
        raise RuntimeError(f"Invalid ANSWERS_ENC_KEY_BASE64: {exc}")
    try:
        store = JsonFileStore(forms_path, submissions_path, cipher)
    except Exception as exc:
        logger.exception("Failed to load forms from %s", forms_path)
        raise RuntimeError(f"Failed to load forms from {forms_path}: {exc}")
    if cipher is None:
        logger.warning("ANSWERS_ENC_KEY_BASE64 not set; answers are stored unencrypted")

    executor = ThreadPoolExecutor(max_workers=max(2, int(os.getenv("STORE_WORKERS", str(STORE_WORKERS)))),
                                  thread_name_prefix="store")
    notify_executor = ThreadPoolExecutor(max_workers=max(1, int(os.getenv("NOTIFY_WORKERS", str(NOTIFY_WORKERS)))),
                                         thread_name_prefix="notify")
    settings = SmtpSettings.from_env()
    if settings.missing():
        logger.warning("Notifications disabled: %s not configured", "/".join(settings.missing()))
    dispatcher = NotificationDispatcher(settings, executor=notify_executor)

    _state["executor"] = executor
    _state["notify_executor"] = notify_executor
    _state["store"] = store
    _state["pipeline"] = SubmissionPipeline(store, dispatcher, executor=executor)
    _state["participants"] = _load_participants()
    logger.info("Loaded %d participants, forms from %s", len(_state["participants"]), forms_path)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    executor = _state.get("executor")
    if executor is not None:
        executor.shutdown(wait=True)
    notify_executor = _state.get("notify_executor")
    if notify_executor is not None:
        # Let in-flight notifications finish
        notify_executor.shutdown(wait=True)


def _pipeline() -> SubmissionPipeline:
    pipeline = _state.get("pipeline")
    if pipeline is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return pipeline


def _participant(token: Optional[str]) -> Participant:
    return require_participant(_state["participants"], token)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/reload-forms")
async def reload_forms() -> Dict[str, int]:
    store = _state.get("store")
    if store is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    try:
        count = store.reload_forms()
    except (OSError, ValueError, FormSchemaError) as exc:
        logger.exception("Failed to reload forms")
        raise HTTPException(status_code=400, detail=f"Failed to reload forms: {exc}")
    return {"loaded": count}


@app.post("/reload-tokens")
async def reload_tokens() -> Dict[str, int]:
    mapping = _load_participants()
    _state["participants"] = mapping
    return {"loaded": len(mapping)}


@app.post("/forms/{form_id}/submit")
async def submit_form(
    form_id: str,
    request: Request,
    x_participant_token: Optional[str] = Header(None, alias="X-Participant-Token"),
) -> Dict[str, Any]:
    participant = _participant(x_participant_token)
    submission = await read_submission(request)
    logger.info("Submission received for participant=%s form=%s (%s)",
                participant.id, form_id, type(submission).__name__)
    # Shielded so a client disconnect cannot interrupt the recorder
    return await asyncio.shield(_pipeline().submit(participant, form_id, submission))


@app.put("/forms/{form_id}/draft")
async def save_draft(
    form_id: str,
    request: Request,
    x_participant_token: Optional[str] = Header(None, alias="X-Participant-Token"),
) -> Dict[str, Any]:
    participant = _participant(x_participant_token)
    try:
        body = await request.json()
    except ValueError:
        raise BadPayload("Invalid JSON body")
    return await _pipeline().save_draft(participant, form_id, normalize_digital(body))


@app.get("/forms/{form_id}/draft")
async def load_draft(
    form_id: str,
    x_participant_token: Optional[str] = Header(None, alias="X-Participant-Token"),
) -> Dict[str, Any]:
    participant = _participant(x_participant_token)
    answers = await _pipeline().load_answers(participant, form_id)
    return {"responses": answers or {}}


@app.get("/sections/{section_number}/forms")
async def section_forms(
    section_number: int,
    x_participant_token: Optional[str] = Header(None, alias="X-Participant-Token"),
) -> List[Dict[str, Any]]:
    participant = _participant(x_participant_token)
    return await _pipeline().list_section(participant, section_number)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
