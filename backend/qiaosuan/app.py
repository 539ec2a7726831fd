# backend/qiaosuan/app.py

import os, logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.status import HTTP_409_CONFLICT
from starlette.middleware.base import BaseHTTPMiddleware
from dotenv import load_dotenv

from qiaosuan.core import problem_source
from qiaosuan.core.schemas import (
    AnswerRequest,
    EndSessionResponse,
    SessionView,
)
from qiaosuan.core.session import QuizSession, QuizStateError

# ------------------------------------------------------------
# Setup
# ------------------------------------------------------------
load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("quiz")

app = FastAPI(title="巧算训练营 Quiz API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware to log requests
class LogRequestMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            body = await request.body()
            logger.info(
                f"Incoming {request.method} {request.url.path} body={body.decode('utf-8')}"
            )
        except Exception:
            logger.warning("Could not read request body")
        return await call_next(request)

app.add_middleware(LogRequestMiddleware)

# In-memory store: { session_id: QuizSession }, oldest evicted past the cap
SESSION_STORE: dict[str, QuizSession] = {}
MAX_SESSIONS = int(os.getenv("QUIZ_MAX_SESSIONS", "1000"))

# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def _evict_oldest() -> None:
    while SESSION_STORE and len(SESSION_STORE) >= MAX_SESSIONS:
        oldest = next(iter(SESSION_STORE))
        del SESSION_STORE[oldest]
        logger.info(f"Evicted session={oldest} (store full)")

def get_session(session_id: str) -> QuizSession:
    session = SESSION_STORE.get(session_id)
    if session is None:
        logger.warning(f"Session not found: {session_id}")
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return session

# ------------------------------------------------------------
# Exception handlers
# ------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()} body={exc.body}")
    return JSONResponse(
        status_code=422,
        content={
            "status": "error",
            "detail": exc.errors(),
            "body": exc.body,
        },
    )

@app.exception_handler(QuizStateError)
async def quiz_state_exception_handler(request: Request, exc: QuizStateError):
    logger.warning(f"Rejected action {request.url.path}: {exc}")
    return JSONResponse(
        status_code=HTTP_409_CONFLICT,
        content={"status": "error", "message": str(exc)},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": str(exc)},
    )

# ------------------------------------------------------------
# Routes
# ------------------------------------------------------------
@app.post("/sessions", response_model=SessionView)
def create_session():
    session = QuizSession()
    _evict_oldest()
    SESSION_STORE[session.session_id] = session
    logger.debug(f"Created session={session.session_id}")
    return session.view()

@app.get("/sessions/{session_id}", response_model=SessionView)
def read_session(session_id: str):
    return get_session(session_id).view()

@app.post("/sessions/{session_id}/start", response_model=SessionView)
async def start_session(session_id: str):
    session = get_session(session_id)
    await session.start(problem_source.fetch_problems_with_origin)
    return session.view()

@app.post("/sessions/{session_id}/answer", response_model=SessionView)
def submit_answer(session_id: str, req: AnswerRequest):
    session = get_session(session_id)
    record = session.submit(req.answer)
    if record is None:
        logger.debug(f"Ignored empty answer for session={session_id}")
    return session.view()

@app.post("/sessions/{session_id}/next", response_model=SessionView)
def next_problem(session_id: str):
    session = get_session(session_id)
    session.advance()
    return session.view()

@app.delete("/sessions/{session_id}", response_model=EndSessionResponse)
def end_session(session_id: str):
    session = get_session(session_id)
    del SESSION_STORE[session_id]
    logger.info(f"Cleared session={session_id}")

    return {
        "status": "ok",
        "message": f"Quiz session {session_id} ended.",
        "score": session.score,
        "total": len(session.problems),
    }

@app.get("/healthz")
def healthz():
    return {"ok": True}
