import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .config import CORS_ORIGINS, HOST, LOG_LEVEL, PORT
from .errors import NoDataError, NotFoundError, ValidationError
from .models import utcnow
from .report import build_csv_report
from .schemas import (
    EventResponse,
    HealthResponse,
    LogEventRequest,
    ReportResponse,
    SessionResponse,
    SessionWithEventsResponse,
    UpsertSessionRequest,
)
from .scoring import report_statistics
from .storage import BaseStore, get_store

logger = logging.getLogger(__name__)

store = get_store()


def get_event_store() -> BaseStore:
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    # same provider the routes depend on, overrides included
    provider = app.dependency_overrides.get(get_event_store, get_event_store)
    active_store = provider()
    try:
        await active_store.ping()
        await active_store.ensure_indexes()
    except Exception:
        # without the store there is nothing to serve; let the server exit
        logger.exception(f"Could not connect to the {active_store.backend} store")
        raise
    logger.info(f"Connected to the {active_store.backend} store")
    try:
        yield
    finally:
        active_store.close()


app = FastAPI(title="Proctoring Backend", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"][1:]) or "body"
        problems.append(f"{location}: {error['msg']}")
    return JSONResponse(status_code=400, content={"detail": "; ".join(problems)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def root():
    return {
        "message": "Proctoring System API",
        "status": "Active",
        "version": app.version,
        "endpoints": {
            "health": "/health",
            "events": "POST /events",
            "sessions": "POST /sessions",
            "session": "GET /sessions/{sessionId}",
            "reports": "GET /reports/{candidateId}",
            "csv": "GET /report/csv/{candidateId}",
        },
        "timestamp": utcnow(),
    }


@app.get("/health", response_model=HealthResponse)
def health(store: BaseStore = Depends(get_event_store)):
    return HealthResponse(
        message="Proctoring backend is running",
        timestamp=utcnow(),
        database=store.backend,
    )


@app.post("/events", response_model=EventResponse, status_code=201)
async def log_event(payload: LogEventRequest, store: BaseStore = Depends(get_event_store)):
    try:
        event = await store.append_event(payload.model_dump(by_alias=True))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("Error saving event")
        raise HTTPException(status_code=500, detail="Failed to save event")

    logger.info(f"Event logged: {event.event_type} for {event.candidate_name} ({event.candidate_id})")
    return EventResponse(event=event)


@app.post("/sessions", response_model=SessionResponse)
async def upsert_session(payload: UpsertSessionRequest, store: BaseStore = Depends(get_event_store)):
    try:
        session = await store.upsert_session(payload.model_dump(by_alias=True))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("Error updating session")
        raise HTTPException(status_code=500, detail="Failed to update session")

    return SessionResponse(session=session)


@app.get("/sessions/{session_id}", response_model=SessionWithEventsResponse)
async def get_session(session_id: str, store: BaseStore = Depends(get_event_store)):
    try:
        session, events = await store.query_events_by_session(session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")

    return SessionWithEventsResponse(session=session, events_count=len(events), events=events)


@app.get("/reports/{candidate_id}", response_model=ReportResponse)
async def get_report(
    candidate_id: str,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    store: BaseStore = Depends(get_event_store),
):
    try:
        events = await store.query_events(candidate_id, session_id)
        session = await store.query_latest_session(candidate_id, session_id)
    except Exception:
        logger.exception("Error fetching reports")
        raise HTTPException(status_code=500, detail="Failed to fetch reports")

    if events:
        candidate_name = events[0].candidate_name
    else:
        candidate_name = session.candidate_name if session else "Unknown"

    return ReportResponse(
        candidate_id=candidate_id,
        candidate_name=candidate_name,
        session=session,
        statistics=report_statistics(events, session),
        events=events,
        total_events=len(events),
    )


@app.get("/report/csv/{candidate_id}")
async def download_report_csv(
    candidate_id: str,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    store: BaseStore = Depends(get_event_store),
):
    try:
        events = await store.query_events(candidate_id, session_id)
        session = await store.query_latest_session(candidate_id, session_id)
        report = build_csv_report(events, candidate_id, session=session)
    except NoDataError:
        raise HTTPException(status_code=404, detail="No events found for this candidate")
    except Exception:
        logger.exception("Error generating CSV report")
        raise HTTPException(status_code=500, detail="Failed to generate CSV report")

    logger.info(f"CSV report generated for candidate {candidate_id}")
    return StreamingResponse(
        iter([report.content.encode("utf-8")]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{report.filename}"',
            "Cache-Control": "no-cache",
        },
    )


def run() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host=HOST, port=PORT)
