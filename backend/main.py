from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker, selectinload
from sqlalchemy import create_engine
from backend.config import (
    DATABASE_URL,
    ALLOWED_ORIGINS,
    DB_POOL_SIZE,
    DB_MAX_OVERFLOW,
    AI_CACHE_SWEEP_INTERVAL_SECONDS,
)
from typing import Optional, List
from backend import models, schemas
from backend.ai_assistant import AIAssistant
from backend.ai_client import GeminiTextGenerator
from backend.cache import AIResponseCache, run_periodic_sweep, utc_now
from backend.counter_store import SqlAlchemyCounterStore
from backend.exceptions import (
    AIRateLimitExceededError,
    AICredentialsError,
    AIServiceError,
    ResourceNotFoundError,
    UpstreamRateLimitError,
    ValidationError,
)
from backend.logger import logger
from backend.rate_limiter import AIRateLimiter
from backend.validators import validate_user_id
import asyncio
import time

engine_options = {} if DATABASE_URL.startswith("sqlite") else {
    "pool_size": DB_POOL_SIZE,
    "max_overflow": DB_MAX_OVERFLOW,
}
engine = create_engine(DATABASE_URL, **engine_options)
SessionLocal = sessionmaker(bind=engine)

# Process-wide AI state, shared by every request
ai_cache = AIResponseCache()
rate_limiter = AIRateLimiter(SqlAlchemyCounterStore(SessionLocal))
assistant = AIAssistant(ai_cache, rate_limiter, GeminiTextGenerator())


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_task = None
    if AI_CACHE_SWEEP_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(run_periodic_sweep(ai_cache, AI_CACHE_SWEEP_INTERVAL_SECONDS))
    yield
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_assistant() -> AIAssistant:
    return assistant

def get_rate_limiter() -> AIRateLimiter:
    return rate_limiter

# === ERROR HANDLERS ===

@app.exception_handler(AIRateLimitExceededError)
async def ai_rate_limit_handler(request: Request, exc: AIRateLimitExceededError):
    result = exc.result
    headers = {}
    if result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "detail": {
                "message": result.error,
                "reset_time": result.reset_time.isoformat() if result.reset_time else None,
                "retry_after_seconds": result.retry_after_seconds,
            }
        },
        headers=headers,
    )

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(request: Request, exc: ResourceNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

@app.exception_handler(AIServiceError)
async def ai_service_error_handler(request: Request, exc: AIServiceError):
    if isinstance(exc, UpstreamRateLimitError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
        message = "The AI service is busy right now. Please try again shortly."
    elif isinstance(exc, AICredentialsError):
        code = status.HTTP_502_BAD_GATEWAY
        message = "Failed to reach the AI service. Please make sure the AI API key is configured."
    else:
        code = status.HTTP_502_BAD_GATEWAY
        message = f"AI request failed: {exc}"
    logger.warning(f"AI error on {request.url.path}: {exc}")
    return JSONResponse(status_code=code, content={"detail": message})

# === TOP-LEVEL HELPER FUNCTIONS ===

def load_issue(db: Session, issue_id: str) -> models.Issue:
    issue = (
        db.query(models.Issue)
        .options(
            selectinload(models.Issue.labels),
            selectinload(models.Issue.comments).selectinload(models.Comment.user),
        )
        .filter(models.Issue.id == issue_id)
        .first()
    )
    if not issue:
        raise ResourceNotFoundError(f"Issue {issue_id} not found")
    return issue

def to_comment_contexts(issue: models.Issue) -> List[schemas.CommentContext]:
    return [
        schemas.CommentContext(
            id=c.id,
            author_name=c.user.name if c.user else None,
            content=c.content,
            created_at=c.created_at,
        )
        for c in issue.comments
    ]

def available_labels_for(db: Session, issue: models.Issue) -> List[schemas.LabelContext]:
    """Project labels not yet attached to the issue."""
    attached = {label.id for label in issue.labels}
    project_labels = (
        db.query(models.Label)
        .filter(models.Label.project_id == issue.project_id)
        .order_by(models.Label.name)
        .all()
    )
    return [schemas.LabelContext.model_validate(l) for l in project_labels if l.id not in attached]

# === ROUTES ===

@app.get("/")
def read_root():
    return {"status": "ok"}

@app.post("/issues/{issue_id}/ai/advice", response_model=schemas.AdviceOut)
async def get_ai_advice(
    issue_id: str,
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    ai: AIAssistant = Depends(get_assistant),
):
    start_time = time.time()
    issue = schemas.IssueContext.model_validate(load_issue(db, issue_id))
    result = await ai.get_advice(issue, x_user_id)
    logger.info(f"POST /issues/{issue_id}/ai/advice took {time.time() - start_time:.3f} seconds (cached={result.cached})")
    return schemas.AdviceOut(issue_id=issue_id, advice=result.text, cached=result.cached)

@app.post("/issues/{issue_id}/ai/labels", response_model=schemas.LabelRecommendationOut)
async def recommend_labels(
    issue_id: str,
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    ai: AIAssistant = Depends(get_assistant),
):
    issue_row = load_issue(db, issue_id)
    issue = schemas.IssueContext.model_validate(issue_row)
    result = await ai.recommend_labels(issue, available_labels_for(db, issue_row), x_user_id)
    return schemas.LabelRecommendationOut(issue_id=issue_id, labels=result.labels, cached=result.cached)

@app.post("/issues/{issue_id}/ai/comment-summary", response_model=schemas.CommentSummaryOut)
async def summarize_comments(
    issue_id: str,
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    ai: AIAssistant = Depends(get_assistant),
):
    issue_row = load_issue(db, issue_id)
    issue = schemas.IssueContext.model_validate(issue_row)
    result = await ai.summarize_comments(issue, to_comment_contexts(issue_row), x_user_id)
    return schemas.CommentSummaryOut(issue_id=issue_id, summary=result.text, cached=result.cached)

@app.get("/ai/rate-limit", response_model=schemas.RateLimitStatus)
async def get_rate_limit_status(
    x_user_id: Optional[str] = Header(default=None),
    limiter: AIRateLimiter = Depends(get_rate_limiter),
):
    return await limiter.get_rate_limit_status(validate_user_id(x_user_id))

# -------- Issue mutations --------

@app.patch("/issues/{issue_id}", response_model=schemas.IssueOut)
def update_issue(
    issue_id: str,
    update: schemas.IssueUpdate,
    db: Session = Depends(get_db),
    ai: AIAssistant = Depends(get_assistant),
):
    issue = load_issue(db, issue_id)
    changes = update.model_dump(exclude_unset=True)
    # Only the description may be cleared
    changes = {k: v for k, v in changes.items() if v is not None or k == "description"}
    description_changed = "description" in changes and changes["description"] != issue.description

    for field, value in changes.items():
        setattr(issue, field, value)
    if changes:
        issue.updated_at = utc_now()
    db.commit()
    db.refresh(issue)

    if description_changed:
        ai.on_description_changed(issue_id)
    return schemas.IssueOut.model_validate(issue)

@app.post("/issues/{issue_id}/comments", response_model=schemas.CommentOut, status_code=status.HTTP_201_CREATED)
def post_comment(
    issue_id: str,
    comment: schemas.CommentCreate,
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    ai: AIAssistant = Depends(get_assistant),
):
    issue = load_issue(db, issue_id)
    author = db.get(models.User, x_user_id) if x_user_id else None

    db_comment = models.Comment(
        issue_id=issue.id,
        user_id=author.id if author else None,
        content=comment.content,
        created_at=utc_now(),
    )
    db.add(db_comment)
    db.commit()
    db.refresh(db_comment)

    ai.on_comment_posted(issue_id)
    return db_comment
