from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime

# ========== Entity records consumed by the AI features ==========
# Typed views over tracker rows. The cache's staleness checks read
# timestamps from these, never from raw rows.

class LabelContext(BaseModel):
    id: str
    name: str

    model_config = ConfigDict(from_attributes=True)

class CommentContext(BaseModel):
    id: str
    author_name: Optional[str] = None
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class IssueContext(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    priority: str = "MEDIUM"
    status: str = "Backlog"
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def fingerprint(self) -> datetime:
        """Version of the issue body: last update, or creation if never edited."""
        return self.updated_at or self.created_at


def latest_comment_time(comments: List[CommentContext]) -> Optional[datetime]:
    """Fingerprint for comment summaries: the newest comment's timestamp."""
    if not comments:
        return None
    return max(c.created_at for c in comments)

# ========== Rate limiting ==========

class RateLimitResult(BaseModel):
    allowed: bool
    remaining: Optional[int] = None
    reset_time: Optional[datetime] = None
    retry_after_seconds: Optional[int] = None
    error: Optional[str] = None

class WindowUsage(BaseModel):
    used: int
    limit: int
    remaining: int

class RateLimitStatus(BaseModel):
    minute: WindowUsage
    day: WindowUsage

# ========== AI feature responses ==========

class AdviceOut(BaseModel):
    issue_id: str
    advice: str
    cached: bool = False

class LabelRecommendationOut(BaseModel):
    issue_id: str
    labels: List[LabelContext] = Field(default_factory=list)
    cached: bool = False

class CommentSummaryOut(BaseModel):
    issue_id: str
    summary: str
    cached: bool = False

# ========== Issue mutations ==========

class IssueUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None

class IssueOut(IssueContext):
    project_id: str
    labels: List[LabelContext] = Field(default_factory=list)

class CommentCreate(BaseModel):
    content: str = Field(min_length=1)

class CommentOut(BaseModel):
    id: str
    issue_id: str
    user_id: Optional[str] = None
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
