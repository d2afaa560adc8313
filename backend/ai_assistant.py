"""AI features for issues: advice, label recommendations, comment summaries."""

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol

from backend import schemas
from backend.cache import AIResponseCache, CacheKind, Fingerprint
from backend.exceptions import AIRateLimitExceededError
from backend.logger import logger
from backend.rate_limiter import AIRateLimiter
from backend.validators import (
    validate_comments_for_summary,
    validate_description_for_ai,
    validate_user_id,
)

MAX_RECOMMENDED_LABELS = 3

PLAIN_TEXT_RULE = (
    "IMPORTANT: Provide your response in PLAIN TEXT ONLY. Do NOT use any markdown formatting "
    "like **, *, #, -, or any other markdown syntax. Just use plain text with line breaks and "
    "simple numbering like 1., 2., 3."
)

ADVICE_SYSTEM_INSTRUCTION = (
    "You are a helpful project management assistant. Provide practical, actionable advice for "
    "software development tasks. Always respond in plain text without any markdown formatting."
)
LABELS_SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that categorizes issues. Only respond with label names or 'none'."
)
SUMMARY_SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that summarizes technical discussions. "
    "Be concise and focus on actionable outcomes."
)


class TextGenerator(Protocol):
    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        ...


# === PROMPT BUILDERS ===

def build_advice_prompt(issue: schemas.IssueContext) -> str:
    return f"""Based on the following task/issue, please provide:
1. A detailed todo list (step-by-step tasks) to complete this work
2. An estimated time range to complete this task

Title: {issue.title}
Description: {issue.description or "No description provided"}
Priority: {issue.priority}
Status: {issue.status}

{PLAIN_TEXT_RULE}"""


def build_label_prompt(issue: schemas.IssueContext, available_labels: List[schemas.LabelContext]) -> str:
    labels_context = ", ".join(label.name for label in available_labels)
    return f"""Based on the following issue, recommend up to {MAX_RECOMMENDED_LABELS} most relevant labels from the available labels list.

Issue:
Title: {issue.title}
Description: {issue.description or "No description provided"}
Priority: {issue.priority}

Available Labels: {labels_context}

IMPORTANT:
1. Only recommend labels from the available labels list
2. Recommend maximum {MAX_RECOMMENDED_LABELS} labels
3. Respond ONLY with the label names separated by commas (e.g., "bug, urgent, backend")
4. If no labels are relevant, respond with "none"
5. Do NOT include any other text or explanation"""


def build_comment_summary_prompt(comments: List[schemas.CommentContext]) -> str:
    comments_context = "\n\n".join(
        f"Comment {idx} (by {c.author_name or 'Unknown'}, {c.created_at.date().isoformat()}):\n{c.content}"
        for idx, c in enumerate(comments, 1)
    )
    return f"""Based on the following comments from an issue discussion, please provide:

1. A brief summary of the discussion (3-5 sentences)
2. Key decisions made (if any)

Comments:
{comments_context}

IMPORTANT: Provide your response in PLAIN TEXT ONLY. Do NOT use any markdown formatting. Use simple numbering and line breaks."""


def parse_label_recommendations(
    response: str,
    available_labels: List[schemas.LabelContext],
) -> List[schemas.LabelContext]:
    """
    Turn the model's comma-separated answer into label records.

    Names match an available label exactly or as a substring of its name,
    case-insensitively. "none" or an empty answer gives no labels.
    """
    trimmed = response.strip().lower()
    if not trimmed or trimmed == "none":
        return []

    names = [name.strip() for name in trimmed.split(",")]
    names = [name for name in names if name][:MAX_RECOMMENDED_LABELS]

    recommended = [
        label for label in available_labels
        if any(label.name.lower() == name or name in label.name.lower() for name in names)
    ]
    return recommended[:MAX_RECOMMENDED_LABELS]


@dataclass
class AIResult:
    text: str
    cached: bool


@dataclass
class LabelRecommendation:
    labels: List[schemas.LabelContext]
    cached: bool


class AIAssistant:
    """
    Runs the AI features against a shared cache and rate limiter.

    Every request is checked against the user's quota first, then the cache;
    only a miss reaches the generator, and only a generator call is counted.
    """

    def __init__(self, cache: AIResponseCache, rate_limiter: AIRateLimiter, generator: TextGenerator):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.generator = generator

    async def get_advice(self, issue: schemas.IssueContext, user_id: str) -> AIResult:
        """Todo list and time estimate for an issue."""
        validate_description_for_ai(issue.description)
        return await self._cached_generate(
            user_id=user_id,
            entity_id=issue.id,
            kind=CacheKind.ADVICE,
            fingerprint=issue.fingerprint,
            generate=lambda: self.generator.generate(build_advice_prompt(issue), ADVICE_SYSTEM_INSTRUCTION),
        )

    async def recommend_labels(
        self,
        issue: schemas.IssueContext,
        available_labels: List[schemas.LabelContext],
        user_id: str,
    ) -> LabelRecommendation:
        """
        Up to three labels from `available_labels` that fit the issue.

        Args:
            issue: The issue to label
            available_labels: Project labels not already on the issue
            user_id: Caller identity, for rate limiting

        Returns:
            LabelRecommendation with the parsed labels and whether the
            model answer came from the cache
        """
        validate_description_for_ai(issue.description)
        if not available_labels:
            return LabelRecommendation(labels=[], cached=False)

        result = await self._cached_generate(
            user_id=user_id,
            entity_id=issue.id,
            kind=CacheKind.LABEL_RECOMMENDATION,
            fingerprint=issue.fingerprint,
            generate=lambda: self.generator.generate(
                build_label_prompt(issue, available_labels), LABELS_SYSTEM_INSTRUCTION
            ),
        )
        return LabelRecommendation(
            labels=parse_label_recommendations(result.text, available_labels),
            cached=result.cached,
        )

    async def summarize_comments(
        self,
        issue: schemas.IssueContext,
        comments: List[schemas.CommentContext],
        user_id: str,
    ) -> AIResult:
        """Summary and key decisions from an issue's comment thread (oldest first)."""
        validate_comments_for_summary(comments)
        return await self._cached_generate(
            user_id=user_id,
            entity_id=issue.id,
            kind=CacheKind.COMMENT_SUMMARY,
            fingerprint=schemas.latest_comment_time(comments),
            generate=lambda: self.generator.generate(
                build_comment_summary_prompt(comments), SUMMARY_SYSTEM_INSTRUCTION
            ),
        )

    # --- Mutation hooks ---

    def on_description_changed(self, issue_id: str) -> None:
        """Advice and label recommendations are derived from the description."""
        self.cache.invalidate_all(issue_id)
        logger.info(f"Invalidated all AI caches for issue {issue_id}")

    def on_comment_posted(self, issue_id: str) -> None:
        self.cache.invalidate(issue_id, CacheKind.COMMENT_SUMMARY)
        logger.info(f"Invalidated comment summary cache for issue {issue_id}")

    async def _cached_generate(
        self,
        user_id: str,
        entity_id: str,
        kind: CacheKind,
        fingerprint: Fingerprint,
        generate: Callable[[], Awaitable[str]],
    ) -> AIResult:
        user_id = validate_user_id(user_id)

        rate_limit = await self.rate_limiter.check_rate_limit(user_id)
        if not rate_limit.allowed:
            raise AIRateLimitExceededError(rate_limit)

        cached = self.cache.get(entity_id, kind, fingerprint)
        if cached is not None:
            return AIResult(text=cached, cached=True)

        try:
            text = await generate()
        finally:
            # Attempted calls count against quota whether or not they succeeded
            await self.rate_limiter.increment_rate_limit(user_id)

        self.cache.set(entity_id, kind, text, fingerprint)
        return AIResult(text=text, cached=False)
