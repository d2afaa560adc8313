"""
Tests for the AI feature flows: rate limit, cache, generate, count.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from backend.ai_assistant import AIAssistant, build_comment_summary_prompt, parse_label_recommendations
from backend.cache import CacheKind
from backend.exceptions import AIRateLimitExceededError, AIServiceError, ValidationError
from backend.schemas import CommentContext, IssueContext, LabelContext, RateLimitResult

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_issue(**overrides):
    fields = dict(
        id="iss-1",
        title="Login button broken",
        description="Clicking login on Safari does nothing.",
        priority="HIGH",
        status="In Progress",
        created_at=CREATED,
        updated_at=None,
    )
    fields.update(overrides)
    return IssueContext(**fields)


def make_comments(count, start=CREATED):
    return [
        CommentContext(
            id=f"c-{i}",
            author_name="Alice" if i % 2 else None,
            content=f"comment {i}",
            created_at=start + timedelta(hours=i),
        )
        for i in range(count)
    ]


LABELS = [
    LabelContext(id="l-1", name="Bug"),
    LabelContext(id="l-2", name="Urgent"),
    LabelContext(id="l-3", name="Backend"),
    LabelContext(id="l-4", name="Frontend"),
]


@pytest.fixture
def rate_limiter():
    limiter = Mock()
    limiter.check_rate_limit = AsyncMock(return_value=RateLimitResult(allowed=True, remaining=9))
    limiter.increment_rate_limit = AsyncMock()
    return limiter


@pytest.fixture
def generator():
    gen = Mock()
    gen.generate = AsyncMock(return_value="1. Reproduce\n2. Fix\nEstimate: 2-4 hours")
    return gen


@pytest.fixture
def assistant(cache, rate_limiter, generator):
    return AIAssistant(cache, rate_limiter, generator)


class TestAdvice:

    async def test_miss_generates_caches_and_counts(self, assistant, cache, generator, rate_limiter):
        result = await assistant.get_advice(make_issue(), "user-1")

        assert result.cached is False
        assert result.text.startswith("1. Reproduce")
        generator.generate.assert_awaited_once()
        rate_limiter.increment_rate_limit.assert_awaited_once_with("user-1")
        assert cache.get("iss-1", CacheKind.ADVICE) == result.text

    async def test_hit_skips_generation_and_quota(self, assistant, generator, rate_limiter):
        await assistant.get_advice(make_issue(), "user-1")
        generator.generate.reset_mock()
        rate_limiter.increment_rate_limit.reset_mock()

        result = await assistant.get_advice(make_issue(), "user-1")

        assert result.cached is True
        generator.generate.assert_not_awaited()
        rate_limiter.increment_rate_limit.assert_not_awaited()

    async def test_rate_limit_checked_before_cache(self, assistant, cache, generator, rate_limiter):
        cache.set("iss-1", CacheKind.ADVICE, "cached advice", CREATED)
        rejection = RateLimitResult(
            allowed=False,
            remaining=0,
            reset_time=CREATED + timedelta(minutes=1),
            retry_after_seconds=30,
            error="Rate limit exceeded. You can make 10 requests per minute. Please try again in 30 seconds.",
        )
        rate_limiter.check_rate_limit.return_value = rejection

        with pytest.raises(AIRateLimitExceededError) as exc_info:
            await assistant.get_advice(make_issue(), "user-1")

        assert exc_info.value.result is rejection
        assert "30 seconds" in str(exc_info.value)
        generator.generate.assert_not_awaited()
        rate_limiter.increment_rate_limit.assert_not_awaited()

    async def test_updated_issue_regenerates(self, assistant, generator):
        await assistant.get_advice(make_issue(), "user-1")
        generator.generate.return_value = "new advice"

        result = await assistant.get_advice(make_issue(updated_at=CREATED + timedelta(days=1)), "user-1")

        assert result.cached is False
        assert result.text == "new advice"
        assert generator.generate.await_count == 2

    async def test_generation_failure_still_counts_and_caches_nothing(self, assistant, cache, generator, rate_limiter):
        generator.generate.side_effect = AIServiceError("upstream down")

        with pytest.raises(AIServiceError):
            await assistant.get_advice(make_issue(), "user-1")

        rate_limiter.increment_rate_limit.assert_awaited_once_with("user-1")
        assert cache.get("iss-1", CacheKind.ADVICE) is None

    async def test_short_description_is_rejected(self, assistant, rate_limiter):
        with pytest.raises(ValidationError):
            await assistant.get_advice(make_issue(description="   too short  "), "user-1")

        rate_limiter.check_rate_limit.assert_not_awaited()

    async def test_missing_user_is_rejected(self, assistant):
        with pytest.raises(ValidationError):
            await assistant.get_advice(make_issue(), "")

    async def test_prompt_includes_issue_fields(self, assistant, generator):
        await assistant.get_advice(make_issue(), "user-1")

        prompt, system_instruction = generator.generate.await_args.args
        assert "Title: Login button broken" in prompt
        assert "Priority: HIGH" in prompt
        assert "PLAIN TEXT ONLY" in prompt
        assert "project management assistant" in system_instruction


class TestLabelRecommendations:

    async def test_parses_recommended_labels(self, assistant, generator):
        generator.generate.return_value = "bug, urgent"

        result = await assistant.recommend_labels(make_issue(), LABELS, "user-1")

        assert [l.name for l in result.labels] == ["Bug", "Urgent"]
        assert result.cached is False

    async def test_cached_response_is_parsed_again(self, assistant, generator):
        generator.generate.return_value = "Backend"
        await assistant.recommend_labels(make_issue(), LABELS, "user-1")

        result = await assistant.recommend_labels(make_issue(), LABELS, "user-1")

        assert result.cached is True
        assert [l.name for l in result.labels] == ["Backend"]
        generator.generate.assert_awaited_once()

    async def test_no_available_labels_skips_everything(self, assistant, generator, rate_limiter):
        result = await assistant.recommend_labels(make_issue(), [], "user-1")

        assert result.labels == []
        assert result.cached is False
        rate_limiter.check_rate_limit.assert_not_awaited()
        generator.generate.assert_not_awaited()

    async def test_description_change_invalidates(self, assistant, cache, generator):
        generator.generate.return_value = "bug, urgent"
        await assistant.recommend_labels(make_issue(), LABELS, "user-1")

        assistant.on_description_changed("iss-1")

        assert cache.get("iss-1", CacheKind.LABEL_RECOMMENDATION) is None


class TestParseLabelRecommendations:

    def test_none_means_no_labels(self):
        assert parse_label_recommendations("None", LABELS) == []
        assert parse_label_recommendations("   ", LABELS) == []

    def test_substring_match(self):
        labels = parse_label_recommendations("front", LABELS)

        assert [l.name for l in labels] == ["Frontend"]

    def test_at_most_three_labels(self):
        labels = parse_label_recommendations("bug, urgent, backend, frontend", LABELS)

        assert len(labels) == 3
        assert "Frontend" not in [l.name for l in labels]

    def test_unknown_names_are_ignored(self):
        assert parse_label_recommendations("documentation", LABELS) == []


class TestCommentSummary:

    async def test_requires_five_comments(self, assistant, generator):
        with pytest.raises(ValidationError):
            await assistant.summarize_comments(make_issue(), make_comments(4), "user-1")

        generator.generate.assert_not_awaited()

    async def test_fingerprint_is_newest_comment(self, assistant, cache):
        comments = make_comments(5)

        await assistant.summarize_comments(make_issue(), comments, "user-1")

        newest = comments[-1].created_at
        assert cache.get("iss-1", CacheKind.COMMENT_SUMMARY, newest) is not None
        assert cache.get("iss-1", CacheKind.COMMENT_SUMMARY, newest + timedelta(seconds=1)) is None

    async def test_issue_edit_does_not_stale_summary(self, assistant, generator):
        comments = make_comments(5)
        await assistant.summarize_comments(make_issue(), comments, "user-1")

        result = await assistant.summarize_comments(
            make_issue(updated_at=CREATED + timedelta(days=30)), comments, "user-1"
        )

        assert result.cached is True

    async def test_new_comment_invalidates_summary_only(self, assistant, cache):
        await assistant.get_advice(make_issue(), "user-1")
        await assistant.summarize_comments(make_issue(), make_comments(5), "user-1")

        assistant.on_comment_posted("iss-1")

        assert cache.get("iss-1", CacheKind.COMMENT_SUMMARY) is None
        assert cache.get("iss-1", CacheKind.ADVICE) is not None

    def test_prompt_numbers_comments_and_names_authors(self):
        prompt = build_comment_summary_prompt(make_comments(2))

        assert "Comment 1 (by Unknown, 2024-01-01):\ncomment 0" in prompt
        assert "Comment 2 (by Alice, 2024-01-01):\ncomment 1" in prompt
