"""
Unit tests for AI input validators.
"""

from datetime import datetime, timezone

import pytest

from backend.exceptions import ValidationError
from backend.schemas import CommentContext
from backend.validators import (
    validate_comments_for_summary,
    validate_description_for_ai,
    validate_user_id,
)


class TestValidateDescription:

    @pytest.mark.parametrize("description", [None, "", "         ", "short", "  123456789  "])
    def test_rejects_short_descriptions(self, description):
        with pytest.raises(ValidationError, match="at least 10 characters"):
            validate_description_for_ai(description)

    def test_accepts_ten_characters(self):
        validate_description_for_ai("  1234567890  ")


class TestValidateComments:

    def _comments(self, n):
        return [
            CommentContext(id=str(i), content="x", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
            for i in range(n)
        ]

    def test_rejects_fewer_than_five(self):
        with pytest.raises(ValidationError, match="At least 5 comments"):
            validate_comments_for_summary(self._comments(4))

    def test_accepts_five(self):
        validate_comments_for_summary(self._comments(5))


class TestValidateUserId:

    def test_strips_whitespace(self):
        assert validate_user_id("  user-1 ") == "user-1"

    @pytest.mark.parametrize("user_id", [None, "", "   ", "u" * 129])
    def test_rejects_unusable_ids(self, user_id):
        with pytest.raises(ValidationError):
            validate_user_id(user_id)
