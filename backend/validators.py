"""Validation functions for AI feature inputs."""

from typing import List, Optional
from backend import schemas
from backend.exceptions import ValidationError

MIN_DESCRIPTION_LENGTH = 10
MIN_COMMENTS_FOR_SUMMARY = 5
MAX_USER_ID_LENGTH = 128


def validate_description_for_ai(description: Optional[str]) -> None:
    """
    Validate that an issue description is long enough to prompt with.

    Args:
        description: Issue description (may be None)

    Raises:
        ValidationError: If the trimmed description is shorter than 10 characters
    """
    if not description or len(description.strip()) < MIN_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters to use AI features"
        )


def validate_comments_for_summary(comments: List[schemas.CommentContext]) -> None:
    """
    Validate that there is enough discussion to summarize.

    Raises:
        ValidationError: If there are fewer than 5 comments
    """
    if len(comments) < MIN_COMMENTS_FOR_SUMMARY:
        raise ValidationError(
            f"At least {MIN_COMMENTS_FOR_SUMMARY} comments are required to use the summarization feature, "
            f"got {len(comments)}"
        )


def validate_user_id(user_id: Optional[str]) -> str:
    """Return the stripped user id, or raise ValidationError if it is unusable."""
    if not user_id or not user_id.strip():
        raise ValidationError("User id is required for AI features")

    user_id = user_id.strip()
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise ValidationError(f"User id must be {MAX_USER_ID_LENGTH} characters or less")
    return user_id
