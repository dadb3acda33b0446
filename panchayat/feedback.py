import logging
from typing import List, Optional

from .errors import ValidationError
from .local_store import FEEDBACK_KEY, LocalStore
from .models import FeedbackStatus, VoiceFeedback

logger = logging.getLogger(__name__)


class VoiceFeedbackBook:
    """Resident feedback (typed or recorded), kept offline until the next sync."""

    def __init__(self, store: LocalStore):
        self.store = store

    def submit(self, user_id: str, transcript: Optional[str] = None, audio_url: Optional[str] = None,
               notice_id: str = "general") -> VoiceFeedback:
        transcript = transcript.strip() if transcript else None
        if not transcript and not audio_url:
            raise ValidationError("Please record or type your feedback")
        if not user_id:
            raise ValidationError("Feedback must be attributed to a user")

        item = VoiceFeedback(notice_id=notice_id or "general", audio_url=audio_url,
                             transcript=transcript, user_id=user_id, status=FeedbackStatus.PENDING)
        entry = item.model_dump(mode="json")
        self.store.update(FEEDBACK_KEY,
                          lambda existing: (list(existing) if isinstance(existing, list) else []) + [entry],
                          [])
        logger.info("Feedback %s recorded for notice %s", item.id, item.notice_id)
        return item

    def list(self) -> List[VoiceFeedback]:
        return self.store.feedback()
