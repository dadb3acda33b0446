"""
Notice Registry: the community notice board, backed by the Local Store.

Each new notice gets a QR code (PNG data URI) encoding its title, content and
language, and a spoken rendition synthesized ahead of time so it can be played
back without connectivity.
"""

import asyncio
import base64
import io
import json
import logging
from datetime import datetime
from typing import Callable, List, Optional

import qrcode
from gtts import gTTS

from .errors import StorageFullError, ValidationError
from .local_store import NOTICES_KEY, LocalStore
from .models import Notice, NoticeCategory, Priority

logger = logging.getLogger(__name__)

QrRenderer = Callable[[str], str]
Synthesizer = Callable[[str, str], bytes]


def _coerce(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unsupported notice {field}: {value}")


def render_qr_data_uri(data: str, box_size: int = 8, border: int = 2) -> str:
    """Render `data` as a black-on-white QR code and return it as a PNG data URL."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M,
                       box_size=box_size, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{encoded}"


def _tts_language(language: str) -> str:
    # "en-US" / "hi-IN" -> "en" / "hi"
    code = (language or "en").split("-")[0].lower()
    return code if code in ("en", "hi") else "en"


def synthesize_speech(text: str, language: str) -> bytes:
    """Blocking gTTS call returning MP3 bytes. Needs network access."""
    buffer = io.BytesIO()
    gTTS(text, lang=_tts_language(language)).write_to_fp(buffer)
    return buffer.getvalue()


def audio_data_uri(audio: bytes, mime: str = "audio/mpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(audio).decode('ascii')}"


class NoticeRegistry:
    def __init__(self, store: LocalStore, qr_renderer: QrRenderer = render_qr_data_uri,
                 synthesizer: Optional[Synthesizer] = synthesize_speech):
        self.store = store
        self.qr_renderer = qr_renderer
        self.synthesizer = synthesizer
        self.notices: List[Notice] = []
        self.error: Optional[str] = None

    def load(self) -> List[Notice]:
        self.notices = self.store.notices()
        self.error = None
        return self.notices

    refresh = load

    async def _synthesize(self, content: str, language: str) -> Optional[str]:
        if self.synthesizer is None:
            return None
        loop = asyncio.get_running_loop()
        try:
            audio = await loop.run_in_executor(None, self.synthesizer, content, language)
        except Exception as e:
            logger.warning("Offline audio synthesis failed: %s", e)
            return None
        return audio_data_uri(audio) if audio else None

    async def create_notice(self, title: str, content: str, category: NoticeCategory,
                            priority: Priority, language: str = "en-US", is_emergency: bool = False,
                            valid_until: Optional[datetime] = None, author: str = "Admin") -> Notice:
        if not title or not title.strip():
            raise ValidationError("Notice title is required")
        if not content or not content.strip():
            raise ValidationError("Notice content is required")
        category = _coerce(NoticeCategory, category, "category")
        priority = _coerce(Priority, priority, "priority")

        payload = json.dumps({"title": title, "content": content, "language": language}, ensure_ascii=False)
        qr_code_url = self.qr_renderer(payload)
        audio = await self._synthesize(content, language)

        notice = Notice(title=title, content=content, category=category, priority=priority,
                        language=language, valid_until=valid_until, is_emergency=is_emergency,
                        author=author, tags=[category.value, priority.value],
                        qr_code_url=qr_code_url)

        if audio:
            try:
                self.store.save_audio(notice.id, audio)
                notice.is_offline_available = True
            except StorageFullError as e:
                logger.warning("No room to keep audio for %s offline: %s", notice.id, e.message)

        entry = notice.model_dump(mode="json")
        try:
            self.store.update(NOTICES_KEY, lambda existing: [entry] + _as_list(existing), [])
        except StorageFullError:
            self.error = "Failed to create notice"
            if notice.is_offline_available:
                self.store.remove_audio(notice.id)
            raise
        self.notices = [notice] + [n for n in self.notices if n.id != notice.id]
        logger.info("Notice created: %s (%s, %s)", notice.id, category.value, priority.value)
        return notice

    def delete_notice(self, notice_id: str) -> bool:
        removed = []

        def drop(existing):
            kept = []
            for entry in _as_list(existing):
                if isinstance(entry, dict) and entry.get("id") == notice_id:
                    removed.append(entry)
                else:
                    kept.append(entry)
            return kept

        self.store.update(NOTICES_KEY, drop, [])
        self.store.remove_audio(notice_id)
        self.notices = [n for n in self.notices if n.id != notice_id]
        if removed:
            logger.info("Notice deleted: %s", notice_id)
        return bool(removed)

    def by_category(self, category: NoticeCategory) -> List[Notice]:
        return [n for n in self.notices if n.category == category]

    def emergency_notices(self) -> List[Notice]:
        return [n for n in self.notices if n.is_emergency]

    def get(self, notice_id: str) -> Optional[Notice]:
        for n in self.notices:
            if n.id == notice_id:
                return n
        return None

    def audio_for(self, notice: Notice) -> Optional[str]:
        """Offline audio for a notice, or None when playback must fall back to live TTS."""
        return self.store.audio(notice.id)




def _as_list(value) -> list:
    return list(value) if isinstance(value, list) else []
