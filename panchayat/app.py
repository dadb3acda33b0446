"""
Client-side composition root.

Builds the offline store, the API client and the services on top of them, and
owns their lifecycle:

    async with PortalClient() as portal:
        await portal.api.login(email, password)
        await portal.chat.create_chat("Crop advice", "agriculture")
        await portal.sync.sync_data()
"""

import logging
from pathlib import Path
from typing import Optional

import httpx

from .api_client import PortalApiClient
from .chat_session import ChatSessionManager
from .config import (LOCAL_STORE_CAPACITY, PORTAL_API_URL, REQUEST_TIMEOUT_SECONDS,
                     SYNC_AUTO_DELAY_SECONDS, SYNC_PENDING_INTERVAL_SECONDS)
from .feedback import VoiceFeedbackBook
from .local_store import LocalStore
from .notices import NoticeRegistry, render_qr_data_uri, synthesize_speech
from .sync_engine import ConnectivityMonitor, SyncEngine

logger = logging.getLogger(__name__)


class PortalClient:
    def __init__(self, base_url: str = PORTAL_API_URL, store_dir: Optional[Path] = None,
                 capacity: int = LOCAL_STORE_CAPACITY, timeout: float = REQUEST_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None, online: bool = True,
                 probe_connectivity: bool = True, qr_renderer=render_qr_data_uri,
                 synthesizer=synthesize_speech, auto_sync_delay: float = SYNC_AUTO_DELAY_SECONDS,
                 pending_interval: float = SYNC_PENDING_INTERVAL_SECONDS):
        self.store = LocalStore(store_dir, capacity=capacity)
        self.api = PortalApiClient(base_url, timeout=timeout, transport=transport)
        self.monitor = ConnectivityMonitor(online=online,
                                           probe=self.api.health if probe_connectivity else None)
        self.sync = SyncEngine(self.store, self.api, self.monitor,
                               auto_sync_delay=auto_sync_delay, pending_interval=pending_interval)
        self.notices = NoticeRegistry(self.store, qr_renderer=qr_renderer, synthesizer=synthesizer)
        self.feedback = VoiceFeedbackBook(self.store)
        self.chat = ChatSessionManager(self.api)
        self.sync.on_synced(self.notices.refresh)
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self.notices.load()
        self.sync.start()
        self.monitor.start()
        self._started = True
        logger.info("Portal client started (%d notices cached)", len(self.notices.notices))

    async def logout(self) -> None:
        await self.api.logout()
        self.chat.reset()

    async def close(self) -> None:
        if self._started:
            await self.monitor.stop()
            await self.sync.stop()
            self._started = False
        await self.api.aclose()

    async def __aenter__(self) -> "PortalClient":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
