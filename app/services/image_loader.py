# app/services/image_loader.py
"""
Per-image loading state machine.

An ImageLoader decides what a goal card should show for one image: a
spinner while a remote image is being checked, the image once it answered,
or the preset fallback when there is no URL or the check failed.
"""
import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from app.core.config import settings
from app.utils.goal_images import (
    is_static_asset,
    new_cache_token,
    resolve_fallback_image,
    with_cache_buster,
)

logger = logging.getLogger(__name__)

Probe = Callable[[str, float], Awaitable[bool]]

# Default for ImageLoader.load: keep the current URL
_UNCHANGED = object()


async def probe_image(url: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    """
    Check that an image URL answers. The whole request, connect included, is
    bounded by ``timeout``; a timeout counts as a failed probe.
    """
    async def _fetch() -> bool:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            response = await client.head(url)
            if response.status_code == 405:
                response = await client.get(url)
            return response.status_code < 400

    try:
        return await asyncio.wait_for(_fetch(), timeout)
    except asyncio.TimeoutError:
        logger.info(f"Image probe timed out after {timeout}s: {url}")
        return False
    except httpx.HTTPError as e:
        logger.info(f"Image probe failed for {url}: {e}")
        return False


class LoaderState(str, enum.Enum):
    IDLE = "idle"
    CHECKING_REMOTE = "checking_remote"
    LOADED = "loaded"
    ERRORED = "errored"


@dataclass
class ImageView:
    state: LoaderState
    display_url: Optional[str]
    is_loading: bool
    has_error: bool
    has_loaded: bool
    attempts: int = 0


class ImageLoader:
    def __init__(
        self,
        title: str,
        image_url: Optional[str] = None,
        initially_loading: bool = False,
        probe: Probe = probe_image,
        timeout: Optional[float] = None,
        debounce: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.title = title
        self.image_url = image_url
        self.initially_loading = initially_loading
        self.probe = probe
        self.timeout = timeout if timeout is not None else settings.IMAGE_PROBE_TIMEOUT
        self.debounce = debounce if debounce is not None else settings.IMAGE_REFRESH_DEBOUNCE
        self.clock = clock

        self.state = LoaderState.IDLE
        self.attempts = 0
        self.probes_started = 0
        self.has_loaded = False
        self._token = new_cache_token()
        self._loaded_url: Optional[str] = None
        self._probe_task: Optional[asyncio.Task] = None
        self._last_probe_started: Optional[float] = None

    @classmethod
    def secondary(cls, title: str, image_url: Optional[str] = None, **kwargs) -> "ImageLoader":
        """Loader for secondary callers (background checks, thumbnails) with the shorter timeout."""
        kwargs.setdefault("timeout", settings.IMAGE_PROBE_TIMEOUT_SECONDARY)
        return cls(title, image_url, **kwargs)

    @property
    def fallback_url(self) -> str:
        return resolve_fallback_image(self.title)

    @property
    def probe_in_flight(self) -> bool:
        return self._probe_task is not None and not self._probe_task.done()

    def view(self) -> ImageView:
        url = self.image_url
        if self.state == LoaderState.ERRORED or url is None:
            display = self.fallback_url
        elif is_static_asset(url):
            display = url
        else:
            display = with_cache_buster(url, self._token)

        is_loading = self.state == LoaderState.CHECKING_REMOTE or (
            self.state == LoaderState.IDLE and self.initially_loading and url is not None
        )
        return ImageView(
            state=self.state,
            display_url=display,
            is_loading=is_loading,
            has_error=self.state == LoaderState.ERRORED,
            has_loaded=self.has_loaded,
            attempts=self.attempts,
        )

    async def load(
        self,
        image_url=_UNCHANGED,
        force_refresh: bool = False,
        initially_loading: Optional[bool] = None,
    ) -> ImageView:
        """
        Resolve the view for ``image_url`` (defaults to the current URL;
        passing None clears it).

        A URL that already reached LOADED is not probed again unless
        ``force_refresh`` is set, and an ERRORED URL is only checked again
        through ``retry()``, a force refresh or a different URL. Only one
        probe runs at a time; a force refresh that arrives while a probe is
        pending, or within the debounce window of the last probe start, waits
        on the existing result.
        """
        url_changed = False
        if image_url is not _UNCHANGED:
            if image_url != self.image_url:
                self._cancel_probe()
                url_changed = True
            self.image_url = image_url
        if initially_loading is not None:
            self.initially_loading = initially_loading

        url = self.image_url
        if url is None:
            self._cancel_probe()
            self.state = LoaderState.ERRORED
            return self.view()

        if is_static_asset(url):
            self._cancel_probe()
            self.state = LoaderState.LOADED
            self.has_loaded = True
            self._loaded_url = url
            return self.view()

        if self.probe_in_flight:
            await self._wait_probe()
            return self.view()

        if self.state == LoaderState.ERRORED and not url_changed and not force_refresh:
            return self.view()

        if self.state == LoaderState.LOADED and self._loaded_url == url:
            if not force_refresh or self._within_debounce():
                return self.view()
        elif force_refresh and self._within_debounce():
            return self.view()

        await self._start_probe(url)
        return self.view()

    async def retry(self) -> ImageView:
        """Re-check an errored remote image with a fresh cache-busting token."""
        url = self.image_url
        if self.state != LoaderState.ERRORED or url is None or is_static_asset(url):
            return self.view()
        if self.probe_in_flight:
            await self._wait_probe()
            return self.view()
        self.attempts += 1
        await self._start_probe(url)
        return self.view()

    async def _start_probe(self, url: str) -> None:
        self.state = LoaderState.CHECKING_REMOTE
        self._token = new_cache_token()
        self._last_probe_started = self.clock()
        self.probes_started += 1
        self._probe_task = asyncio.create_task(self._run_probe(url))
        await self._wait_probe()

    async def _wait_probe(self) -> None:
        task = self._probe_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # Superseded probes end quietly; cancellation of the caller propagates
            if not task.cancelled():
                raise

    async def _run_probe(self, url: str) -> None:
        target = with_cache_buster(url, self._token)
        try:
            ok = await asyncio.wait_for(self.probe(target, self.timeout), self.timeout)
        except asyncio.TimeoutError:
            logger.info(f"Image check timed out for '{self.title}' after {self.timeout}s")
            ok = False
        if url != self.image_url:
            # A newer URL replaced this one while the probe ran
            return
        if ok:
            self.state = LoaderState.LOADED
            self.has_loaded = True
            self._loaded_url = url
        else:
            self.state = LoaderState.ERRORED

    def _within_debounce(self) -> bool:
        if self._last_probe_started is None:
            return False
        return self.clock() - self._last_probe_started < self.debounce

    def _cancel_probe(self) -> None:
        if self.probe_in_flight:
            self._probe_task.cancel()
        self._probe_task = None

    def close(self) -> None:
        self._cancel_probe()
