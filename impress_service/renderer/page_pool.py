"""
Render Page Pool

We keep a small pool of headless browser pages to bound CPU and memory use.
If every page is busy, a request waits for one to come back, up to the
acquire timeout.

The browser behind a pool slowly accumulates memory, so the pool manager
periodically swaps in a brand new pool and browser, lets the old pool's
in-flight renders finish, and then closes the old browser. If a browser
disconnects on its own while its pool is still current, the same reset runs
right away.
"""
import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager, suppress
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from impress_service.config import Settings, get_settings
from impress_service.observability import increment_pool_reset

logger = logging.getLogger(__name__)

LaunchBrowser = Callable[[], Awaitable[Any]]


class PoolAcquireTimeout(Exception):
    """No page became available within the acquire timeout."""
    def __init__(self, message: str = "Server under heavy load", status_code: int = 503):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class PoolDrainingError(RuntimeError):
    """The pool is being retired and lends no more pages."""


class BrowserPageFactory:
    """Creates, validates and destroys pages of one browser instance."""

    def __init__(self, launch_browser: LaunchBrowser):
        self._browser_task = asyncio.ensure_future(launch_browser())

    async def browser(self):
        return await self._browser_task

    async def create(self):
        logger.debug("Creating a browser page")
        browser = await self.browser()
        return await browser.new_page()

    async def destroy(self, page) -> None:
        logger.debug("Closing a browser page")
        await page.close()

    def validate(self, page) -> bool:
        return page.context.browser.is_connected()

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        """Call `callback` if the browser process goes away."""
        def _watch(task: asyncio.Future):
            if task.cancelled() or task.exception() is not None:
                return
            task.result().on("disconnected", lambda *_: callback())

        self._browser_task.add_done_callback(_watch)

    async def close(self) -> None:
        try:
            browser = await self.browser()
        except Exception as e:
            logger.error(f"Browser never launched, nothing to close: {e}")
            return
        await browser.close()


class PagePool:
    """
    Fixed-size pool of pages.

    Pages move Created -> Idle -> CheckedOut -> Idle, and are Destroyed when
    they fail validation on borrow or when the pool drains. Waiting callers
    are served in FIFO order.
    """

    def __init__(self, factory, capacity: int = 4, acquire_timeout: float = 15.0):
        self.factory = factory
        self.capacity = capacity
        self.acquire_timeout = acquire_timeout

        self._idle: Deque[Any] = deque()
        self._borrowed: Set[Any] = set()
        self._waiters: Deque[asyncio.Future] = deque()
        self._tasks: Set[asyncio.Task] = set()
        self._creating = 0
        self._size = 0
        self._draining = False
        self._changed = asyncio.Event()

    @property
    def draining(self) -> bool:
        return self._draining

    def start(self) -> None:
        """Begin creating pages up to capacity."""
        self._ensure_minimum()

    def _ensure_minimum(self) -> None:
        while self._size < self.capacity:
            self._spawn_page()

    def _spawn_page(self) -> None:
        self._size += 1
        self._creating += 1
        task = asyncio.ensure_future(self._create_page())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _create_page(self) -> None:
        try:
            page = await self.factory.create()
        except Exception as e:
            self._size -= 1
            logger.error(f"Failed to create browser page: {e}")
        else:
            self._dispatch(page)
        finally:
            self._creating -= 1
            self._notify()

    def _dispatch(self, page) -> None:
        """
        Hand a page to the longest-waiting caller, or park it as idle.

        A handed-off page counts as borrowed from this moment, so a drain
        never mistakes a page in transit for an empty pool.
        """
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                self._borrowed.add(page)
                waiter.set_result(page)
                return
        self._idle.append(page)

    def _notify(self) -> None:
        self._changed.set()

    async def _destroy(self, page) -> None:
        self._size -= 1
        try:
            await self.factory.destroy(page)
        except Exception as e:
            logger.error(f"Failed to destroy browser page: {e}")

    async def _next_page(self, deadline: float):
        loop = asyncio.get_running_loop()
        # Idle pages only pile up when nobody is waiting.
        if self._idle:
            page = self._idle.popleft()
            self._borrowed.add(page)
            return page

        waiter = loop.create_future()
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(waiter, max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            if waiter.done() and not waiter.cancelled():
                return waiter.result()
            raise PoolAcquireTimeout() from None
        except asyncio.CancelledError:
            # We may have been handed a page in the same tick we were cancelled.
            if waiter.done() and not waiter.cancelled():
                page = waiter.result()
                self._borrowed.discard(page)
                self._dispatch(page)
            raise
        finally:
            with suppress(ValueError):
                self._waiters.remove(waiter)
            self._notify()

    async def acquire(self):
        """
        Borrow a healthy page.

        Raises:
            PoolAcquireTimeout: If no page frees up within acquire_timeout
            PoolDrainingError: If the pool is being retired
        """
        if self._draining:
            raise PoolDrainingError("Page pool is draining")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.acquire_timeout
        self._ensure_minimum()

        while True:
            page = await self._next_page(deadline)
            if self.factory.validate(page):
                return page

            logger.warning("Discarding a browser page that failed validation")
            self._borrowed.discard(page)
            await self._destroy(page)
            self._ensure_minimum()
            self._notify()

    async def release(self, page) -> None:
        """Return a borrowed page. During drain, pages nobody waits for are destroyed."""
        if page not in self._borrowed:
            logger.warning("Ignoring release of a page this pool did not lend")
            return
        self._borrowed.discard(page)

        if self._draining and not self._waiters:
            await self._destroy(page)
        else:
            self._dispatch(page)
        self._notify()

    async def drain(self) -> None:
        """
        Stop lending, wait for every borrowed page and queued caller to
        finish, then destroy the idle pages.
        """
        self._draining = True
        while self._borrowed or self._waiters or self._creating:
            self._changed.clear()
            await self._changed.wait()

        while self._idle:
            await self._destroy(self._idle.popleft())

    def stats(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "size": self._size,
            "idle": len(self._idle),
            "borrowed": len(self._borrowed),
            "waiting": len(self._waiters),
            "draining": self._draining,
        }


class PagePoolManager:
    """
    Owns the current page pool and swaps it out on a timer.

    Callers go through page(), which snapshots the current pool once, so a
    request started before a reset keeps using (and returns its page to) the
    pool it started with.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        launch_browser: Optional[LaunchBrowser] = None
    ):
        self._settings = settings
        self._launch_browser = launch_browser or self._launch_chromium
        self._playwright = None
        self._pool: Optional[PagePool] = None
        self._recycle_task: Optional[asyncio.Task] = None
        self._retiring: Set[asyncio.Task] = set()

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def current(self) -> Optional[PagePool]:
        return self._pool

    @property
    def started(self) -> bool:
        return self._pool is not None

    async def _launch_chromium(self):
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self.settings.browser_headless)

    def _create_pool(self) -> PagePool:
        logger.info("Creating new browser instance")
        factory = BrowserPageFactory(self._launch_browser)
        pool = PagePool(
            factory,
            capacity=self.settings.page_pool_size,
            acquire_timeout=self.settings.acquire_timeout_seconds,
        )
        pool.start()
        factory.on_disconnected(lambda: self._handle_disconnect(pool))
        return pool

    def _handle_disconnect(self, pool: PagePool) -> None:
        if self._pool is pool:
            logger.warning("Browser disconnected unexpectedly, resetting page pool")
            self.reset()

    def start(self) -> None:
        """Create the first pool and start the recycle timer."""
        if self._pool is not None:
            return
        self._pool = self._create_pool()
        self._recycle_task = asyncio.ensure_future(self._recycle_loop())

    async def _recycle_loop(self) -> None:
        interval = self.settings.pool_recycle_seconds
        while True:
            await asyncio.sleep(interval)
            self.reset()

    def reset(self) -> PagePool:
        """Install a fresh pool now; drain and close the previous one in the background."""
        logger.info("Resetting page pool")
        previous = self._pool
        self._pool = self._create_pool()
        increment_pool_reset()

        if previous is not None:
            task = asyncio.ensure_future(self._retire(previous))
            self._retiring.add(task)
            task.add_done_callback(self._retiring.discard)
        return self._pool

    async def _retire(self, pool: PagePool) -> None:
        logger.debug("Draining previous page pool")
        await pool.drain()
        logger.debug("Previous page pool drained, closing browser")
        try:
            await pool.factory.close()
        except Exception as e:
            logger.error(f"Failed to close previous browser: {e}")
            return
        logger.info("Previous browser closed")

    @asynccontextmanager
    async def page(self):
        """Borrow a page from the current pool, always returning it to that same pool."""
        if self._pool is None:
            self.start()
        pool = self._pool
        page = await pool.acquire()
        try:
            yield page
        finally:
            await pool.release(page)

    async def stop(self) -> None:
        """Cancel the recycle timer, then drain and close every pool."""
        if self._recycle_task is not None:
            self._recycle_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._recycle_task
            self._recycle_task = None

        pool, self._pool = self._pool, None
        if pool is not None:
            await self._retire(pool)
        if self._retiring:
            await asyncio.gather(*self._retiring)

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    def stats(self) -> Dict[str, Any]:
        return {
            "started": self.started,
            "current": self._pool.stats() if self._pool else None,
            "retiring": len(self._retiring),
        }


# Global instance
page_pool_manager = PagePoolManager()
