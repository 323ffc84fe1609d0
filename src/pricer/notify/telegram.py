from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp
import structlog

from pricer.errors import ConfigError
from pricer.utils.backoff import retry_delays, sleep_with_jitter

log = structlog.get_logger("telegram")

API_ROOT = "https://api.telegram.org"


class TokenBucket:
    """Per-chat send pacing: `burst` messages at once, then `rate` per second."""

    def __init__(self, rate: float, burst: int = 1):
        self.rate = float(rate)
        self.burst = int(burst)
        self._tokens = float(burst)
        self._last: Optional[float] = None
        self._lock = asyncio.Lock()

    def _refill(self, now: float) -> None:
        if self._last is not None:
            self._tokens = min(self.burst, self._tokens + (now - self._last) * self.rate)
        self._last = now

    async def take(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            self._refill(loop.time())
            short = 1.0 - self._tokens
            if short > 0:
                await asyncio.sleep(short / self.rate)
                self._refill(loop.time())
            self._tokens = max(0.0, self._tokens - 1.0)


@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    chat_id: str
    parse_mode: Optional[str] = None   # "HTML", "MarkdownV2" or None
    timeout_s: float = 8.0
    per_chat_rate_per_sec: float = 1.0
    per_chat_burst: int = 3
    max_retries: int = 4
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0
    only_changes: bool = True          # skip "hold" records


def config_from_env() -> TelegramConfig:
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    chat_id = os.getenv("TELEGRAM_CHAT_ID")
    if not token or not chat_id:
        raise ConfigError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are required")
    return TelegramConfig(
        bot_token=token,
        chat_id=chat_id,
        parse_mode=os.getenv("TELEGRAM_PARSE_MODE") or None,
        only_changes=os.getenv("TELEGRAM_ONLY_CHANGES", "1").lower() in ("1", "true", "yes"),
    )


def short_price_text(rec: dict) -> str:
    price = float(rec.get("price", 0.0))
    prev = float(rec.get("previous_price", price))
    return f"[{str(rec.get('decision', 'hold')).upper()}] {prev:.2f} → {price:.2f}\n{rec.get('reason', '')}"


class TelegramNotifier:
    """
    Price-record subscriber that pushes changes to one Telegram chat.

    Delivery is best effort: 429 and 5xx are retried on the shared backoff
    schedule (honouring retry_after), other 4xx give up at once. The price
    itself is never affected by a failed message.
    """

    def __init__(
        self,
        cfg: TelegramConfig,
        records_queue,
        format_fn: Optional[Callable[[dict], str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.cfg = cfg
        self.q = records_queue  # anything with async .get()
        self._session = session
        self._owns_session = session is None
        self._bucket = TokenBucket(cfg.per_chat_rate_per_sec, cfg.per_chat_burst)
        self._format = format_fn or short_price_text
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.sent = 0
        self.dropped = 0

    @property
    def url(self) -> str:
        return f"{API_ROOT}/bot{self.cfg.bot_token}/sendMessage"

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.cfg.timeout_s))
            self._owns_session = True
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="telegram-notifier")

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _run(self) -> None:
        try:
            while not self._stop.is_set():
                await self.handle(await self.q.get())
        except asyncio.CancelledError:
            return

    async def handle(self, rec: dict) -> bool:
        if self.cfg.only_changes and rec.get("decision") == "hold":
            return False
        await self._bucket.take()
        ok = await self.deliver(self._format(rec))
        if not ok:
            self.dropped += 1
        return ok

    async def deliver(self, text: str) -> bool:
        assert self._session is not None
        form = {"chat_id": self.cfg.chat_id, "text": text}
        if self.cfg.parse_mode:
            form["parse_mode"] = self.cfg.parse_mode

        delays = list(retry_delays(self.cfg.max_retries, self.cfg.initial_backoff_s, self.cfg.max_backoff_s))
        for attempt in range(len(delays) + 1):
            wait: Optional[float] = None
            try:
                async with self._session.post(self.url, data=form) as resp:
                    if resp.status == 200:
                        self.sent += 1
                        return True
                    body = await _body_text(resp)
                    log.warning("telegram_send_failed", status=resp.status, body=body[:200], attempt=attempt + 1)
                    if resp.status == 429:
                        wait = await _retry_after(resp)
                    elif not 500 <= resp.status < 600:
                        return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", err=str(e), attempt=attempt + 1)

            if attempt == len(delays):
                break
            if wait:
                await asyncio.sleep(wait)
            else:
                await sleep_with_jitter(delays[attempt])

        log.error("telegram_gave_up", attempts=len(delays) + 1)
        return False


async def _retry_after(resp: aiohttp.ClientResponse) -> Optional[float]:
    # 429 bodies carry parameters.retry_after in seconds
    try:
        data = await resp.json()
    except (aiohttp.ContentTypeError, ValueError):
        return None
    ra = ((data or {}).get("parameters") or {}).get("retry_after")
    return float(ra) if ra else None


async def _body_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"
