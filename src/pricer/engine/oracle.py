from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import aiohttp
import structlog

from pricer.config import PricingConfig, oracle_api_key
from pricer.engine.context import PricingContext
from pricer.engine.fallback import rule_based_price
from pricer.engine.prompts import SYSTEM_PROMPT, build_pricing_prompt
from pricer.engine.validation import OracleProposal
from pricer.errors import ConfigError, OracleError

log = structlog.get_logger("oracle")


class DecisionOracle(Protocol):
    """Proposes a price for a context. Output is untrusted and always validated."""
    name: str

    def ensure_configured(self) -> None:
        """Raise ConfigError when the oracle cannot possibly work."""
        ...

    async def request_pricing_decision(self, ctx: PricingContext) -> OracleProposal: ...


class RuleBasedOracle:
    """Deterministic oracle; the same rules the engine falls back to."""
    name = "rules"

    def __init__(self, cfg: Optional[PricingConfig] = None):
        self.cfg = cfg or PricingConfig()

    def ensure_configured(self) -> None:
        return None

    async def request_pricing_decision(self, ctx: PricingContext) -> OracleProposal:
        return rule_based_price(ctx, self.cfg)


# --------- LLM oracle (OpenAI-compatible chat completions) ----------

@dataclass(slots=True)
class OracleConfig:
    api_key: Optional[str]
    model: str = "llama-3.1-70b-versatile"
    base_url: str = "https://api.groq.com/openai/v1"
    timeout_s: float = 10.0
    temperature: float = 0.2
    max_tokens: int = 400


def config_from_env() -> OracleConfig:
    return OracleConfig(
        api_key=oracle_api_key(),
        model=os.getenv("LLM_MODEL") or os.getenv("GROQ_MODEL") or "llama-3.1-70b-versatile",
        base_url=os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1"),
        timeout_s=float(os.getenv("LLM_TIMEOUT_S", "10")),
    )


def _strip_fences(text: str) -> str:
    t = text.strip()
    if t.startswith("```"):
        t = t.strip("`")
        if t.lower().startswith("json"):
            t = t[4:]
    return t.strip()


def parse_oracle_reply(data: Any) -> OracleProposal:
    """
    Pull {new_price, reasoning, decision} out of a chat-completions response.
    Raises OracleError when there is no usable JSON object with a price field;
    a present-but-garbage price is left for validation to handle.
    """
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        raise OracleError("oracle response has no message content") from None
    if not isinstance(content, str) or not content.strip():
        raise OracleError("oracle returned empty content")
    try:
        obj = json.loads(_strip_fences(content))
    except ValueError:
        raise OracleError("oracle content is not JSON", content=content[:200]) from None
    if not isinstance(obj, dict):
        raise OracleError("oracle JSON is not an object")

    for k in ("new_price", "newPrice", "price"):
        if k in obj:
            new_price = obj[k]
            break
    else:
        raise OracleError("oracle JSON has no new_price", keys=sorted(obj))

    return OracleProposal(
        new_price=new_price,
        reasoning=str(obj.get("reasoning") or obj.get("reason") or ""),
        decision=str(obj.get("decision") or "hold"),
    )


class LLMOracle:
    """
    Single-request client for an OpenAI-compatible chat-completions endpoint
    (Groq by default). Retries and fallback live in the decision engine.
    """
    name = "llm"

    def __init__(self, cfg: OracleConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None

    def ensure_configured(self) -> None:
        if not self.cfg.api_key:
            raise ConfigError("LLM API key is missing; pricing decisions cannot be made")

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def stop(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def request_pricing_decision(self, ctx: PricingContext) -> OracleProposal:
        self.ensure_configured()
        if self._session is None:
            await self.start()
        assert self._session is not None

        url = f"{self.cfg.base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self.cfg.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_pricing_prompt(ctx)},
            ],
            "temperature": self.cfg.temperature,
            "max_tokens": self.cfg.max_tokens,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.cfg.api_key}"}

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            async with self._session.post(url, json=payload, headers=headers) as resp:
                if resp.status in (401, 403):
                    # not retried
                    raise ConfigError("LLM API rejected the credentials", status=resp.status)
                if resp.status != 200:
                    detail = await _maybe_text(resp)
                    raise OracleError(f"oracle HTTP {resp.status}", status=resp.status, body=detail[:300])
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise OracleError(f"oracle network error: {e!r}") from e

        proposal = parse_oracle_reply(data)
        log.info("oracle_decision", model=self.cfg.model, latency_s=round(loop.time() - started, 3),
                 new_price=proposal.new_price, decision=proposal.decision)
        return proposal


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"


def build_oracle(kind: str, pricing_cfg: PricingConfig) -> DecisionOracle:
    kind = (kind or "llm").lower()
    if kind == "rules":
        return RuleBasedOracle(pricing_cfg)
    if kind == "llm":
        return LLMOracle(config_from_env())
    raise ConfigError(f"unknown oracle kind {kind!r}")
