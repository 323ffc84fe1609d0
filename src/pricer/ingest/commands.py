from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Optional

import structlog

from pricer.errors import SignalValidationError

log = structlog.get_logger("commands")


async def dispatch_command(service, reconciler, cmd: dict) -> dict[str, Any]:
    """
    One inbound command (the shape a thin HTTP/CLI layer would forward):
      {"op": "signal", "type": "competitor_price", "value": 92.5, "reason": "..."}
      {"op": "view", "itemId": "sku-1", "userId": "u-7"}
      {"op": "tick"}                      force a reconciler pass now
      {"op": "force", "reason": "demo"}   debug demand surge
      {"op": "reset"}
      {"op": "price"}                     current published record
    """
    op = str(cmd.get("op") or "signal").lower()
    try:
        if op == "signal":
            payload = {k: v for k, v in cmd.items() if k != "op"}
            sig = await service.submit_signal(payload)
            return {"ok": True, "signal": sig.to_dict()}
        if op == "view":
            evt = await service.record_view(cmd.get("itemId") or cmd.get("item_id") or "",
                                            cmd.get("userId") or cmd.get("user_id"))
            return {"ok": True, "view": dict(evt)}
        if op == "tick":
            report = await reconciler.tick()
            return {"ok": True, "emitted": report.emitted, "failures": report.failures}
        if op == "force":
            sig = await service.force_tick(cmd.get("reason"))
            return {"ok": True, "signal": sig.to_dict()}
        if op == "reset":
            state = await service.reset()
            return {"ok": True, "state": state.to_dict()}
        if op == "price":
            return {"ok": True, "current": await service.publisher.current()}
    except SignalValidationError as e:
        return {"ok": False, "error": str(e), "code": e.code, **e.metadata}
    return {"ok": False, "error": f"unknown op {op!r}"}


async def stdin_loop(service, reconciler, stream=None, out=None) -> None:
    """Read JSON commands, one per line, until EOF. Replies go to `out` (stdout)."""
    stream = stream or sys.stdin
    out = out or sys.stdout
    while True:
        line: Optional[str] = await asyncio.to_thread(stream.readline)
        if not line:
            return
        line = line.strip()
        if not line:
            continue
        try:
            cmd = json.loads(line)
        except ValueError:
            log.warning("command_not_json", line=line[:200])
            continue
        if not isinstance(cmd, dict):
            log.warning("command_not_object", line=line[:200])
            continue
        reply = await dispatch_command(service, reconciler, cmd)
        print(json.dumps(reply, default=str), file=out, flush=True)
