from __future__ import annotations

import json
import logging
import socket
import time
from typing import Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import get_settings


logger = logging.getLogger(__name__)


class LLMClient:
    """Minimal client for an Ollama-compatible ``/api/generate`` endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_secs: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout_secs = timeout_secs or settings.llm_timeout_secs

    def complete(self, prompt: str, *, json_mode: bool = False) -> str:
        started = time.perf_counter()
        payload: dict[str, object] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0.1},
        }
        if json_mode:
            payload["format"] = "json"
        req = Request(
            f"{self.base_url}/api/generate",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout_secs) as resp:
                body = json.loads(resp.read().decode("utf-8"))
        except (URLError, socket.timeout, TimeoutError, json.JSONDecodeError) as exc:
            elapsed = time.perf_counter() - started
            logger.warning(f"llm_failed: model={self.model} after={elapsed:.2f}s error={exc}")
            return ""

        text = body.get("response", "") if isinstance(body, dict) else ""
        elapsed = time.perf_counter() - started
        logger.info(
            f"llm_complete: model={self.model} elapsed={elapsed:.2f}s chars={len(str(text))}"
        )
        return text.strip() if isinstance(text, str) else ""
