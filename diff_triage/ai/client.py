"""Claude API client wrapper used by the optional advisory classifier."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Optional

import anthropic

logger = logging.getLogger(__name__)

# Configurable debug directory, set by the orchestrator at startup
_debug_dir: Path | None = None


def set_debug_dir(path: Path) -> None:
    """Set the directory for dumping AI exchanges."""
    global _debug_dir
    _debug_dir = path
    _debug_dir.mkdir(parents=True, exist_ok=True)


class AIClient:
    """Wrapper around the Anthropic Claude API."""

    def __init__(self, model: str = "claude-opus-4-6", max_tokens: int = 1000, timeout: float = 30.0):
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise EnvironmentError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "AI advisory analysis is unavailable."
            )
        self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
        self.model = model
        self.max_tokens = max_tokens
        self._call_count = 0

    @property
    def call_count(self) -> int:
        return self._call_count

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None,
        temperature: float = 0.0,
    ) -> str:
        """Send a completion request to Claude and return the text response."""
        self._call_count += 1
        tokens = max_tokens or self.max_tokens
        logger.info("Calling AI (call #%d, model=%s, max_tokens=%d)...",
                    self._call_count, self.model, tokens)

        try:
            call_start = time.time()
            response = self.client.messages.create(
                model=self.model,
                max_tokens=tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_message}],
            )
            text = response.content[0].text
            logger.info("AI response received in %.1fs (%d chars)",
                        time.time() - call_start, len(text))
            self._save_exchange_log(self._call_count, system_prompt, user_message, text, None)
            return text
        except anthropic.APIError as e:
            logger.error("Claude API error: %s", e)
            self._save_exchange_log(self._call_count, system_prompt, user_message, "", str(e))
            raise

    def complete_json(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        """Send a completion request and parse the response as JSON."""
        text = self.complete(system_prompt, user_message, max_tokens)
        return self._parse_json_response(text)

    @staticmethod
    def _parse_json_response(text: str) -> dict[str, Any]:
        """Parse an AI response as JSON, tolerating code fences and trailing commas."""
        text = text.strip()
        match = re.search(r"^```(?:json)?\s*\n(.*?)\n```\s*$", text, re.DOTALL | re.MULTILINE)
        if match:
            text = match.group(1).strip()

        try:
            return json.loads(text, strict=False)
        except json.JSONDecodeError:
            pass

        cleaned = re.sub(r",\s*([}\]])", r"\1", text)
        first, last = cleaned.find("{"), cleaned.rfind("}")
        if first != -1 and last > first:
            cleaned = cleaned[first:last + 1]
        try:
            return json.loads(cleaned, strict=False)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse AI response as JSON: %s", e)
            raise ValueError(f"AI returned invalid JSON: {e}") from e

    @staticmethod
    def _save_exchange_log(
        call_number: int,
        system_prompt: str,
        user_message: str,
        response_text: str,
        error: str | None,
    ) -> None:
        """Save the full AI exchange to the debug directory, if one is configured."""
        if _debug_dir is None:
            return
        try:
            ts = time.strftime("%Y%m%d_%H%M%S")
            log_file = _debug_dir / f"ai_call_{ts}_{call_number:03d}.log"
            with open(log_file, "w", encoding="utf-8") as f:
                f.write(f"=== AI CALL #{call_number} at {time.strftime('%Y-%m-%d %H:%M:%S')} ===\n\n")
                f.write(f"=== SYSTEM PROMPT ({len(system_prompt)} chars) ===\n{system_prompt}\n\n")
                f.write(f"=== USER MESSAGE ({len(user_message)} chars) ===\n{user_message}\n\n")
                f.write(f"=== RESPONSE ({len(response_text)} chars) ===\n")
                f.write(response_text if response_text else "(empty)")
                if error:
                    f.write(f"\n\n=== ERROR ===\n{error}\n")
            logger.debug("AI exchange logged to %s", log_file)
        except OSError as log_err:
            logger.debug("Failed to save AI exchange log: %s", log_err)
