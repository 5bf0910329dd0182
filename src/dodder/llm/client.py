"""Thin Ollama client that returns the raw text of the next assistant turn."""

from __future__ import annotations

import json
import logging
import socket
from urllib import request
from urllib.error import HTTPError, URLError

from dodder.agent.models import GenerationParams
from dodder.errors import BackendTimeout, BackendUnavailable

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
LOGGER = logging.getLogger(__name__)


class OllamaClient:
    """Small HTTP client for the Ollama chat and model listing endpoints."""

    def __init__(
        self,
        *,
        model: str,
        host: str = DEFAULT_OLLAMA_HOST,
        timeout: float = 120.0,
        json_mode: bool = True,
    ) -> None:
        self.model = model
        self.host = host.rstrip("/")
        self.timeout = timeout
        self.json_mode = json_mode

    def generate(self, messages: list[dict[str, str]], params: GenerationParams) -> str:
        """Send the conversation and return the assistant reply verbatim.

        Raises:
            BackendUnavailable: the server could not be reached or returned an error.
            BackendTimeout: no response arrived within ``timeout`` seconds.
        """
        payload = self._build_payload(messages, params)
        body = json.dumps(payload).encode("utf-8")
        LOGGER.debug(
            "llm_request_prepared",
            extra={
                "host": self.host,
                "model": self.model,
                "payload_bytes": len(body),
                "messages": len(messages),
            },
        )
        raw = self._request_json("/api/chat", body)

        message = raw.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            LOGGER.error("llm_response_missing_content", extra={"model": self.model})
            raise BackendUnavailable("Model response did not include message content.")
        return content

    def list_models(self) -> list[str]:
        raw = self._request_json("/api/tags", None)
        models = raw.get("models")
        if not isinstance(models, list):
            return []
        names: list[str] = []
        for entry in models:
            if not isinstance(entry, dict):
                continue
            name = entry.get("model") or entry.get("name")
            if isinstance(name, str) and name:
                names.append(name)
        return names

    def _build_payload(
        self, messages: list[dict[str, str]], params: GenerationParams
    ) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": params.temperature,
                "num_predict": params.max_tokens,
                "top_p": params.top_p,
                "frequency_penalty": params.frequency_penalty,
                "presence_penalty": params.presence_penalty,
            },
        }
        if self.json_mode:
            payload["format"] = "json"
        return payload

    def _request_json(self, path: str, body: bytes | None) -> dict[str, object]:
        url = f"{self.host}{path}"
        headers = {"Content-Type": "application/json"}
        method = "GET" if body is None else "POST"
        req = request.Request(url, data=body, headers=headers, method=method)
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "url": url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Backend request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise BackendUnavailable(details) from exc
        except URLError as exc:
            if isinstance(exc.reason, (TimeoutError, socket.timeout)):
                self._log_timeout(url)
                raise BackendTimeout(
                    f"Backend request timed out after {self.timeout:.1f}s"
                ) from exc
            LOGGER.error(
                "llm_request_transport_error",
                extra={"url": url, "model": self.model, "reason": str(exc.reason)},
            )
            raise BackendUnavailable(f"Backend transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            self._log_timeout(url)
            raise BackendTimeout(f"Backend request timed out after {self.timeout:.1f}s") from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={"url": url, "model": self.model, "error": str(exc)},
            )
            raise BackendUnavailable(f"Backend response parsing error: {exc}") from exc

        if not isinstance(raw_response, dict):
            raise BackendUnavailable("Backend response parsing error: expected top-level object")
        return raw_response

    def _log_timeout(self, url: str) -> None:
        LOGGER.error(
            "llm_request_timeout",
            extra={"url": url, "model": self.model, "timeout_seconds": self.timeout},
        )

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
