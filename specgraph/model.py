"""Model collaborator: chat messages in, completion text or a typed failure out."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone

import openai
from openai import OpenAI

from specgraph.errors import (
    AuthError,
    EmptyResponseError,
    ModelError,
    ModelTimeoutError,
    RateLimitError,
    TransportError,
)

log = logging.getLogger("spec-graph.model")


@dataclass
class Message:
    role: str
    content: str


class ModelClient:
    """Anything with ``chat(messages) -> str``. Failures raise ModelError subclasses."""

    def chat(self, messages, max_tokens=None):
        raise NotImplementedError


class XAIClient(ModelClient):
    """Chat completions against an OpenAI-compatible endpoint (xAI by default)."""

    def __init__(self, api_key, settings):
        if not api_key:
            raise AuthError("XAI_API_KEY is not set")
        self.settings = settings
        self.client = OpenAI(
            api_key=api_key,
            base_url=settings.api_endpoint,
            timeout=settings.timeout,
            max_retries=0,
        )

    def chat(self, messages, max_tokens=None):
        payload = [{"role": m.role, "content": m.content} for m in messages]
        log.debug("Calling %s with %d message(s)", self.settings.model, len(payload))
        try:
            resp = self.client.chat.completions.create(
                model=self.settings.model,
                messages=payload,
                temperature=self.settings.temperature,
                max_tokens=max_tokens or self.settings.max_tokens,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise AuthError(str(e)) from e
        except openai.RateLimitError as e:
            raise RateLimitError(str(e)) from e
        except openai.APITimeoutError as e:
            raise ModelTimeoutError(f"no response within {self.settings.timeout}s") from e
        except openai.APIConnectionError as e:
            raise TransportError(str(e)) from e
        except openai.APIStatusError as e:
            raise TransportError(f"HTTP {e.status_code}: {e.message}") from e
        except openai.APIError as e:
            raise ModelError(str(e)) from e

        if not resp.choices or not resp.choices[0].message.content:
            raise EmptyResponseError("model returned no content")
        return resp.choices[0].message.content


def strip_code_fence(text):
    """Unwrap a response the model put inside a single fenced block."""
    content = text.strip()
    if not content.startswith("```"):
        return content
    first_newline = content.find("\n")
    if first_newline == -1:
        return content
    content = content[first_newline + 1:]
    if content.rstrip().endswith("```"):
        content = content.rstrip()[:-3]
    return content.strip()


class PromptLog:
    """Request/response transcripts under <root>/logs when enabled."""

    def __init__(self, root, enabled=True):
        self.root = root
        self.enabled = enabled

    def request(self, operation, system_prompt, user_prompt):
        """Write the request transcript. Returns the id to pair with the response ("" when skipped)."""
        if not self.enabled or not system_prompt.strip() or not user_prompt.strip():
            return ""
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        request_dir = os.path.join(self.root, "logs", "request")
        os.makedirs(request_dir, exist_ok=True)
        path = os.path.join(request_dir, f"{operation}-{stamp}.md")
        with open(path, "w", encoding="utf-8") as f:
            f.write(f"# System Prompt\n\n{system_prompt}\n\n---\n\n# User Prompt\n\n{user_prompt}")
        log.info("Logged %s request to %s", operation, path)
        return stamp

    def response(self, log_id, operation, text):
        if not self.enabled or not log_id or not text.strip():
            return
        response_dir = os.path.join(self.root, "logs", "response")
        os.makedirs(response_dir, exist_ok=True)
        path = os.path.join(response_dir, f"{operation}-{log_id}.md")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        log.info("Logged %s response to %s", operation, path)
