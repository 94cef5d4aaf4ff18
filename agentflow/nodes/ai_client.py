# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
AI Invocation Client

Non-streaming chat completion calls for OpenAI-compatible endpoints
(OpenAI, OpenRouter, self-hosted) and Azure OpenAI deployments.
"""

import math
import re
from typing import Any, Dict, List, Optional

import httpx

from agentflow.core.errors import AgentFlowError
from agentflow.core.logging import get_service_logger
from agentflow.engine.models import AIModel

logger = get_service_logger("ai-client")

_CJK_PATTERN = re.compile(r"[\u4e00-\u9fa5]")

AZURE_PROVIDERS = {"azure", "azure-openai"}
AZURE_ENDPOINT_PLACEHOLDERS = {"azure", "use-from-key"}


class AIProviderError(AgentFlowError):
    """Model provider call failed or returned an unusable response"""

    def __init__(self, message: str, model: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=502, details=details)
        self.model = model


def estimate_tokens(content: Optional[str]) -> int:
    """Rough token count: 0.67 per CJK character, 0.25 per other character"""
    if not content:
        return 0
    cjk = len(_CJK_PATTERN.findall(content))
    other = len(content) - cjk
    return math.ceil(cjk * 0.67 + other * 0.25)


def is_azure_config(model: AIModel) -> bool:
    """Azure if flagged by provider, a key|endpoint|version api key, or a placeholder endpoint"""
    if model.provider in AZURE_PROVIDERS:
        return True
    if model.api_key and len(model.api_key.split("|")) == 3:
        return True
    return model.api_endpoint in AZURE_ENDPOINT_PLACEHOLDERS


def parse_azure_key(api_key: Optional[str]) -> Optional[Dict[str, str]]:
    """Split an `apiKey|endpoint|apiVersion` key"""
    if not api_key:
        return None
    parts = api_key.split("|")
    if len(parts) != 3:
        return None
    return {
        "api_key": parts[0].strip(),
        "endpoint": parts[1].strip(),
        "api_version": parts[2].strip(),
    }


class AIClient:
    """Calls chat completion endpoints and returns the reply text."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        site_url: str = "http://localhost",
        app_title: str = "agentflow",
    ):
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.timeout = timeout
        self.site_url = site_url
        self.app_title = app_title

    async def call(self, model: AIModel, messages: List[Dict[str, str]], options: Optional[Dict[str, Any]] = None) -> str:
        """
        Send messages to the model and return the first choice's content.

        Args:
            model: catalog entry with endpoint and credentials
            messages: [{role, content}]
            options: temperature, max_tokens, timeout

        Raises:
            AIProviderError: HTTP failure or malformed response
        """
        options = options or {}
        try:
            if is_azure_config(model):
                return await self._call_azure(model, messages, options)
            return await self._call_standard(model, messages, options)
        except httpx.HTTPStatusError as e:
            logger.error(f"AI call to {model.name} failed with HTTP {e.response.status_code}")
            raise AIProviderError(
                f"Model provider returned HTTP {e.response.status_code}",
                model=model.name,
                details={"status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"AI call to {model.name} failed: {e}")
            raise AIProviderError(f"Model provider request failed: {e}", model=model.name) from e

    async def _call_standard(self, model: AIModel, messages: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        if not model.api_endpoint:
            raise AIProviderError(f"Model has no API endpoint: {model.name}", model=model.name)

        endpoint = model.api_endpoint.rstrip("/")
        if not endpoint.endswith("/chat/completions"):
            endpoint = f"{endpoint}/chat/completions"

        headers = {
            "Authorization": f"Bearer {model.api_key or ''}",
            "Content-Type": "application/json",
        }
        if "openrouter" in endpoint:
            headers["HTTP-Referer"] = self.site_url
            headers["X-Title"] = self.app_title

        payload = {
            "model": model.model_id or model.name,
            "messages": messages,
            "temperature": options.get("temperature", 0.7),
            "max_tokens": options.get("max_tokens", 2000),
            "stream": False,
        }

        response = await self.client.post(
            endpoint,
            json=payload,
            headers=headers,
            timeout=options.get("timeout", self.timeout),
        )
        response.raise_for_status()
        return self._extract_content(response.json(), model)

    async def _call_azure(self, model: AIModel, messages: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        azure = parse_azure_key(model.api_key)
        if azure is None:
            if not (model.api_endpoint and model.api_version and model.api_key):
                raise AIProviderError(
                    "Azure model requires an api key of the form apiKey|endpoint|apiVersion",
                    model=model.name,
                )
            azure = {
                "api_key": model.api_key,
                "endpoint": model.api_endpoint,
                "api_version": model.api_version,
            }

        # Azure addresses deployments, not model names
        deployment = (model.model_id or model.name).split("/")[-1]
        base_url = azure["endpoint"].rstrip("/")
        url = f"{base_url}/openai/deployments/{deployment}/chat/completions"

        payload = {
            "messages": messages,
            "temperature": options.get("temperature", 0.7),
            "max_tokens": options.get("max_tokens", 2000),
            "stream": False,
        }

        response = await self.client.post(
            url,
            params={"api-version": azure["api_version"]},
            json=payload,
            headers={"api-key": azure["api_key"], "Content-Type": "application/json"},
            timeout=options.get("timeout", self.timeout),
        )
        response.raise_for_status()
        return self._extract_content(response.json(), model)

    @staticmethod
    def _extract_content(data: Any, model: AIModel) -> str:
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise AIProviderError("Unexpected response format from model provider", model=model.name)

    async def close(self) -> None:
        await self.client.aclose()
