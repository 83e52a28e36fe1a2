#!/usr/bin/env python3
"""
LLM Connector - Completion calls for completePrompt
Talks to LM Studio (OpenAI-compatible) or Ollama over HTTP
"""

import logging
from enum import Enum
from typing import Dict, List, Optional

import requests

from shard_system.core.datashapes import CompletionError, ModelConfig

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    LMSTUDIO = "lmstudio"
    OLLAMA = "ollama"


class CompletionClient:
    def __init__(self,
                 provider: LLMProvider = LLMProvider.LMSTUDIO,
                 base_url: Optional[str] = None,
                 timeout: int = 300):
        self.provider = provider

        # Configuration for different providers
        self.configs = {
            LLMProvider.LMSTUDIO: {
                'base_url': 'http://localhost:1234',
                'endpoint': '/v1/chat/completions',
                'health': '/v1/models',
            },
            LLMProvider.OLLAMA: {
                'base_url': 'http://localhost:11434',
                'endpoint': '/api/chat',
                'health': '/api/version',
            }
        }

        self.config = dict(self.configs[provider])
        if base_url:
            self.config['base_url'] = base_url.rstrip('/')
        self.timeout = timeout
        self.is_connected = False

    @classmethod
    def from_config(cls, config) -> "CompletionClient":
        """Build from a ShardConfig class"""
        return cls(
            provider=LLMProvider(config.LLM_PROVIDER),
            base_url=config.LLM_URL,
            timeout=config.LLM_TIMEOUT,
        )

    def test_connection(self) -> bool:
        """Test if the completion service is reachable"""
        try:
            response = requests.get(
                f"{self.config['base_url']}{self.config['health']}",
                timeout=5
            )
            self.is_connected = response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.warning(f"{self.provider.value} not accessible: {e}")
            self.is_connected = False

        return self.is_connected

    def complete(self, messages: List[Dict[str, str]], model_config: ModelConfig) -> str:
        """
        Run one chat completion.

        Args:
            messages: [{"role": ..., "content": ...}, ...] oldest first
            model_config: model, temperature, max_tokens, optional system prompt

        Returns:
            The assistant text

        Raises:
            CompletionError: transport failure, non-200 status or unexpected payload
        """
        if model_config.system_prompt:
            messages = [{"role": "system", "content": model_config.system_prompt}] + list(messages)

        if self.provider == LLMProvider.OLLAMA:
            payload = {
                "model": model_config.model,
                "messages": messages,
                "stream": False,
                "options": {
                    "temperature": model_config.temperature,
                    "num_predict": model_config.max_tokens,
                },
            }
        else:
            payload = {
                "model": model_config.model,
                "messages": messages,
                "temperature": model_config.temperature,
                "max_tokens": model_config.max_tokens,
                "stream": False,
            }

        url = f"{self.config['base_url']}{self.config['endpoint']}"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise CompletionError(f"{self.provider.value} request failed: {e}") from e

        if response.status_code != 200:
            raise CompletionError(
                f"{self.provider.value} returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
            if self.provider == LLMProvider.OLLAMA:
                text = data["message"]["content"]
            else:
                text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CompletionError(f"Unexpected {self.provider.value} response shape: {e}") from e

        logger.debug(f"Completion from {self.provider.value}: {len(text)} chars")
        return text
