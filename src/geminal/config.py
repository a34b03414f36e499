"""Client configuration.

Values come from a JSON file (the same keys the browser terminal
front-end used) or from environment variables. They are read-only
inputs to request construction.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

PLACEHOLDER_API_KEY = "YOUR_API_KEY_HERE"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models"

SYSTEM_INSTRUCTION = """You are an AI assistant in a terminal interface.

CRITICAL FORMATTING RULES:
- Use ONLY plain text - no Markdown, HTML, or special formatting
- NO tables, bullet points with symbols, or complex layouts
- Use simple line breaks and spacing for structure
- For lists: use simple numbered lists (1., 2., 3.) or plain dashes (-)
- For emphasis: use UPPERCASE or *asterisks* sparingly
- Keep responses concise and terminal-friendly
- Use simple ASCII art if diagrams are needed
- Break long content into readable paragraphs with blank lines

Your responses will be displayed in a monospace terminal."""


class GenerationConfig(BaseModel):
    """Sampling parameters sent with every request."""

    model_config = ConfigDict(populate_by_name=True)

    temperature: float = 0.9
    top_k: int = Field(default=40, alias="topK")
    top_p: float = Field(default=0.95, alias="topP")
    max_output_tokens: int = Field(default=8192, alias="maxOutputTokens")

    def to_request(self) -> dict:
        return self.model_dump(by_alias=True)


class ClientConfig(BaseModel):
    """Connection settings for the generative-text service.

    Args:
        api_key: Service credential. ``None`` or the placeholder value
            means the client is not configured.
        model: Model identifier, e.g. ``"gemini-2.5-flash"``.
        api_endpoint: Base URL that model names are appended to.
        timeout: HTTP timeout in seconds.
        system_instruction: Instruction sent with every request; empty
            to send none.
        generation: Sampling parameters.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(default=None, alias="geminiApiKey")
    model: str = Field(default=DEFAULT_MODEL, alias="geminiModel")
    api_endpoint: str = Field(default=DEFAULT_ENDPOINT, alias="apiEndpoint")
    timeout: float = 600.0
    system_instruction: str = Field(default=SYSTEM_INSTRUCTION, alias="systemInstruction")
    generation: GenerationConfig = Field(
        default_factory=GenerationConfig, alias="generationConfig",
    )

    @classmethod
    def from_file(cls, path: str | Path) -> ClientConfig:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(data)

    @classmethod
    def from_env(cls) -> ClientConfig:
        values = {
            "api_key": os.getenv("GEMINI_API_KEY"),
            "model": os.getenv("GEMINI_MODEL"),
            "api_endpoint": os.getenv("GEMINI_API_ENDPOINT"),
        }
        return cls(**{k: v for k, v in values.items() if v})

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_API_KEY

    def describe(self) -> str:
        """Human-readable status summary. Never includes the key."""
        key_status = "configured" if self.is_configured else "not configured"
        return (
            f"API key: {key_status}\n"
            f"Model: {self.model}\n"
            f"Endpoint: {self.api_endpoint}"
        )
