from __future__ import annotations

from typing import Callable, Dict

from duocast_contracts.errors import ConfigurationError
from duocast_podcast.application.ports import TextGenerator
from duocast_podcast.infrastructure.config import ProviderKeys, Settings
from duocast_podcast.infrastructure.llm.anthropic import AnthropicTextGenerator
from duocast_podcast.infrastructure.llm.gemini import GeminiTextGenerator
from duocast_podcast.infrastructure.llm.ollama import OllamaTextGenerator
from duocast_podcast.infrastructure.llm.openrouter import OpenRouterTextGenerator
from duocast_podcast.infrastructure.script.script_writer import LlmScriptGenerator

GeneratorFactory = Callable[[Settings, ProviderKeys], TextGenerator]

SCRIPT_BACKENDS: Dict[str, GeneratorFactory] = {
    "haiku": lambda s, k: AnthropicTextGenerator(api_key=k.anthropic, model="claude-haiku-4-5-20251001", name="haiku"),
    "sonnet": lambda s, k: AnthropicTextGenerator(api_key=k.anthropic, model="claude-sonnet-4-5-20250929", name="sonnet"),
    "gemini-flash": lambda s, k: GeminiTextGenerator(api_key=k.gemini, model="gemini-2.5-flash", name="gemini-flash"),
    "gemini-pro": lambda s, k: GeminiTextGenerator(api_key=k.gemini, model="gemini-2.5-pro", name="gemini-pro"),
    "openrouter": lambda s, k: OpenRouterTextGenerator(api_key=k.openrouter, model=s.openrouter_model),
    "ollama": lambda s, k: OllamaTextGenerator(base_url=s.ollama_base_url, model=s.ollama_model),
}


def check_script_backend(name: str) -> None:
    if name not in SCRIPT_BACKENDS:
        raise ConfigurationError(f"unknown script backend {name!r}; valid choices: {', '.join(SCRIPT_BACKENDS)}")


def build_script_generator(name: str, settings: Settings, keys: ProviderKeys) -> LlmScriptGenerator:
    check_script_backend(name)
    return LlmScriptGenerator(generator=SCRIPT_BACKENDS[name](settings, keys))
