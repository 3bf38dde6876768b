"""Model resolver wiring using environment-derived settings.

The transport asks for a chat model by id (or ``None`` for the default
orchestrator model). Clients are created lazily and cached per id, since
every worker session of the same role resolves to the same model.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from agentTeam.config.settings import Settings, get_settings

ModelResolver = Callable[[Optional[str]], BaseChatModel]


def _chat_kwargs(
    model: str,
    api_key: Optional[str],
    base_url: Optional[str],
    temperature: float = 0.2,
) -> Dict[str, object]:
    if not api_key:
        raise RuntimeError(f"缺少模型 {model} 的 API Key，请在 .env 中配置。")
    kwargs: Dict[str, object] = {"model": model, "api_key": api_key, "temperature": temperature}
    if base_url:
        kwargs["base_url"] = base_url
    return kwargs


def build_model_resolver(settings: Optional[Settings] = None) -> ModelResolver:
    """Construct a resolver that returns ChatOpenAI-compatible clients.

    All model ids share the credentials and endpoint configured in
    ``settings.models``; any OpenAI-compatible gateway works.

    Args:
        settings: Application settings; defaults to the cached instance

    Returns:
        Function mapping a model id (or None) to a chat model

    Raises:
        RuntimeError: If no API key is configured (raised on first use)

    Example:
        >>> resolver = build_model_resolver()
        >>> chat_model = resolver("gpt-4o")
    """
    settings = settings or get_settings()
    models = settings.models
    cache: Dict[str, BaseChatModel] = {}

    def resolver(model_id: Optional[str]) -> BaseChatModel:
        model_id = model_id or models.orchestrator_model
        if model_id not in cache:
            cache[model_id] = ChatOpenAI(
                **_chat_kwargs(model_id, models.api_key, models.base_url, models.temperature)
            )
        return cache[model_id]

    return resolver
