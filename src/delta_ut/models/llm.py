"""LLM 提供商模块 - 统一接口与注册表."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from anthropic import AsyncAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from delta_ut.config import Settings
from delta_ut.exceptions import ConfigurationError, LLMResponseError
from delta_ut.utils import get_logger

logger = get_logger("llm")


@dataclass
class LLMMessage:
    """对话消息."""

    role: str
    content: str


@dataclass
class LLMOptions:
    """单次调用参数."""

    temperature: float = 0.2
    max_tokens: int = 4000
    stop_sequences: List[str] = field(default_factory=list)


@dataclass
class LLMResponse:
    """LLM 响应."""

    content: str
    usage: Dict[str, int] = field(default_factory=dict)


class LLMProvider(ABC):
    """LLM 提供商接口."""

    name: str = ""

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def generate(
        self, messages: List[LLMMessage], options: Optional[LLMOptions] = None
    ) -> LLMResponse:
        """生成回复.

        Args:
            messages: 对话消息
            options: 调用参数

        Returns:
            LLMResponse: 响应内容与用量
        """

    def _log_usage(self, usage: Dict[str, int]) -> None:
        if usage:
            logger.debug(
                f"{self.name} 用量: {usage.get('total_tokens', 'unknown')} tokens "
                f"(prompt: {usage.get('input_tokens', 'unknown')}, "
                f"completion: {usage.get('output_tokens', 'unknown')})"
            )


class LangChainProvider(LLMProvider):
    """基于 LangChain 聊天模型的提供商."""

    def __init__(
        self,
        name: str,
        model: str,
        model_factory: Callable[[LLMOptions], BaseChatModel],
    ):
        super().__init__(model)
        self.name = name
        self._model_factory = model_factory

    @staticmethod
    def _to_langchain(messages: List[LLMMessage]) -> List[BaseMessage]:
        converted: List[BaseMessage] = []
        for msg in messages:
            if msg.role == "system":
                converted.append(SystemMessage(content=msg.content))
            elif msg.role == "assistant":
                converted.append(AIMessage(content=msg.content))
            else:
                converted.append(HumanMessage(content=msg.content))
        return converted

    async def generate(
        self, messages: List[LLMMessage], options: Optional[LLMOptions] = None
    ) -> LLMResponse:
        options = options or LLMOptions()
        chat_model = self._model_factory(options)
        stop = options.stop_sequences or None
        response = await chat_model.ainvoke(self._to_langchain(messages), stop=stop)

        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )
        if not content:
            raise LLMResponseError("LLM 返回空响应", provider=self.name, model=self.model)

        usage = dict(getattr(response, "usage_metadata", None) or {})
        self._log_usage(usage)
        return LLMResponse(content=content, usage=usage)


class AnthropicProvider(LLMProvider):
    """Anthropic Claude 提供商."""

    name = "anthropic"

    def __init__(self, api_key: str, model: str, timeout: float = 120):
        super().__init__(model)
        self._client = AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    async def generate(
        self, messages: List[LLMMessage], options: Optional[LLMOptions] = None
    ) -> LLMResponse:
        options = options or LLMOptions()
        system_message = next((m.content for m in messages if m.role == "system"), "")
        conversation = [
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
            for m in messages
            if m.role != "system"
        ]

        kwargs = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": conversation,
        }
        if system_message:
            kwargs["system"] = system_message
        if options.stop_sequences:
            kwargs["stop_sequences"] = options.stop_sequences

        response = await self._client.messages.create(**kwargs)
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not content:
            raise LLMResponseError("Anthropic 返回空响应", provider=self.name, model=self.model)

        usage = {}
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            }
        self._log_usage(usage)
        return LLMResponse(content=content, usage=usage)


ProviderBuilder = Callable[[Settings], LLMProvider]

_PROVIDERS: Dict[str, ProviderBuilder] = {}


def register_provider(name: str) -> Callable[[ProviderBuilder], ProviderBuilder]:
    """注册 LLM 提供商构建函数."""

    def decorator(builder: ProviderBuilder) -> ProviderBuilder:
        _PROVIDERS[name] = builder
        return builder

    return decorator


@register_provider("openai")
def _build_openai(settings: Settings) -> LLMProvider:
    if not settings.openai_api_key:
        raise ConfigurationError("OpenAI API Key 未配置", config_key="openai_api_key")

    def factory(options: LLMOptions) -> BaseChatModel:
        return ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            timeout=settings.llm_timeout,
            max_retries=0,
        )

    return LangChainProvider("openai", settings.openai_model, factory)


@register_provider("deepseek")
def _build_deepseek(settings: Settings) -> LLMProvider:
    if not settings.deepseek_api_key:
        raise ConfigurationError("DeepSeek API Key 未配置", config_key="deepseek_api_key")

    def factory(options: LLMOptions) -> BaseChatModel:
        return ChatOpenAI(
            model=settings.deepseek_model,
            api_key=settings.deepseek_api_key,
            base_url=settings.deepseek_base_url,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            timeout=settings.llm_timeout,
            max_retries=0,
        )

    return LangChainProvider("deepseek", settings.deepseek_model, factory)


@register_provider("ollama")
def _build_ollama(settings: Settings) -> LLMProvider:
    def factory(options: LLMOptions) -> BaseChatModel:
        return ChatOllama(
            model=settings.ollama_model,
            base_url=settings.ollama_base_url,
            temperature=options.temperature,
            num_predict=options.max_tokens,
        )

    return LangChainProvider("ollama", settings.ollama_model, factory)


@register_provider("anthropic")
def _build_anthropic(settings: Settings) -> LLMProvider:
    if not settings.anthropic_api_key:
        raise ConfigurationError("Anthropic API Key 未配置", config_key="anthropic_api_key")
    return AnthropicProvider(
        api_key=settings.anthropic_api_key,
        model=settings.anthropic_model,
        timeout=settings.llm_timeout,
    )


def create_llm_provider(settings: Settings, provider: Optional[str] = None) -> LLMProvider:
    """按名称创建 LLM 提供商.

    Args:
        settings: 配置
        provider: 提供商名称 (默认取配置)

    Returns:
        LLMProvider: 提供商实例
    """
    name = provider or settings.default_llm_provider
    builder = _PROVIDERS.get(name)
    if builder is None:
        raise ConfigurationError(f"不支持的 LLM 提供商: {name}", config_key="default_llm_provider")
    return builder(settings)


def list_available_providers(settings: Settings) -> List[str]:
    """列出已配置可用的 LLM 提供商."""
    providers = []
    if settings.openai_api_key:
        providers.append("openai")
    if settings.deepseek_api_key:
        providers.append("deepseek")
    if settings.anthropic_api_key:
        providers.append("anthropic")
    providers.append("ollama")
    return providers
