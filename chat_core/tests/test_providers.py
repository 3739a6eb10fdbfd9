import pytest

from chat_core.domain.models import ModelCatalog, ProviderFamily, ProviderIdentity, ProviderKind
from chat_core.providers import ProviderAdapter, create_provider
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.gemini_client import GeminiClient
from chat_core.providers.openai_client import OpenAICompatibleClient
from chat_core.providers.registry import PROVIDER_REGISTRY, get_provider_config


def test_create_provider_per_family(settings_stub):
    assert isinstance(create_provider(ProviderFamily.NATIVE, settings_stub), GeminiClient)
    assert isinstance(create_provider("anthropic", settings_stub), AnthropicClient)
    assert type(create_provider(ProviderFamily.OPENAI, settings_stub)) is OpenAICompatibleClient


def test_registry_covers_every_kind():
    assert set(PROVIDER_REGISTRY) == set(ProviderKind)
    assert get_provider_config("DeepSeek").base_url == "https://api.deepseek.com"
    with pytest.raises(KeyError):
        get_provider_config("nope")


def test_identity_sanitises_input():
    identity = ProviderIdentity.create(ProviderKind.GOOGLE, " key中文123456789 ", "proxy.example.com/v1beta/")
    assert identity.api_key == "key123456789"
    assert identity.base_url == "https://proxy.example.com"
    assert identity.family is ProviderFamily.NATIVE

    openai = ProviderIdentity.create("openai", "sk-0123456789", "")
    assert openai.resolved_base_url == "https://api.openai.com/v1"
    assert openai.family is ProviderFamily.OPENAI
    assert ProviderIdentity.create("anthropic", "k").family is ProviderFamily.ANTHROPIC


@pytest.mark.asyncio
async def test_adapter_dispatches_by_family(settings_stub):
    class FakeClient:
        def __init__(self, platform):
            self.platform = platform

        async def list_models(self, identity):
            return ModelCatalog(models=[], platform=self.platform)

    adapter = ProviderAdapter(
        clients={ProviderFamily.NATIVE: FakeClient("native"), ProviderFamily.OPENAI: FakeClient("openai")},
        cfg=settings_stub,
    )
    google = ProviderIdentity.create(ProviderKind.GOOGLE, "g-0123456789")
    moonshot = ProviderIdentity.create(ProviderKind.MOONSHOT, "sk-0123456789")
    assert (await adapter.list_models(google)).platform == "native"
    assert (await adapter.list_models(moonshot)).platform == "openai"
    claude = ProviderIdentity.create(ProviderKind.ANTHROPIC, "sk-ant-0123456789")
    assert isinstance(adapter.client_for(claude), AnthropicClient)
