import pytest

from chat_core.api import service
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import KnowledgeFile, ProviderIdentity, ProviderKind


class ServiceSettingsStub:
    default_provider = "deepseek"
    api_key = "sk-test-0123456789"
    base_url = "api.example.com/"
    temperature = 0.3
    top_p = 0.8
    max_output_tokens = 1024
    history_limit = 6
    enable_search = True


def test_identity_and_config_from_settings():
    identity = service.identity_from_settings(ServiceSettingsStub())
    assert identity.kind is ProviderKind.DEEPSEEK
    assert identity.base_url == "https://api.example.com"

    config = service.generation_config_from_settings(ServiceSettingsStub())
    assert (config.temperature, config.top_p, config.max_output_tokens) == (0.3, 0.8, 1024)
    assert config.history_limit == 6 and config.enable_search


@pytest.mark.asyncio
async def test_fetch_models_without_key_is_empty():
    catalog = await service.fetch_models(ProviderIdentity.create(ProviderKind.OPENAI, ""))
    assert catalog.models == [] and catalog.platform == "Unknown"


@pytest.mark.asyncio
async def test_fetch_models_translates_failures(monkeypatch):
    async def failing(self, identity):
        raise RuntimeError("HTTP Error 401: Unauthorized")

    monkeypatch.setattr("chat_core.api.service.ProviderAdapter.list_models", failing)
    with pytest.raises(BusinessError) as ei:
        await service.fetch_models(ProviderIdentity.create(ProviderKind.OPENAI, "sk-test-0123456789"))
    assert ei.value.code == "MODEL_LIST_FAILED"
    assert ei.value.message == "API Key 无效 (401)。"


def test_create_dual_lane_shares_adapter():
    doc = KnowledgeFile(name="notes.md", content="hello")
    orch = service.create_dual_lane(
        ProviderIdentity.create(ProviderKind.GOOGLE, "g-0123456789"),
        knowledge_files=[doc],
    )
    left, right = orch.lanes["left"].engine, orch.lanes["right"].engine
    assert left._adapter is right._adapter
    assert (left.lane, right.lane) == ("left", "right")
    assert left.knowledge_files == [doc]
    assert left.system_instruction
