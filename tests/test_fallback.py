import base64

import pytest

from mediagen.errors import AuthError, InternalError, UpstreamError, ValidationError
from mediagen.model import GenerationRequest, ProviderKind
from mediagen.openai_client import size_bucket

SDXL_PATH = "/v1/generation/stable-diffusion-xl-1024-v1-0/text-to-image"
OPENAI_PATH = "/v1/images/generations"
PNG_B64 = base64.b64encode(b"\x89PNG fake").decode()


def remote(**kw):
    return GenerationRequest(prompt="a cat in a hat", api_key="sk-test", **kw)


async def test_missing_credential_fails_before_any_network_call(service, provider):
    with pytest.raises(ValidationError):
        await service.submit(GenerationRequest(prompt="cat"))
    with pytest.raises(ValidationError):
        await service.submit(GenerationRequest(prompt="cat", provider=ProviderKind.REMOTE))
    assert provider.calls == []


async def test_base_provider_success_returns_data_url(service, provider):
    provider.on("POST", SDXL_PATH, 200, json={"artifacts": [{"base64": PNG_B64}]})

    result = await service.submit(remote())

    assert result.provider == ProviderKind.STABILITY
    assert result.image_url == f"data:image/png;base64,{PNG_B64}"
    assert provider.calls_to(OPENAI_PATH) == []
    assert provider.calls[0].headers["authorization"] == "Bearer sk-test"


async def test_base_payload_defaults_to_1024(service, provider):
    provider.on("POST", SDXL_PATH, 200, json={"artifacts": [{"base64": PNG_B64}]})

    await service.submit(remote())

    body = provider.json_body(0)
    assert body["width"] == 1024 and body["height"] == 1024
    assert body["text_prompts"] == [{"text": "a cat in a hat"}]
    assert body["steps"] == 30 and body["samples"] == 1 and body["cfg_scale"] == 7


async def test_base_payload_snaps_down_to_multiple_of_64(service, provider):
    provider.on("POST", SDXL_PATH, 200, json={"artifacts": [{"base64": PNG_B64}]})

    await service.submit(remote(width=1000, height=700))

    body = provider.json_body(0)
    assert body["width"] == 960
    assert body["height"] == 640


@pytest.mark.parametrize("status", [401, 403, 404])
async def test_auth_class_failure_escalates_exactly_once(service, provider, status):
    provider.on("POST", SDXL_PATH, status, json={"message": "bad key"})
    provider.on("POST", OPENAI_PATH, 200, json={"data": [{"url": "https://cdn.example/img.png"}]})

    result = await service.submit(remote(width=2000, height=1000))

    assert result.provider == ProviderKind.OPENAI
    assert result.image_url == "https://cdn.example/img.png"
    assert len(provider.calls_to(OPENAI_PATH)) == 1
    body = provider.json_body(-1)
    assert body["model"] == "dall-e-3"
    assert body["size"] == "1792x1024"
    assert body["prompt"] == "a cat in a hat"
    assert provider.calls[-1].headers["authorization"] == "Bearer sk-test"


@pytest.mark.parametrize("status", [400, 500])
async def test_other_failures_do_not_escalate(service, provider, status):
    provider.on("POST", SDXL_PATH, status, json={"message": "insufficient_balance"})

    with pytest.raises(UpstreamError) as exc:
        await service.submit(remote())

    assert exc.value.message == "Stability AI Error: insufficient_balance"
    assert exc.value.upstream_status == status
    assert provider.calls_to(OPENAI_PATH) == []


async def test_secondary_failure_surfaces_secondary_message_and_keeps_both(service, provider):
    provider.on("POST", SDXL_PATH, 401, json={"message": "Incorrect API key"})
    provider.on("POST", OPENAI_PATH, 401, json={"error": {"message": "Invalid OpenAI key"}})

    with pytest.raises(AuthError) as exc:
        await service.submit(remote())

    assert exc.value.message == "Invalid OpenAI key"
    errors = exc.value.details["provider_errors"]
    assert set(errors) == {"stability", "openai"}
    assert "Incorrect API key" in errors["stability"]


async def test_secondary_failure_without_message_uses_generic_text(service, provider):
    provider.on("POST", SDXL_PATH, 403, text="forbidden")
    provider.on("POST", OPENAI_PATH, 500, text="<html>oops</html>")

    with pytest.raises(UpstreamError) as exc:
        await service.submit(remote())

    assert exc.value.message == "Remote API Failed (Invalid Key for both Stability and OpenAI)"


async def test_malformed_base_artifact_is_internal_error(service, provider):
    provider.on("POST", SDXL_PATH, 200, json={"artifacts": []})

    with pytest.raises(InternalError):
        await service.submit(remote())


@pytest.mark.parametrize(
    "width,height,expected",
    [
        (2000, 1000, "1792x1024"),
        (1000, 2000, "1024x1792"),
        (1000, 1000, "1024x1024"),
        (1300, 1000, "1792x1024"),
        (700, 1000, "1024x1792"),
        (1200, 1000, "1024x1024"),
        (None, 1000, "1024x1024"),
        (None, None, "1024x1024"),
    ],
)
def test_size_bucket(width, height, expected):
    assert size_bucket(width, height) == expected
