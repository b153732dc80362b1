import pytest

from mediagen.errors import InternalError, UpstreamError, ValidationError
from mediagen.model import GenerationRequest, JobStatus, OperationKind, ProviderKind

V2 = "/v2beta/stable-image"


def direct(operation, api_key="sk-test", **kw):
    return GenerationRequest(
        provider=ProviderKind.STABILITY,
        operation=operation,
        api_key=api_key,
        form={"prompt": "a wooden boat", "output_format": "png"},
        files={"image": ("boat.png", b"\x89PNG", "image/png")},
        **kw,
    )


@pytest.mark.parametrize(
    "operation,path",
    [
        (OperationKind.GENERATE_CORE, f"{V2}/generate/core"),
        (OperationKind.IMG2IMG, f"{V2}/generate/sd3"),
        (OperationKind.INPAINT, f"{V2}/edit/inpaint"),
        (OperationKind.REMOVE_BACKGROUND, f"{V2}/edit/remove-background"),
        (OperationKind.UPSCALE_CONSERVATIVE, f"{V2}/upscale/conservative"),
    ],
)
async def test_sync_operations_return_artifact(service, provider, operation, path):
    provider.on("POST", path, 200, json={"image": "aW1n", "seed": 123, "finish_reason": "SUCCESS"})

    result = await service.submit(direct(operation))

    assert result.image == "aW1n"
    assert result.metadata == {"seed": 123, "finish_reason": "SUCCESS"}
    assert not result.pending

    sent = provider.calls[0]
    assert sent.headers["authorization"] == "Bearer sk-test"
    assert sent.headers["accept"] == "application/json"
    assert sent.headers["content-type"].startswith("multipart/form-data")
    assert b"a wooden boat" in sent.content
    assert b'filename="boat.png"' in sent.content


async def test_missing_credential_is_validation_error_without_calls(service, provider):
    with pytest.raises(ValidationError):
        await service.submit(direct(OperationKind.INPAINT, api_key=None))
    assert provider.calls == []


async def test_error_status_is_upstream_error_with_raw_body(service, provider):
    provider.on("POST", f"{V2}/edit/inpaint", 422, text='{"errors":["mask is required"]}')

    with pytest.raises(UpstreamError) as exc:
        await service.submit(direct(OperationKind.INPAINT))

    assert exc.value.upstream_status == 422
    assert exc.value.body == '{"errors":["mask is required"]}'
    assert "mask is required" in exc.value.message


async def test_creative_upscale_202_registers_in_progress_job(service, provider):
    provider.on("POST", f"{V2}/upscale/creative", 202, json={"id": "gen-abc"})

    result = await service.submit(direct(OperationKind.UPSCALE_CREATIVE), owner="s1")

    assert result.pending
    job = await service.get_job("gen-abc", owner="s1")
    assert job.status == JobStatus.IN_PROGRESS
    assert job.type == OperationKind.UPSCALE_CREATIVE
    assert job.provider == ProviderKind.STABILITY
    assert job.result_url is None
    assert job.api_key == "sk-test"


async def test_202_without_id_is_internal_error(service, provider):
    provider.on("POST", f"{V2}/upscale/creative", 202, json={})

    with pytest.raises(InternalError):
        await service.submit(direct(OperationKind.UPSCALE_CREATIVE))


async def test_generate_without_files_still_sends_multipart(service, provider):
    provider.on("POST", f"{V2}/generate/core", 200, json={"image": "aW1n"})
    request = GenerationRequest(
        provider=ProviderKind.STABILITY,
        operation=OperationKind.GENERATE_CORE,
        api_key="sk-test",
        form={"prompt": "mountains"},
    )

    await service.submit(request)

    assert provider.calls[0].headers["content-type"].startswith("multipart/form-data")


async def test_unsupported_operation(service, provider):
    request = GenerationRequest(
        provider=ProviderKind.STABILITY,
        operation=OperationKind.TEXT_TO_3D,
        api_key="sk-test",
    )
    with pytest.raises(ValidationError):
        await service.submit(request)
    assert provider.calls == []
