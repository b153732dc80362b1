import fnmatch

import pytest

from mediagen.adapters import AdapterRegistry, PollOutcome
from mediagen.errors import NotFoundError, ValidationError
from mediagen.jobs import JobRegistry, MemoryJobStore, RedisJobStore
from mediagen.model import BackgroundJob, JobStatus, OperationKind, ProviderKind
from mediagen.openai_client import OpenAIImageGenerator

RESULT_PATH = "/v2beta/stable-image/upscale/creative/result/gen-1"


def creative_job(**kw) -> BackgroundJob:
    fields = dict(
        id="gen-1",
        type=OperationKind.UPSCALE_CREATIVE,
        provider=ProviderKind.STABILITY,
        status=JobStatus.IN_PROGRESS,
        api_key="sk-job",
    )
    fields.update(kw)
    return BackgroundJob(**fields)


async def test_poll_keeps_in_progress_on_202_then_succeeds_once(service, provider):
    await service.jobs.create(creative_job())
    provider.on("GET", RESULT_PATH, 202, text="")
    provider.on("GET", RESULT_PATH, 202, text="")
    provider.on("GET", RESULT_PATH, 200, json={"image": "ZG9uZQ=="})

    job = await service.poll_job("gen-1")
    assert job.status == JobStatus.IN_PROGRESS
    assert job.result_url is None

    job = await service.poll_job("gen-1")
    assert job.status == JobStatus.IN_PROGRESS

    job = await service.poll_job("gen-1")
    assert job.status == JobStatus.SUCCEEDED
    assert job.result_url == "data:image/png;base64,ZG9uZQ=="
    assert provider.calls[0].headers["authorization"] == "Bearer sk-job"

    # terminal: no further provider calls, nothing changes
    again = await service.poll_job("gen-1")
    assert again == job
    assert len(provider.calls) == 3


async def test_poll_error_status_fails_job_with_error_text(service, provider):
    await service.jobs.create(creative_job())
    provider.on("GET", RESULT_PATH, 404, text='{"name":"not_found"}')

    job = await service.poll_job("gen-1")

    assert job.status == JobStatus.FAILED
    assert job.error_message == '{"name":"not_found"}'


async def test_other_stability_jobs_poll_generic_results_endpoint(service, provider):
    await service.jobs.create(creative_job(id="gen-2", type=OperationKind.INPAINT))
    provider.on("GET", "/v2beta/results/gen-2", 200, json={"image": "aW1n"})

    job = await service.poll_job("gen-2")

    assert job.status == JobStatus.SUCCEEDED


async def test_unknown_job_is_not_found_and_makes_no_calls(service, provider):
    with pytest.raises(NotFoundError):
        await service.poll_job("nope")
    with pytest.raises(NotFoundError):
        await service.get_job("nope")
    assert provider.calls == []


async def test_blank_job_id_is_validation_error(service):
    with pytest.raises(ValidationError):
        await service.get_job("  ")


async def test_jobs_are_scoped_to_their_session(service, provider):
    await service.jobs.create(creative_job(), owner="alice")

    with pytest.raises(NotFoundError):
        await service.poll_job("gen-1", owner="bob")
    with pytest.raises(NotFoundError):
        await service.get_job("gen-1")
    assert await service.list_jobs(owner="bob") == []
    assert [j.id for j in await service.list_jobs(owner="alice")] == ["gen-1"]
    assert provider.calls == []


async def test_transition_after_terminal_is_ignored():
    registry = JobRegistry(MemoryJobStore(), AdapterRegistry())
    await registry.create(creative_job())

    done = await registry.transition("gen-1", PollOutcome(JobStatus.FAILED, error_message="boom"))
    later = await registry.transition("gen-1", PollOutcome(JobStatus.SUCCEEDED, result_url="x"))

    assert later == done
    assert later.status == JobStatus.FAILED
    assert later.result_url is None


async def test_progress_hint_is_recorded_without_status_change():
    registry = JobRegistry(MemoryJobStore(), AdapterRegistry())
    await registry.create(creative_job(status=JobStatus.PENDING))

    job = await registry.transition("gen-1", PollOutcome(JobStatus.IN_PROGRESS, progress=0.4))

    assert job.status == JobStatus.IN_PROGRESS
    assert job.progress == 0.4


async def test_cannot_create_terminal_job():
    registry = JobRegistry(MemoryJobStore(), AdapterRegistry())
    with pytest.raises(ValidationError):
        await registry.create(creative_job(status=JobStatus.SUCCEEDED))


async def test_evict_removes_job(service):
    await service.jobs.create(creative_job(), owner="s1")

    await service.evict_job("gen-1", owner="s1")

    with pytest.raises(NotFoundError):
        await service.get_job("gen-1", owner="s1")


def test_public_view_hides_credential():
    view = creative_job(owner="s1").public()
    assert "api_key" not in view
    assert "owner" not in view
    assert view["status"] == "IN_PROGRESS"


class FakeRedis:
    """Đủ cho RedisJobStore: get/set(ex)/delete/scan_iter."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)

    async def scan_iter(self, match="*"):
        for key in list(self.data):
            if fnmatch.fnmatch(key, match):
                yield key


async def test_redis_store_round_trip_and_ttl():
    rds = FakeRedis()
    store = RedisJobStore(rds, ttl=3600)
    job = creative_job(progress=0.5, owner="s1")

    await store.put(job)

    assert "job:gen-1" in rds.data
    assert rds.expiry["job:gen-1"] == 3600
    assert await store.get("gen-1") == job
    assert await store.all() == [job]

    await store.delete("gen-1")
    assert await store.get("gen-1") is None


async def test_redis_store_without_ttl_never_expires():
    rds = FakeRedis()
    await RedisJobStore(rds).put(creative_job())
    assert rds.expiry["job:gen-1"] is None


async def test_running_poll_does_not_record_artifact_or_error():
    registry = JobRegistry(MemoryJobStore(), AdapterRegistry())
    await registry.create(creative_job())

    job = await registry.transition(
        "gen-1",
        PollOutcome(JobStatus.IN_PROGRESS, progress=0.5, result_url="https://x/partial.glb",
                    thumbnail_url="https://x/t.png", error_message="noise"),
    )

    assert job.status == JobStatus.IN_PROGRESS
    assert job.progress == 0.5
    assert job.result_url is None
    assert job.thumbnail_url is None
    assert job.error_message is None


async def test_failed_poll_records_error_only():
    registry = JobRegistry(MemoryJobStore(), AdapterRegistry())
    await registry.create(creative_job())

    job = await registry.transition(
        "gen-1", PollOutcome(JobStatus.FAILED, result_url="https://x/a.png", error_message="boom")
    )

    assert job.status == JobStatus.FAILED
    assert job.error_message == "boom"
    assert job.result_url is None


async def test_sync_provider_cannot_be_polled():
    job = creative_job(provider=ProviderKind.OPENAI, type=OperationKind.GENERATE)
    with pytest.raises(ValidationError):
        await OpenAIImageGenerator().poll(job)
