import asyncio
from datetime import datetime, timedelta

import httpx
import pytest

from src.common.config import ControllerSettings, FirestoreConfig, KubernetesConfig, OutputConfig
from src.runbooks.generator import MarkdownContentGenerator, TemplateRegistry
from src.runbooks.models import Phase, RunbookIdentity, RunbookTemplate, ValidationStatus
from src.runbooks.outputs import HTMLSink, MarkdownSink, OutputSink, SinkRegistry
from src.runbooks.outputs.api import APISink
from src.runbooks.reconciler import Reconciler, ReconcilerDeps, ReconcileResult
from src.runbooks.store.base import StoreError

FINALIZER = "runbook.runbook.io/finalizer"
IDENTITY = RunbookIdentity(namespace="monitoring", name="high-cpu")


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class BlockingSink(OutputSink):
    format = "markdown"

    def __init__(self):
        self.started = asyncio.Event()

    async def publish(self, runbook, content, target, *, generated_at):
        self.started.set()
        await asyncio.sleep(3600)
        return target.destination


def _api_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(201, json={"ok": True})


def _api_refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _registry(api_handler=_api_ok) -> SinkRegistry:
    return SinkRegistry([MarkdownSink(), HTMLSink(), APISink(transport=httpx.MockTransport(api_handler))])


@pytest.fixture
def clock(fixed_now):
    return FakeClock(fixed_now)


@pytest.fixture
def make_reconciler(fake_store, clock):
    def _make(sinks=None, generator=None) -> Reconciler:
        deps = ReconcilerDeps(
            store=fake_store,
            generator=generator or MarkdownContentGenerator(),
            sinks=sinks or _registry(),
            finalizer=FINALIZER,
            clock=clock,
        )
        return Reconciler(deps)

    return _make


def _outputs(tmp_path, include_api=True):
    targets = [
        {"format": "markdown", "destination": str(tmp_path / "md")},
        {"format": "html", "destination": str(tmp_path / "html")},
    ]
    if include_api:
        targets.append({"format": "api", "destination": "http://docs.internal"})
    return targets


def _settle(reconciler: Reconciler, identity=IDENTITY, limit: int = 5) -> ReconcileResult:
    """Run passes while the reconciler asks for an immediate requeue."""
    result = None
    for _ in range(limit):
        result = asyncio.run(reconciler.reconcile(identity))
        if not result.requeue:
            return result
    return result


def test_missing_resource_is_done(make_reconciler):
    result = asyncio.run(make_reconciler().reconcile(IDENTITY))

    assert result == ReconcileResult()
    assert result.done


def test_first_pass_only_adds_finalizer(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path)))

    result = asyncio.run(make_reconciler().reconcile(IDENTITY))

    assert result.requeue is True
    doc = fake_store.raw(IDENTITY)
    assert doc["metadata"]["finalizers"] == [FINALIZER]
    assert "phase" not in doc["status"]
    assert fake_store.status_writes == 0
    assert not (tmp_path / "md").exists()


def test_second_pass_marks_generating(fake_store, make_reconciler, runbook_factory):
    fake_store.put(runbook_factory())
    reconciler = make_reconciler()

    asyncio.run(reconciler.reconcile(IDENTITY))
    result = asyncio.run(reconciler.reconcile(IDENTITY))

    assert result.requeue is True
    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == Phase.GENERATING.value
    assert status["validationStatus"] == ValidationStatus.PENDING.value


def test_full_cycle_publishes_all_outputs(fake_store, make_reconciler, runbook_factory, tmp_path, fixed_now):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path)))

    result = _settle(make_reconciler())

    assert result == ReconcileResult(requeue=False, requeue_after=300.0)
    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == "ready"
    assert status["validationStatus"] == "valid"
    assert status["validationErrors"] == []
    assert [o["format"] for o in status["generatedOutputs"]] == ["markdown", "html", "api"]
    assert status["generatedOutputs"][0]["location"] == str(tmp_path / "md")
    assert datetime.fromisoformat(status["lastGenerated"]) == fixed_now

    assert len(status["conditions"]) == 1
    ready = status["conditions"][0]
    assert ready["type"] == "Ready"
    assert ready["status"] == "True"
    assert ready["reason"] == "GenerationSuccessful"

    markdown = (tmp_path / "md" / "HighCPUUsage.md").read_text()
    assert markdown == MarkdownContentGenerator().render(runbook_factory(outputs=_outputs(tmp_path)))
    assert (tmp_path / "html" / "HighCPUUsage.html").exists()


def test_failing_api_sink_does_not_block_other_outputs(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path)))

    result = _settle(make_reconciler(sinks=_registry(api_handler=_api_refused)))

    assert result.requeue_after == 300.0
    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == "ready"
    assert [o["format"] for o in status["generatedOutputs"]] == ["markdown", "html"]
    assert "api" in status["conditions"][0]["message"]
    assert (tmp_path / "md" / "HighCPUUsage.md").exists()


def test_non_2xx_api_response_is_a_failed_output(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path)))
    rejected = lambda request: httpx.Response(500, text="boom")

    _settle(make_reconciler(sinks=_registry(api_handler=rejected)))

    outputs = fake_store.raw(IDENTITY)["status"]["generatedOutputs"]
    assert [o["format"] for o in outputs] == ["markdown", "html"]


def test_empty_alert_name_records_validation_error(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(alert_name="", outputs=_outputs(tmp_path)))

    result = _settle(make_reconciler())

    assert result == ReconcileResult(requeue=False, requeue_after=120.0)
    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == "error"
    assert status["validationStatus"] == "invalid"
    assert status["validationErrors"] == ["alert name is required"]
    assert status["conditions"][0]["status"] == "False"
    assert status["conditions"][0]["reason"] == "ValidationFailed"
    assert not (tmp_path / "md").exists()


def test_error_phase_is_retried_through_generating(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(alert_name="", outputs=_outputs(tmp_path, include_api=False)))
    reconciler = make_reconciler()
    _settle(reconciler)

    fake_store.edit_spec(IDENTITY, alertName="HighCPUUsage")
    first = asyncio.run(reconciler.reconcile(IDENTITY))
    assert first.requeue is True
    assert fake_store.raw(IDENTITY)["status"]["phase"] == "generating"

    final = _settle(reconciler)
    status = fake_store.raw(IDENTITY)["status"]
    assert final.requeue_after == 300.0
    assert status["phase"] == "ready"
    assert status["validationErrors"] == []


def test_unknown_template_records_generation_failure(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(template="does-not-exist", outputs=_outputs(tmp_path)))

    result = _settle(make_reconciler())

    assert result.requeue_after == 120.0
    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == "error"
    assert status["validationStatus"] == "pending"
    assert status["conditions"][0]["reason"] == "ContentGenerationFailed"
    assert "does-not-exist" in status["conditions"][0]["message"]



def test_failing_template_expression_records_generation_failure(fake_store, make_reconciler, runbook_factory, tmp_path):
    registry = TemplateRegistry()
    registry.register(RunbookTemplate(name="divide", template="{{ content.investigation | length // 0 }}"))
    fake_store.put(runbook_factory(template="divide", outputs=_outputs(tmp_path)))

    result = _settle(make_reconciler(generator=MarkdownContentGenerator(registry)))

    assert result == ReconcileResult(requeue=False, requeue_after=120.0)
    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == "error"
    assert status["conditions"][0]["reason"] == "ContentGenerationFailed"
    assert "ZeroDivisionError" in status["conditions"][0]["message"]
    assert not (tmp_path / "md").exists()

def test_auto_generate_disabled_publishes_nothing(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(autoGenerate=False, outputs=_outputs(tmp_path)))

    result = _settle(make_reconciler())

    assert result.requeue_after == 300.0
    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == "ready"
    assert status["generatedOutputs"] == []
    assert not (tmp_path / "md").exists()


def test_repeated_passes_only_refresh_timestamps(fake_store, make_reconciler, runbook_factory, tmp_path, clock):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path)))
    reconciler = make_reconciler()
    _settle(reconciler)
    first = fake_store.raw(IDENTITY)["status"]
    first_markdown = (tmp_path / "md" / "HighCPUUsage.md").read_text()

    clock.advance(300)
    result = asyncio.run(reconciler.reconcile(IDENTITY))
    second = fake_store.raw(IDENTITY)["status"]

    assert result.requeue_after == 300.0
    assert second["lastGenerated"] != first["lastGenerated"]
    assert second["conditions"] == first["conditions"]
    for key in ("phase", "validationStatus", "validationErrors"):
        assert second[key] == first[key]
    assert [(o["format"], o["location"]) for o in second["generatedOutputs"]] == [
        (o["format"], o["location"]) for o in first["generatedOutputs"]
    ]
    assert (tmp_path / "md" / "HighCPUUsage.md").read_text() == first_markdown


def test_outputs_reflect_only_latest_pass(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path)))
    reconciler = make_reconciler()
    _settle(reconciler)

    fake_store.edit_spec(IDENTITY, outputs=[{"format": "markdown", "destination": str(tmp_path / "md")}])
    asyncio.run(reconciler.reconcile(IDENTITY))

    outputs = fake_store.raw(IDENTITY)["status"]["generatedOutputs"]
    assert [o["format"] for o in outputs] == ["markdown"]


def test_status_conflict_is_swallowed(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path, include_api=False)))
    reconciler = make_reconciler()
    asyncio.run(reconciler.reconcile(IDENTITY))
    asyncio.run(reconciler.reconcile(IDENTITY))

    fake_store.conflicts_pending = 1
    result = asyncio.run(reconciler.reconcile(IDENTITY))

    assert result.requeue_after == 300.0
    assert fake_store.raw(IDENTITY)["status"]["phase"] == "generating"


def test_store_outage_propagates(fake_store, make_reconciler):
    fake_store.unavailable = True

    with pytest.raises(StoreError):
        asyncio.run(make_reconciler().reconcile(IDENTITY))


def test_cancelled_pass_records_no_outputs(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path, include_api=False)))

    async def scenario():
        sink = BlockingSink()
        reconciler = make_reconciler(sinks=SinkRegistry([sink, HTMLSink()]))
        await reconciler.reconcile(IDENTITY)
        await reconciler.reconcile(IDENTITY)

        task = asyncio.create_task(reconciler.reconcile(IDENTITY))
        await sink.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    status = fake_store.raw(IDENTITY)["status"]
    assert status["phase"] == "generating"
    assert status["generatedOutputs"] == []


def test_deletion_cleans_up_and_releases_finalizer(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path)))
    reconciler = make_reconciler()
    _settle(reconciler)
    assert (tmp_path / "md" / "HighCPUUsage.md").exists()

    fake_store.request_deletion(IDENTITY)
    result = asyncio.run(reconciler.reconcile(IDENTITY))

    assert result.done
    assert fake_store.raw(IDENTITY) is None
    assert not (tmp_path / "md" / "HighCPUUsage.md").exists()
    assert not (tmp_path / "html" / "HighCPUUsage.html").exists()



def test_deletion_only_removes_files_that_were_published(fake_store, make_reconciler, runbook_factory, tmp_path):
    site = tmp_path / "site"
    fake_store.put(runbook_factory(outputs=[{"format": "markdown", "destination": str(site / "md")}]))
    reconciler = make_reconciler()
    _settle(reconciler)
    victim = site / "victim.md"
    victim.write_text("not ours")

    fake_store.edit_spec(IDENTITY, alertName="../victim")
    _settle(reconciler)
    assert fake_store.raw(IDENTITY)["status"]["phase"] == "error"

    fake_store.request_deletion(IDENTITY)
    assert asyncio.run(reconciler.reconcile(IDENTITY)).done

    assert victim.read_text() == "not ours"
    assert not (site / "md" / "HighCPUUsage.md").exists()


def test_deletion_after_rename_removes_published_files(fake_store, make_reconciler, runbook_factory, tmp_path):
    fake_store.put(runbook_factory(outputs=_outputs(tmp_path, include_api=False)))
    reconciler = make_reconciler()
    _settle(reconciler)

    fake_store.edit_spec(IDENTITY, alertName="HighMemoryUsage")
    fake_store.request_deletion(IDENTITY)
    assert asyncio.run(reconciler.reconcile(IDENTITY)).done

    assert list((tmp_path / "md").iterdir()) == []
    assert list((tmp_path / "html").iterdir()) == []

def test_deletion_conflict_requeues(fake_store, make_reconciler, runbook_factory):
    fake_store.put(runbook_factory())
    reconciler = make_reconciler()
    _settle(reconciler)
    fake_store.request_deletion(IDENTITY)

    fake_store.conflicts_pending = 1
    result = asyncio.run(reconciler.reconcile(IDENTITY))

    assert result.requeue is True
    assert fake_store.raw(IDENTITY) is not None
    assert asyncio.run(reconciler.reconcile(IDENTITY)).done
    assert fake_store.raw(IDENTITY) is None


def test_deps_from_settings_registers_directory_and_extra_templates(fake_store, runbook_factory, tmp_path):
    (tmp_path / "pager.yaml").write_text("kind: RunbookTemplate\nmetadata:\n  name: pager\nspec:\n  template: 'page {{ team }}'\n")
    settings = ControllerSettings(
        store_backend="firestore",
        firestore=FirestoreConfig(collection_prefix="test_"),
        kubernetes=KubernetesConfig(),
        outputs=OutputConfig(template_dir=str(tmp_path)),
        resync_interval_sec=60.0,
    )
    extra = RunbookTemplate(name="title", template="# {{ alert_name }}")

    deps = ReconcilerDeps.from_settings(settings, store=fake_store, templates=[extra])

    runbook = runbook_factory()
    assert deps.store is fake_store
    assert deps.resync_interval_sec == 60.0
    assert deps.generator.render(runbook, template="pager") == "page platform"
    assert deps.generator.render(runbook, template="title") == "# HighCPUUsage"
    assert deps.sinks.get("api") is not None
