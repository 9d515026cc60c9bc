import json

import httpx

from audioscribe.models import JobStatus
from audioscribe.notifier import StatusNotifier

from conftest import make_job, run


def notifier_with(handler, fast_settings):
    return StatusNotifier(
        base_url="http://ledger.test",
        token="test-token",
        transport=httpx.MockTransport(handler),
        settings=fast_settings,
    )


class TestStatusNotifier:
    def test_payload_drops_empty_fields(self):
        payload = StatusNotifier.build_payload(make_job(), JobStatus.PROCESSING, "Transcribing...")
        assert payload == {
            "job_id": "job_a",
            "file_name": "job_a.mp3",
            "file_size": 2048,
            "status": "processing",
            "current_step": "Transcribing...",
        }

    def test_posts_update(self, fast_settings):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        notifier = notifier_with(handler, fast_settings)
        ok = run(notifier.notify(
            make_job(), JobStatus.COMPLETED, "Audio processing completed successfully",
            transcription="Hello there, general meeting.", credits_used=72, processing_days=21,
        ))

        assert ok is True
        assert seen["path"] == "/audio/update"
        assert seen["body"]["status"] == "completed"
        assert seen["body"]["credits_used"] == 72
        assert seen["body"]["transcription"] == "Hello there, general meeting."

    def test_delivery_failure_is_swallowed(self, fast_settings):
        notifier = notifier_with(lambda r: httpx.Response(500), fast_settings)
        assert run(notifier.notify(make_job(), JobStatus.PROCESSING, "Started processing")) is False

    def test_unreachable_backend(self, fast_settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier = notifier_with(handler, fast_settings)
        assert run(notifier.notify(make_job(), JobStatus.PROCESSING, "Started processing")) is False

    def test_records_reach_backend(self, auth_token, backend_client, fast_settings):
        from audioscribe.backend.main import app as backend_app

        notifier = StatusNotifier(
            base_url="http://testserver",
            token=auth_token,
            transport=httpx.ASGITransport(app=backend_app),
            settings=fast_settings,
        )
        job = make_job()
        run(notifier.notify(job, JobStatus.PROCESSING, "Started processing"))
        run(notifier.notify(job, JobStatus.FAILED, "Failed: bad audio", credits_used=0))

        record = backend_client.get("/audio/jobs/job_a").json()
        assert record["status"] == "failed"
        assert record["error"] == "Failed: bad audio"
        assert record["credits_used"] == 0
