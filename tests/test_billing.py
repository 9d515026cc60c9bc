from audioscribe.billing import BillingCoordinator
from audioscribe.errors import DuplicateOperationError, InsufficientCreditsError, LedgerError
from audioscribe.models import JobStatus, PipelineStep
from audioscribe.runner import JobEvent, JobEventType
from audioscribe.steps import default_pipeline

from conftest import STARTING_CREDITS, FakeLedger, make_job, run

TRANSCRIPT = "Thanks for joining the quarterly review call."


def completed_job(job_id="job_a", credits=72):
    job = make_job(job_id, credits=credits)
    job.start()
    job.complete(TRANSCRIPT)
    return job


class TestBill:
    def test_deducts_completed_job_once(self):
        ledger = FakeLedger()
        billing = BillingCoordinator(ledger)
        job = completed_job()

        assert run(billing.bill(job)) is True
        assert run(billing.bill(job)) is True
        assert ledger.calls == [("job_a", 72)]
        assert job.credits_deducted

    def test_never_bills_failed_job(self):
        ledger = FakeLedger()
        billing = BillingCoordinator(ledger)
        job = make_job()
        job.start()
        job.fail("transcriber crashed")

        assert run(billing.bill(job)) is False
        run(billing.on_job_event(JobEvent(JobEventType.JOB_FAILED, job)))
        assert ledger.calls == []
        assert not job.credits_deducted

    def test_never_bills_unfinished_job(self):
        ledger = FakeLedger()
        assert run(BillingCoordinator(ledger).bill(make_job())) is False
        assert ledger.calls == []

    def test_zero_cost_job_skips_ledger(self):
        ledger = FakeLedger()
        job = completed_job(credits=0)
        assert run(BillingCoordinator(ledger).bill(job)) is True
        assert ledger.calls == []
        assert job.credits_deducted

    def test_transient_failure_is_retried(self):
        ledger = FakeLedger(errors=[LedgerError("Ledger request failed")])
        billing = BillingCoordinator(ledger)
        job = completed_job()

        assert run(billing.bill(job)) is False
        assert not job.credits_deducted
        assert "job_a" in billing.pending_retry

        assert run(billing.retry_pending()) == 1
        assert job.credits_deducted
        assert billing.pending_retry == {}
        assert ledger.calls == [("job_a", 72), ("job_a", 72)]

    def test_insufficient_credits_is_not_retried(self):
        ledger = FakeLedger(errors=[InsufficientCreditsError("Insufficient credits", 400)])
        billing = BillingCoordinator(ledger)
        job = completed_job()

        assert run(billing.bill(job)) is False
        assert billing.billing_failures == {"job_a": "Insufficient credits"}
        assert billing.pending_retry == {}
        assert run(billing.retry_pending()) == 0

    def test_in_flight_duplicate(self):
        ledger = FakeLedger(errors=[DuplicateOperationError("already in progress")])
        job = completed_job()
        assert run(BillingCoordinator(ledger).bill(job)) is False
        assert not job.credits_deducted


class TestRunnerIntegration:
    def test_completed_job_billed_through_backend(self, make_tracker, fast_settings, ledger_client, balance):
        async def run_case():
            tracker = make_tracker()
            billing = BillingCoordinator(ledger_client)
            tracker.runner.subscribe(billing.on_job_event)
            job = tracker.create("file_1", "talk.mp3", 4096, 125.0, 21)
            await tracker.runner.wait_idle()
            return job

        job = run(run_case())
        assert job.status == JobStatus.COMPLETED
        assert job.credits_deducted
        assert balance() == STARTING_CREDITS - 72

    def test_failed_job_leaves_balance(self, make_tracker, fast_settings, ledger_client, balance):
        async def broken(job):
            raise RuntimeError("separation model missing")

        async def run_case():
            steps = default_pipeline(fast_settings)
            steps[PipelineStep.AUDIO_SEPARATION] = broken
            tracker = make_tracker(steps=steps)
            tracker.runner.subscribe(BillingCoordinator(ledger_client).on_job_event)
            job = tracker.create("file_1", "talk.mp3", 4096, 125.0, 21)
            await tracker.runner.wait_idle()
            return job

        job = run(run_case())
        assert job.status == JobStatus.FAILED
        assert not job.credits_deducted
        assert balance() == STARTING_CREDITS
