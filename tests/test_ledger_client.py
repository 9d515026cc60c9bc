import asyncio
import json

import httpx
import pytest

from audioscribe.errors import (
    DuplicateOperationError,
    InsufficientCreditsError,
    InvalidInputError,
    LedgerAuthError,
    LedgerError,
)
from audioscribe.ledger import CreditLedgerClient

from conftest import STARTING_CREDITS, run


def mock_client(handler, fast_settings, token="test-token"):
    return CreditLedgerClient(
        base_url="http://ledger.test",
        token=token,
        transport=httpx.MockTransport(handler),
        settings=fast_settings,
    )


class TestDeductAgainstBackend:
    def test_deduct_updates_balance(self, ledger_client, balance):
        new_balance = run(ledger_client.deduct(72, key="job_a", file_name="talk.mp3", duration=125.4, processing_days=21))

        assert new_balance == STARTING_CREDITS - 72
        assert balance() == STARTING_CREDITS - 72
        assert not ledger_client.is_in_flight("job_a")

    def test_insufficient_credits_leaves_balance(self, ledger_client, balance):
        with pytest.raises(InsufficientCreditsError) as exc:
            run(ledger_client.deduct(STARTING_CREDITS + 1, key="job_big"))

        assert exc.value.status_code == 400
        assert str(exc.value) == "Insufficient credits"
        assert balance() == STARTING_CREDITS
        assert ledger_client.history() == []

    def test_concurrent_duplicate_key_deducts_once(self, ledger_client, balance):
        async def run_case():
            return await asyncio.gather(
                ledger_client.deduct(100, key="job_a"),
                ledger_client.deduct(100, key="job_a"),
                return_exceptions=True,
            )

        first, second = run(run_case())
        assert first == STARTING_CREDITS - 100
        assert isinstance(second, DuplicateOperationError)
        assert balance() == STARTING_CREDITS - 100

    def test_sequential_resend_is_replayed_by_backend(self, ledger_client, balance):
        run(ledger_client.deduct(100, key="job_a"))
        assert run(ledger_client.deduct(100, key="job_a")) == STARTING_CREDITS - 100
        assert balance() == STARTING_CREDITS - 100
        assert [t.type for t in ledger_client.history()] == ["deduction"]

    def test_add_and_balance(self, ledger_client):
        assert run(ledger_client.add(500, description="Top-up")) == STARTING_CREDITS + 500
        assert run(ledger_client.get_balance()) == STARTING_CREDITS + 500

    def test_history_newest_first(self, ledger_client):
        run(ledger_client.deduct(10, key="job_a"))
        run(ledger_client.add(20))
        history = ledger_client.history()

        assert [t.type for t in history] == ["addition", "deduction"]
        assert history[0].balance_after == STARTING_CREDITS + 10
        assert history[1].balance_after == STARTING_CREDITS - 10

    def test_bad_token(self, auth_token, fast_settings):
        from audioscribe.backend.main import app as backend_app

        client = CreditLedgerClient(
            base_url="http://testserver",
            token="not-a-jwt",
            transport=httpx.ASGITransport(app=backend_app),
            settings=fast_settings,
        )
        with pytest.raises(LedgerAuthError):
            run(client.deduct(10, key="job_a"))


class TestDeductRequest:
    def test_payload(self, fast_settings):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": "Credits deducted successfully", "newCredits": 928})

        client = mock_client(handler, fast_settings)
        run(client.deduct(72, key="job_a", file_name="talk.mp3", duration=125.4, processing_days=21))

        assert seen["path"] == "/credits/deduct"
        assert seen["auth"] == "Bearer test-token"
        assert seen["body"] == {
            "amount": 72,
            "fileName": "talk.mp3",
            "duration": 125,
            "processingDays": 21,
            "description": "Transcription processing for talk.mp3 (3 minutes, 21 days processing)",
            "reference": "job_a",
        }

    def test_different_keys_are_not_blocked(self, fast_settings):
        references = []

        def handler(request):
            references.append(json.loads(request.content)["reference"])
            return httpx.Response(200, json={"message": "ok", "newCredits": 0})

        client = mock_client(handler, fast_settings)

        async def run_case():
            await asyncio.gather(
                client.deduct(100, key="job_a"),
                client.deduct(50, key="job_b"),
            )

        run(run_case())
        assert sorted(references) == ["job_a", "job_b"]

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    def test_invalid_amount_sends_nothing(self, fast_settings, amount):
        def handler(request):
            raise AssertionError("no request expected")

        client = mock_client(handler, fast_settings)
        with pytest.raises(InvalidInputError):
            run(client.deduct(amount, key="job_a"))


class TestErrorMapping:
    def test_unauthorized(self, fast_settings):
        client = mock_client(lambda r: httpx.Response(401, json={"detail": "Unauthorized"}), fast_settings)
        with pytest.raises(LedgerAuthError) as exc:
            run(client.deduct(10, key="job_a"))
        assert exc.value.status_code == 401

    def test_server_error_is_retryable(self, fast_settings):
        client = mock_client(
            lambda r: httpx.Response(500, json={"message": "An error occurred during credit deduction"}),
            fast_settings,
        )
        with pytest.raises(LedgerError) as exc:
            run(client.deduct(10, key="job_a"))
        assert not isinstance(exc.value, InsufficientCreditsError)
        assert exc.value.status_code == 500
        assert str(exc.value) == "An error occurred during credit deduction"

    def test_network_error_releases_key(self, fast_settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_client(handler, fast_settings)
        with pytest.raises(LedgerError) as exc:
            run(client.deduct(10, key="job_a"))
        assert exc.value.status_code is None
        assert not client.is_in_flight("job_a")
        assert client.history() == []
