"""Unit tests for the Lambda handler."""

import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bulktq.config import ConsumerConfig
from bulktq.exceptions import NoCapacityError, ProcessingFailure
from bulktq.handler import handler, load_processor, make_handler
from bulktq.models import COMPLETION_MESSAGE, CompletionReport, InvocationState
from tests.fixtures.fakes import echo_processor

# Get the actual module reference for patching
handler_module = sys.modules["bulktq.handler"]


class TestMakeHandler:
    """Tests for the handler built by make_handler."""

    @pytest.fixture
    def mock_context(self) -> MagicMock:
        context = MagicMock()
        context.aws_request_id = "test-request-123"
        context.function_name = "test-bulk-transition"
        return context

    @pytest.fixture
    def config(self) -> ConsumerConfig:
        return ConsumerConfig(service="orders", account_id="123456789012")

    def _report(self, fetched: int) -> CompletionReport:
        return CompletionReport(
            InvocationState.COMPLETE, allowance=10, fetched=fetched, processed=fetched
        )

    def test_returns_completion_message(self, mock_context, config, capsys) -> None:
        run = AsyncMock(return_value=self._report(3))
        with patch.object(handler_module, "run_bulk_transition", run):
            fn = make_handler(echo_processor, config_factory=lambda: config)
            result = fn({"source": "aws.events"}, mock_context)

        assert result == COMPLETION_MESSAGE
        run.assert_awaited_once_with(config, echo_processor, acknowledge=False)

        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert lines[0]["message"] == "bulkTransition: INFO: Scheduled call started"
        assert lines[0]["request_id"] == "test-request-123"
        assert lines[-1]["message"] == COMPLETION_MESSAGE
        assert lines[-1]["fetched"] == 3

    def test_zero_messages_still_completes(self, mock_context, config) -> None:
        run = AsyncMock(return_value=self._report(0))
        with patch.object(handler_module, "run_bulk_transition", run):
            fn = make_handler(echo_processor, config_factory=lambda: config)
            assert fn({}, mock_context) == COMPLETION_MESSAGE

    def test_acknowledge_passed_through(self, mock_context, config) -> None:
        run = AsyncMock(return_value=self._report(1))
        with patch.object(handler_module, "run_bulk_transition", run):
            make_handler(echo_processor, acknowledge=True, config_factory=lambda: config)(
                {}, mock_context
            )
        assert run.await_args.kwargs == {"acknowledge": True}

    def test_no_capacity_reraised(self, mock_context, config, capsys) -> None:
        run = AsyncMock(side_effect=NoCapacityError("orders"))
        with patch.object(handler_module, "run_bulk_transition", run):
            fn = make_handler(echo_processor, config_factory=lambda: config)
            with pytest.raises(NoCapacityError):
                fn({}, mock_context)

        last = json.loads(capsys.readouterr().out.splitlines()[-1])
        assert last["level"] == "WARNING"
        assert "No capacity" in last["message"]

    def test_processing_failure_logged_and_reraised(self, mock_context, config, capsys) -> None:
        failure = ProcessingFailure([("rh-1", RuntimeError("boom"))], total=2)
        run = AsyncMock(side_effect=failure)
        with patch.object(handler_module, "run_bulk_transition", run):
            fn = make_handler(echo_processor, config_factory=lambda: config)
            with pytest.raises(ProcessingFailure):
                fn({}, mock_context)

        last = json.loads(capsys.readouterr().out.splitlines()[-1])
        assert last["level"] == "ERROR"
        assert last["message"].startswith("bulkTransition: ERROR: ProcessingFailure")
        assert "exception" in last

    def test_missing_config_raises(self, mock_context, monkeypatch) -> None:
        monkeypatch.delenv("BULKTQ_SERVICE", raising=False)
        fn = make_handler(echo_processor)
        with pytest.raises(KeyError):
            fn({}, mock_context)


class TestEnvironmentHandler:
    def test_loads_processor_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("BULKTQ_PROCESSOR", "tests.fixtures.fakes:echo_processor")
        monkeypatch.setenv("BULKTQ_ACKNOWLEDGE", "true")
        monkeypatch.setenv("BULKTQ_SERVICE", "orders")
        monkeypatch.setenv("BULKTQ_ACCOUNT_ID", "123456789012")
        run = AsyncMock(
            return_value=CompletionReport(
                InvocationState.COMPLETE, allowance=1, fetched=0, processed=0
            )
        )
        with patch.object(handler_module, "run_bulk_transition", run):
            assert handler({}, None) == COMPLETION_MESSAGE

        config, process_fn = run.await_args.args
        assert config.service == "orders"
        assert process_fn is echo_processor
        assert run.await_args.kwargs == {"acknowledge": True}


class TestLoadProcessor:
    def test_function(self) -> None:
        assert load_processor("tests.fixtures.fakes:echo_processor") is echo_processor

    def test_dotted_attribute(self) -> None:
        fn = load_processor("json:JSONDecoder.decode")
        assert fn is json.JSONDecoder.decode

    @pytest.mark.parametrize("path", ["no_colon", ":fn", "module:"])
    def test_bad_path(self, path: str) -> None:
        with pytest.raises(ValueError, match="module:function"):
            load_processor(path)

    def test_not_callable(self) -> None:
        with pytest.raises(ValueError, match="not callable"):
            load_processor("bulktq.models:COMPLETION_MESSAGE")

    def test_missing_attribute(self) -> None:
        with pytest.raises(AttributeError):
            load_processor("bulktq.models:nope")
