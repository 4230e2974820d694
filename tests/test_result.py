from coachbot.services.result import Result


class TestResult:
    def test_success(self):
        result = Result.success("text", elapsed_ms=12)
        assert result.ok
        assert result.value == "text"
        assert result.elapsed_ms == 12
        assert not result.timed_out

    def test_failure(self):
        result = Result.failure("upstream down", code="retryable_server_error")
        assert not result.ok
        assert result.error == "upstream down"
        assert result.error_code == "retryable_server_error"
        assert result.unwrap_or("placeholder") == "placeholder"

    def test_timeout_failure(self):
        assert Result.failure("too slow", code="timeout").timed_out
