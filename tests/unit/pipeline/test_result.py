"""
Unit tests for pipeline result types.
"""

from service_pipeline.models import ServiceOutcome
from service_pipeline.pipeline.result import ServiceResult, StageResult, StageTiming


class TestStageTiming:
    """Tests for StageTiming."""

    def test_duration_before_stop(self):
        """Test duration is zero until stopped."""
        assert StageTiming.start("test").duration_ms == 0.0

    def test_duration_after_stop(self):
        """Test duration is measured in milliseconds."""
        timing = StageTiming(stage_name="test", start_time=1.0)
        timing.end_time = 1.25

        assert timing.duration_ms == 250.0


class TestServiceResult:
    """Tests for ServiceResult."""

    def test_pending_is_not_success(self):
        """Test a result without an outcome is not a success."""
        assert ServiceResult(service="orders", stage_name="test").success is False

    def test_success_and_failure(self):
        """Test success follows the outcome."""
        passed = ServiceResult("orders", "test", outcome=ServiceOutcome.TESTED_PASSED)
        failed = ServiceResult("orders", "test", outcome=ServiceOutcome.TESTED_FAILED_COVERAGE)

        assert passed.success is True
        assert failed.success is False

    def test_details(self):
        """Test step output storage."""
        result = ServiceResult(service="orders", stage_name="build")
        result.set("artifact", "orders/target/app.jar")

        assert result.get("artifact") == "orders/target/app.jar"
        assert result.get("image") is None
        assert result.get("image", "none") == "none"


class TestStageResult:
    """Tests for StageResult."""

    def test_partitions_services(self):
        """Test succeeded and failed lists keep insertion order."""
        stage = StageResult(stage_name="build")
        stage.results["orders"] = ServiceResult("orders", "build", outcome=ServiceOutcome.BUILT)
        stage.results["billing"] = ServiceResult(
            "billing", "build", outcome=ServiceOutcome.BUILD_FAILED
        )
        stage.results["gateway"] = ServiceResult("gateway", "build", outcome=ServiceOutcome.BUILT)

        assert stage.succeeded == ["orders", "gateway"]
        assert stage.failed == ["billing"]
        assert stage.has_failures is True

    def test_empty(self):
        """Test an empty stage has no failures."""
        assert StageResult(stage_name="publish").has_failures is False
