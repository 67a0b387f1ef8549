"""
Tests for the error taxonomy and provider message classification.
"""

import pytest

from stackrecon.core.errors import (
    ConfigurationError,
    CycleError,
    ExportCollisionError,
    MissingExportValueError,
    ProviderError,
    ProviderRejection,
    StackReconError,
    TransientProviderError,
    UnknownOutputError,
    classify_provider_error,
    describe_failure,
)


class TestClassify:
    def test_export_in_use(self):
        c = classify_provider_error("Export StackA:TableName cannot be deleted as it is in use by StackB")
        assert c.kind == "export_in_use"
        assert c.export_name == "StackA:TableName"
        assert c.consumer == "StackB"

    def test_export_in_use_update_wording(self):
        c = classify_provider_error("Export x cannot be updated as it is in use by dev-demo-StackB")
        assert c.kind == "export_in_use"
        assert c.consumer == "dev-demo-StackB"

    @pytest.mark.parametrize(
        "message",
        ["Rate exceeded", "Throttling: too fast", "Read timed out", "Service Unavailable"],
    )
    def test_transient(self, message):
        assert classify_provider_error(message).kind == "transient"

    def test_everything_else_rejected(self):
        c = classify_provider_error("Template format error: unresolved resource")
        assert c.kind == "rejected"
        assert c.export_name is None

    def test_empty_message(self):
        assert classify_provider_error("").kind == "rejected"


class TestDescribeFailure:
    def test_plain(self):
        assert describe_failure("StackA", "boom") == "Stack 'StackA' failed: boom"

    def test_names_export_and_consumer(self):
        line = describe_failure("StackA", "in use", "StackA:TableName", "StackB")
        assert line == "Stack 'StackA' failed, export 'StackA:TableName', still imported by 'StackB': in use"


class TestHierarchy:
    def test_configuration_errors(self):
        for exc in (
            CycleError(["A", "B", "A"]),
            ExportCollisionError("x", ["B.Y", "A.X"]),
            MissingExportValueError("A", "x", ["B"]),
            UnknownOutputError("nope"),
        ):
            assert isinstance(exc, ConfigurationError)
            assert isinstance(exc, StackReconError)

    def test_provider_errors(self):
        assert issubclass(TransientProviderError, ProviderError)
        assert issubclass(ProviderRejection, ProviderError)
        assert not issubclass(ProviderError, ConfigurationError)

    def test_cycle_message(self):
        exc = CycleError(["A", "B", "A"])
        assert exc.stacks == {"A", "B"}
        assert "A → B → A" in str(exc)

    def test_collision_owners_sorted(self):
        exc = ExportCollisionError("shared", ["StackB.Y", "StackA.X"])
        assert exc.owners == ["StackA.X", "StackB.Y"]
        assert "shared" in str(exc)

    def test_missing_value_reason(self):
        exc = MissingExportValueError("A", "A:X", ["C", "B"], reason="resource Table was removed")
        assert exc.consumers == ["B", "C"]
        assert str(exc).endswith("(resource Table was removed)")

    def test_rejection_carries_detail(self):
        exc = ProviderRejection("A", "in use", kind="export_in_use", export_name="A:X", consumer="B")
        assert exc.detail == "in use"
        assert exc.kind == "export_in_use"
        assert str(exc) == describe_failure("A", "in use", "A:X", "B")
