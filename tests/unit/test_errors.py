"""Tests for the indexing error taxonomy."""

from indexer.lib.errors import (
    ConfigurationError,
    ConstructionFailure,
    IndexingError,
    NotReady,
    RunCancelled,
    SourceFailure,
)


def test_base_error_message_without_extras():
    """A bare error renders its message unchanged."""
    err = IndexingError("Something broke")
    assert str(err) == "Something broke"
    assert err.message == "Something broke"


def test_base_error_includes_layer_details_and_suggestion():
    err = IndexingError(
        "Something broke",
        layer="batch",
        details={"watermark": 20},
        suggestion="Try again later.",
    )
    text = str(err)
    assert text.startswith("[batch]")
    assert "watermark: 20" in text
    assert "Suggestion: Try again later." in text


def test_to_dict_is_structured():
    err = ConstructionFailure("no sink", layer="batch", missing="sink")
    data = err.to_dict()
    assert data["error_type"] == "ConstructionFailure"
    assert data["message"] == "no sink"
    assert data["layer"] == "batch"
    assert data["details"] == {"missing": "sink"}


def test_source_failure_records_cause():
    cause = ConnectionError("upstream down")
    err = SourceFailure("fetch failed", last_seen=30, cause=cause)
    assert err.cause is cause
    assert err.details["last_seen"] == 30
    assert err.details["cause_type"] == "ConnectionError"
    assert "upstream down" in str(err)


def test_not_ready_has_default_message_and_suggestion():
    err = NotReady(layer="chunk")
    assert err.message == "No current item is available"
    assert "advance()" in err.suggestion


def test_run_cancelled_records_watermark():
    err = RunCancelled(layer="resumable", watermark=12)
    assert err.watermark == 12
    assert err.details == {"watermark": 12}


def test_configuration_error_records_field():
    err = ConfigurationError("bad value", field="batch_size", value=0)
    assert err.details == {"field": "batch_size", "value": "0"}


def test_all_errors_share_base():
    for cls in (SourceFailure, NotReady, ConstructionFailure, RunCancelled, ConfigurationError):
        assert issubclass(cls, IndexingError)
