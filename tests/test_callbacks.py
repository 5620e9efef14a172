"""
Tests for callback classification and routing.

Run with: pytest tests/test_callbacks.py -v
"""

import json
from unittest.mock import MagicMock, Mock

import pytest

from walkreel.core.callbacks import (
    CallbackRouter,
    Classification,
    JobStatusNotification,
    ObjectCreatedNotification,
    RouteOutcome,
    StepFunctionsContinuationPort,
    build_result,
    classify,
    classify_object_key,
    decode_payload,
    parse_notifications,
)
from walkreel.core.exceptions import (
    ClassificationMismatch,
    StorageUnavailable,
    WorkflowError,
)
from walkreel.core.tokens import ContinuationRecord, InMemoryTokenStore, JobKind

from conftest import FakeStorage

BUCKET = "walkreel-media"


def s3_event(key, bucket=BUCKET, event_name="ObjectCreated:Put"):
    return {"Records": [{"eventName": event_name, "s3": {"bucket": {"name": bucket}, "object": {"key": key}}}]}


def eventbridge_event(key, bucket=BUCKET, detail_type="Object Created"):
    return {
        "detail-type": detail_type,
        "source": "aws.s3",
        "detail": {"bucket": {"name": bucket}, "object": {"key": key}},
    }


def record_for(location, kind, video_id="vid-1", handle="task-token"):
    return ContinuationRecord(
        invocationArn="arn:aws:bedrock:us-east-1:123:async-invoke/job",
        taskToken=handle,
        videoId=video_id,
        outputS3Uri=location,
        type=kind,
    )


@pytest.fixture
def tokens():
    return InMemoryTokenStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def port():
    return Mock()


@pytest.fixture
def router(tokens, storage, port):
    return CallbackRouter(token_store=tokens, storage=storage, continuation_port=port)


class TestClassification:
    """Tests for path-based classification."""

    def test_embedding_output_keyed_by_directory(self):
        result = classify_object_key(BUCKET, "embeddings/vid-42/output.json")
        assert result == Classification(JobKind.EMBEDDING, f"s3://{BUCKET}/embeddings/vid-42/")

    def test_nested_embedding_output_keyed_by_video_directory(self):
        result = classify_object_key(BUCKET, "embeddings/vid-42/job-abc/output.json")
        assert result.output_location == f"s3://{BUCKET}/embeddings/vid-42/"

    def test_embedding_other_file_ignored(self):
        assert classify_object_key(BUCKET, "embeddings/vid-42/manifest.json") is None

    def test_analysis_keyed_by_exact_path(self):
        result = classify_object_key(BUCKET, "analysis/vid-1/segment-3.json")
        assert result == Classification(
            JobKind.ANALYSIS, f"s3://{BUCKET}/analysis/vid-1/segment-3.json"
        )

    def test_voiceover_keyed_by_exact_path(self):
        result = classify_object_key(BUCKET, "voiceover/vid-1/segment-3.json")
        assert result.job_kind is JobKind.VOICEOVER

    def test_non_json_under_known_prefix_ignored(self):
        assert classify_object_key(BUCKET, "analysis/vid-1/segment-3.txt") is None

    def test_random_path_ignored(self):
        assert classify_object_key(BUCKET, "random/file.txt") is None

    def test_status_location_for_embedding_directory(self):
        notification = JobStatusNotification(
            output_location=f"s3://{BUCKET}/embeddings/vid-7/", status="Failed"
        )
        assert classify(notification).output_location == f"s3://{BUCKET}/embeddings/vid-7/"


class TestParseNotifications:
    """Tests for raw event parsing."""

    def test_s3_records(self):
        notifications = parse_notifications(s3_event("analysis/a.json"))
        assert notifications == [ObjectCreatedNotification(BUCKET, "analysis/a.json")]

    def test_s3_keys_are_url_decoded(self):
        notifications = parse_notifications(s3_event("voiceover/vid+1/seg%3A2.json"))
        assert notifications[0].key == "voiceover/vid 1/seg:2.json"

    def test_eventbridge_object_created(self):
        notifications = parse_notifications(eventbridge_event("embeddings/v/output.json"))
        assert notifications[0].location == f"s3://{BUCKET}/embeddings/v/output.json"

    def test_eventbridge_object_deleted_skipped(self):
        assert parse_notifications(eventbridge_event("analysis/a.json", detail_type="Object Deleted")) == []

    def test_s3_removed_records_skipped(self):
        assert parse_notifications(s3_event("analysis/a.json", event_name="ObjectRemoved:Delete")) == []

    def test_s3_record_without_event_name_skipped(self):
        event = {"Records": [{"s3": {"bucket": {"name": BUCKET}, "object": {"key": "analysis/a.json"}}}]}
        assert parse_notifications(event) == []

    def test_job_status_event(self):
        event = {
            "detail-type": "Async Invoke Status Change",
            "detail": {
                "invocationArn": "arn:job",
                "status": "Failed",
                "failureMessage": "Model quota exceeded",
                "outputDataConfig": {"s3OutputDataConfig": {"s3Uri": f"s3://{BUCKET}/embeddings/v/"}},
            },
        }
        (notification,) = parse_notifications(event)
        assert isinstance(notification, JobStatusNotification)
        assert notification.is_failure
        assert notification.message == "Model quota exceeded"
        assert notification.job_invocation_id == "arn:job"

    def test_unknown_shape(self):
        with pytest.raises(ClassificationMismatch):
            parse_notifications({"hello": "world"})


class TestDecodePayload:
    """Tests for job output decoding."""

    def test_plain_json(self):
        assert decode_payload(b'{"score": 8}') == {"score": 8}

    def test_envelope_with_string_data(self):
        raw = json.dumps({"data": json.dumps({"score": 8})})
        assert decode_payload(raw) == {"score": 8}

    def test_envelope_with_object_data(self):
        assert decode_payload('{"data": {"score": 8}}') == {"score": 8}

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            decode_payload("[1, 2, 3]")

    def test_invalid_json_rejected(self):
        with pytest.raises(ValueError):
            decode_payload(b"not json")


class TestBuildResult:
    """Tests for success payload shaping."""

    def test_embedding(self):
        record = record_for(f"s3://{BUCKET}/embeddings/vid-1/", "embedding")
        source = f"s3://{BUCKET}/embeddings/vid-1/output.json"
        assert build_result(record, source) == {
            "status": "Completed",
            "videoId": "vid-1",
            "outputS3Uri": source,
        }

    def test_analysis_merges_numeric_segment_id(self):
        record = record_for("s3://b/analysis/x.json", "analysis", video_id="3")
        result = build_result(record, "s3://b/analysis/x.json", {"room": "Kitchen"})
        assert result == {"room": "Kitchen", "segmentId": 3}

    @pytest.mark.parametrize("video_id", ["--5", "²", "-", "3a"])
    def test_non_integer_segment_id_kept_as_string(self, video_id):
        record = record_for("s3://b/analysis/x.json", "analysis", video_id=video_id)
        result = build_result(record, "s3://b/analysis/x.json", {"room": "Kitchen"})
        assert result == {"room": "Kitchen", "segmentId": video_id}

    def test_negative_segment_id(self):
        record = record_for("s3://b/analysis/x.json", "analysis", video_id="-4")
        assert build_result(record, "s3://b/analysis/x.json", {})["segmentId"] == -4

    def test_voiceover_field_extracted(self):
        record = record_for("s3://b/voiceover/x.json", "voiceover", video_id="intro")
        result = build_result(record, "s3://b/voiceover/x.json", {"voiceover": {"text": "Welcome"}})
        assert result == {"segmentId": "intro", "voiceover": {"text": "Welcome"}}

    def test_voiceover_whole_payload_fallback(self):
        record = record_for("s3://b/voiceover/x.json", "voiceover", video_id="2")
        result = build_result(record, "s3://b/voiceover/x.json", {"text": "Welcome"})
        assert result == {"segmentId": 2, "voiceover": {"text": "Welcome"}}


class TestCallbackRouter:
    """Tests for the full route: classify, consume, resolve, deliver."""

    def test_analysis_success(self, router, tokens, storage, port):
        location = f"s3://{BUCKET}/analysis/vid-1/segment-3.json"
        tokens.store(record_for(location, "analysis", video_id="3"))
        storage.objects[location] = json.dumps({"data": json.dumps({"room": "Kitchen"})}).encode()

        outcomes = router.route(s3_event("analysis/vid-1/segment-3.json"))

        assert outcomes == [RouteOutcome.SUCCEEDED]
        port.report_success.assert_called_once_with("task-token", {"room": "Kitchen", "segmentId": 3})
        port.report_failure.assert_not_called()

    def test_embedding_success_reads_nothing(self, router, tokens, storage, port):
        tokens.store(record_for(f"s3://{BUCKET}/embeddings/vid-42/", "embedding", video_id="vid-42"))

        outcomes = router.route(eventbridge_event("embeddings/vid-42/output.json"))

        assert outcomes == [RouteOutcome.SUCCEEDED]
        assert storage.gets == []
        port.report_success.assert_called_once_with(
            "task-token",
            {
                "status": "Completed",
                "videoId": "vid-42",
                "outputS3Uri": f"s3://{BUCKET}/embeddings/vid-42/output.json",
            },
        )

    def test_duplicate_delivery_is_a_no_op(self, router, tokens, storage, port):
        location = f"s3://{BUCKET}/voiceover/vid-1/segment-0.json"
        tokens.store(record_for(location, "voiceover", video_id="0"))
        storage.objects[location] = b'{"voiceover": {"text": "Hi"}}'
        event = s3_event("voiceover/vid-1/segment-0.json")

        assert router.route(event) == [RouteOutcome.SUCCEEDED]
        assert router.route(event) == [RouteOutcome.DUPLICATE]
        assert port.report_success.call_count == 1
        port.report_failure.assert_not_called()

    def test_unregistered_output_is_a_no_op(self, router, port):
        assert router.route(s3_event("analysis/vid-1/unknown.json")) == [RouteOutcome.DUPLICATE]
        port.report_success.assert_not_called()
        port.report_failure.assert_not_called()

    def test_unroutable_path_ignored(self, router, tokens, port):
        assert router.route(s3_event("random/file.txt")) == [RouteOutcome.IGNORED]
        port.report_success.assert_not_called()

    def test_unknown_event_ignored(self, router, port):
        assert router.route({"unexpected": True}) == [RouteOutcome.IGNORED]
        port.report_failure.assert_not_called()

    def test_delete_notification_leaves_token(self, router, tokens, port):
        location = f"s3://{BUCKET}/analysis/vid-1/segment-0.json"
        tokens.store(record_for(location, "analysis"))

        assert router.route(s3_event("analysis/vid-1/segment-0.json", event_name="ObjectRemoved:Delete")) == []
        assert router.route(eventbridge_event("analysis/vid-1/segment-0.json", detail_type="Object Deleted")) == []

        assert tokens.peek(location, JobKind.ANALYSIS) is not None
        port.report_failure.assert_not_called()
        port.report_success.assert_not_called()

    def test_parse_failure_becomes_failure_delivery(self, router, tokens, storage, port):
        location = f"s3://{BUCKET}/analysis/vid-1/segment-1.json"
        tokens.store(record_for(location, "analysis", video_id="1"))
        storage.objects[location] = b"{not json"

        outcomes = router.route(s3_event("analysis/vid-1/segment-1.json"))

        assert outcomes == [RouteOutcome.FAILED]
        port.report_success.assert_not_called()
        handle, code, message = port.report_failure.call_args.args
        assert handle == "task-token"
        assert code == "SegmentAnalysisFailed"
        assert message

    def test_missing_output_becomes_failure_delivery(self, router, tokens, port):
        location = f"s3://{BUCKET}/voiceover/vid-1/segment-5.json"
        tokens.store(record_for(location, "voiceover"))

        assert router.route(s3_event("voiceover/vid-1/segment-5.json")) == [RouteOutcome.FAILED]
        assert port.report_failure.call_args.args[1] == "VoiceoverGenerationFailed"

    def test_unreadable_output_retried_then_failed(self, tokens, port, no_sleep):
        location = f"s3://{BUCKET}/analysis/vid-1/segment-2.json"
        tokens.store(record_for(location, "analysis"))
        storage = MagicMock()
        storage.get.side_effect = StorageUnavailable("S3 down")
        router = CallbackRouter(token_store=tokens, storage=storage, continuation_port=port)

        assert router.route(s3_event("analysis/vid-1/segment-2.json")) == [RouteOutcome.FAILED]
        assert storage.get.call_count == 3
        assert len(no_sleep) == 2
        assert port.report_failure.call_args.args[1] == "SegmentAnalysisFailed"

    def test_failed_status_event_delivers_job_message(self, router, tokens, port):
        tokens.store(record_for(f"s3://{BUCKET}/embeddings/vid-9/", "embedding"))
        event = {
            "detail": {
                "status": "Failed",
                "failureMessage": "Video codec not supported",
                "outputDataConfig": {"s3OutputDataConfig": {"s3Uri": f"s3://{BUCKET}/embeddings/vid-9/"}},
            }
        }

        assert router.route(event) == [RouteOutcome.FAILED]
        port.report_failure.assert_called_once_with(
            "task-token", "EmbeddingGenerationFailed", "Video codec not supported"
        )
        assert len(tokens) == 0

    def test_completed_status_event_leaves_token(self, router, tokens, port):
        location = f"s3://{BUCKET}/analysis/vid-1/segment-0.json"
        tokens.store(record_for(location, "analysis"))
        event = {"detail": {"status": "Completed", "outputS3Uri": location}}

        assert router.route(event) == [RouteOutcome.IGNORED]
        assert tokens.peek(location, JobKind.ANALYSIS) is not None
        port.report_success.assert_not_called()

    def test_rejected_success_falls_back_to_failure(self, router, tokens, storage, port):
        location = f"s3://{BUCKET}/analysis/vid-1/segment-0.json"
        tokens.store(record_for(location, "analysis", video_id="0"))
        storage.objects[location] = b'{"room": "Hallway"}'
        port.report_success.side_effect = WorkflowError("States.DataLimitExceeded")

        assert router.route(s3_event("analysis/vid-1/segment-0.json")) == [RouteOutcome.FAILED]
        port.report_failure.assert_called_once_with(
            "task-token", "ResultDeliveryFailed", "States.DataLimitExceeded"
        )

    def test_token_store_outage_propagates(self, storage, port):
        token_store = Mock()
        token_store.consume.side_effect = StorageUnavailable("DynamoDB throttled")
        router = CallbackRouter(token_store=token_store, storage=storage, continuation_port=port)

        with pytest.raises(StorageUnavailable):
            router.route(s3_event("analysis/vid-1/segment-0.json"))
        port.report_failure.assert_not_called()

    def test_multiple_records_routed_independently(self, router, tokens, storage, port):
        first = f"s3://{BUCKET}/analysis/vid-1/segment-0.json"
        tokens.store(record_for(first, "analysis", handle="t0"))
        storage.objects[first] = b'{"room": "Hallway"}'
        event = {
            "Records": [
                {"eventName": "ObjectCreated:Put", "s3": {"bucket": {"name": BUCKET}, "object": {"key": "analysis/vid-1/segment-0.json"}}},
                {"eventName": "ObjectCreated:Put", "s3": {"bucket": {"name": BUCKET}, "object": {"key": "thumbnails/vid-1.jpg"}}},
            ]
        }
        assert router.route(event) == [RouteOutcome.SUCCEEDED, RouteOutcome.IGNORED]


class TestStepFunctionsContinuationPort:
    """Tests for the Step Functions continuation port."""

    def test_success_serialises_result(self):
        client = MagicMock()
        StepFunctionsContinuationPort(client=client).report_success("tok", {"segmentId": 1})
        client.send_task_success.assert_called_once_with(
            taskToken="tok", output='{"segmentId": 1}'
        )

    def test_failure_truncates_error_code(self):
        client = MagicMock()
        StepFunctionsContinuationPort(client=client).report_failure("tok", "E" * 300, "cause")
        kwargs = client.send_task_failure.call_args.kwargs
        assert len(kwargs["error"]) == 256
        assert kwargs["cause"] == "cause"

    def test_client_error_wrapped(self):
        from botocore.exceptions import ClientError

        client = MagicMock()
        client.send_task_success.side_effect = ClientError(
            {"Error": {"Code": "TaskTimedOut", "Message": "gone"}}, "SendTaskSuccess"
        )
        with pytest.raises(WorkflowError):
            StepFunctionsContinuationPort(client=client).report_success("tok", {})
