"""Tests for producer-side job validation."""

import json

import pytest

from transcode_queue.submission import (
    MAX_BULK_JOBS,
    SubmissionError,
    build_payloads,
    load_submission,
    url_extension,
    validate_job_payload,
)


def _video(post_id=1, **overrides):
    data = {
        "post_id": post_id,
        "video_url": f"https://cdn.example.com/v/{post_id}.mp4",
        "thumbnail_url": f"https://cdn.example.com/t/{post_id}.jpg",
        "webhook_url": "https://hooks.example.com/video",
    }
    data.update(overrides)
    return data


class TestValidateJobPayload:
    """Test per-job validation messages."""

    def test_valid_job(self):
        assert validate_job_payload(_video(), 0) == []

    def test_string_post_id_accepted(self):
        assert validate_job_payload(_video(post_id="17"), 0) == []

    @pytest.mark.parametrize("post_id", [0, -3, True, "abc", None, 1.5])
    def test_bad_post_id(self, post_id):
        errors = validate_job_payload(_video(post_id=post_id), 3)
        assert errors == ["Invalid or missing post_id at index 3"]

    def test_bad_video_extension(self):
        errors = validate_job_payload(_video(video_url="https://cdn.example.com/v/1.flv"), 0)
        assert errors == ["Invalid video format at index 0. Allowed: mp4, mov, avi, webm, mkv"]

    def test_extension_ignores_query_string(self):
        assert url_extension("https://cdn.example.com/v/1.MP4?sig=abc.flv") == "mp4"

    def test_bad_thumbnail_url(self):
        errors = validate_job_payload(_video(thumbnail_url="not a url"), 2)
        assert errors == ["Invalid or missing thumbnail_url at index 2"]

    def test_webhook_required_without_default(self):
        raw = _video()
        del raw["webhook_url"]

        assert validate_job_payload(raw, 0) == []
        assert validate_job_payload(raw, 0, require_webhook=True) == [
            "Invalid or missing webhook_url at index 0"
        ]

    def test_non_object(self):
        assert validate_job_payload("job", 5) == ["Job at index 5 must be an object"]

    def test_collects_every_problem(self):
        errors = validate_job_payload({"post_id": 0}, 0, require_webhook=True)
        assert len(errors) == 4


class TestBuildPayloads:
    """Test whole-submission validation."""

    def test_builds_payloads(self):
        payloads = build_payloads([_video(1), _video("2")])

        assert [p.post_id for p in payloads] == [1, 2]
        assert payloads[0].webhook_url == "https://hooks.example.com/video"
        assert payloads[0].batch_id is None

    def test_default_webhook_fills_gaps(self):
        raw = _video()
        del raw["webhook_url"]

        payloads = build_payloads([raw], webhook_url="https://default.example.com/hook")

        assert payloads[0].webhook_url == "https://default.example.com/hook"

    def test_job_webhook_beats_default(self):
        payloads = build_payloads([_video()], webhook_url="https://default.example.com/hook")
        assert payloads[0].webhook_url == "https://hooks.example.com/video"

    def test_empty(self):
        with pytest.raises(SubmissionError, match="Empty videos array"):
            build_payloads([])

    def test_too_many(self):
        with pytest.raises(SubmissionError) as exc_info:
            build_payloads([_video()] * (MAX_BULK_JOBS + 1))
        assert str(exc_info.value) == "Maximum 10,000 videos per request"

    def test_one_bad_job_rejects_all(self):
        with pytest.raises(SubmissionError) as exc_info:
            build_payloads([_video(1), _video(0)])

        assert str(exc_info.value) == "Validation failed"
        assert exc_info.value.errors == ["Invalid or missing post_id at index 1"]


class TestLoadSubmission:
    """Test the accepted JSON shapes."""

    def test_videos_wrapper(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text(json.dumps({"videos": [_video(1), _video(2)]}))
        assert len(load_submission(path)) == 2

    def test_bare_list(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text(json.dumps([_video(1)]))
        assert load_submission(path) == [_video(1)]

    def test_single_object(self, tmp_path):
        path = tmp_path / "job.json"
        path.write_text(json.dumps(_video(9)))
        assert load_submission(path) == [_video(9)]

    def test_videos_not_a_list(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text(json.dumps({"videos": "nope"}))
        with pytest.raises(SubmissionError):
            load_submission(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text("{not json")
        with pytest.raises(SubmissionError, match="Invalid JSON"):
            load_submission(path)
