import json
from pathlib import Path

import pytest
import requests

from dsym_upload.api import Api
from dsym_upload.config import load_config
from dsym_upload.errors import ApiError
from dsym_upload.xcode import InfoPlist


def _response(status_code: int, payload=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(payload).encode("utf-8") if payload is not None else b""
    return response


class RecordingSession(requests.Session):
    def __init__(self, responses: list) -> None:
        super().__init__()
        self.responses = list(responses)
        self.calls: list = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _api(session: RecordingSession) -> Api:
    return Api(
        base_url="https://example.invalid/",
        auth_token="secret",
        timeout_sec=5,
        user_agent="dsym-upload/test",
        session=session,
    )


def test_find_missing_checksums_sends_each_checksum() -> None:
    session = RecordingSession([_response(200, {"missing": ["bbb"]})])
    missing = _api(session).find_missing_dsym_checksums("org", "proj", ["aaa", "bbb"])

    assert missing == {"bbb"}
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert url == "https://example.invalid/api/0/projects/org/proj/files/dsyms/unknown/"
    assert kwargs["params"] == [("checksums", "aaa"), ("checksums", "bbb")]
    assert kwargs["timeout"] == 5
    assert session.headers["Authorization"] == "Bearer secret"
    assert session.headers["User-Agent"] == "dsym-upload/test"


def test_upload_dsyms_parses_uploaded_files(tmp_path: Path) -> None:
    bundle = tmp_path / "bundle.zip"
    bundle.write_bytes(b"PK\x05\x06" + bytes(18))
    session = RecordingSession(
        [
            _response(
                201,
                [{"uuid": "11111111-1111-4111-8111-111111111111", "objectName": "MyApp", "cpuName": "arm64"}],
            )
        ]
    )
    uploaded = _api(session).upload_dsyms("org", "proj", bundle)

    assert len(uploaded) == 1
    assert uploaded[0].object_name == "MyApp"
    assert uploaded[0].cpu_name == "arm64"
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url.endswith("/projects/org/proj/files/dsyms/")
    assert kwargs["files"]["file"][0] == "bundle.zip"


def test_associate_returns_none_when_unsupported() -> None:
    info = InfoPlist(name="MyApp", bundle_id="com.example.app", version="1.0", build="42")
    session = RecordingSession([_response(404, {"detail": "not found"})])
    assert _api(session).associate_dsyms("org", "proj", info, ["aaa"]) is None
    body = session.calls[0][2]["json"]
    assert body["appId"] == "com.example.app"
    assert body["checksums"] == ["aaa"]


def test_associate_returns_associated_files() -> None:
    info = InfoPlist(name="MyApp", bundle_id="com.example.app", version="1.0", build="42")
    session = RecordingSession([_response(200, {"associatedDsymFiles": [{"uuid": "x"}]})])
    assert _api(session).associate_dsyms("org", "proj", info, ["aaa"]) == [{"uuid": "x"}]


def test_trigger_reprocessing_reports_support() -> None:
    session = RecordingSession([_response(200, {}), _response(404)])
    api = _api(session)
    assert api.trigger_reprocessing("org", "proj") is True
    assert api.trigger_reprocessing("org", "proj") is False


def test_error_status_becomes_api_error() -> None:
    session = RecordingSession([_response(403, {"detail": "You do not have permission"})])
    with pytest.raises(ApiError) as excinfo:
        _api(session).find_missing_dsym_checksums("org", "proj", ["aaa"])
    assert excinfo.value.status_code == 403
    assert "You do not have permission" in str(excinfo.value)


def test_connection_errors_become_api_error() -> None:
    session = RecordingSession([requests.ConnectionError("connection refused")])
    with pytest.raises(ApiError):
        _api(session).trigger_reprocessing("org", "proj")


def test_api_from_config_uses_server_section() -> None:
    cfg = load_config(None, env={"SENTRY_URL": "https://self-hosted.invalid", "SENTRY_AUTH_TOKEN": "tok"})
    session = RecordingSession([])
    api = Api.from_config(cfg, session=session)
    assert api.base_url == "https://self-hosted.invalid"
    assert session.headers["Authorization"] == "Bearer tok"
