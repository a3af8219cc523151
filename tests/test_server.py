"""HTTP-level tests for POST /generate and the health endpoint."""

import json

import pytest
from fastapi.testclient import TestClient

from flyerdeck.api.server import create_app
from flyerdeck.models.events import PipelineEvent

from fakes import make_png


class RecordingGenerator:
    """Generator stand-in that records the validated input it was given."""

    def __init__(self):
        self.inputs = []

    def run(self, validated):
        self.inputs.append(validated)
        return self._events(validated)

    async def _events(self, validated):
        yield PipelineEvent(type="start", data={})
        for index in range(2):
            yield PipelineEvent(type="slide:start", data={"index": index, "title": f"slide {index}"})
            yield PipelineEvent(type="slide:generating", data={"index": index, "title": f"slide {index}", "html": "<p/>"})
            yield PipelineEvent(type="slide:end", data={"index": index, "title": f"slide {index}", "html": "<p/>"})
        yield PipelineEvent(type="end", data={"slides": [], "customer": validated.customerName})


@pytest.fixture
def generator() -> RecordingGenerator:
    return RecordingGenerator()


@pytest.fixture
def client(session_resolver, generator):
    app = create_app(sessions=session_resolver, generator_factory=lambda validated: generator, heartbeat_interval=60)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(session_token) -> dict:
    return {"Authorization": f"Bearer {session_token}"}


def flyer_files(count: int = 1) -> list:
    return [("flyerFiles", (f"flyer{i}.png", make_png(40, 60), "image/png")) for i in range(count)]


def parse_stream(body: str) -> list:
    frames = []
    for block in body.strip().split("\n\n"):
        fields = dict(line.split(": ", 1) for line in block.split("\n"))
        frames.append((fields["event"], json.loads(fields["data"]), fields["id"]))
    return frames


class TestAuthentication:
    def test_missing_session_is_401_without_body(self, client, primary_input, generator):
        response = client.post("/generate", data={"input": json.dumps(primary_input)}, files=flyer_files())
        assert response.status_code == 401
        assert response.content == b""
        assert generator.inputs == []

    def test_invalid_token_is_401(self, client, primary_input):
        response = client.post(
            "/generate",
            data={"input": json.dumps(primary_input)},
            files=flyer_files(),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_session_cookie_is_accepted(self, client, primary_input, session_token):
        client.cookies.set("session_token", session_token)
        response = client.post("/generate", data={"input": json.dumps(primary_input)}, files=flyer_files())
        assert response.status_code == 200


class TestValidation:
    def test_missing_input_field(self, client, auth_headers):
        response = client.post("/generate", files=flyer_files(), headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid form data"}

    def test_input_is_not_json(self, client, auth_headers):
        response = client.post("/generate", data={"input": "{not json"}, files=flyer_files(), headers=auth_headers)
        assert response.status_code == 400

    def test_no_flyer_files(self, client, auth_headers, primary_input):
        response = client.post("/generate", data={"input": json.dumps(primary_input)}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid form data"}

    def test_missing_required_field(self, client, auth_headers, primary_input, generator):
        del primary_input["customerName"]
        response = client.post(
            "/generate", data={"input": json.dumps(primary_input)}, files=flyer_files(), headers=auth_headers
        )
        assert response.status_code == 400
        assert generator.inputs == []


class TestStreaming:
    def test_streams_generator_events(self, client, auth_headers, primary_input, generator):
        response = client.post(
            "/generate",
            data={"input": json.dumps({**primary_input, "modelType": "low", "parallel": False})},
            files=flyer_files(2),
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        frames = parse_stream(response.text)
        assert [event for event, _, _ in frames] == [
            "start",
            "slide:start", "slide:generating", "slide:end",
            "slide:start", "slide:generating", "slide:end",
            "end",
        ]
        assert frames[-1][1]["customer"] == primary_input["customerName"]
        ids = [int(frame_id) for _, _, frame_id in frames]
        assert ids == sorted(set(ids))

        [validated] = generator.inputs
        assert len(validated.flyerFiles) == 2
        assert validated.flyerFiles[0].content_type == "image/png"
        assert validated.modelType == "low"
        assert validated.parallel is False


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_request_id_is_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"
        assert "X-Process-Time" in response.headers
