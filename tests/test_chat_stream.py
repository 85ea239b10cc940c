import json

import pytest
from httpx import AsyncClient
from sse_starlette.sse import AppStatus

from errors import InvalidKeyError
from tests.fakes import completion, tool_call


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    # the exit event is created lazily and bound to whichever loop ran the previous test
    AppStatus.should_exit_event = None
    yield


def parse_events(text: str) -> list[tuple[str, str]]:
    events = []
    for block in text.replace("\r\n", "\n").split("\n\n"):
        name, data = None, []
        for line in block.split("\n"):
            if line.startswith("event:"):
                name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data.append(line[len("data:"):].strip())
        if name:
            events.append((name, "\n".join(data)))
    return events


@pytest.mark.asyncio
async def test_stream_reports_tools_then_answer(client: AsyncClient, chat_body, fake_model):
    fake_model.completions.responses = [
        completion(tool_calls=[tool_call("call_1", "select_data", {"table_name": "products", "limit": 2})]),
        completion("Two of your products are keyboard and mouse."),
    ]
    response = await client.post("/chat/stream", json=chat_body)

    assert response.status_code == 200
    events = parse_events(response.text)
    assert [name for name, _ in events] == ["tool", "token", "done"]

    tool = json.loads(events[0][1])
    assert tool["tool_name"] == "select_data"
    assert tool["call_id"] == "call_1"
    assert tool["result"]["data"]["count"] == 2
    assert events[1][1] == "Two of your products are keyboard and mouse."
    assert events[2][1] == "[DONE]"


@pytest.mark.asyncio
async def test_stream_reports_connection_errors(client: AsyncClient, chat_body, fake_model, fake_backend):
    fake_backend.probe_error = InvalidKeyError("Invalid API key")
    response = await client.post("/chat/stream", json=chat_body)

    events = parse_events(response.text)
    assert [name for name, _ in events] == ["error", "done"]
    assert json.loads(events[0][1])["error"] == "invalid_key"
    assert fake_model.requests == []


@pytest.mark.asyncio
async def test_stream_reports_connection_check_crash(client: AsyncClient, chat_body, fake_backend):
    fake_backend.probe_error = RuntimeError("gateway returned garbage")
    response = await client.post("/chat/stream", json=chat_body)

    events = parse_events(response.text)
    assert [name for name, _ in events] == ["error", "done"]
    assert json.loads(events[0][1])["error"] == "server_error"
    assert fake_backend.closed is True
