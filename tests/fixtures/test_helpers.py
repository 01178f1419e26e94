"""Test helper utilities for agentpipe tests.

This module provides:
- Stream helpers
- Deterministic stages for engine tests
- Response envelope builders
- A canned llm-task server for httpx.MockTransport
"""

import json
from typing import Any, Dict, List, Optional

import httpx

from agentpipe.errors import RemoteError
from agentpipe.pipeline.base import SourceStage, StageResult, TransformStage
from agentpipe.pipeline.stream import collect, stream_of


# ==================== Stream Helpers ====================


async def run_stage(stage, items: List[Any], args: Dict[str, Any], ctx) -> StageResult:
    """Run a single stage over a list of items."""
    return await stage.run(stream_of(items), args, ctx)


async def stage_output(stage, items: List[Any], args: Dict[str, Any], ctx) -> List[Any]:
    """Run a single stage and collect its output."""
    result = await run_stage(stage, items, args, ctx)
    return await collect(result.output)


# ==================== Deterministic Stages ====================


class CallLog:
    """Records which stages ran, in order."""

    def __init__(self):
        self.calls: List[str] = []

    def record(self, name: str) -> None:
        self.calls.append(name)


class StaticSource(SourceStage):
    """Emits the items given in its ``items`` argument."""

    description = "test source"

    def __init__(self, log: Optional[CallLog] = None):
        self.log = log

    @property
    def name(self) -> str:
        return "test.source"

    async def run(self, input, args, ctx):
        if self.log:
            self.log.record(self.name)
        return StageResult(output=stream_of(list(args.get("items", []))))


class SuffixStage(TransformStage):
    """Appends ``suffix`` (default "!") to every string item."""

    description = "test transform"

    def __init__(self, log: Optional[CallLog] = None):
        self.log = log

    @property
    def name(self) -> str:
        return "test.suffix"

    async def run(self, input, args, ctx):
        if self.log:
            self.log.record(self.name)
        suffix = args.get("suffix", "!")

        async def gen():
            async for item in input:
                yield f"{item}{suffix}"

        return StageResult(output=gen())


class FailingStage(TransformStage):
    """Always raises RemoteError."""

    @property
    def name(self) -> str:
        return "test.fail"

    async def run(self, input, args, ctx):
        raise RemoteError("stage exploded")


# ==================== Envelope Builders ====================


def ok_envelope(
    data: Any = None,
    text: Optional[str] = None,
    model: str = "test-model",
    run_id: str = "run-1",
) -> Dict[str, Any]:
    """Successful llm-task response envelope."""
    output: Dict[str, Any] = {}
    if data is not None:
        output["data"] = data
        output["format"] = "json"
    if text is not None:
        output["text"] = text
    return {
        "ok": True,
        "result": {
            "runId": run_id,
            "model": model,
            "status": "completed",
            "output": output,
            "usage": {"inputTokens": 10, "outputTokens": 5, "totalTokens": 15},
        },
    }


def error_envelope(message: str = "model overloaded") -> Dict[str, Any]:
    return {"ok": False, "error": {"message": message}}


# ==================== Mock llm-task Server ====================


class MockLlmTaskServer:
    """Serves queued responses through httpx.MockTransport and records requests.

    Each entry is a JSON body (served with status 200), an httpx.Response,
    or an exception to raise. The last entry repeats once the queue runs dry.

    Example:
        server = MockLlmTaskServer([ok_envelope(text="hi")])
        stage = LlmTaskInvokeStage(client=server.client())
    """

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def call_count(self) -> int:
        return len(self.requests)

    @property
    def bodies(self) -> List[Any]:
        return [json.loads(r.content) if r.content else None for r in self.requests]

    @property
    def urls(self) -> List[str]:
        return [str(r.url) for r in self.requests]


# ==================== Sample Data ====================


def sample_emails() -> List[Dict[str, Any]]:
    """One urgent email, one unread personal email, one read newsletter."""
    return [
        {
            "id": "m1",
            "threadId": "t1",
            "from": "Boss <boss@example.com>",
            "subject": "URGENT: quarterly numbers",
            "date": "2024-01-08",
            "snippet": "Need these today",
            "labels": ["INBOX", "UNREAD"],
        },
        {
            "id": "m2",
            "threadId": "t2",
            "from": "Ann Smith <ann@example.com>",
            "subject": "Lunch on Friday?",
            "date": "2024-01-08",
            "snippet": "Are you free?",
            "labels": ["INBOX", "UNREAD"],
        },
        {
            "id": "m3",
            "threadId": "t3",
            "from": "News <no-reply@news.example.com>",
            "subject": "Weekly digest",
            "date": "2024-01-07",
            "snippet": "Top stories",
            "labels": ["INBOX"],
        },
    ]
