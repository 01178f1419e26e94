"""Tests for the workflow builder (agentpipe/sdk.py).

This module tests:
- Callable steps (sync, async, async generator) and Stage instances
- Built-in stage names resolved at pipe time
- Halting at approve and resuming / cancelling through the same workflow
- Error envelopes for bad tokens and failing steps
"""

import json

import pytest

from agentpipe.errors import UnknownStageError
from agentpipe.pipeline import decode_token
from agentpipe.sdk import FunctionStage, Workflow
from tests.fixtures.test_helpers import FailingStage, SuffixStage, sample_emails


@pytest.fixture
def workflow(tmp_path, state_dir, cache_dir):
    """Empty workflow over an isolated environment."""
    return Workflow(env={}, state_dir=state_dir, cache_dir=cache_dir, cwd=tmp_path)


def unread(items, ctx):
    return [e for e in items if "UNREAD" in e["labels"]]


async def subjects(items, ctx):
    return [e["subject"] for e in items]


async def shout(input, ctx):
    async for item in input:
        yield item.upper()


class TestRun:
    """Runs without a gate complete with status ok."""

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_callables_chain(self, workflow):
        envelope = await workflow.pipe(unread).pipe(subjects).pipe(shout).run(sample_emails())

        assert envelope["ok"] is True
        assert envelope["status"] == "ok"
        assert envelope["output"] == ["URGENT: QUARTERLY NUMBERS", "LUNCH ON FRIDAY?"]
        assert envelope["requiresApproval"] is None

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_single_item_and_none_results(self, workflow):
        envelope = await workflow.pipe(lambda items, ctx: len(items)).run(["a", "b"])
        assert envelope["output"] == [2]

        envelope = await workflow.clone().pipe(lambda items, ctx: None).run()
        assert envelope["output"] == []

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_stage_instance_with_args(self, workflow):
        envelope = await workflow.pipe(SuffixStage(), suffix="?").run(["x"])

        assert envelope["output"] == ["x?"]

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_builtin_stage_by_name(self, workflow):
        envelope = await workflow.pipe("email.triage", limit=2).run(sample_emails())

        report = envelope["output"][0]
        assert report["mode"] == "deterministic"
        assert report["summary"] == "1 need replies, 1 need action, 0 FYI"

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_state_dir_used_by_state_stages(self, workflow, state_dir):
        await workflow.pipe("state.set", key="counter").run([7])

        files = list(state_dir.glob("*.json"))
        assert len(files) == 1
        assert json.loads(files[0].read_text()) == 7

        reader = Workflow(env={}, state_dir=state_dir).pipe("state.get", key="counter")
        assert (await reader.run())["output"] == [7]

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_failing_step_returns_error_envelope(self, workflow):
        envelope = await workflow.pipe(FailingStage()).run(["x"])

        assert envelope["ok"] is False
        assert envelope["status"] == "error"
        assert envelope["error"] == {"type": "remote_error", "message": "stage exploded"}


class TestApproval:
    """approve always halts in sdk mode; the same workflow resumes."""

    @pytest.fixture
    def gated(self, workflow):
        calls = []

        def send(items, ctx):
            calls.append(list(items))
            return [f"sent:{item}" for item in items]

        workflow.pipe(subjects).pipe("approve", prompt="Send replies?").pipe(send)
        return workflow, calls

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_halt_at_approve(self, gated):
        workflow, calls = gated

        envelope = await workflow.run(sample_emails()[:1])

        assert envelope["status"] == "needs_approval"
        assert envelope["output"] == []
        approval = envelope["requiresApproval"]
        assert approval["prompt"] == "Send replies?"
        assert approval["items"] == ["URGENT: quarterly numbers"]
        assert calls == []

        token = decode_token(approval["resumeToken"])
        assert token.pipeline is None
        assert token.stage_index == 1
        assert token.resume_at_index == 2

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_resume_approved_runs_remaining_steps(self, gated):
        workflow, calls = gated
        halted = await workflow.run(sample_emails()[:1])

        envelope = await workflow.resume(halted["requiresApproval"]["resumeToken"], approved=True)

        assert envelope["status"] == "ok"
        assert envelope["output"] == ["sent:URGENT: quarterly numbers"]
        assert calls == [["URGENT: quarterly numbers"]]

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_resume_denied_cancels(self, gated):
        workflow, calls = gated
        halted = await workflow.run(sample_emails()[:1])

        envelope = await workflow.resume(halted["requiresApproval"]["resumeToken"], approved=False)

        assert envelope["status"] == "cancelled"
        assert envelope["output"] == []
        assert calls == []

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_clone_resumes_token(self, gated):
        workflow, calls = gated
        halted = await workflow.run(sample_emails()[:1])

        envelope = await workflow.clone().resume(halted["requiresApproval"]["resumeToken"], approved=True)

        assert envelope["status"] == "ok"
        assert len(calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_invalid_token_returns_error_envelope(self, gated):
        workflow, _ = gated

        envelope = await workflow.resume("not-a-token", approved=True)

        assert envelope["ok"] is False
        assert envelope["error"]["type"] == "invalid_token"

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_token_past_shorter_workflow_is_invalid(self, gated, tmp_path):
        workflow, _ = gated
        halted = await workflow.run(sample_emails()[:1])

        short = Workflow(env={}, cwd=tmp_path).pipe(subjects)
        envelope = await short.resume(halted["requiresApproval"]["resumeToken"], approved=True)

        assert envelope["error"]["type"] == "invalid_token"


class TestBuilding:
    """pipe() validation and clone independence."""

    @pytest.mark.unit
    def test_unknown_stage_name_fails_at_pipe_time(self, workflow):
        with pytest.raises(UnknownStageError):
            workflow.pipe("no.such.stage")
        assert len(workflow) == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("step", [42, None, ["approve"]])
    def test_bad_step_type(self, workflow, step):
        with pytest.raises(TypeError, match="step must be"):
            workflow.pipe(step)

    @pytest.mark.unit
    def test_pipe_returns_same_workflow(self, workflow):
        assert workflow.pipe(unread) is workflow
        assert len(workflow) == 1

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_clone_is_independent(self, workflow):
        workflow.pipe(shout)
        variant = workflow.clone().pipe(SuffixStage())

        assert len(workflow) == 1
        assert len(variant) == 2
        assert (await workflow.run(["a"]))["output"] == ["A"]
        assert (await variant.run(["a"]))["output"] == ["A!"]

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_repeated_callable_names_do_not_collide(self, workflow):
        workflow.pipe(FunctionStage("step", lambda items, ctx: [i + 1 for i in items]))
        workflow.pipe(FunctionStage("step", lambda items, ctx: [i * 10 for i in items]))

        assert (await workflow.run([1]))["output"] == [20]
