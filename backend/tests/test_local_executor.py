"""Tests for in-process workflow execution."""

from datetime import datetime

import httpx
import pytest

from studio.errors import WorkflowValidationError
from studio.llm.client import ModelResponse
from studio.models import (
    Connection,
    Workflow,
    agent_block,
    api_block,
    condition_block,
    evaluator_block,
    function_block,
    router_block,
    starter_block,
)
from studio.services.local_executor import LocalExecutor
from studio.workflows import WorkflowBuilder


class FakeModelProvider:
    """Returns canned completions and records prompts."""

    def __init__(self, *replies: str):
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def complete(self, model, prompt, system_prompt=None, temperature=0.7, max_tokens=1024):
        self.prompts.append(prompt)
        return ModelResponse(
            content=self.replies.pop(0),
            model=model,
            tokens={"prompt": 10, "completion": 5, "total": 15},
        )


def _loop_workflow(always_continue: bool = False) -> Workflow:
    builder = WorkflowBuilder("Counter loop")
    starter = builder.get_starter_block()
    continue_expr = "True" if always_continue else "input.counter < input.limit"
    builder.add_block(function_block("return {'counter': 0, 'limit': 5}", name="Init", block_id="init"))
    builder.add_block(
        condition_block(
            [
                {"id": "continue", "expression": continue_expr},
                {"id": "exit", "expression": "input.counter >= input.limit"},
            ],
            name="Loop Condition",
            block_id="cond",
        )
    )
    builder.add_block(
        function_block(
            "return {'counter': input.counter + 1, 'limit': input.limit}",
            name="Process",
            block_id="process",
        )
    )
    builder.add_block(
        function_block("return {'finalCounter': input.counter}", name="Result", block_id="result")
    )
    builder.connect(starter.id, "init")
    builder.connect("init", "cond")
    builder.connect("cond", "process", source_handle="condition-continue")
    builder.connect("process", "cond")
    builder.connect("cond", "result", source_handle="condition-exit")
    return builder.build()


class TestLinearWorkflows:
    """Tests for straight-line execution."""

    @pytest.mark.asyncio
    async def test_function_workflow(self):
        """starter -> function(a+b) produces sum, product and a timestamp."""
        builder = WorkflowBuilder("Math")
        calc = function_block(
            """
            return {
                'sum': input.a + input.b,
                'product': input.a * input.b,
                'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
            }
            """,
            name="Calculator",
        )
        builder.add_block(calc).connect(builder.get_starter_block().id, calc.id)

        result = await LocalExecutor().run(builder.build(), {"a": 5, "b": 7})

        assert result.success is True
        response = result.output.response
        assert response["sum"] == 12
        assert response["product"] == 35
        datetime.fromisoformat(response["timestamp"])
        assert [log.block_type for log in result.logs] == ["starter", "function"]
        assert result.metadata.duration is not None
        assert result.metadata.start_time and result.metadata.end_time

    @pytest.mark.asyncio
    async def test_outputs_thread_between_blocks(self):
        builder = WorkflowBuilder("Chain")
        first = function_block("return {'value': input.x * 2}", block_id="first")
        second = function_block("return {'value': input.value + 1}", block_id="second")
        builder.add_block(first).add_block(second)
        builder.connect(builder.get_starter_block().id, "first").connect("first", "second")

        result = await LocalExecutor().run(builder.build(), {"x": 4})

        assert result.output.response == {"value": 9}

    @pytest.mark.asyncio
    async def test_starter_only_returns_input(self):
        result = await LocalExecutor().run(WorkflowBuilder("Empty").build(), {"hello": "world"})

        assert result.success is True
        assert result.output.response == {"hello": "world"}


class TestConditionRouting:
    """Tests for condition blocks."""

    def _even_odd(self) -> Workflow:
        builder = WorkflowBuilder("Even or odd")
        builder.add_block(
            condition_block(
                [
                    {"id": "even", "expression": "input.number % 2 == 0"},
                    {"id": "odd", "expression": "input.number % 2 == 1"},
                ],
                block_id="cond",
            )
        )
        builder.add_block(
            function_block(
                "return {'result': f'{input.number} is even', 'path': 'even'}",
                name="Even Handler",
                block_id="even",
            )
        )
        builder.add_block(
            function_block(
                "return {'result': f'{input.number} is odd', 'path': 'odd'}",
                name="Odd Handler",
                block_id="odd",
            )
        )
        builder.connect(builder.get_starter_block().id, "cond")
        builder.connect("cond", "even", source_handle="condition-even")
        builder.connect("cond", "odd", source_handle="condition-odd")
        return builder.build()

    @pytest.mark.asyncio
    async def test_even_branch(self):
        result = await LocalExecutor().run(self._even_odd(), {"number": 10})

        assert result.success is True
        assert result.output.response == {"result": "10 is even", "path": "even"}
        assert "odd" not in [log.block_id for log in result.logs]

    @pytest.mark.asyncio
    async def test_odd_branch(self):
        result = await LocalExecutor().run(self._even_odd(), {"number": 7})

        assert result.output.response == {"result": "7 is odd", "path": "odd"}

    @pytest.mark.asyncio
    async def test_first_match_wins(self):
        """When several conditions are true only the first one's edge is followed."""
        builder = WorkflowBuilder("First match")
        builder.add_block(
            condition_block(
                [{"id": "a", "expression": "True"}, {"id": "b", "expression": "True"}],
                block_id="cond",
            )
        )
        builder.add_block(function_block("return 'A'", block_id="branch-a"))
        builder.add_block(function_block("return 'B'", block_id="branch-b"))
        builder.connect(builder.get_starter_block().id, "cond")
        builder.connect("cond", "branch-a", source_handle="condition-a")
        builder.connect("cond", "branch-b", source_handle="condition-b")

        result = await LocalExecutor().run(builder.build(), {})

        executed = [log.block_id for log in result.logs]
        assert "branch-a" in executed
        assert "branch-b" not in executed
        assert result.output.response == "A"

    @pytest.mark.asyncio
    async def test_no_match_ends_branch(self):
        builder = WorkflowBuilder("Dead end")
        builder.add_block(
            condition_block([{"id": "never", "expression": "False"}], block_id="cond")
        )
        builder.add_block(function_block("return 'unreachable'", block_id="after"))
        builder.connect(builder.get_starter_block().id, "cond")
        builder.connect("cond", "after", source_handle="condition-never")

        result = await LocalExecutor().run(builder.build(), {"x": 1})

        assert result.success is True
        assert [log.block_id for log in result.logs][-1] == "cond"
        assert result.output.response == {"x": 1}


class TestLoops:
    """Tests for loop execution and bounds."""

    @pytest.mark.asyncio
    async def test_counter_loop_runs_five_times(self):
        result = await LocalExecutor().run(_loop_workflow(), {})

        assert result.success is True
        process_logs = [log for log in result.logs if log.block_id == "process"]
        assert len(process_logs) == 5
        assert result.output.response == {"finalCounter": 5}

    @pytest.mark.asyncio
    async def test_undeclared_loop_hits_iteration_bound(self):
        result = await LocalExecutor(max_loop_iterations=3).run(
            _loop_workflow(always_continue=True), {}
        )

        assert result.success is False
        assert "Maximum loop iterations (3)" in result.error
        assert len([log for log in result.logs if log.block_id == "process"]) == 4

    @pytest.mark.asyncio
    async def test_declared_loop_stops_after_iterations(self):
        workflow = Workflow(
            name="Repeat",
            blocks=[
                starter_block("start"),
                function_block("return {'n': (input.n or 0) + 1}", block_id="body"),
                function_block("return {'done': input.n}", block_id="after"),
            ],
            connections=[
                Connection(source="start", target="body"),
                Connection(source="body", target="body"),
                Connection(source="body", target="after"),
            ],
            loops={"repeat": {"id": "repeat", "nodes": ["body"], "iterations": 3}},
        )

        result = await LocalExecutor().run(workflow, {})

        assert result.success is True
        assert len([log for log in result.logs if log.block_id == "body"]) == 3
        assert len([log for log in result.logs if log.block_id == "after"]) == 1
        assert result.output.response == {"done": 3}

    @pytest.mark.asyncio
    async def test_unguarded_cycle_rejected(self):
        workflow = Workflow(
            name="Spin",
            blocks=[
                starter_block("start"),
                function_block("return input", block_id="a"),
                function_block("return input", block_id="b"),
            ],
            connections=[
                Connection(source="start", target="a"),
                Connection(source="a", target="b"),
                Connection(source="b", target="a"),
            ],
        )

        with pytest.raises(WorkflowValidationError):
            await LocalExecutor().run(workflow, {})


class TestJoinsAndFailures:
    """Tests for multi-input blocks and block failures."""

    @pytest.mark.asyncio
    async def test_join_waits_for_all_branches(self):
        builder = WorkflowBuilder("Join")
        builder.add_block(function_block("return {'x': 1, 'a': True}", block_id="a"))
        builder.add_block(function_block("return {'x': 2, 'b': True}", block_id="b"))
        builder.add_block(function_block("return input", block_id="join"))
        starter = builder.get_starter_block()
        builder.connect(starter.id, "a").connect(starter.id, "b")
        builder.connect("a", "join").connect("b", "join")

        result = await LocalExecutor().run(builder.build(), {})

        assert [log.block_id for log in result.logs].count("join") == 1
        assert result.output.response == {"x": 2, "a": True, "b": True}

    @pytest.mark.asyncio
    async def test_failing_block_stops_run(self):
        builder = WorkflowBuilder("Broken")
        builder.add_block(function_block("return 1 / 0", name="Divider", block_id="bad"))
        builder.add_block(function_block("return 'never'", block_id="after"))
        builder.connect(builder.get_starter_block().id, "bad").connect("bad", "after")

        result = await LocalExecutor().run(builder.build(), {})

        assert result.success is False
        assert "Block 'Divider' failed" in result.error
        assert "ZeroDivisionError" in result.error
        assert result.logs[-1].block_id == "bad"
        assert result.logs[-1].success is False
        assert result.output.response == {}


class TestModelBlocks:
    """Tests for agent, router and evaluator blocks with a fake model."""

    @pytest.mark.asyncio
    async def test_agent_renders_prompt(self):
        provider = FakeModelProvider("Short summary")
        builder = WorkflowBuilder("Agent")
        agent = agent_block(model="claude-test", prompt="Summarize: {{input.text}}")
        builder.add_block(agent).connect(builder.get_starter_block().id, agent.id)

        result = await LocalExecutor(model_provider=provider).run(builder.build(), {"text": "hi"})

        assert provider.prompts == ["Summarize: hi"]
        assert result.output.response["content"] == "Short summary"
        assert result.output.response["tokens"]["total"] == 15

    @pytest.mark.asyncio
    async def test_agent_without_provider_fails(self):
        builder = WorkflowBuilder("Agent")
        agent = agent_block(model="claude-test", prompt="Hello", name="Greeter")
        builder.add_block(agent).connect(builder.get_starter_block().id, agent.id)

        result = await LocalExecutor().run(builder.build(), {})

        assert result.success is False
        assert "No model provider configured" in result.error

    @pytest.mark.asyncio
    async def test_router_follows_selected_block(self):
        provider = FakeModelProvider("billing")
        builder = WorkflowBuilder("Support")
        builder.add_block(router_block(model="claude-test", prompt="Route {{input.q}}", block_id="router"))
        builder.add_block(function_block("return 'billing team'", block_id="billing"))
        builder.add_block(function_block("return 'tech team'", block_id="tech"))
        builder.connect(builder.get_starter_block().id, "router")
        builder.connect("router", "billing").connect("router", "tech")

        result = await LocalExecutor(model_provider=provider).run(
            builder.build(), {"q": "refund please"}
        )

        assert result.success is True
        executed = [log.block_id for log in result.logs]
        assert "billing" in executed and "tech" not in executed
        assert result.logs[1].output["selectedPath"]["blockId"] == "billing"

    @pytest.mark.asyncio
    async def test_evaluator_parses_scores(self):
        provider = FakeModelProvider('```json\n{"Accuracy": 8}\n```')
        builder = WorkflowBuilder("Judge")
        evaluator = evaluator_block(
            model="claude-test",
            metrics=[{"name": "Accuracy", "description": "Correctness", "range": {"min": 0, "max": 10}}],
        )
        builder.add_block(evaluator).connect(builder.get_starter_block().id, evaluator.id)

        result = await LocalExecutor(model_provider=provider).run(builder.build(), {"answer": "42"})

        assert result.output.response["accuracy"] == 8


class TestApiBlock:
    """Tests for HTTP request blocks."""

    @pytest.mark.asyncio
    async def test_api_block_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["q"] == "cats"
            return httpx.Response(200, json={"items": [1, 2]})

        builder = WorkflowBuilder("Fetch")
        block = api_block("https://api.example.com/search", params={"q": "{{input.term}}"})
        builder.add_block(block).connect(builder.get_starter_block().id, block.id)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            result = await LocalExecutor(http_client=http_client).run(
                builder.build(), {"term": "cats"}
            )

        assert result.success is True
        assert result.output.response["status"] == 200
        assert result.output.response["data"] == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_api_block_error_status_fails(self):
        builder = WorkflowBuilder("Fetch")
        block = api_block("https://api.example.com/missing", name="Lookup")
        builder.add_block(block).connect(builder.get_starter_block().id, block.id)

        transport = httpx.MockTransport(lambda request: httpx.Response(404, json={}))
        async with httpx.AsyncClient(transport=transport) as http_client:
            result = await LocalExecutor(http_client=http_client).run(builder.build(), {})

        assert result.success is False
        assert "status 404" in result.error
