"""Tests for the WorkflowEngine facade: runs, live edits and file exchange."""

import asyncio

import pytest

from mosaik.errors import NotFoundError, RunConflictError, RunNotFoundError, UnsupportedFileTypeError
from mosaik.graph.node import NodeKind, NodeStatus
from mosaik.llm.mock import MockResponse
from mosaik.runtime.event_bus import EventType
from mosaik.runtime.run_context import RunNodeState, RunStatus


def add_chat(engine, title, **fields):
    return engine.create_node(NodeKind.CHAT, title=title, provider="mock", model="mock-model", **fields)


class TestTriggerRun:
    @pytest.mark.asyncio
    async def test_results_flow_back_into_store(self, engine):
        prompt = engine.create_node(NodeKind.PROMPT, text="Hello")
        chat = add_chat(engine, "B")
        engine.connect(prompt, chat)

        run_id = await engine.trigger_run()
        assert engine.get_node(chat).status == NodeStatus.QUEUED
        result = await engine.wait_for_run(run_id, timeout=2.0)

        assert result.status == RunStatus.COMPLETED
        node = engine.get_node(chat)
        assert node.status == NodeStatus.SUCCEEDED
        assert node.output == "Hello"
        assert [(m.role, m.source) for m in node.conversation] == [("user", prompt), ("assistant", None)]
        assert engine.get_result(run_id) is result
        assert engine.active_runs() == []

    @pytest.mark.asyncio
    async def test_graph_version_moves_on_flush(self, engine):
        chat = add_chat(engine, "B")
        engine.store.append_message(chat, "user", "hi")
        before = engine.graph_version
        await engine.wait_for_run(await engine.trigger_run(chat), timeout=2.0)
        assert engine.graph_version > before

    @pytest.mark.asyncio
    async def test_rerun_replaces_injected_turns(self, engine):
        prompt = engine.create_node(NodeKind.PROMPT, text="first")
        chat = add_chat(engine, "B")
        engine.connect(prompt, chat)
        await engine.wait_for_run(await engine.trigger_run(), timeout=2.0)

        engine.update_config(prompt, text="second")
        await engine.wait_for_run(await engine.trigger_run(), timeout=2.0)

        node = engine.get_node(chat)
        assert [m.content for m in node.conversation] == ["second", "second"]

    @pytest.mark.asyncio
    async def test_run_from_node_uses_existing_upstream_output(self, engine, mock_adapter):
        a = add_chat(engine, "A")
        b = add_chat(engine, "B")
        engine.connect(a, b)
        engine.store.append_message(a, "user", "seed")
        await engine.wait_for_run(await engine.trigger_run(), timeout=2.0)
        mock_adapter.calls.clear()

        await engine.wait_for_run(await engine.trigger_run(b), timeout=2.0)
        assert mock_adapter.calls_for("A") == []
        assert mock_adapter.calls_for("B")[0]["messages"] == [{"role": "user", "content": "seed"}]

    @pytest.mark.asyncio
    async def test_unknown_start(self, engine):
        with pytest.raises(NotFoundError):
            await engine.trigger_run("node_7")

    @pytest.mark.asyncio
    async def test_failure_recorded_on_node(self, engine):
        chat = add_chat(engine, "B")
        await engine.wait_for_run(await engine.trigger_run(), timeout=2.0)
        node = engine.get_node(chat)
        assert node.status == NodeStatus.FAILED
        assert node.error.startswith("NoInput")


class TestLiveEdits:
    @pytest.mark.asyncio
    async def test_config_edit_during_run_waits_for_next_run(self, engine, mock_adapter):
        mock_adapter.responses["B"] = MockResponse(fragments=["a", "b", "c"], delay=0.02)
        chat = add_chat(engine, "B")
        engine.store.append_message(chat, "user", "go")

        run_id = await engine.trigger_run()
        await engine.event_bus.wait_for(EventType.NODE_RUNNING, node_id=chat, timeout=2.0)
        engine.update_config(chat, model="bigger-model", system_prompt="new")
        await engine.wait_for_run(run_id, timeout=2.0)

        call = mock_adapter.calls_for("B")[0]
        assert call["model"] == "mock-model"
        assert call["messages"][0]["role"] == "user"

        node = engine.get_node(chat)
        assert node.config.model == "bigger-model"
        assert node.output == "abc"

    @pytest.mark.asyncio
    async def test_message_appended_during_run_is_kept(self, engine, mock_adapter):
        mock_adapter.responses["B"] = MockResponse(fragments=["a", "b"], delay=0.05)
        chat = add_chat(engine, "B")

        run_id = await engine.send_message(chat, "first")
        await engine.event_bus.wait_for(EventType.NODE_RUNNING, node_id=chat, timeout=2.0)
        engine.store.append_message(chat, "user", "typed while running")
        await engine.wait_for_run(run_id, timeout=2.0)

        assert [m["content"] for m in mock_adapter.calls_for("B")[0]["messages"]] == ["first"]
        contents = [m.content for m in engine.get_node(chat).conversation]
        assert contents == ["first", "ab", "typed while running"]

    @pytest.mark.asyncio
    async def test_node_deleted_during_run(self, engine, mock_adapter):
        mock_adapter.responses["B"] = MockResponse(fragments=["x", "y"], delay=0.02)
        chat = add_chat(engine, "B")
        engine.store.append_message(chat, "user", "go")

        run_id = await engine.trigger_run()
        await engine.event_bus.wait_for(EventType.NODE_RUNNING, node_id=chat, timeout=2.0)
        engine.delete_node(chat)
        result = await engine.wait_for_run(run_id, timeout=2.0)

        assert result.states[chat] == RunNodeState.SUCCEEDED
        assert not engine.store.has_node(chat)


class TestConcurrentRuns:
    @pytest.mark.asyncio
    async def test_overlapping_run_rejected(self, engine, mock_adapter):
        mock_adapter.responses["B"] = MockResponse(stall=True)
        chat = add_chat(engine, "B")
        other = add_chat(engine, "Other")
        engine.store.append_message(chat, "user", "go")
        engine.store.append_message(other, "user", "go")

        run_id = await engine.trigger_run(chat)
        with pytest.raises(RunConflictError):
            await engine.trigger_run()

        other_run = await engine.trigger_run(other)
        assert (await engine.wait_for_run(other_run, timeout=2.0)).success

        engine.cancel_run(run_id)
        assert (await engine.wait_for_run(run_id, timeout=2.0)).status == RunStatus.CANCELLED


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_runs_only_that_node(self, engine, mock_adapter):
        chat = add_chat(engine, "B")
        downstream = add_chat(engine, "C")
        engine.connect(chat, downstream)

        result = await engine.wait_for_run(await engine.send_message(chat, "Hi there"), timeout=2.0)

        assert list(result.states) == [chat]
        assert mock_adapter.calls_for("C") == []
        assert engine.get_node(downstream).status == NodeStatus.IDLE

    @pytest.mark.asyncio
    async def test_rejected_send_leaves_conversation_untouched(self, engine, mock_adapter):
        mock_adapter.responses["B"] = MockResponse(stall=True)
        chat = add_chat(engine, "B")

        run_id = await engine.send_message(chat, "first")
        await engine.event_bus.wait_for(EventType.NODE_RUNNING, node_id=chat, timeout=2.0)
        version = engine.graph_version
        with pytest.raises(RunConflictError):
            await engine.send_message(chat, "second")

        assert engine.graph_version == version
        assert [m.content for m in engine.get_node(chat).conversation] == ["first"]

        engine.cancel_run(run_id)
        await engine.wait_for_run(run_id, timeout=2.0)
        assert [m.content for m in engine.get_node(chat).conversation] == ["first"]

    @pytest.mark.asyncio
    async def test_conversation_continues(self, engine, mock_adapter):
        chat = add_chat(engine, "B")
        await engine.wait_for_run(await engine.send_message(chat, "one"), timeout=2.0)
        await engine.wait_for_run(await engine.send_message(chat, "two"), timeout=2.0)

        contents = [m["content"] for m in mock_adapter.calls_for("B")[1]["messages"]]
        assert contents == ["one", "one", "two"]
        assert len(engine.get_node(chat).conversation) == 4


class TestCancelRun:
    @pytest.mark.asyncio
    async def test_cancel_flushes_cancelled_status(self, engine, mock_adapter):
        mock_adapter.responses["B"] = MockResponse(fragments=["x"] * 100, delay=0.01)
        prompt = engine.create_node(NodeKind.PROMPT, text="go")
        chat = add_chat(engine, "B")
        after = add_chat(engine, "C")
        engine.connect(prompt, chat)
        engine.connect(chat, after)

        run_id = await engine.trigger_run()
        await engine.event_bus.wait_for(EventType.NODE_FRAGMENT, node_id=chat, timeout=2.0)
        assert engine.cancel_run(run_id) is True
        result = await engine.wait_for_run(run_id, timeout=2.0)

        assert result.status == RunStatus.CANCELLED
        assert engine.get_node(prompt).status == NodeStatus.SUCCEEDED
        assert engine.get_node(chat).status == NodeStatus.CANCELLED
        assert engine.get_node(chat).output is None
        assert engine.get_node(after).status == NodeStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_finished_run(self, engine):
        engine.create_node(NodeKind.PROMPT, text="x")
        run_id = await engine.trigger_run()
        await engine.wait_for_run(run_id, timeout=2.0)
        assert engine.cancel_run(run_id) is False

    def test_cancel_unknown_run(self, engine):
        with pytest.raises(RunNotFoundError):
            engine.cancel_run("run_missing")

    @pytest.mark.asyncio
    async def test_wait_timeout(self, engine, mock_adapter):
        mock_adapter.responses["B"] = MockResponse(stall=True)
        chat = add_chat(engine, "B")
        engine.store.append_message(chat, "user", "go")

        run_id = await engine.trigger_run()
        assert await engine.wait_for_run(run_id, timeout=0.05) is None
        assert engine.get_run(run_id) is not None

        await engine.shutdown()
        assert engine.get_result(run_id).status == RunStatus.CANCELLED
        assert engine.get_node(chat).status == NodeStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_wait_for_unknown_run(self, engine):
        with pytest.raises(RunNotFoundError):
            await engine.wait_for_run("run_missing")


class TestFiles:
    @pytest.mark.asyncio
    async def test_import_run_export(self, engine, tmp_path):
        source = tmp_path / "notes.md"
        source.write_text("# Notes\n\nShip it.", encoding="utf-8")

        prompt = engine.import_file(source)
        assert engine.get_node(prompt).config.title == "notes.md"
        chat = add_chat(engine, "B")
        engine.connect(prompt, chat)
        await engine.wait_for_run(await engine.trigger_run(), timeout=2.0)

        txt = engine.export_node(chat, tmp_path / "out" / "reply.txt")
        assert txt.read_text(encoding="utf-8") == "# Notes\n\nShip it."

        md = engine.export_node(chat, tmp_path / "out" / "reply.md")
        content = md.read_text(encoding="utf-8")
        assert content.startswith("## User\n\n# Notes")
        assert "## Assistant" in content

    def test_unsupported_import(self, engine, tmp_path):
        path = tmp_path / "data.pdf"
        path.write_bytes(b"%PDF")
        with pytest.raises(UnsupportedFileTypeError):
            engine.import_file(path)


@pytest.mark.asyncio
async def test_subscribe_by_run(engine):
    engine.create_node(NodeKind.PROMPT, text="x")
    run_id = await engine.trigger_run()
    subscription = engine.subscribe(run_id=run_id)
    types = []
    async for event in subscription:
        types.append(event.type)
        if event.type == EventType.RUN_FINISHED:
            break
    assert types[0] == EventType.RUN_STARTED
    await asyncio.wait_for(engine.wait_for_run(run_id), timeout=2.0)
