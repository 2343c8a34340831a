"""Tests for the operation sequencer - method names, params and decoding."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from langclient.correlation import CorrelationEngine
from langclient.errors import MalformedMessageError, ProtocolError
from langclient.protocol.lsp import DEFAULT_CLIENT_CAPABILITIES, CompletionItem
from langclient.protocol.messages import JsonRpcError, JsonRpcRequest
from langclient.sequencer import OperationSequencer, decode_completions, new_progress_token


@pytest_asyncio.fixture
async def sequencer(memory_pair, stub_peer):
    client_end, _ = memory_pair
    await client_end.open()
    engine = CorrelationEngine(client_end)
    engine.start()
    yield OperationSequencer(engine)
    await engine.shutdown()


# =============================================================================
# Helpers
# =============================================================================


class TestDecodeCompletions:
    """Completion results come in three shapes."""

    def test_completion_list(self) -> None:
        items = decode_completions({"isIncomplete": True, "items": [{"label": "Println", "kind": 3}]})
        assert [i.label for i in items] == ["Println"]
        assert items[0].kind == 3

    def test_bare_array(self) -> None:
        items = decode_completions([{"label": "a"}, {"label": "b", "insertText": "b()"}])
        assert [i.label for i in items] == ["a", "b"]
        assert items[1].insertText == "b()"

    def test_null(self) -> None:
        assert decode_completions(None) == []

    def test_unknown_fields_preserved(self) -> None:
        item = decode_completions([{"label": "x", "data": {"pkg": "fmt"}}])[0]
        assert item.model_dump()["data"] == {"pkg": "fmt"}

    @pytest.mark.parametrize("result", ["Println", {"items": "Println"}, [{"kind": 3}]])
    def test_malformed(self, result) -> None:
        with pytest.raises(MalformedMessageError, match="Malformed textDocument/completion result"):
            decode_completions(result)


def test_progress_tokens_are_fresh() -> None:
    tokens = {new_progress_token() for _ in range(100)}
    assert len(tokens) == 100


# =============================================================================
# Handshake
# =============================================================================


class TestHandshake:
    """Tests for initialize / initialized ordering and params."""

    @pytest.mark.asyncio
    async def test_initialize_then_initialized(self, sequencer, stub_peer) -> None:
        result = await sequencer.handshake("client", "1.2", "test", "file:///home/user/test/")
        await stub_peer.wait_for(lambda: "initialized" in stub_peer.methods())

        assert stub_peer.methods() == ["initialize", "initialized"]
        assert result.serverInfo is not None
        assert result.serverInfo.name == "stub-server"
        assert "completionProvider" in result.capabilities

    @pytest.mark.asyncio
    async def test_initialize_params(self, sequencer, stub_peer) -> None:
        await sequencer.handshake("client", "1.2", "test", "file:///home/user/test/")

        params = stub_peer.messages("initialize")[0].params
        assert params["clientInfo"] == {"name": "client", "version": "1.2"}
        assert params["rootUri"] == "file:///home/user/test/"
        assert params["workspaceFolders"] == [{"name": "test", "uri": "file:///home/user/test/"}]
        assert params["capabilities"] == DEFAULT_CLIENT_CAPABILITIES
        assert isinstance(params["processId"], int)

    @pytest.mark.asyncio
    async def test_initialize_failure_sends_nothing_else(self, sequencer, stub_peer) -> None:
        stub_peer.handlers["initialize"] = lambda params: JsonRpcError(code=-32603, message="no workspace")

        with pytest.raises(ProtocolError, match="no workspace"):
            await sequencer.handshake("client", "1.2", "test", "file:///ws/")
        await asyncio.sleep(0.01)

        assert stub_peer.methods() == ["initialize"]


# =============================================================================
# Documents
# =============================================================================


class TestDocuments:
    """Document notifications carry the caller's full payload."""

    @pytest.mark.asyncio
    async def test_open(self, sequencer, stub_peer) -> None:
        await sequencer.open_document("file:///ws/main.go", "go", "package main\n")
        await stub_peer.wait_for(lambda: stub_peer.messages("textDocument/didOpen"))

        params = stub_peer.messages("textDocument/didOpen")[0].params
        assert params == {
            "textDocument": {
                "uri": "file:///ws/main.go",
                "languageId": "go",
                "version": 0,
                "text": "package main\n",
            }
        }

    @pytest.mark.asyncio
    async def test_change_sends_full_text(self, sequencer, stub_peer) -> None:
        await sequencer.change_document("file:///ws/main.go", 3, "package main\n\nfunc main() {}\n")
        await stub_peer.wait_for(lambda: stub_peer.messages("textDocument/didChange"))

        params = stub_peer.messages("textDocument/didChange")[0].params
        assert params["textDocument"] == {"uri": "file:///ws/main.go", "version": 3}
        assert params["contentChanges"] == [{"text": "package main\n\nfunc main() {}\n"}]

    @pytest.mark.asyncio
    async def test_save_includes_text(self, sequencer, stub_peer) -> None:
        await sequencer.save_document("file:///ws/go.mod", "module demo\n")
        await stub_peer.wait_for(lambda: stub_peer.messages("textDocument/didSave"))

        params = stub_peer.messages("textDocument/didSave")[0].params
        assert params == {"textDocument": {"uri": "file:///ws/go.mod"}, "text": "module demo\n"}

    @pytest.mark.asyncio
    async def test_close(self, sequencer, stub_peer) -> None:
        await sequencer.close_document("file:///ws/main.go")
        await stub_peer.wait_for(lambda: stub_peer.messages("textDocument/didClose"))

        assert stub_peer.messages("textDocument/didClose")[0].params == {
            "textDocument": {"uri": "file:///ws/main.go"}
        }

    @pytest.mark.asyncio
    async def test_document_operations_are_notifications(self, sequencer, stub_peer) -> None:
        await sequencer.open_document("file:///ws/a.go", "go", "")
        await sequencer.close_document("file:///ws/a.go")
        await stub_peer.wait_for(lambda: len(stub_peer.received) == 2)

        assert not any(isinstance(m, JsonRpcRequest) for m in stub_peer.received)


# =============================================================================
# Commands and queries
# =============================================================================


class TestCommandsAndQueries:
    @pytest.mark.asyncio
    async def test_execute_command_arguments_are_opaque(self, sequencer, stub_peer) -> None:
        arguments = [{"URIs": ["file:///ws/go.mod"]}, 3, None, "x"]
        result = await sequencer.execute_command("gopls.tidy", arguments)

        assert result == {"command": "gopls.tidy", "arguments": arguments}
        params = stub_peer.messages("workspace/executeCommand")[0].params
        assert params["arguments"] == arguments
        assert isinstance(params["workDoneToken"], str)

    @pytest.mark.asyncio
    async def test_execute_command_mapping_argument(self, sequencer, stub_peer) -> None:
        """A single mapping is sent as the one and only argument."""
        stub_peer.handlers["workspace/executeCommand"] = lambda params: params["arguments"][0]

        payload = {"URI": "file:///ws/go.mod", "Dir": "file:///ws"}
        assert await sequencer.execute_command("gopls.generate", payload) == payload

    @pytest.mark.asyncio
    async def test_each_call_gets_a_fresh_progress_token(self, sequencer, stub_peer) -> None:
        await sequencer.execute_command("stub.echo")
        await sequencer.completion("file:///ws/main.go", 0, 0)

        tokens = [
            stub_peer.messages("workspace/executeCommand")[0].params["workDoneToken"],
            stub_peer.messages("textDocument/completion")[0].params["workDoneToken"],
        ]
        assert tokens[0] != tokens[1]

    @pytest.mark.asyncio
    async def test_completion(self, sequencer, stub_peer) -> None:
        items = await sequencer.completion("file:///ws/main.go", 7, 5)

        assert all(isinstance(item, CompletionItem) for item in items)
        assert [item.label for item in items] == ["Println", "Printf"]
        params = stub_peer.messages("textDocument/completion")[0].params
        assert params["textDocument"] == {"uri": "file:///ws/main.go"}
        assert params["position"] == {"line": 7, "character": 5}

    @pytest.mark.asyncio
    async def test_completion_rejects_negative_position(self, sequencer) -> None:
        with pytest.raises(ValueError):
            await sequencer.completion("file:///ws/main.go", -1, 0)

    @pytest.mark.asyncio
    async def test_hover(self, sequencer, stub_peer) -> None:
        hover = await sequencer.hover("file:///ws/main.go", 5, 6)

        assert hover is not None
        assert hover.contents == {"kind": "plaintext", "value": "func main()"}

    @pytest.mark.asyncio
    async def test_hover_null(self, sequencer, stub_peer) -> None:
        stub_peer.handlers["textDocument/hover"] = lambda params: None
        assert await sequencer.hover("file:///ws/main.go", 0, 0) is None

    @pytest.mark.asyncio
    async def test_shutdown_then_exit(self, sequencer, stub_peer) -> None:
        await sequencer.shutdown_server(timeout=1.0)
        await stub_peer.wait_for(lambda: "exit" in stub_peer.methods())

        assert stub_peer.methods() == ["shutdown", "exit"]
        assert isinstance(stub_peer.messages("shutdown")[0], JsonRpcRequest)
