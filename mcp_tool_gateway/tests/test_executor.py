import asyncio

from aiohttp import web
from aiohttp import test_utils

from mcp_tool_gateway.catalog import ToolDefinition
from mcp_tool_gateway.executor import (
    CallableToolExecutor,
    CompositeToolExecutor,
    ConfirmationPolicy,
    ExecutionContext,
    InteractionDisabledError,
    RemoteToolExecutor,
)

DEFINITION = ToolDefinition(name="remote_tool")


def run_executor(executor, tool_name, arguments=None, confirmation=None):
    async def call():
        with ExecutionContext(tool_name) as context:
            try:
                return await executor.execute(
                    tool_name, arguments or {}, confirmation or ConfirmationPolicy(), DEFINITION, context
                )
            finally:
                await executor.close()

    return asyncio.run(call())


def backend(handler):
    """aiohttp app exposing a single POST /mcp endpoint."""
    app = web.Application()
    app.router.add_post("/mcp", handler)
    return app


def run_against(handler, tool_name, arguments=None, confirmation=None):
    received = []

    async def recording(request):
        received.append(await request.json())
        return await handler(request)

    async def call():
        async with test_utils.TestServer(backend(recording)) as server:
            executor = RemoteToolExecutor(str(server.make_url("/mcp")), timeout_seconds=5)
            try:
                with ExecutionContext(tool_name) as context:
                    return await executor.execute(
                        tool_name, arguments or {}, confirmation or ConfirmationPolicy(), DEFINITION, context
                    )
            finally:
                await executor.close()

    return asyncio.run(call()), received


def test_context_refuses_prompts():
    context = ExecutionContext("t")
    assert context.input_stream.read() == ""

    try:
        context.prompt("Continue?")
    except InteractionDisabledError as e:
        assert "t" in str(e)
    else:
        raise AssertionError("prompt should raise")

    context.close()
    assert context.closed


def test_callable_executor_unknown_handler():
    outcome = run_executor(CallableToolExecutor(), "missing")
    assert outcome.command_exposed is False
    assert "No handler" in outcome.reason


def test_callable_executor_passes_context_when_accepted():
    seen = {}

    def handler(value, context):
        seen["interactive"] = context.interactive
        return value * 2

    outcome = run_executor(CallableToolExecutor({"double": handler}), "double", {"value": 21})

    assert outcome.output == 42
    assert seen["interactive"] is False


def test_callable_executor_awaits_coroutines():
    async def handler():
        return "async result"

    outcome = run_executor(CallableToolExecutor({"coro": handler}), "coro")
    assert outcome.output == "async result"


def test_remote_success_returns_text_content():
    async def handler(request):
        body = await request.json()
        return web.json_response({
            "jsonrpc": "2.0",
            "id": body["id"],
            "result": {"content": [{"type": "text", "text": "line 1"}, {"type": "text", "text": "line 2"}]}
        })

    outcome, received = run_against(handler, "remote_tool", {"q": "x"}, ConfirmationPolicy(requires_confirmation=True))

    assert outcome.command_exposed is True
    assert outcome.success is True
    assert outcome.output == "line 1\nline 2"

    request = received[0]
    assert request["method"] == "tools/call"
    assert request["params"]["name"] == "remote_tool"
    assert request["params"]["arguments"] == {"q": "x"}
    assert request["params"]["_meta"] == {"requiresConfirmation": True}


def test_remote_prefers_structured_content():
    async def handler(request):
        return web.json_response({
            "jsonrpc": "2.0", "id": "1",
            "result": {"content": [{"type": "text", "text": "ignored"}], "structuredContent": {"rows": [1, 2]}}
        })

    outcome, _ = run_against(handler, "remote_tool")
    assert outcome.output == {"rows": [1, 2]}


def test_remote_tool_error_flag():
    async def handler(request):
        return web.json_response({
            "jsonrpc": "2.0", "id": "1",
            "result": {"content": [{"type": "text", "text": "quota exceeded"}], "isError": True}
        })

    outcome, _ = run_against(handler, "remote_tool")

    assert outcome.command_exposed is True
    assert outcome.success is False
    assert outcome.error == "quota exceeded"


def test_remote_jsonrpc_error_means_not_exposed():
    async def handler(request):
        return web.json_response({
            "jsonrpc": "2.0", "id": "1",
            "error": {"code": -32601, "message": "Tool not found: remote_tool"}
        })

    outcome, _ = run_against(handler, "remote_tool")

    assert outcome.command_exposed is False
    assert outcome.error == "Tool not found: remote_tool"
    assert "-32601" in outcome.reason


def test_remote_http_failure():
    async def handler(request):
        return web.Response(status=502, text="bad gateway")

    outcome, _ = run_against(handler, "remote_tool")

    assert outcome.success is False
    assert outcome.error == "Upstream server error: 502"


def test_composite_prefers_local_handler():
    async def handler(request):
        return web.json_response({
            "jsonrpc": "2.0", "id": "1",
            "result": {"content": [{"type": "text", "text": "from remote"}]}
        })

    async def call():
        async with test_utils.TestServer(backend(handler)) as server:
            composite = CompositeToolExecutor(
                CallableToolExecutor({"local_tool": lambda: "from local"}),
                RemoteToolExecutor(str(server.make_url("/mcp")), timeout_seconds=5),
            )
            try:
                with ExecutionContext("x") as context:
                    local = await composite.execute("local_tool", {}, ConfirmationPolicy(), DEFINITION, context)
                    remote = await composite.execute("remote_tool", {}, ConfirmationPolicy(), DEFINITION, context)
            finally:
                await composite.close()
            return local, remote

    local, remote = asyncio.run(call())

    assert local.output == "from local"
    assert remote.output == "from remote"


def test_composite_without_remote_uses_local():
    composite = CompositeToolExecutor(CallableToolExecutor())

    assert composite.handles("anything") is False
    outcome = run_executor(composite, "anything")
    assert outcome.command_exposed is False
