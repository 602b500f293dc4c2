"""
Minimal stdio MCP server used by the test suite.

Speaks newline-delimited JSON-RPC on stdin/stdout. Behaviour can be
changed with MCP_TEST_MODE:

    hang          never answer tools/call
    crash         exit as soon as tools/call arrives
    linger        ignore stdin EOF and keep running until killed
    bad-result    answer tools/call with a JSON string instead of an object
    list-result   answer tools/call with a JSON array
    bad-content   answer tools/call with a content object instead of a list
    bad-tools     answer tools/list with a tools object instead of a list
"""

import json
import os
import sys
import time

MODE = os.environ.get("MCP_TEST_MODE", "")

TOOLS = [
    {
        "name": "add",
        "description": "Calculate the addition of two numbers",
        "inputSchema": {
            "type": "object",
            "properties": {
                "a": {"type": "number", "description": "the left hand side number"},
                "b": {"type": "number"},
            },
            "required": ["a", "b"],
        },
    },
    {
        "name": "sub",
        "description": "Calculate the subtraction of two numbers",
        "inputSchema": {
            "type": "object",
            "properties": {
                "a": {"type": "number", "description": "the left hand side number"},
                "b": {"type": "number", "description": "the right hand side number"},
            },
            "required": ["a", "b"],
        },
    },
    {"name": "empty", "description": "Returns no content", "inputSchema": {"type": "object"}},
    {"name": "image", "description": "Returns an image block", "inputSchema": {"type": "object"}},
    {"name": "fail", "description": "Always reports an error", "inputSchema": {"type": "object"}},
    {"name": "pid", "description": "Returns the server's process id", "inputSchema": {"type": "object"}},
]


def send(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def text(value):
    return {"content": [{"type": "text", "text": str(value)}]}


def call_tool(name, args):
    if name == "add":
        return text(args["a"] + args["b"])
    if name == "sub":
        return text(args["a"] - args["b"])
    if name == "empty":
        return {"content": []}
    if name == "image":
        return {"content": [{"type": "image", "data": "iVBORw0KGgo=", "mimeType": "image/png"}]}
    if name == "fail":
        return {"content": [{"type": "text", "text": "boom"}], "isError": True}
    if name == "pid":
        return text(os.getpid())
    return None


def handle(request):
    method = request.get("method")
    params = request.get("params") or {}

    if method == "initialize":
        return {
            "protocolVersion": params.get("protocolVersion", "2024-11-05"),
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "test-calculator", "version": "0.0.1"},
            "instructions": "A simple calculator",
        }
    if method == "tools/list":
        if MODE == "bad-tools":
            return {"tools": {"add": TOOLS[0]}}
        # two pages to exercise cursors
        if params.get("cursor") == "page-2":
            return {"tools": TOOLS[2:]}
        return {"tools": TOOLS[:2], "nextCursor": "page-2"}
    if method == "tools/call":
        if MODE == "hang":
            time.sleep(60)
        if MODE == "crash":
            sys.exit(3)
        if MODE == "bad-result":
            return "oops"
        if MODE == "list-result":
            return [1]
        if MODE == "bad-content":
            return {"content": {"type": "text", "text": "42"}}
        result = call_tool(params.get("name"), params.get("arguments") or {})
        if result is None:
            raise LookupError(f"Unknown tool: {params.get('name')}")
        return result
    raise NotImplementedError(method)


def main():
    sys.stderr.write("test-calculator starting\n")
    sys.stderr.flush()
    # stray non-protocol output the client must skip
    sys.stdout.write("booting...\n")
    sys.stdout.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        request = json.loads(line)
        if "id" not in request:
            continue  # notification
        try:
            send({"jsonrpc": "2.0", "id": request["id"], "result": handle(request)})
        except LookupError as exc:
            send({"jsonrpc": "2.0", "id": request["id"], "error": {"code": -32602, "message": str(exc)}})
        except NotImplementedError as exc:
            send({"jsonrpc": "2.0", "id": request["id"], "error": {"code": -32601, "message": f"Method not found: {exc}"}})

    if MODE == "linger":
        while True:
            time.sleep(1)


if __name__ == "__main__":
    main()
