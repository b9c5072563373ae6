"""Minimal stdio MCP server used by the end-to-end tests.

Tools:
- echo: returns {"content": [{"type": "text", "text": <text>}]}
- sleep: answers after `seconds`
- exit: terminates the process without answering
"""

import json
import os
import sys
import threading
import time

_write_lock = threading.Lock()

TOOLS = [
    {
        "name": "echo",
        "description": "Echo the input text",
        "inputSchema": {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    },
    {
        "name": "sleep",
        "description": "Answer after a delay",
        "inputSchema": {"type": "object", "properties": {"seconds": {"type": "number"}}},
    },
    {
        "name": "exit",
        "description": "Exit the server process",
        "inputSchema": {"type": "object"},
    },
]


def send(message):
    line = json.dumps(message) + "\n"
    with _write_lock:
        sys.stdout.write(line)
        sys.stdout.flush()


def reply(request_id, result=None, error=None):
    message = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    send(message)


def call_tool(request_id, params):
    name = params.get("name")
    arguments = params.get("arguments") or {}
    if name == "echo":
        reply(request_id, {"content": [{"type": "text", "text": arguments.get("text", "")}]})
    elif name == "sleep":
        time.sleep(float(arguments.get("seconds", 1)))
        reply(request_id, {"content": [{"type": "text", "text": "slept"}]})
    elif name == "exit":
        sys.stderr.write("exiting on request\n")
        sys.stderr.flush()
        os._exit(3)
    else:
        reply(request_id, error={"code": -32602, "message": f"Unknown tool: {name}"})


def handle(message):
    method = message.get("method")
    request_id = message.get("id")
    if request_id is None:
        return
    if method == "initialize":
        reply(
            request_id,
            {
                "protocolVersion": "2025-06-18",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "echo-server", "version": "1.0.0"},
            },
        )
    elif method == "tools/list":
        reply(request_id, {"tools": TOOLS})
    elif method == "tools/call":
        threading.Thread(target=call_tool, args=(request_id, message.get("params") or {}), daemon=True).start()
    elif method == "ping":
        reply(request_id, {})
    else:
        reply(request_id, error={"code": -32601, "message": f"Method not found: {method}"})


def main():
    sys.stderr.write("echo server started\n")
    sys.stderr.flush()
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        handle(json.loads(line))


if __name__ == "__main__":
    main()
