"""Minimal agent walkthrough against a locally launched ``resume-mcp serve-http``.

It demonstrates:

1. Reading the discovery document to find the endpoint and the gated tools.
2. Hitting a gated tool and receiving the access-required payload.
3. Unlocking access with ``leave_message`` (or, with ``--token``, an Agent Token).
4. Calling the gated tool again in one batch with a free tool.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

import httpx

from resume_mcp.tokens import encode_agent_token_v0


def _call(request_id: int, tool: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": tool, "arguments": arguments or {}},
    }


def _text(response: dict[str, Any]) -> Any:
    return json.loads(response["result"]["content"][0]["text"])


async def main(base_url: str, use_token: bool) -> None:
    headers = {"User-Agent": "client-bootstrap/1.0"}
    if use_token:
        headers["Agent-Token"] = encode_agent_token_v0("bootstrap-1", "Evaluate candidate for a role", "read")

    async with httpx.AsyncClient(base_url=base_url, headers=headers, timeout=10) as client:
        discovery = (await client.get("/.well-known/mcp.json")).json()
        endpoint = discovery["endpoint"]
        print(f"==> Endpoint {endpoint}; gated tools: {', '.join(discovery['access']['gated'])}")

        first = (await client.post(endpoint, json=_call(1, "get_experience"))).json()
        if first["result"].get("isError"):
            print(f"==> Denied: {_text(first)['hint']}")
            intro = (
                await client.post(
                    endpoint,
                    json=_call(2, "leave_message", {"name": "bootstrap", "message": "Saying hello"}),
                )
            ).json()
            print(f"==> {_text(intro)['message']}")

        batch = [_call(3, "get_experience", {"current_only": True}), _call(4, "get_skills", {"category": "languages"})]
        for reply in (await client.post(endpoint, json=batch)).json():
            print(f"--- id={reply['id']}")
            print(json.dumps(_text(reply), indent=2))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default="http://127.0.0.1:8787")
    parser.add_argument("--token", action="store_true", help="Present an Agent Token instead of leaving a message")
    args = parser.parse_args()
    asyncio.run(main(args.url, args.token))
