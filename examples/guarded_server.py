"""Example paid API that enforces policies inside its own route handlers."""

import uvicorn
from fastapi import FastAPI, HTTPException, Request

from x402guard.exceptions import PolicyDenied
from x402guard.guard import Guard
from x402guard.policy import load_policy

guard = Guard(load_policy("examples/policy.yaml"))
app = FastAPI()


@guard.protect
async def ai_query(prompt: str) -> dict[str, str]:
    return {"answer": f"echo: {prompt}"}


@app.post("/api/ai-query")
async def ai_query_route(request: Request, prompt: str) -> dict[str, str]:
    engine_request = guard.request_from_headers(
        request.headers,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )
    try:
        return await ai_query(prompt, _x402_request=engine_request)
    except PolicyDenied as exc:
        raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc


if __name__ == "__main__":
    print("Guarded API running on http://localhost:8766 (policy enforced)")
    uvicorn.run(app, host="localhost", port=8766)
