"""Enforcement gateway app and CLI entry points."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request as HttpRequest
from fastapi.responses import JSONResponse, Response

from .codegen import Framework, generate
from .engine import evaluate
from .exceptions import CodegenError, ParseError
from .guard import Guard
from .amounts import parse_amount
from .policy import PolicySet, load_policy
from .state import LocalStateStore
from .types import Request, Severity, ValidationReport
from .validator import validate

UNGUARDED_PATHS = frozenset({"/healthz", "/metrics"})


def create_app(guard: Guard) -> FastAPI:
    app = FastAPI()

    @app.middleware("http")
    async def enforce_policies(request: HttpRequest, call_next: Callable[[HttpRequest], Awaitable[Response]]) -> Response:
        if request.url.path in UNGUARDED_PATHS:
            return await call_next(request)
        try:
            engine_request = guard.request_from_headers(
                request.headers,
                path=request.url.path,
                client_host=request.client.host if request.client else None,
            )
            decision = guard.check(engine_request)
        except Exception:
            guard.record_error()
            raise
        if decision.allowed:
            return await call_next(request)
        status = guard.status_for(decision)
        body: dict[str, Any] = {"error": decision.reason, "rule": decision.matched_rule_index}
        headers: dict[str, str] = {}
        if status == 402:
            body["pricing"] = guard.policy_set.pricing.model_dump(mode="json")
        retry_after = guard.retry_after(engine_request, decision)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        return JSONResponse(body, status_code=status, headers=headers)

    @app.get("/healthz")
    async def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/metrics")
    async def metrics() -> dict[str, Any]:
        return {**guard.metrics.to_dict(), "policy_fingerprint": guard.fingerprint}

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def admitted(path: str) -> dict[str, Any]:
        return {"status": "allowed", "path": f"/{path}"}

    return app


async def run_server(args: argparse.Namespace) -> None:
    guard = Guard(load_policy(args.policy))
    app = create_app(guard)
    config = uvicorn.Config(app, host=args.host, port=args.port, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()


def print_report(report: ValidationReport) -> None:
    labels = {Severity.ERROR: "ERROR", Severity.WARNING: "WARNING", Severity.INFO: "INFO"}
    for issue in report.issues:
        print(f"{labels[issue.severity]}: {issue.message}")
        if issue.details:
            for line in issue.details.splitlines():
                print(f"   {line}")
        if issue.policy_indices:
            print("   Policies:", ", ".join(f"#{index}" for index in issue.policy_indices))
        if issue.suggestion:
            print(f"   Suggestion: {issue.suggestion}")
    errors, warnings, infos = report.counts()
    print(f"{errors} error(s), {warnings} warning(s), {infos} info")


def run_validate(args: argparse.Namespace) -> int:
    policy_set = load_policy(args.policy)
    report = validate(policy_set)
    print_report(report)
    return 0 if report.is_valid else 1


def run_generate(args: argparse.Namespace) -> int:
    policy_set = load_policy(args.policy)
    report = validate(policy_set)
    if not report.is_valid:
        print("Cannot generate code from an invalid policy file", file=sys.stderr)
        print_report(report)
        return 1
    code = generate(
        policy_set,
        args.framework,
        source_name=Path(args.policy).name,
        generated_at=datetime.now(timezone.utc).replace(microsecond=0),
    )
    if args.output:
        Path(args.output).write_text(code, encoding="utf-8")
        print(f"Generated {args.framework} middleware: {args.output} ({len(code.splitlines())} lines)")
    else:
        print(code, end="")
    return 0


def run_check(args: argparse.Namespace) -> int:
    policy_set: PolicySet = load_policy(args.policy)
    request = Request(
        resource_path=args.path,
        timestamp=time.time(),
        agent_id=args.agent_id,
        wallet_address=args.wallet_address,
        ip_address=args.ip,
        amount=parse_amount(args.amount),
    )
    decision = evaluate(policy_set, request, LocalStateStore())
    if decision.allowed:
        print("ALLOW")
    else:
        print(f"DENY: {decision.reason} (policy #{decision.matched_rule_index})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="x402guard", description="x402 policy engine CLI")
    sub = parser.add_subparsers(dest="command")

    validate_cmd = sub.add_parser("validate", help="Check a policy file for errors and conflicts")
    validate_cmd.add_argument("policy")

    generate_cmd = sub.add_parser("generate", help="Generate middleware from a policy file")
    generate_cmd.add_argument("policy")
    generate_cmd.add_argument("--framework", "-f", required=True, choices=[f.value for f in Framework])
    generate_cmd.add_argument("--output", "-o")

    check_cmd = sub.add_parser("check", help="Evaluate a single request against a policy file")
    check_cmd.add_argument("policy")
    check_cmd.add_argument("--agent-id")
    check_cmd.add_argument("--wallet-address")
    check_cmd.add_argument("--ip")
    check_cmd.add_argument("--amount")
    check_cmd.add_argument("--path", default="/")

    serve_cmd = sub.add_parser("serve", help="Run the enforcement gateway")
    serve_cmd.add_argument("policy")
    serve_cmd.add_argument("--host", default="127.0.0.1")
    serve_cmd.add_argument("--port", type=int, default=8402)

    return parser


def cli_main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    commands = {"validate": run_validate, "generate": run_generate, "check": run_check}
    try:
        if args.command == "serve":
            asyncio.run(run_server(args))
            return 0
        if args.command in commands:
            return commands[args.command](args)
    except (ParseError, CodegenError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    parser.print_help()
    return 0
