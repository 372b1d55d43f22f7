"""MCP Server for secret purge and branch reconstruction."""

import asyncio
import json
import logging
from dataclasses import replace
from functools import wraps
from typing import Any, Callable

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .adapter import GitRepository
from .classifier import BranchDecision
from .config import get_config
from .errors import SecretPurgeError
from .notify import SlackNotifier
from .orchestrator import CleanResult, Orchestrator, ReconstructionReport
from .reconstructor import ReconstructionResult
from .rewriter import FilterResult
from .tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

server = Server("git-secret-purge-mcp")


def filter_result_to_dict(result: FilterResult) -> dict:
    """FilterResult -> dict"""
    return {
        "success": result.success, "message": result.message,
        "commits_processed": result.commits_processed, "commits_rewritten": result.commits_rewritten,
        "dry_run": result.dry_run, "error": result.error,
    }


def decision_to_dict(decision: BranchDecision) -> dict:
    d = {"branch": decision.branch, "needs_reconstruction": decision.needs_reconstruction}
    if decision.record is not None:
        d["record"] = decision.record.model_dump(by_alias=True)
    if decision.reason is not None:
        d["reason"] = decision.reason.value
    if decision.detail:
        d["detail"] = decision.detail
    return d


def clean_result_to_dict(result: CleanResult) -> dict:
    return {
        "repo": result.repo_name, "success": result.success, "dry_run": result.dry_run,
        "branches": sorted(result.branches), "metadata_path": result.metadata_path,
        "backup_path": result.backup_path, "commits_rewritten": result.commits_rewritten,
        "remaining_secrets": result.remaining_secrets, "pushed": result.pushed, "error": result.error,
    }


def reconstruction_result_to_dict(result: ReconstructionResult) -> dict:
    d = {
        "branch": result.branch, "source_ref": result.source_ref, "success": result.success,
        "replayed": result.replayed, "skipped": result.skipped, "published": result.published,
        "degraded": result.degraded, "leaked_secrets": result.leaked_secrets, "error": result.error,
        "conflicts": [{"commit": c.commit, "detail": c.detail} for c in result.conflicts],
    }
    if result.anchor is not None:
        d["anchor"] = {
            "merge_base": result.anchor.merge_base, "commit": result.anchor.commit,
            "found": result.anchor.found, "ambiguous": result.anchor.ambiguous,
        }
    return d


def reconstruction_report_to_dict(report: ReconstructionReport) -> dict:
    return {
        "repo": report.repo_name, "success": report.success, "skipped": report.skipped,
        "attempted": report.attempted, "succeeded": report.succeeded, "error": report.error,
        "branches": [reconstruction_result_to_dict(r) for r in report.results],
    }


def create_orchestrator() -> Orchestrator:
    return Orchestrator(get_config())


def handle_errors(tool_name: str):
    """Decorator for consistent error handling in tool handlers."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except (SecretPurgeError, ValueError) as e:
                return {"success": False, "error": str(e)}
            except Exception as e:
                logger.exception(f"{tool_name} failed")
                return {"success": False, "error": str(e)}
        return wrapper
    return decorator


async def _notify(send: Callable[[SlackNotifier], Any]) -> None:
    notify = get_config().notify
    if not notify.slack_webhook_url:
        return
    notifier = SlackNotifier(notify.slack_webhook_url, notify.slack_channel)
    try:
        await send(notifier)
    finally:
        await notifier.close()


@handle_errors("classify_branches")
async def classify_branches(args: dict[str, Any]) -> dict:
    orchestrator = create_orchestrator()
    repo = orchestrator.find_repository(args["repo"])
    if args.get("branch_age_days") is not None:
        repo = replace(repo, branch_age_days=args["branch_age_days"])
    decisions = await asyncio.to_thread(orchestrator.classify_repository, repo)
    return {
        "success": True,
        "repo": repo.name,
        "trunk": repo.main_branch,
        "needs_reconstruction": [d.branch for d in decisions if d.needs_reconstruction],
        "branches": [decision_to_dict(d) for d in decisions],
    }


@handle_errors("clean_repository")
async def clean_repository(args: dict[str, Any]) -> dict:
    orchestrator = create_orchestrator()
    dry_run = args.get("dry_run", get_config().server.default_dry_run)
    results = await asyncio.to_thread(
        orchestrator.clean_all, dry_run, args.get("repositories"), args.get("push")
    )
    await _notify(lambda n: n.notify_clean(results))
    return {
        "success": all(r.success for r in results),
        "dry_run": dry_run,
        "repositories": [clean_result_to_dict(r) for r in results],
    }


@handle_errors("reconstruct_branches")
async def reconstruct_branches(args: dict[str, Any]) -> dict:
    orchestrator = create_orchestrator()
    reports = await asyncio.to_thread(orchestrator.reconstruct_all, args.get("repositories"), args.get("push"))
    await _notify(lambda n: n.notify_reconstruction(reports))
    attempted = sum(r.attempted for r in reports)
    succeeded = sum(r.succeeded for r in reports)
    return {
        "success": all(r.success for r in reports),
        "message": f"reconstructed {succeeded}/{attempted} branches",
        "repositories": [reconstruction_report_to_dict(r) for r in reports],
    }


@handle_errors("preview_rewrite")
async def preview_rewrite(args: dict[str, Any]) -> dict:
    orchestrator = create_orchestrator()
    repo = orchestrator.find_repository(args["repo"])
    orchestrator.load_secret_rules(repo)
    result = await asyncio.to_thread(orchestrator.rewriter.preview, repo.path, repo.secrets_file)
    return {"repo": repo.name, **filter_result_to_dict(result)}


@handle_errors("verify_secrets_removed")
async def verify_secrets_removed(args: dict[str, Any]) -> dict:
    orchestrator = create_orchestrator()
    repo = orchestrator.find_repository(args["repo"])
    rules = orchestrator.load_secret_rules(repo)
    remaining = await asyncio.to_thread(orchestrator.rewriter.find_remaining, GitRepository(repo.path), rules)
    return {
        "success": True,
        "repo": repo.name,
        "rules_checked": len(rules),
        "clean": not remaining,
        "remaining": [rule.redacted() for rule in remaining],
    }


@handle_errors("list_run_metadata")
async def list_run_metadata(args: dict[str, Any]) -> dict:
    orchestrator = create_orchestrator()
    names = [args["repo"]] if args.get("repo") else None
    records = {}
    for repo in orchestrator.repositories(names):
        store = orchestrator.store_for(repo)
        entries = []
        for timestamp, path in orchestrator.list_metadata(repo):
            metadata = store.load(path)
            entries.append({
                "timestamp": timestamp, "path": str(path), "dry_run": metadata.dry_run,
                "trunk": metadata.trunk_branch, "branches": sorted(metadata.branches),
                "backup_path": metadata.backup_path,
            })
        records[repo.name] = entries
    return {"success": True, "records": records}


TOOL_HANDLERS = {
    "classify_branches": classify_branches,
    "clean_repository": clean_repository,
    "reconstruct_branches": reconstruct_branches,
    "preview_rewrite": preview_rewrite,
    "verify_secrets_removed": verify_secrets_removed,
    "list_run_metadata": list_run_metadata,
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Return tool list."""
    return [
        Tool(
            name=tool["name"],
            description=tool["description"],
            inputSchema=tool["inputSchema"],
        )
        for tool in TOOL_DEFINITIONS
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool call."""
    try:
        result = await _execute_tool(name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2, ensure_ascii=False))]
    except Exception as e:
        logger.exception(f"{name} failed")
        return [TextContent(type="text", text=json.dumps({"error": str(e), "success": False}, indent=2))]


async def _execute_tool(name: str, args: dict[str, Any]) -> dict:
    """Execute tool."""
    logger.info(f"tool: {name}")
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return {"error": f"Unknown tool: {name}"}
    return await handler(args)


async def run_server():
    """Run MCP server."""
    logger.info("server starting")
    try:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("ready")
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    except Exception:
        logger.exception("server error")
        raise


def main():
    """Entry point."""
    config = get_config()
    logging.basicConfig(level=getattr(logging, config.server.log_level, logging.INFO))
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info("stopped")
    except Exception:
        logger.exception("fatal")


if __name__ == "__main__":
    main()
