"""Slack run summaries via an incoming webhook."""

import logging

import httpx

from .errors import NotifyError
from .orchestrator import CleanResult, ReconstructionReport

logger = logging.getLogger(__name__)


def format_clean_summary(results: list[CleanResult]) -> str:
    dry_run = any(r.dry_run for r in results)
    lines = [f"*Secret purge{' (dry run)' if dry_run else ''}*: {sum(r.success for r in results)}/{len(results)} repositories"]
    for r in results:
        if r.error:
            lines.append(f"• {r.repo_name}: failed - {r.error}")
            continue
        line = f"• {r.repo_name}: {len(r.branches)} branches saved"
        if not r.dry_run:
            line += f", {r.commits_rewritten} commits rewritten"
        if r.remaining_secrets:
            line += f", {len(r.remaining_secrets)} secrets still present"
        lines.append(line)
    return "\n".join(lines)


def format_reconstruction_summary(reports: list[ReconstructionReport]) -> str:
    attempted = sum(r.attempted for r in reports)
    succeeded = sum(r.succeeded for r in reports)
    lines = [f"*Branch reconstruction*: {succeeded}/{attempted} branches"]
    for r in reports:
        if r.error:
            lines.append(f"• {r.repo_name}: failed - {r.error}")
        elif r.skipped:
            lines.append(f"• {r.repo_name}: no metadata, skipped")
        else:
            lines.append(f"• {r.repo_name}: {r.succeeded}/{r.attempted} branches")
            for result in r.results:
                if not result.success:
                    lines.append(f"    ◦ {result.branch}: {result.error}")
                elif result.skipped or result.degraded:
                    note = f"{result.skipped} commits skipped" if result.skipped else "rebuilt on trunk tip"
                    lines.append(f"    ◦ {result.branch}: {note}")
    return "\n".join(lines)


class SlackNotifier:
    """Posts run summaries to a Slack incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        channel: str | None = None,
        client: httpx.AsyncClient | None = None,
        raise_on_error: bool = False,
    ):
        self.webhook_url = webhook_url
        self.channel = channel
        self.raise_on_error = raise_on_error
        self.client = client or httpx.AsyncClient(timeout=10.0)

    async def send(self, text: str) -> bool:
        payload = {"text": text}
        if self.channel:
            payload["channel"] = self.channel

        try:
            response = await self.client.post(self.webhook_url, json=payload)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"slack notification failed: {e}")
            if self.raise_on_error:
                raise NotifyError(f"slack notification failed: {e}", e)
            return False

    async def notify_clean(self, results: list[CleanResult]) -> bool:
        return await self.send(format_clean_summary(results))

    async def notify_reconstruction(self, reports: list[ReconstructionReport]) -> bool:
        return await self.send(format_reconstruction_summary(reports))

    async def close(self) -> None:
        await self.client.aclose()
