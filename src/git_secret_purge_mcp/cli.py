"""git-secret-purge command line.

    git-secret-purge clean [--dry-run] [--yes] [--no-push] [--repo NAME ...]
    git-secret-purge reconstruct [--no-push] [--repo NAME ...]
    git-secret-purge preview --repo NAME
    git-secret-purge classify --repo NAME [--json]
    git-secret-purge list-metadata [--repo NAME]

Per-repository failures are logged and never stop the batch. The exit code
is 1 when a required tool is missing and 2 when the configuration cannot be
loaded.
"""

import argparse
import asyncio
import json
import logging
import sys

from .commands import is_tool_installed
from .config import Config, load_config
from .errors import ConfigError, SecretPurgeError
from .notify import SlackNotifier
from .orchestrator import Orchestrator
from .server import clean_result_to_dict, decision_to_dict, reconstruction_report_to_dict

logger = logging.getLogger(__name__)

CONFIRMATION = "YES"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def check_tools(orchestrator: Orchestrator, needs_filter_repo: bool) -> bool:
    if not is_tool_installed("git"):
        logger.error("git is not installed or not on PATH")
        return False
    if needs_filter_repo and not orchestrator.rewriter.check_installed():
        logger.error("git-filter-repo is not installed. Install it with: pip install git-filter-repo")
        return False
    return True


def confirm_destructive(repositories: list[str]) -> bool:
    print("WARNING: this rewrites the entire history of:")
    for name in repositories:
        print(f"  - {name}")
    print("The rewritten trunk is force-pushed; every clone must be re-cloned afterwards.")
    try:
        answer = input(f"Type {CONFIRMATION} to continue: ")
    except EOFError:
        return False
    return answer.strip() == CONFIRMATION


def send_notification(config: Config, method: str, payload) -> None:
    if not config.notify.slack_webhook_url:
        return

    async def _send() -> None:
        notifier = SlackNotifier(config.notify.slack_webhook_url, config.notify.slack_channel)
        try:
            await getattr(notifier, method)(payload)
        finally:
            await notifier.close()

    asyncio.run(_send())


def cmd_clean(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    if not check_tools(orchestrator, needs_filter_repo=not args.dry_run):
        return 1

    repositories = orchestrator.repositories(args.repo)
    if not repositories:
        logger.warning("no repositories configured")
        return 0

    if not args.dry_run and not args.yes and not confirm_destructive([r.name for r in repositories]):
        print("Aborted.")
        return 0

    push = False if args.no_push else None
    results = orchestrator.clean_all(dry_run=args.dry_run, names=args.repo, push=push)
    if args.json:
        print(json.dumps([clean_result_to_dict(r) for r in results], indent=2))
    else:
        for result in results:
            if result.error:
                print(f"{result.repo_name}: FAILED - {result.error}")
                continue
            line = f"{result.repo_name}: {len(result.branches)} branches need reconstruction"
            if not result.dry_run:
                line += f", {result.commits_rewritten} commits rewritten"
            if result.remaining_secrets:
                line += f", secrets still present: {', '.join(result.remaining_secrets)}"
            print(line)

    send_notification(orchestrator.config, "notify_clean", results)
    return 0


def cmd_reconstruct(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    if not check_tools(orchestrator, needs_filter_repo=False):
        return 1

    push = False if args.no_push else None
    reports = orchestrator.reconstruct_all(names=args.repo, push=push)
    if args.json:
        print(json.dumps([reconstruction_report_to_dict(r) for r in reports], indent=2))
    else:
        for report in reports:
            if report.error:
                print(f"{report.repo_name}: FAILED - {report.error}")
            elif report.skipped:
                print(f"{report.repo_name}: no metadata found, skipped")
            else:
                print(f"{report.repo_name}: reconstructed {report.succeeded}/{report.attempted} branches")
                for result in report.results:
                    status = "ok" if result.success else f"FAILED - {result.error}"
                    print(f"  {result.branch}: {status} ({result.replayed} replayed, {result.skipped} skipped)")

    send_notification(orchestrator.config, "notify_reconstruction", reports)
    return 0


def cmd_preview(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    if not check_tools(orchestrator, needs_filter_repo=True):
        return 1

    for repo in orchestrator.repositories(args.repo):
        try:
            orchestrator.load_secret_rules(repo)
        except SecretPurgeError as e:
            print(f"{repo.name}: {e}")
            continue
        result = orchestrator.rewriter.preview(repo.path, repo.secrets_file)
        if result.success:
            print(f"{repo.name}: {result.message}")
        else:
            print(f"{repo.name}: FAILED - {result.message}: {result.error}")
    return 0


def cmd_classify(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    if not check_tools(orchestrator, needs_filter_repo=False):
        return 1

    surveys = {}
    for repo in orchestrator.repositories(args.repo):
        try:
            surveys[repo.name] = orchestrator.classify_repository(repo)
        except (SecretPurgeError, ValueError) as e:
            logger.error(f"{repo.name}: {e}")

    if args.json:
        print(json.dumps({name: [decision_to_dict(d) for d in decisions] for name, decisions in surveys.items()}, indent=2))
        return 0

    for name, decisions in surveys.items():
        print(f"{name}:")
        for decision in decisions:
            if decision.record is not None:
                print(f"  {decision.branch}: reconstruct ({decision.record.days_since_last_commit} days old)")
            else:
                detail = f" ({decision.detail})" if decision.detail else ""
                print(f"  {decision.branch}: skip, {decision.reason.value}{detail}")
    return 0


def cmd_list_metadata(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    for repo in orchestrator.repositories(args.repo):
        records = orchestrator.list_metadata(repo)
        print(f"{repo.name}: {len(records)} records")
        for timestamp, path in records:
            print(f"  {timestamp}  {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-secret-purge",
        description="Purge secrets from git history and rebuild active feature branches",
    )
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--log-level", help="Override the configured log level")
    sub = parser.add_subparsers(dest="cmd")

    def add_repo_option(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--repo",
            action="append",
            help="Configured repository to process (repeatable; all when omitted)",
        )

    p_clean = sub.add_parser("clean", help="Classify branches, back up and rewrite history")
    p_clean.add_argument("--dry-run", action="store_true", help="Only classify and record metadata")
    p_clean.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    p_clean.add_argument("--no-push", action="store_true", help="Do not push the rewritten trunk")
    p_clean.add_argument("--json", action="store_true", help="Output JSON")
    add_repo_option(p_clean)
    p_clean.set_defaults(func=cmd_clean)

    p_reconstruct = sub.add_parser("reconstruct", help="Rebuild saved branches on the rewritten trunk")
    p_reconstruct.add_argument("--no-push", action="store_true", help="Rebuild locally without pushing")
    p_reconstruct.add_argument("--json", action="store_true", help="Output JSON")
    add_repo_option(p_reconstruct)
    p_reconstruct.set_defaults(func=cmd_reconstruct)

    p_preview = sub.add_parser("preview", help="Run the rewrite on a temporary copy")
    add_repo_option(p_preview)
    p_preview.set_defaults(func=cmd_preview)

    p_classify = sub.add_parser("classify", help="Show which branches would be reconstructed")
    p_classify.add_argument("--json", action="store_true", help="Output JSON")
    add_repo_option(p_classify)
    p_classify.set_defaults(func=cmd_classify)

    p_list = sub.add_parser("list-metadata", help="List stored run metadata records")
    add_repo_option(p_list)
    p_list.set_defaults(func=cmd_list_metadata)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except ConfigError as e:
        configure_logging(args.log_level or "INFO")
        logger.error(str(e))
        return 2

    configure_logging(args.log_level or config.server.log_level)
    orchestrator = Orchestrator(config)
    try:
        return args.func(args, orchestrator)
    except ValueError as e:
        # Unknown repository name
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
