"""MCP tool definitions for secret purge and branch reconstruction."""

from pydantic import BaseModel, Field


class ClassifyBranchesInput(BaseModel):
    """Input for classify_branches tool."""

    repo: str = Field(description="Name of a configured repository")
    branch_age_days: int | None = Field(
        default=None, description="Staleness threshold in days (defaults to the configured value)"
    )


class CleanRepositoryInput(BaseModel):
    """Input for clean_repository tool."""

    repositories: list[str] | None = Field(
        default=None, description="Configured repositories to clean (all when omitted)"
    )
    dry_run: bool = Field(
        default=True, description="If true, only classify branches and record metadata"
    )
    push: bool | None = Field(
        default=None, description="Push the rewritten trunk (defaults to the configured value)"
    )


class ReconstructBranchesInput(BaseModel):
    """Input for reconstruct_branches tool."""

    repositories: list[str] | None = Field(
        default=None, description="Configured repositories to reconstruct (all when omitted)"
    )
    push: bool | None = Field(
        default=None, description="Force-push rebuilt branches (defaults to the configured value)"
    )


class PreviewRewriteInput(BaseModel):
    """Input for preview_rewrite tool."""

    repo: str = Field(description="Name of a configured repository")


class VerifySecretsRemovedInput(BaseModel):
    """Input for verify_secrets_removed tool."""

    repo: str = Field(description="Name of a configured repository")


class ListRunMetadataInput(BaseModel):
    """Input for list_run_metadata tool."""

    repo: str | None = Field(default=None, description="Configured repository (all when omitted)")


TOOL_DEFINITIONS = [
    {
        "name": "classify_branches",
        "description": """Survey the branches of a repository and decide which need reconstruction.

A branch is kept when it is not the trunk, its last commit is recent, it is
not merged into trunk and it has commits of its own. Skipped branches are
returned with the reason (trunk, stale, merged, no_unique_commits, unresolvable).

Read-only.""",
        "inputSchema": ClassifyBranchesInput.model_json_schema(),
    },
    {
        "name": "clean_repository",
        "description": """Purge secrets from the entire history of configured repositories.

Per repository: classify branches, save a run metadata record, back up the
working copy, run git-filter-repo --replace-text with the secrets file and
force-push the rewritten trunk. Other branches are NOT pushed; rebuild them
afterwards with reconstruct_branches.

IMPORTANT: Always use dry_run=true first! A live run rewrites shared history.""",
        "inputSchema": CleanRepositoryInput.model_json_schema(),
    },
    {
        "name": "reconstruct_branches",
        "description": """Rebuild saved feature branches on top of the rewritten trunk.

Uses the latest (non dry-run) metadata record and its backup. Each branch is
recreated at the rewritten counterpart of its divergence point and its own
commits are cherry-picked from the backup; commits that no longer apply are
skipped and reported. A rebuilt branch that still contains text from the
secrets file is not pushed and is reported as failed.""",
        "inputSchema": ReconstructBranchesInput.model_json_schema(),
    },
    {
        "name": "preview_rewrite",
        "description": """Run the secret replacement on a temporary copy of a repository.

Reports how many commits would be rewritten without touching the repository.""",
        "inputSchema": PreviewRewriteInput.model_json_schema(),
    },
    {
        "name": "verify_secrets_removed",
        "description": """Search all history for secrets from the secrets file.

Returns the (redacted) rules whose text still occurs in some commit.""",
        "inputSchema": VerifySecretsRemovedInput.model_json_schema(),
    },
    {
        "name": "list_run_metadata",
        "description": """List the stored run metadata records, oldest first.""",
        "inputSchema": ListRunMetadataInput.model_json_schema(),
    },
]
