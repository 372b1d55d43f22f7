"""Records persisted between the destructive run and the reconstruction run."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class BranchRecord(BaseModel):
    """Pre-rewrite identity of a branch that needs reconstruction."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sha: str = Field(description="Branch tip before the rewrite")
    author: str
    email: str
    subject: str = Field(validation_alias=AliasChoices("subject", "message"))
    last_commit_date: str = Field(alias="lastCommitDate")
    days_since_last_commit: int = Field(alias="daysSinceLastCommit")


class RunMetadata(BaseModel):
    """One destructive run of one repository.

    Only meaningful together with the backup it names: branch tips are
    valid against that exact backup and no other.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    trunk_branch: str = Field(
        validation_alias=AliasChoices("trunkBranch", "mainBranch", "trunk_branch"),
        serialization_alias="trunkBranch",
    )
    branches: dict[str, BranchRecord] = Field(default_factory=dict)
    repo_path: str = Field(alias="repoPath")
    backup_path: str = Field(alias="backupPath")
    repo_name: str = Field(alias="repoName")
    timestamp: str
    dry_run: bool = Field(default=False, alias="dryRun")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
