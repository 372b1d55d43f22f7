"""Run metadata store tests."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from git_secret_purge_mcp.errors import PersistenceError
from git_secret_purge_mcp.metadata import RunMetadataStore, make_timestamp
from git_secret_purge_mcp.models import BranchRecord, RunMetadata

T0 = datetime(2024, 6, 1, 9, 30, 15, 123456, tzinfo=timezone.utc)


def make_metadata(repo_name="api", timestamp="2024-06-01T09-30-15", dry_run=False, **branches):
    return RunMetadata(
        trunk_branch="main",
        branches={
            name: BranchRecord(
                sha=sha,
                author="Dev",
                email="dev@example.com",
                subject=f"work on {name}",
                last_commit_date="2024-05-30T10:00:00+00:00",
                days_since_last_commit=2,
            )
            for name, sha in branches.items()
        },
        repo_path=f"/src/{repo_name}",
        backup_path=f"/backups/{repo_name}_{timestamp}",
        repo_name=repo_name,
        timestamp=timestamp,
        dry_run=dry_run,
    )


class TestTimestamp:
    def test_format(self):
        assert make_timestamp(T0) == "2024-06-01T09-30-15-123"

    def test_converted_to_utc(self):
        local = T0.astimezone(timezone(timedelta(hours=2)))
        assert make_timestamp(local) == "2024-06-01T09-30-15-123"

    def test_fixed_width(self):
        assert len(make_timestamp(T0.replace(microsecond=0))) == len(make_timestamp(T0))

    def test_lexicographic_order_is_chronological(self):
        stamps = [make_timestamp(T0 + timedelta(seconds=s)) for s in (0.5, 1, 59, 61, 3600, 86400 * 40)]
        assert stamps == sorted(stamps)

    def test_runs_in_the_same_second_do_not_collide(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        first = make_timestamp(T0)
        second = make_timestamp(T0 + timedelta(milliseconds=1))

        store.save(make_metadata(timestamp=first, dry_run=True))
        store.save(make_metadata(timestamp=second, feature="abc"))

        assert first != second
        assert [ts for ts, _ in store.list_records("api")] == [first, second]
        assert store.load_latest("api").timestamp == second


class TestRunMetadata:
    def test_serialized_with_camel_case_keys(self):
        data = json.loads(make_metadata(feature="abc").to_json())

        assert data["trunkBranch"] == "main"
        assert data["repoName"] == "api"
        assert data["repoPath"] == "/src/api"
        assert data["backupPath"] == "/backups/api_2024-06-01T09-30-15"
        assert data["dryRun"] is False
        branch = data["branches"]["feature"]
        assert branch["lastCommitDate"] == "2024-05-30T10:00:00+00:00"
        assert branch["daysSinceLastCommit"] == 2

    def test_accepts_main_branch_and_message_keys(self):
        legacy = {
            "mainBranch": "master",
            "branches": {
                "feature": {
                    "sha": "abc",
                    "author": "Dev",
                    "email": "dev@example.com",
                    "message": "legacy subject",
                    "lastCommitDate": "2024-05-30T10:00:00+00:00",
                    "daysSinceLastCommit": 1,
                }
            },
            "repoPath": "/src/api",
            "backupPath": "/backups/api_2024-06-01T09-30-15",
            "repoName": "api",
            "timestamp": "2024-06-01T09-30-15",
        }

        metadata = RunMetadata.model_validate(legacy)

        assert metadata.trunk_branch == "master"
        assert metadata.branches["feature"].subject == "legacy subject"
        assert metadata.dry_run is False


class TestRunMetadataStore:
    def test_save_and_load(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        path = store.save(make_metadata(feature="abc"))

        assert path.name == "api_2024-06-01T09-30-15.json"
        loaded = store.load(path)
        assert loaded == make_metadata(feature="abc")

    def test_save_creates_directory(self, tmp_path):
        store = RunMetadataStore(tmp_path / "nested" / "metadata")
        assert store.save(make_metadata()).exists()

    def test_existing_record_never_overwritten(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        store.save(make_metadata(feature="abc"))

        with pytest.raises(PersistenceError, match="already exists"):
            store.save(make_metadata(feature="def"))
        assert store.load_latest("api").branches["feature"].sha == "abc"

    def test_load_invalid_record(self, tmp_path):
        path = tmp_path / "api_2024-06-01T09-30-15.json"
        path.write_text('{"repoName": "api"}')

        with pytest.raises(PersistenceError, match="invalid metadata"):
            RunMetadataStore(tmp_path).load(path)

    def test_load_missing_record(self, tmp_path):
        with pytest.raises(PersistenceError):
            RunMetadataStore(tmp_path).load(tmp_path / "missing.json")

    def test_latest_is_greatest_timestamp(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        for i, stamp in enumerate(["2024-06-01T09-30-15", "2024-06-03T08-00-00", "2024-06-02T23-59-59"]):
            store.save(make_metadata(timestamp=stamp, feature=f"sha{i}"))

        latest = store.load_latest("api")

        assert latest.timestamp == "2024-06-03T08-00-00"
        assert latest.branches["feature"].sha == "sha1"

    def test_second_resolution_records_still_listed(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        store.save(make_metadata(timestamp="2024-06-01T09-30-15"))
        store.save(make_metadata(timestamp="2024-06-01T09-30-14-999"))
        store.save(make_metadata(timestamp="2024-06-01T09-30-15-001"))

        assert [ts for ts, _ in store.list_records("api")] == [
            "2024-06-01T09-30-14-999",
            "2024-06-01T09-30-15",
            "2024-06-01T09-30-15-001",
        ]

    def test_latest_ignores_repositories_sharing_prefix(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        store.save(make_metadata(repo_name="api", timestamp="2024-06-01T09-30-15"))
        store.save(make_metadata(repo_name="api_v2", timestamp="2024-06-05T09-30-15"))
        store.save(make_metadata(repo_name="api-gateway", timestamp="2024-06-06T09-30-15"))

        assert store.load_latest("api").repo_name == "api"
        assert [ts for ts, _ in store.list_records("api")] == ["2024-06-01T09-30-15"]

    def test_latest_skips_dry_runs(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        store.save(make_metadata(timestamp="2024-06-01T09-30-15"))
        store.save(make_metadata(timestamp="2024-06-02T09-30-15", dry_run=True))

        assert store.load_latest("api").timestamp == "2024-06-01T09-30-15"
        assert store.load_latest("api", include_dry_runs=True).timestamp == "2024-06-02T09-30-15"

    def test_latest_none_when_no_records(self, tmp_path):
        assert RunMetadataStore(tmp_path / "missing").load_latest("api") is None

    def test_latest_none_when_only_dry_runs(self, tmp_path):
        store = RunMetadataStore(tmp_path)
        store.save(make_metadata(dry_run=True))
        assert store.load_latest("api") is None
