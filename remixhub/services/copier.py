"""Copy one repository's default-branch tree into another as a single orphan commit."""

import asyncio
from dataclasses import dataclass, field
from typing import Literal

from remixhub.core.config import get_settings
from remixhub.core.exceptions import (
    BlobCopyError,
    DestinationCreateError,
    RefUpdateError,
    SourceNotFoundError,
    UpstreamAPIError,
)
from remixhub.core.logging import get_logger
from remixhub.services.github import GitHubClient

log = get_logger(__name__)

FALLBACK_BRANCHES = ("main", "master")


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class TreeEntry:
    """Blob listed in the source tree; lives only for the duration of a copy."""
    path: str
    mode: str
    sha: str
    url: str | None = None
    type: str = "blob"


@dataclass
class CopyResult:
    files_copied: int
    commit_sha: str
    branch: str
    skipped_paths: list[str] = field(default_factory=list)

    @property
    def files_skipped(self) -> int:
        return len(self.skipped_paths)


class RepositoryCopier:
    """Replicates source's working tree onto destination.

    The destination ref is moved only as the last step, so a failure at any
    earlier point leaves the destination branch untouched.
    """

    def __init__(
        self,
        source_client: GitHubClient,
        dest_client: GitHubClient,
        failure_mode: Literal["best_effort", "fail_fast"] | None = None,
        concurrency: int | None = None,
        init_wait_seconds: float | None = None,
    ):
        settings = get_settings()
        self.source_client = source_client
        self.dest_client = dest_client
        self.failure_mode = failure_mode or settings.blob_failure_mode
        self.concurrency = max(1, concurrency or settings.blob_copy_concurrency)
        self.init_wait_seconds = (
            settings.repo_init_wait_seconds if init_wait_seconds is None else init_wait_seconds
        )

    async def copy(self, source: RepoRef, dest: RepoRef) -> CopyResult:
        entries = await self._read_source_tree(source)
        dest_info = await self._ensure_destination(dest)
        copied, skipped = await self._copy_blobs(source, dest, entries)
        if entries and not copied:
            raise BlobCopyError(f"None of the {len(entries)} files could be copied")

        tree = await self.dest_client.create_tree(
            dest.owner,
            dest.repo,
            [{"path": e.path, "mode": e.mode, "type": "blob", "sha": sha} for e, sha in copied],
        )
        commit = await self.dest_client.create_commit(
            dest.owner,
            dest.repo,
            message=f"Remix from {source.full_name} via RemixHub",
            tree_sha=tree["sha"],
        )
        branch = await self._force_update_branch(dest, dest_info, commit["sha"])
        log.info(
            "repository_copied",
            source=source.full_name,
            destination=dest.full_name,
            files_copied=len(copied),
            files_skipped=len(skipped),
            commit_sha=commit["sha"],
            branch=branch,
        )
        return CopyResult(files_copied=len(copied), commit_sha=commit["sha"], branch=branch, skipped_paths=skipped)

    async def _read_source_tree(self, source: RepoRef) -> list[TreeEntry]:
        try:
            info = await self.source_client.get_repository(source.owner, source.repo)
            branch = info.get("default_branch") or "main"
            tree = await self.source_client.get_tree_recursive(source.owner, source.repo, branch)
        except UpstreamAPIError as e:
            raise SourceNotFoundError(f"Cannot read source repository {source.full_name}", e) from e
        if tree.get("truncated"):
            log.warning("source_tree_truncated", source=source.full_name)
        return [
            TreeEntry(path=item["path"], mode=item["mode"], sha=item["sha"], url=item.get("url"))
            for item in tree.get("tree", [])
            if item.get("type") == "blob"
        ]

    async def _ensure_destination(self, dest: RepoRef) -> dict:
        try:
            return await self.dest_client.get_repository(dest.owner, dest.repo)
        except UpstreamAPIError as e:
            if e.status != 404:
                raise
        try:
            created = await self.dest_client.create_repository(dest.repo, private=False, auto_init=True)
        except UpstreamAPIError as e:
            raise DestinationCreateError(f"Cannot create destination repository {dest.full_name}", e) from e
        owner = (created.get("owner") or {}).get("login")
        if owner and owner.lower() != dest.owner.lower():
            log.warning("destination_owner_mismatch", requested=dest.full_name, created=created.get("full_name"))
        log.info("destination_created", destination=dest.full_name)
        # auto_init commits a README asynchronously; refs are not ready right away.
        await asyncio.sleep(self.init_wait_seconds)
        return created

    async def _copy_blobs(
        self,
        source: RepoRef,
        dest: RepoRef,
        entries: list[TreeEntry],
    ) -> tuple[list[tuple[TreeEntry, str]], list[str]]:
        semaphore = asyncio.Semaphore(self.concurrency)
        abort = asyncio.Event()
        results: list[str | None] = [None] * len(entries)
        failures: list[tuple[TreeEntry, UpstreamAPIError]] = []

        async def copy_one(index: int, entry: TreeEntry) -> None:
            async with semaphore:
                if abort.is_set():
                    return
                try:
                    blob = await self.source_client.get_blob(source.owner, source.repo, entry.sha, url=entry.url)
                    created = await self.dest_client.create_blob(
                        dest.owner,
                        dest.repo,
                        blob.get("content", ""),
                        encoding=blob.get("encoding", "base64"),
                    )
                except UpstreamAPIError as e:
                    failures.append((entry, e))
                    if self.failure_mode == "fail_fast":
                        abort.set()
                    return
                results[index] = created["sha"]

        await asyncio.gather(*(copy_one(i, e) for i, e in enumerate(entries)))

        if failures and self.failure_mode == "fail_fast":
            entry, error = failures[0]
            raise BlobCopyError(f"Failed to copy {entry.path}", error)
        skipped = [entry.path for entry, _ in failures]
        if skipped:
            log.warning("blobs_skipped", destination=dest.full_name, count=len(skipped), paths=skipped[:50])
        # Source order is kept regardless of completion order.
        copied = [(entry, sha) for entry, sha in zip(entries, results) if sha is not None]
        return copied, skipped

    async def _force_update_branch(self, dest: RepoRef, dest_info: dict, commit_sha: str) -> str:
        candidates: list[str] = []
        for name in (dest_info.get("default_branch"), *FALLBACK_BRANCHES):
            if name and name not in candidates:
                candidates.append(name)
        last_error: UpstreamAPIError | None = None
        for branch in candidates:
            try:
                await self.dest_client.update_ref(dest.owner, dest.repo, branch, commit_sha, force=True)
                return branch
            except UpstreamAPIError as e:
                log.info("ref_update_attempt_failed", destination=dest.full_name, branch=branch, status=e.status)
                last_error = e
        raise RefUpdateError(f"Cannot update any branch of {dest.full_name}", last_error)
