from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path

from .atomic import replace_directory, utc_now_iso
from .cache import PrivateCache
from .errors import GitError, SkilldeckError, SkillNotFoundInRepoError
from .git import GitClient, normalize_repo_url
from .lockfile import LockFileStore
from .models import LinkedSkillInfo, LockEntry, UpdateCheckResult, UpdateState, UpdateStatus

logger = logging.getLogger(__name__)

SOURCE_TYPE_GITHUB = "github"


class UpdateCoordinator:
    """
    Compares installed skills against their source repositories.

    A skill is out of date when the git tree hash of its folder at the remote
    HEAD differs from the `skillFolderHash` recorded at install time. The commit
    the local copy came from is kept in the private cache; when it is unknown
    the clone is made with full history so it can be recovered ("backfill").
    """

    def __init__(
        self,
        git: GitClient,
        lockfile: LockFileStore,
        cache: PrivateCache,
        *,
        max_workers: int = 4,
    ) -> None:
        self.git = git
        self.lockfile = lockfile
        self.cache = cache
        self.max_workers = max(1, max_workers)

    def check_skill(self, skill_id: str, entry: LockEntry) -> UpdateCheckResult:
        """Check one skill. Errors propagate to the caller."""
        folder = entry.folder_path
        needs_backfill = self.cache.get_hash(skill_id) is None
        with self.git.cloned(entry.source_url, shallow=not needs_backfill) as repo_dir:
            remote_tree = self.git.tree_hash(repo_dir, folder)
            remote_commit = self.git.commit_hash(repo_dir)
            if needs_backfill:
                self._backfill(skill_id, entry, repo_dir)
                self.cache.save()
        return UpdateCheckResult(
            has_update=remote_tree != entry.skill_folder_hash,
            remote_tree_hash=remote_tree,
            remote_commit_hash=remote_commit,
        )

    def check_all(self, entries: dict[str, LockEntry]) -> dict[str, UpdateStatus]:
        """
        Check every skill with one clone per distinct source URL.

        Never raises for per-skill or per-repository failures; those come back
        as error statuses.
        """
        groups: dict[str, list[tuple[str, LockEntry]]] = defaultdict(list)
        for skill_id, entry in entries.items():
            groups[entry.source_url].append((skill_id, entry))
        if not groups:
            return {}

        statuses: dict[str, UpdateStatus] = {}
        workers = min(self.max_workers, len(groups))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="skilldeck-check") as pool:
            futures = [pool.submit(self._check_group, url, members) for url, members in groups.items()]
            for fut in futures:
                statuses.update(fut.result())
        return statuses

    def _check_group(self, source_url: str, members: list[tuple[str, LockEntry]]) -> dict[str, UpdateStatus]:
        statuses: dict[str, UpdateStatus] = {}
        needs_full = any(self.cache.get_hash(skill_id) is None for skill_id, _ in members)
        try:
            repo_dir = self.git.clone(source_url, shallow=not needs_full)
        except (SkilldeckError, OSError) as e:
            logger.warning("Update check failed for %s: %s", source_url, e)
            return {skill_id: UpdateStatus.error(str(e)) for skill_id, _ in members}

        try:
            try:
                remote_commit = self.git.commit_hash(repo_dir)
            except SkilldeckError as e:
                return {skill_id: UpdateStatus.error(str(e)) for skill_id, _ in members}

            for skill_id, entry in members:
                try:
                    remote_tree = self.git.tree_hash(repo_dir, entry.folder_path)
                except SkilldeckError as e:
                    logger.debug("Update check failed for %s: %s", skill_id, e)
                    statuses[skill_id] = UpdateStatus.error(str(e))
                    continue

                local_commit = self.cache.get_hash(skill_id)
                if local_commit is None:
                    local_commit = self._backfill(skill_id, entry, repo_dir)

                if remote_tree != entry.skill_folder_hash:
                    statuses[skill_id] = UpdateStatus(
                        state=UpdateState.HAS_UPDATE,
                        remote_tree_hash=remote_tree,
                        remote_commit_hash=remote_commit,
                        local_commit_hash=local_commit,
                    )
                else:
                    statuses[skill_id] = UpdateStatus(state=UpdateState.UP_TO_DATE, local_commit_hash=local_commit)
            self.cache.save()
        finally:
            self.git.cleanup(repo_dir)
        return statuses

    def _backfill(self, skill_id: str, entry: LockEntry, repo_dir: Path) -> str | None:
        try:
            found = self.git.find_commit_for_tree_hash(entry.skill_folder_hash, entry.folder_path, repo_dir)
        except GitError as e:
            logger.debug("Backfill failed for %s: %s", skill_id, e)
            return None
        if found is not None:
            self.cache.set_hash(skill_id, found)
        return found

    def apply_update(self, skill_id: str, entry: LockEntry, canonical_dir: Path) -> LockEntry:
        """
        Replace `canonical_dir` with the skill folder at the remote HEAD and
        record the new hashes. Returns the updated entry.
        """
        with self.git.cloned(entry.source_url, shallow=True) as repo_dir:
            folder = entry.folder_path
            new_tree = self.git.tree_hash(repo_dir, folder)
            new_commit = self.git.commit_hash(repo_dir)
            replace_directory(repo_dir / folder if folder else repo_dir, canonical_dir)

        updated = replace(entry, skill_folder_hash=new_tree, updated_at=utc_now_iso())
        if entry.linked:
            info = self.cache.get_linked_info(skill_id)
            linked_at = info.linked_at if info is not None else entry.installed_at
            self.cache.set_linked_info(
                skill_id,
                LinkedSkillInfo(
                    source=entry.source,
                    source_type=entry.source_type,
                    source_url=entry.source_url,
                    skill_path=entry.skill_path,
                    skill_folder_hash=new_tree,
                    linked_at=linked_at,
                ),
            )
        else:
            self.lockfile.update_entry(skill_id, updated)
        self.cache.set_hash(skill_id, new_commit)
        self.cache.save()
        logger.info("Updated %s to %s", skill_id, new_commit[:12])
        return updated

    def link_to_repository(self, skill_id: str, canonical_dir: Path, repo_input: str) -> LinkedSkillInfo:
        """Associate an existing skill with a repository that contains it."""
        repo_url, source = normalize_repo_url(repo_input)
        with self.git.cloned(repo_url, shallow=True) as repo_dir:
            matched = next((s for s in self.git.scan_skills_in_repo(repo_dir) if s.id == skill_id), None)
            if matched is None:
                raise SkillNotFoundInRepoError(skill_id)
            tree = self.git.tree_hash(repo_dir, matched.folder_path)
            commit = self.git.commit_hash(repo_dir)
            src = repo_dir / matched.folder_path if matched.folder_path else repo_dir
            replace_directory(src, canonical_dir)

        info = LinkedSkillInfo(
            source=source,
            source_type=SOURCE_TYPE_GITHUB,
            source_url=repo_url,
            skill_path=matched.skill_md_path,
            skill_folder_hash=tree,
            linked_at=utc_now_iso(),
        )
        self.cache.set_hash(skill_id, commit)
        self.cache.set_linked_info(skill_id, info)
        self.cache.add_repo_history(source, repo_url)
        self.cache.save()
        logger.info("Linked %s to %s", skill_id, source)
        return info
