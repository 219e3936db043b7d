"""Copy and mirror checkout paths onto their live destinations."""

from __future__ import annotations

import filecmp
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from ..errors import ReconcileError
from ..utils.logging import get_logger
from .mapping import MappingKind, PathMapping

logger = get_logger(__name__)

SYNCED = "synced"
SKIPPED = "skipped"


@dataclass
class MappingOutcome:
    """Result of reconciling a single mapping."""

    mapping: PathMapping
    status: str
    copied: int = 0
    removed: int = 0


@dataclass
class ReconcileReport:
    """Per-mapping outcomes of one reconcile pass."""

    outcomes: list[MappingOutcome] = field(default_factory=list)

    @property
    def copied(self) -> int:
        return sum(outcome.copied for outcome in self.outcomes)

    @property
    def removed(self) -> int:
        return sum(outcome.removed for outcome in self.outcomes)

    @property
    def skipped(self) -> list[PathMapping]:
        return [outcome.mapping for outcome in self.outcomes if outcome.status == SKIPPED]

    @property
    def changed(self) -> bool:
        return bool(self.copied or self.removed)


@dataclass
class _Snapshot:
    mapping: PathMapping
    backup: Optional[Path]  # None: destination did not exist before the run


class Reconciler:
    """Synchronizes mapped paths from the work tree into the live configuration.

    Mappings are processed in table order. When ``backup_dir`` is set, every
    destination is copied aside right before it is overwritten, and
    :meth:`restore` puts the previous state back.
    """

    def __init__(self, mappings: Iterable[PathMapping], backup_dir: Optional[Path] = None) -> None:
        self.mappings = list(mappings)
        self.backup_dir = backup_dir
        self._snapshots: list[_Snapshot] = []
        self._owns_backup = False

    def reconcile(self, work_tree: Path) -> ReconcileReport:
        self._reset_backup()
        report = ReconcileReport()
        for index, mapping in enumerate(self.mappings):
            source = mapping.source_in(work_tree)
            if not self._source_present(source, mapping):
                logger.warning("[post-receive] %s not found in work tree, skipping", mapping.source)
                report.outcomes.append(MappingOutcome(mapping=mapping, status=SKIPPED))
                continue

            logger.info("[post-receive] Syncing %s", mapping.describe())
            try:
                self._snapshot(index, mapping)
                if mapping.kind is MappingKind.FILE:
                    copied, removed = self._sync_file(source, mapping.destination), 0
                else:
                    copied, removed = self._mirror(source, mapping.destination)
            except OSError as exc:
                raise ReconcileError(f"Failed to sync {mapping.describe()}: {exc}") from exc
            report.outcomes.append(
                MappingOutcome(mapping=mapping, status=SYNCED, copied=copied, removed=removed)
            )
        return report

    def restore(self) -> None:
        """Put every destination touched by the last run back as it was."""
        for snapshot in reversed(self._snapshots):
            destination = snapshot.mapping.destination
            logger.info("[post-receive] Restoring %s", destination)
            try:
                if destination.exists() or destination.is_symlink():
                    _remove(destination)
                if snapshot.backup is None:
                    continue
                if snapshot.backup.is_dir() and not snapshot.backup.is_symlink():
                    shutil.copytree(snapshot.backup, destination, symlinks=True)
                else:
                    shutil.copy2(snapshot.backup, destination, follow_symlinks=False)
            except OSError as exc:
                raise ReconcileError(f"Failed to restore {destination}: {exc}") from exc
        self._snapshots = []

    def discard_backup(self) -> None:
        """Remove the backup written by this reconciler, never a leftover one."""
        self._snapshots = []
        if self._owns_backup and self.backup_dir is not None and self.backup_dir.exists():
            shutil.rmtree(self.backup_dir)
        self._owns_backup = False

    @property
    def has_snapshot(self) -> bool:
        return bool(self._snapshots)

    def _source_present(self, source: Path, mapping: PathMapping) -> bool:
        if mapping.kind is MappingKind.FILE:
            if source.is_dir():
                raise ReconcileError(f"{mapping.source} is a directory, expected a file")
            return source.is_file()
        if source.exists() and not source.is_dir():
            raise ReconcileError(f"{mapping.source} is a file, expected a directory")
        return source.is_dir()

    def _reset_backup(self) -> None:
        self._snapshots = []
        self._owns_backup = False
        if self.backup_dir is None:
            return
        if self.backup_dir.exists():
            # 上次恢复失败留下的备份是唯一的旧配置副本
            if any(self.backup_dir.iterdir()):
                raise ReconcileError(
                    f"Backup {self.backup_dir} from an earlier failed restore is still present; "
                    "restore the files from it or remove it before deploying again"
                )
            self.backup_dir.rmdir()
        self.backup_dir.mkdir(parents=True)
        self._owns_backup = True

    def _snapshot(self, index: int, mapping: PathMapping) -> None:
        if self.backup_dir is None:
            return
        destination = mapping.destination
        if not (destination.exists() or destination.is_symlink()):
            self._snapshots.append(_Snapshot(mapping=mapping, backup=None))
            return
        backup = self.backup_dir / f"{index:02d}-{destination.name}"
        if destination.is_dir() and not destination.is_symlink():
            shutil.copytree(destination, backup, symlinks=True)
        else:
            shutil.copy2(destination, backup, follow_symlinks=False)
        self._snapshots.append(_Snapshot(mapping=mapping, backup=backup))

    def _sync_file(self, source: Path, destination: Path) -> int:
        if destination.is_dir() and not destination.is_symlink():
            raise ReconcileError(f"{destination} is a directory, cannot overwrite it with a file")
        destination.parent.mkdir(parents=True, exist_ok=True)
        return 1 if _copy_if_changed(source, destination) else 0

    def _mirror(self, source: Path, destination: Path) -> tuple[int, int]:
        """Make ``destination`` an exact copy of ``source`` (rsync --delete)."""
        if destination.is_symlink() or (destination.exists() and not destination.is_dir()):
            _remove(destination)
        destination.mkdir(parents=True, exist_ok=True)

        copied = removed = 0
        source_entries = {entry.name: entry for entry in source.iterdir()}
        for entry in sorted(destination.iterdir()):
            if entry.name not in source_entries:
                logger.debug("Removing extraneous %s", entry)
                _remove(entry)
                removed += 1

        for name in sorted(source_entries):
            entry = source_entries[name]
            target = destination / name
            if entry.is_symlink():
                link = os.readlink(entry)
                if target.is_symlink() and os.readlink(target) == link:
                    continue
                if target.exists() or target.is_symlink():
                    _remove(target)
                os.symlink(link, target)
                copied += 1
            elif entry.is_dir():
                sub_copied, sub_removed = self._mirror(entry, target)
                copied += sub_copied
                removed += sub_removed
            else:
                if target.is_symlink() or target.is_dir():
                    _remove(target)
                    removed += 1
                if _copy_if_changed(entry, target):
                    copied += 1
        return copied, removed


def _copy_if_changed(source: Path, destination: Path) -> bool:
    if destination.is_symlink():
        destination.unlink()
    elif destination.is_file():
        same_mode = (source.stat().st_mode & 0o7777) == (destination.stat().st_mode & 0o7777)
        if same_mode and filecmp.cmp(source, destination, shallow=False):
            return False
    shutil.copy2(source, destination)
    return True


def _remove(path: Path) -> None:
    if path.is_symlink() or not path.is_dir():
        path.unlink()
    else:
        shutil.rmtree(path)
