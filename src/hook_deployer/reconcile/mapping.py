"""Path mapping table: which checkout paths feed which live paths."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config import ReconcileConfig


class MappingKind(Enum):
    """How a source path is synchronized."""
    FILE = "file"              # 整文件覆盖
    DIRECTORY = "directory"    # 镜像同步，删除目标中多余的文件


@dataclass(frozen=True)
class PathMapping:
    """A source path relative to the work tree and its absolute destination."""

    source: str
    destination: Path
    kind: MappingKind

    def source_in(self, work_tree: Path) -> Path:
        return work_tree / self.source.rstrip("/")

    def describe(self) -> str:
        suffix = "/" if self.kind is MappingKind.DIRECTORY else ""
        return f"{self.source.rstrip('/')}{suffix} -> {self.destination}{suffix}"


def reroot(destination: Path, root: Optional[Path]) -> Path:
    """Move an absolute destination under ``root``: /etc/nginx -> <root>/etc/nginx."""
    if root is None:
        return destination
    return root / destination.relative_to(destination.anchor)


def mappings_from_config(config: ReconcileConfig) -> list[PathMapping]:
    root = Path(config.destination_root) if config.destination_root else None
    mappings = []
    for item in config.mappings:
        destination = Path(item.destination)
        if not destination.is_absolute():
            raise ValueError(f"Destination must be an absolute path: {item.destination}")
        mappings.append(
            PathMapping(
                source=item.source,
                destination=reroot(destination, root),
                kind=MappingKind(item.kind),
            )
        )
    return mappings
