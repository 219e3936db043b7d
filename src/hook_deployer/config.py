"""Configuration loading utilities for hook-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from . import paths

# Load .env file if it exists
load_dotenv()

CONFIG_ENV_VAR = "HOOK_DEPLOYER_CONFIG"


@dataclass
class MappingConfig:
    """One (source -> destination) pair of the path mapping table."""

    source: str
    destination: str
    kind: str = "file"  # "file" | "directory"


def _default_mappings() -> List[MappingConfig]:
    # 顺序固定：先主配置文件，再各配置目录
    return [
        MappingConfig(paths.NGINX_CONF_SOURCE, str(paths.NGINX_ROOT / "nginx.conf"), "file"),
        MappingConfig(paths.CONF_D_SOURCE, str(paths.NGINX_ROOT / "conf.d"), "directory"),
        MappingConfig(paths.SITES_SOURCE, str(paths.NGINX_ROOT / "sites"), "directory"),
    ]


@dataclass
class RepositoryConfig:
    """Where pushes land and where they are checked out."""

    project: str = paths.DEFAULT_PROJECT
    git_dir: Optional[str] = None           # 默认 /home/git/<project>.git
    work_tree: Optional[str] = None         # 默认 /srv/<project>-deploy
    state_dir: Optional[str] = None         # 默认 /var/lib/hook-deployer/<project>
    deploy_branch: Optional[str] = None     # 默认为裸仓库 HEAD 指向的分支
    clean_work_tree: bool = True
    git_binary: str = "git"

    @property
    def git_dir_path(self) -> Path:
        return Path(self.git_dir) if self.git_dir else paths.bare_repo_path(self.project)

    @property
    def work_tree_path(self) -> Path:
        return Path(self.work_tree) if self.work_tree else paths.work_tree_path(self.project)

    @property
    def state_dir_path(self) -> Path:
        return Path(self.state_dir) if self.state_dir else paths.state_dir_path(self.project)


@dataclass
class ReconcileConfig:
    """Settings for copying the checkout into the live configuration."""

    mappings: List[MappingConfig] = field(default_factory=_default_mappings)
    # 非空时，所有目标路径都挂在该目录下（测试或非标准安装使用）
    destination_root: Optional[str] = None
    restore_on_failure: bool = True


@dataclass
class CertificateConfig:
    """Settings for the optional repository-supplied certificate script."""

    enabled: bool = True
    script: str = paths.CERT_SCRIPT_SOURCE
    credentials: str = paths.CERT_CREDENTIALS_SOURCE
    shell: str = "bash"
    timeout: int = 900


@dataclass
class NginxConfig:
    """Commands used to validate and activate the proxy configuration."""

    test_command: List[str] = field(default_factory=lambda: ["nginx", "-t"])
    reload_command: List[str] = field(default_factory=lambda: ["systemctl", "reload", "nginx"])
    enable_command: List[str] = field(default_factory=lambda: ["systemctl", "enable", "nginx"])
    start_command: List[str] = field(default_factory=lambda: ["systemctl", "start", "nginx"])
    timeout: int = 60


@dataclass
class LockConfig:
    """Settings for serializing overlapping deployments."""

    mode: str = "wait"  # "wait" | "reject"
    timeout: float = 300.0


@dataclass
class AppConfig:
    """Top-level configuration."""

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    certificates: CertificateConfig = field(default_factory=CertificateConfig)
    nginx: NginxConfig = field(default_factory=NginxConfig)
    lock: LockConfig = field(default_factory=LockConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        repository_payload = _strip_comments(payload.get("repository", {}) or {})
        reconcile_payload = _strip_comments(payload.get("reconcile", {}) or {})
        certificates_payload = _strip_comments(payload.get("certificates", {}) or {})
        nginx_payload = _strip_comments(payload.get("nginx", {}) or {})
        lock_payload = _strip_comments(payload.get("lock", {}) or {})

        # 映射表单独解析，其余字段直接覆盖默认值
        mappings_payload = reconcile_payload.pop("mappings", None)
        reconcile_defaults = {
            k: v for k, v in ReconcileConfig().__dict__.items() if k != "mappings"
        }
        if mappings_payload is None:
            mappings = _default_mappings()
        else:
            mappings = [MappingConfig(**_strip_comments(item)) for item in mappings_payload]

        return cls(
            repository=RepositoryConfig(**{**RepositoryConfig().__dict__, **repository_payload}),
            reconcile=ReconcileConfig(
                **{**reconcile_defaults, **reconcile_payload},
                mappings=mappings,
            ),
            certificates=CertificateConfig(
                **{**CertificateConfig().__dict__, **certificates_payload}
            ),
            nginx=NginxConfig(**{**NginxConfig().__dict__, **nginx_payload}),
            lock=LockConfig(**{**LockConfig().__dict__, **lock_payload}),
        )


def _strip_comments(payload: Dict[str, Any]) -> Dict[str, Any]:
    # 过滤掉以下划线开头的注释字段
    return {k: v for k, v in payload.items() if not k.startswith("_")}


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path`, `$HOOK_DEPLOYER_CONFIG` or the system file.

    A missing system file is not an error: a freshly provisioned host deploys
    with the built-in defaults.

    Environment variables (higher priority than config file):
    - HOOK_DEPLOYER_PROJECT: project name used to derive default paths
    - HOOK_DEPLOYER_GIT_DIR: bare repository path
    - HOOK_DEPLOYER_WORK_TREE: checkout directory
    - HOOK_DEPLOYER_BRANCH: branch that triggers deployments
    - HOOK_DEPLOYER_DESTINATION_ROOT: prefix for every destination path
    - HOOK_DEPLOYER_LOCK_MODE: "wait" or "reject"
    """

    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        candidate_paths.append(Path(env_path))
    candidate_paths.append(paths.CONFIG_FILE)

    config = AppConfig()
    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            config = AppConfig.from_dict(data)
            break

    env_project = os.getenv("HOOK_DEPLOYER_PROJECT")
    if env_project:
        config.repository.project = env_project

    env_git_dir = os.getenv("HOOK_DEPLOYER_GIT_DIR")
    if env_git_dir:
        config.repository.git_dir = env_git_dir

    env_work_tree = os.getenv("HOOK_DEPLOYER_WORK_TREE")
    if env_work_tree:
        config.repository.work_tree = env_work_tree

    env_branch = os.getenv("HOOK_DEPLOYER_BRANCH")
    if env_branch:
        config.repository.deploy_branch = env_branch

    env_destination_root = os.getenv("HOOK_DEPLOYER_DESTINATION_ROOT")
    if env_destination_root:
        config.reconcile.destination_root = env_destination_root

    env_lock_mode = os.getenv("HOOK_DEPLOYER_LOCK_MODE")
    if env_lock_mode:
        config.lock.mode = env_lock_mode

    if config.lock.mode not in ("wait", "reject"):
        raise ValueError(f"Unsupported lock mode: {config.lock.mode}")

    return config
