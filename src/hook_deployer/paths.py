"""Fixed filesystem contract for hook-deployer.

A provisioned host looks like this:
- /home/git/<project>.git          # bare repository receiving pushes
- /srv/<project>-deploy            # work tree, rewritten on every push
- /var/lib/hook-deployer/<project> # lock file, last run record, backups
- /etc/nginx/...                   # reconciled proxy configuration
"""

from pathlib import Path

DEFAULT_PROJECT = "myproject"

# 根目录（与安装脚本保持一致）
GIT_HOME = Path("/home/git")
DEPLOY_ROOT = Path("/srv")
STATE_ROOT = Path("/var/lib/hook-deployer")
NGINX_ROOT = Path("/etc/nginx")
CONFIG_FILE = Path("/etc/hook-deployer/config.json")

# 仓库内约定的源文件布局
NGINX_CONF_SOURCE = "nginx_conf/nginx.conf"
CONF_D_SOURCE = "nginx_conf/conf.d/"
SITES_SOURCE = "nginx_conf/sites/"
CERT_SCRIPT_SOURCE = "execute_sh/deploy_certificates.sh"
CERT_CREDENTIALS_SOURCE = "execute_sh/cloudflare.ini"


def bare_repo_path(project: str) -> Path:
    """Bare repository for ``project``."""
    return GIT_HOME / f"{project}.git"


def work_tree_path(project: str) -> Path:
    """Directory holding the materialized checkout of ``project``."""
    return DEPLOY_ROOT / f"{project}-deploy"


def state_dir_path(project: str) -> Path:
    return STATE_ROOT / project
