"""Deployment trigger: the orchestration run by the post-receive hook."""

from __future__ import annotations

from typing import Optional, Sequence

from .certificates import CertificateAction, NullCertificateAction, ScriptCertificateAction
from .config import AppConfig
from .errors import CommandError, DeploymentError, ReconcileError, ValidationError
from .gitops import GitCommandError, GitRepositoryManager, RefUpdate, select_target
from .local import LocalSession
from .lock import DeploymentLock
from .nginx import NginxController
from .reconcile import Reconciler, mappings_from_config
from .state import DeploymentResult, DeploymentState, RunRecordStore
from .utils.logging import get_logger

logger = get_logger(__name__)

LOCK_FILE = "deploy.lock"
BACKUP_DIR = "backup"


class DeploymentTrigger:
    """Moves a pushed revision through checkout, reconcile, certificates, validate, reload.

    Steps run strictly in order and the first failure ends the run. Nothing
    raised by a step escapes :meth:`run`; it is turned into a terminal state
    of the returned :class:`DeploymentResult`.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        git_manager: Optional[GitRepositoryManager] = None,
        reconciler: Optional[Reconciler] = None,
        certificate_action: Optional[CertificateAction] = None,
        nginx: Optional[NginxController] = None,
        session: Optional[LocalSession] = None,
        lock: Optional[DeploymentLock] = None,
        record_store: Optional[RunRecordStore] = None,
    ) -> None:
        self.config = config
        repo = config.repository
        self.git_dir = repo.git_dir_path
        self.work_tree = repo.work_tree_path
        self.state_dir = repo.state_dir_path

        session = session or LocalSession()
        self.git_manager = git_manager or GitRepositoryManager(repo.git_binary)
        self.reconciler = reconciler or Reconciler(
            mappings_from_config(config.reconcile),
            backup_dir=self.state_dir / BACKUP_DIR if config.reconcile.restore_on_failure else None,
        )
        self.certificate_action = certificate_action or self._build_certificate_action(session)
        self.nginx = nginx or NginxController(
            test_command=config.nginx.test_command,
            reload_command=config.nginx.reload_command,
            enable_command=config.nginx.enable_command,
            start_command=config.nginx.start_command,
            session=session,
            timeout=config.nginx.timeout,
        )
        self.lock = lock or DeploymentLock(
            self.state_dir / LOCK_FILE,
            mode=config.lock.mode,
            timeout=config.lock.timeout,
        )
        self.record_store = record_store or RunRecordStore(self.state_dir)

    def _build_certificate_action(self, session: LocalSession) -> CertificateAction:
        certificates = self.config.certificates
        if not certificates.enabled:
            return NullCertificateAction()
        return ScriptCertificateAction(
            certificates.script,
            certificates.credentials,
            session=session,
            shell=certificates.shell,
            timeout=certificates.timeout,
        )

    def run(
        self,
        updates: Optional[Sequence[RefUpdate]] = None,
        ref: Optional[str] = None,
    ) -> DeploymentResult:
        """Run one deployment.

        Args:
            updates: Ref updates from post-receive stdin. Empty or None
                deploys the current tip.
            ref: Branch to deploy, overriding ``updates`` (manual runs).
        """
        result = DeploymentResult()
        logger.info("[post-receive] Starting deployment...")
        try:
            self.lock.acquire()
        except DeploymentError as exc:
            # 不写运行记录：记录属于正在运行的那次部署
            logger.error("[post-receive] %s", exc)
            result.message = str(exc)
            result.advance(DeploymentState.ABORTED)
            return result

        try:
            self._run_steps(result, list(updates or []), ref)
            try:
                self.record_store.save(result)
            except OSError as exc:
                logger.warning("Could not write run record %s: %s", self.record_store.path, exc)
        finally:
            self.lock.release()
        return result

    def _run_steps(self, result: DeploymentResult, updates: list[RefUpdate], ref: Optional[str]) -> None:
        try:
            branch = self._resolve_branch(result, updates, ref)
            if result.state is DeploymentState.SKIPPED:
                return

            logger.info("[post-receive] Checking out latest revision to %s...", self.work_tree)
            checkout = self.git_manager.checkout(
                self.git_dir,
                self.work_tree,
                branch,
                clean=self.config.repository.clean_work_tree,
            )
            result.commit = checkout.commit_sha
            if result.pushed_commit and result.pushed_commit != checkout.commit_sha:
                # 排队等锁期间分支又被推送：部署最新的提交，后续的钩子会重复同一提交
                logger.warning(
                    "[post-receive] %s moved from pushed %s to %s while waiting; deploying the newer tip",
                    result.ref,
                    result.pushed_commit[:12],
                    checkout.commit_sha[:12],
                )
            if checkout.branch and not result.ref:
                result.ref = f"refs/heads/{checkout.branch}"
            self._advance(result, DeploymentState.CHECKED_OUT)

            report = self.reconciler.reconcile(self.work_tree)
            logger.info(
                "[post-receive] Reconciled: %d file(s) copied, %d removed, %d mapping(s) skipped",
                report.copied,
                report.removed,
                len(report.skipped),
            )
            self._advance(result, DeploymentState.RECONCILED)

            self.certificate_action.run(self.work_tree, self._step_env(result))
            self._advance(result, DeploymentState.CERT_DONE)

            try:
                self.nginx.validate()
            except ValidationError as exc:
                logger.error("[post-receive] nginx rejected the configuration, not reloading")
                result.message = "Configuration check failed; running nginx keeps its previous configuration"
                result.diagnostics = exc.output
                self._recover(result)
                self._advance(result, DeploymentState.VALIDATION_FAILED)
                return
            self._advance(result, DeploymentState.VALIDATED)

            self.nginx.reload()
            self._discard_backup()
            result.message = f"Deployed {checkout.commit_sha[:12]}"
            self._advance(result, DeploymentState.RELOADED)
            logger.info("[post-receive] Deployment complete!")
        except (DeploymentError, OSError, ValueError) as exc:
            logger.error("[post-receive] Deployment aborted: %s", exc)
            result.message = str(exc)
            result.diagnostics = _diagnostics(exc)
            self._recover(result)
            self._advance(result, DeploymentState.ABORTED)

    def _resolve_branch(
        self, result: DeploymentResult, updates: list[RefUpdate], ref: Optional[str]
    ) -> Optional[str]:
        if ref:
            result.ref = f"refs/heads/{ref}"
            return ref
        if not updates:
            # 手动触发：部署当前 HEAD
            return None

        deploy_branch = self.config.repository.deploy_branch or self.git_manager.current_branch(
            self.git_dir
        )
        if not deploy_branch:
            raise DeploymentError(f"Cannot determine the deploy branch of {self.git_dir}")

        target = select_target(updates, deploy_branch)
        if target is None:
            ignored = ", ".join(update.ref for update in updates)
            result.message = f"No update to refs/heads/{deploy_branch}; ignored {ignored}"
            logger.info("[post-receive] %s", result.message)
            self._advance(result, DeploymentState.SKIPPED)
            return None

        for update in updates:
            if update is not target:
                logger.info("[post-receive] Ignoring %s (deploying %s)", update.ref, target.ref)
        result.ref = target.ref
        result.pushed_commit = target.new_sha
        return deploy_branch

    def _recover(self, result: DeploymentResult) -> None:
        if not self.reconciler.has_snapshot:
            self._discard_backup()
            return
        try:
            self.reconciler.restore()
        except ReconcileError as exc:
            logger.error("[post-receive] %s; backup kept in %s", exc, self.reconciler.backup_dir)
            result.diagnostics = "\n".join(filter(None, [result.diagnostics, str(exc)]))
            return
        logger.info("[post-receive] Previous configuration files restored")
        self._discard_backup()

    def _discard_backup(self) -> None:
        try:
            self.reconciler.discard_backup()
        except OSError as exc:
            logger.warning("[post-receive] Could not remove backup %s: %s", self.reconciler.backup_dir, exc)

    def _step_env(self, result: DeploymentResult) -> dict[str, str]:
        env = {"DEPLOY_WORK_TREE": str(self.work_tree)}
        if result.commit:
            env["DEPLOY_COMMIT"] = result.commit
        if result.ref:
            env["DEPLOY_REF"] = result.ref
        return env

    def _advance(self, result: DeploymentResult, state: DeploymentState) -> None:
        result.advance(state)
        logger.debug("Deployment state -> %s", state.value)


def _diagnostics(exc: Exception) -> str:
    if isinstance(exc, GitCommandError):
        return exc.stderr
    if isinstance(exc, CommandError):
        return exc.output
    return ""
