"""Top-level sync run: authenticate, reconcile, apply."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from icloud_photos_sync.auth import AuthSession
from icloud_photos_sync.config import AppConfig
from icloud_photos_sync.events import WarningChannel
from icloud_photos_sync.library import JsonLibraryStore, LocalLibrary
from icloud_photos_sync.logger import get_logger
from icloud_photos_sync.mfa import ConsoleMfaPrompt, MfaPrompt
from icloud_photos_sync.query import QueryExecutor
from icloud_photos_sync.reconcile import DEFAULT_MAX_CONCURRENCY, ReconciliationEngine, SyncPlan
from icloud_photos_sync.retry import DEFAULT_MAX_RETRIES, RetryController


class SyncPhase(Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    RECONCILING = "reconciling"
    APPLYING = "applying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncResult:
    plan: SyncPlan
    applied: bool
    local_album_count: int
    warning_count: int = 0
    counts: Dict[str, int] = field(default_factory=dict)


class SyncOrchestrator:
    """Runs one sync pass; ``phase`` reflects where the run currently is."""

    def __init__(
        self,
        session: AuthSession,
        library: LocalLibrary,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        dry_run: bool = False,
        warnings: Optional[WarningChannel] = None,
        logger: Optional[logging.Logger] = None,
        retry_logger: Optional[logging.Logger] = None,
        engine_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.library = library
        self.max_retries = max_retries
        self.max_concurrency = max_concurrency
        self.dry_run = dry_run
        self.logger = logger or logging.getLogger("cli-interface")
        self.warnings = warnings or session.warnings
        self.retry_logger = retry_logger
        self.engine_logger = engine_logger
        self.phase = SyncPhase.IDLE

    @classmethod
    def from_config(
        cls,
        app_config: AppConfig,
        *,
        mfa_prompt: Optional[MfaPrompt] = None,
        dry_run: bool = False,
    ) -> "SyncOrchestrator":
        names = app_config.logging.logger_names
        warnings = WarningChannel(get_logger("sync-engine", names))
        photos_logger = get_logger("photos", names)
        page_size = app_config.sync.page_size

        def photos_factory(session: AuthSession) -> QueryExecutor:
            return QueryExecutor(session, page_size=page_size, warnings=warnings, logger=photos_logger)

        account = app_config.account
        session = AuthSession(
            account.username,
            account.password,
            data_dir=app_config.paths.data_dir,
            trust_token=account.trust_token,
            refresh_token=account.refresh_token,
            fail_on_mfa=account.fail_on_mfa,
            mfa_prompt=mfa_prompt or ConsoleMfaPrompt(logger=get_logger("mfa", names)),
            photos_factory=photos_factory,
            warnings=warnings,
            logger=get_logger("auth", names),
            session_validity_seconds=app_config.sync.session_validity_seconds,
            request_timeout=app_config.sync.request_timeout,
        )
        library = JsonLibraryStore.in_data_dir(app_config.paths.data_dir, logger=get_logger("library", names))
        return cls(
            session,
            library,
            max_retries=app_config.sync.max_retries,
            max_concurrency=app_config.sync.max_concurrency,
            dry_run=dry_run,
            warnings=warnings,
            logger=get_logger("cli", names),
            retry_logger=get_logger("retry", names),
            engine_logger=get_logger("sync-engine", names),
        )

    def _set_phase(self, phase: SyncPhase) -> None:
        self.logger.debug("Sync phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def run(self) -> SyncResult:
        try:
            self._set_phase(SyncPhase.AUTHENTICATING)
            # Blocks until readiness resolves; MFA may take as long as the user needs
            photos = self.session.authenticate().result()

            self._set_phase(SyncPhase.RECONCILING)
            local_albums = self.library.load_local_albums()
            engine = ReconciliationEngine(
                photos,
                RetryController(self.session, self.max_retries, logger=self.retry_logger),
                max_concurrency=self.max_concurrency,
                warnings=self.warnings,
                logger=self.engine_logger,
            )
            plan = engine.reconcile(local_albums)

            if self.dry_run:
                self.logger.info("Dry run, not applying %d operation(s)", len(plan))
            else:
                self._set_phase(SyncPhase.APPLYING)
                self.library.apply_plan(plan)
        except BaseException:
            self._set_phase(SyncPhase.FAILED)
            raise
        self._set_phase(SyncPhase.DONE)
        return SyncResult(
            plan=plan,
            applied=not self.dry_run,
            local_album_count=len(local_albums),
            warning_count=len(self.warnings.history),
            counts=plan.counts(),
        )


__all__ = ["SyncOrchestrator", "SyncPhase", "SyncResult"]
