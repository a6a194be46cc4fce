"""Application-facing commands wrapping the ingestion core."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from .core.config import AppSettings
from .core.datetime_utils import utc_now
from .core.errors import (
    AccountNotFoundError,
    ErrorResponse,
    ProjectNotFoundError,
    ThreadlineError,
    ValidationError,
)
from .core.events import ProgressEmitter, ProgressObserver
from .core.interfaces import TokenProvider
from .core.models import (
    Account,
    AccountSummary,
    AuthType,
    OAuthTokens,
    ProjectOverview,
    ProjectStatus,
    ProviderConfig,
    SyncProgress,
)
from .ingestion.attachments import AttachmentStore
from .ingestion.sync import SessionFactory, SyncEngine
from .projects.classifier import ProjectClassifier
from .projects.timeline import TimelineAssembler, TimelineEvent
from .storage.connection_pool import ConnectionPool
from .transport.auth import AuthMethod, OAuthAuth, PasswordAuth
from .transport.oauth import HttpTokenRefresher
from .transport.providers import detect_provider, get_provider, get_provider_configs

LOGGER = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 60

SyncOutcome = SyncProgress | ErrorResponse


# pylint: disable=too-many-instance-attributes
class ThreadlineCommands:
    """Entry points used by the CLI and the HTTP API."""

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        settings: AppSettings,
        *,
        pool: ConnectionPool | None = None,
        token_provider: TokenProvider | None = None,
        connect: SessionFactory | None = None,
        observer: ProgressObserver | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.pool = pool or ConnectionPool(settings.storage)
        self.emitter = ProgressEmitter(observer)
        self.classifier = ProjectClassifier(self.pool, clock=clock)
        self.timeline = TimelineAssembler(self.pool)
        self.engine = SyncEngine(
            self.pool,
            AttachmentStore(settings.storage.attachments_dir),
            classifier=self.classifier,
            emitter=self.emitter,
            connect=connect,
            timeouts=settings.timeouts,
        )
        self._tokens = token_provider or HttpTokenRefresher(settings.oauth)
        self._clock = clock

    # Accounts --------------------------------------------------------------------
    async def add_account(self, email: str, password: str) -> int:
        """Register a password account for ``email``."""
        provider = _require_provider(email)
        LOGGER.info("Adding account %s (provider %s)", email, provider.name)
        account_id = await self.pool.run(
            lambda repo: repo.create_account(
                email, provider.name, provider.imap, AuthType.PASSWORD, password=password
            )
        )
        LOGGER.info("Account added with ID %s", account_id)
        return account_id

    async def add_oauth_account(self, email: str, provider: str, tokens: OAuthTokens) -> int:
        """Register an OAuth account using tokens from the external flow."""
        config = get_provider(provider) or _require_provider(email)
        if not config.oauth_supported:
            raise ValidationError(
                f"Provider {config.name} does not support OAuth",
                code="UNSUPPORTED_PROVIDER",
            )
        expires_at = self._expires_at(tokens)
        LOGGER.info("Adding OAuth account %s (provider %s)", email, config.name)
        return await self.pool.run(
            lambda repo: repo.create_account(
                email,
                config.name,
                config.imap,
                AuthType.OAUTH,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=expires_at,
            )
        )

    async def list_accounts(self) -> list[AccountSummary]:
        return await self.pool.run(lambda repo: repo.list_accounts())

    async def reset_account_sync(self, email: str) -> None:
        """Drop the account's messages and projects and restart from UID 0."""
        account = await self._require_account(email)
        LOGGER.info("Resetting sync state for account %s", email)
        await self.pool.run(lambda repo: repo.reset_account(account.id))

    @staticmethod
    def list_providers() -> tuple[ProviderConfig, ...]:
        return get_provider_configs()

    # Sync ------------------------------------------------------------------------
    async def sync_account(self, email: str, password: str | None = None) -> SyncProgress:
        """Run one sync for ``email`` and return the final progress value."""
        account = await self._require_account(email)
        auth = await self._build_auth(account, password)
        report = await self.engine.run(account, auth, self.settings.sync)
        return report.to_progress()

    async def sync_all_accounts(self) -> dict[str, SyncOutcome]:
        """Sync every account concurrently; failures are reported per account."""
        accounts = await self.list_accounts()
        results = await asyncio.gather(
            *(self.sync_account(account.email) for account in accounts),
            return_exceptions=True,
        )
        outcomes: dict[str, SyncOutcome] = {}
        for account, result in zip(accounts, results):
            if isinstance(result, ThreadlineError):
                LOGGER.warning("Sync of %s failed: %s", account.email, result)
                outcomes[account.email] = result.to_response()
            elif isinstance(result, Exception):
                LOGGER.error("Unexpected error syncing %s", account.email, exc_info=result)
                outcomes[account.email] = ThreadlineError(str(result)).to_response()
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes[account.email] = result
        return outcomes

    async def auto_sync(
        self,
        *,
        rounds: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> int:
        """Re-sync all accounts every ``sync_interval_minutes``; return rounds run."""
        sync_settings = self.settings.sync
        if not sync_settings.auto_sync_enabled:
            LOGGER.info("Automatic sync is disabled")
            return 0
        interval = sync_settings.sync_interval_minutes * 60
        completed = 0
        while rounds is None or completed < rounds:
            if completed:
                await sleep(interval)
            outcomes = await self.sync_all_accounts()
            completed += 1
            LOGGER.info("Auto-sync round %s finished for %s accounts", completed, len(outcomes))
        return completed

    # Projects --------------------------------------------------------------------
    async def list_projects(self) -> list[ProjectOverview]:
        return await self.pool.run(lambda repo: repo.list_project_overviews())

    async def get_project(self, project_id: int) -> ProjectOverview:
        overview = await self.pool.run(lambda repo: repo.fetch_project_overview(project_id))
        if overview is None:
            raise ProjectNotFoundError(project_id)
        return overview

    async def get_project_timeline(self, project_id: int) -> list[TimelineEvent]:
        return await self.timeline.timeline(project_id)

    async def toggle_project_pin(self, project_id: int) -> bool:
        pinned = await self.pool.run(lambda repo: repo.toggle_project_pin(project_id))
        if pinned is None:
            raise ProjectNotFoundError(project_id)
        LOGGER.info("Project %s pin state changed to %s", project_id, pinned)
        return pinned

    async def archive_project(self, project_id: int) -> None:
        await self._set_status(project_id, ProjectStatus.ARCHIVED)

    async def unarchive_project(self, project_id: int) -> None:
        await self._set_status(project_id, ProjectStatus.ACTIVE)

    async def classify_unassigned(self) -> int:
        return await self.classifier.classify_unassigned()

    def close(self) -> None:
        self.pool.close()

    # Internal helpers --------------------------------------------------------------
    async def _require_account(self, email: str) -> Account:
        account = await self.pool.run(lambda repo: repo.fetch_account_by_email(email))
        if account is None:
            raise AccountNotFoundError(email, f"Account {email} not found")
        return account

    async def _set_status(self, project_id: int, status: ProjectStatus) -> None:
        updated = await self.pool.run(lambda repo: repo.set_project_status(project_id, status))
        if not updated:
            raise ProjectNotFoundError(project_id)
        LOGGER.info("Project %s is now %s", project_id, status)

    async def _build_auth(self, account: Account, password: str | None) -> AuthMethod:
        if account.auth_type is AuthType.OAUTH:
            access_token = await self._current_access_token(account)
            if not access_token:
                raise ValidationError("OAuth access token not found", code="MISSING_TOKEN")
            LOGGER.info("Using OAuth authentication for %s", account.email)
            return OAuthAuth(username=account.email, access_token=access_token)

        secret = password or account.password
        if not secret:
            raise ValidationError(
                "Password required for password authentication", code="MISSING_PASSWORD"
            )
        LOGGER.info("Using password authentication for %s", account.email)
        return PasswordAuth(username=account.email, password=secret)

    async def _current_access_token(self, account: Account) -> str | None:
        """Return a usable access token, refreshing it first when it has expired."""
        expires_at = account.oauth_token_expires_at
        now = int(self._clock().timestamp())
        if (
            expires_at is None
            or account.oauth_refresh_token is None
            or now < expires_at - TOKEN_EXPIRY_MARGIN_SECONDS
        ):
            return account.oauth_access_token

        LOGGER.info("Access token for %s expired; refreshing", account.email)
        tokens = await self._tokens.refresh(account.provider, account.oauth_refresh_token)
        new_expiry = self._expires_at(tokens)
        await self.pool.run(
            lambda repo: repo.update_oauth_tokens(
                account.id, tokens.access_token, tokens.refresh_token, new_expiry
            )
        )
        return tokens.access_token

    def _expires_at(self, tokens: OAuthTokens) -> int | None:
        if tokens.expires_in is None:
            return None
        return int(self._clock().timestamp()) + tokens.expires_in


def _require_provider(email: str) -> ProviderConfig:
    provider = detect_provider(email)
    if provider is None:
        raise ValidationError(
            f"Unsupported email provider for: {email}", code="UNSUPPORTED_PROVIDER"
        )
    return provider


__all__ = ["SyncOutcome", "ThreadlineCommands"]
