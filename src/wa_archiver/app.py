"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from wa_archiver.api.server import ApiContext, ApiServer, create_app
from wa_archiver.commands.interpreter import CommandInterpreter
from wa_archiver.config import AppConfig, resolve_timezone
from wa_archiver.core.tasks import BackgroundTasks
from wa_archiver.ingest.normalizer import MessageNormalizer
from wa_archiver.log import get_logger
from wa_archiver.services.base import Service
from wa_archiver.services.email.factory import create_email_sender
from wa_archiver.services.error_log import ErrorLog
from wa_archiver.services.event_log import EventLog
from wa_archiver.services.export import ExportService
from wa_archiver.services.reports import ReportService
from wa_archiver.services.scheduler import SchedulerService
from wa_archiver.storage.database import Database
from wa_archiver.storage.message_repo import MessageRepository
from wa_archiver.storage.metadata_cache import MetadataCache
from wa_archiver.whatsapp.base import ProtocolSession, SessionFactory
from wa_archiver.whatsapp.manager import SessionManager

logger = get_logger(__name__)


def pyaileys_session_factory(session_path: Path) -> ProtocolSession:
    from wa_archiver.whatsapp.pyaileys_session import PyaileysSession

    return PyaileysSession(session_path)


class ArchiverApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, session_factory: Optional[SessionFactory] = None):
        self.config = config
        self.tz = resolve_timezone(config.timezone)
        self.tasks = BackgroundTasks()

        self.db = Database(config.storage.db_path)
        self.messages = MessageRepository(self.db)
        self.metadata = MetadataCache(self.db, config.whatsapp.media_dir, self.tasks)
        self.errors = ErrorLog(self.db)
        self.events = EventLog(self.db, self.messages, self.metadata)

        self.export = ExportService(self.messages, self.tz)
        self.reports = ReportService(
            create_email_sender(config.email),
            config.email,
            config.daily_report,
            config.commands,
            self.export,
            self.messages,
        )
        self.scheduler = SchedulerService(
            config.daily_report,
            str(self.tz),
            self.reports,
            self.errors,
            error_retention_days=config.storage.error_retention_days,
        )

        self.normalizer = MessageNormalizer(
            self.messages,
            self.metadata,
            self.errors,
            self.events,
            self.tasks,
            config.whatsapp.media_dir,
        )
        self.session = SessionManager(
            config.whatsapp,
            session_factory or pyaileys_session_factory,
            self.normalizer,
            self.errors,
            self.tasks,
        )
        self.interpreter = CommandInterpreter(
            config.commands,
            self.reports,
            self.session,
            qr_wait_seconds=config.whatsapp.qr_wait_seconds,
        )
        self.session.set_command_interpreter(self.interpreter)

        self.api: ApiServer | None = None
        if config.api.enabled:
            api_app = create_app(
                ApiContext(
                    messages=self.messages,
                    export=self.export,
                    reports=self.reports,
                    session=self.session,
                    errors=self.errors,
                    events=self.events,
                    tz=self.tz,
                ),
                media_dir=config.whatsapp.media_dir,
            )
            self.api = ApiServer(config.api, api_app)

        self._started: list[Service] = []

    @property
    def services(self) -> list[Service]:
        """Lifecycle services in start order."""
        services: list[Service] = [self.scheduler, self.session]
        if self.api is not None:
            services.append(self.api)
        return services

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()
        Path(self.config.whatsapp.media_dir).mkdir(parents=True, exist_ok=True)

        # 2. Scheduler, WhatsApp session, REST API
        for service in self.services:
            await service.start()
            self._started.append(service)
            logger.info("service_started", service=service.service_name)

        logger.info(
            "wa_archiver_started",
            timezone=str(self.tz),
            email_enabled=self.reports.email_enabled,
            api=f"{self.config.api.host}:{self.config.api.port}" if self.api else None,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components, in reverse start order."""
        for service in reversed(self._started):
            try:
                await service.stop()
                logger.info("service_stopped", service=service.service_name)
            except Exception as e:
                logger.error("service_stop_error", service=service.service_name, error=str(e))
        self._started.clear()

        await self.tasks.cancel_all()
        await self.db.close()
        logger.info("wa_archiver_stopped")
