"""
Orchestrator registry and factory.

Parsers are resolved from ``module.path:ClassName`` import paths so site
selector code can ship separately from the crawl engine.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable, Mapping
from typing import Any

import requests
from sqlalchemy.orm import Session

from crawler.backoff import BackoffStrategy, PowerOfTwoBackoff, StepBackoff
from crawler.config.loader import get_crawl_settings, get_source_settings
from crawler.config.models import CrawlSettings, SourceSettings
from crawler.error_handler import ErrorHandler
from crawler.http.client import BROWSER_USER_AGENT, FetchClient
from crawler.orchestrators.base import BaseOrchestrator, RetryQueue
from crawler.orchestrators.fhspb import FhspbOrchestrator
from crawler.orchestrators.junior import JuniorOrchestrator
from crawler.orchestrators.mihf import MihfOrchestrator
from crawler.orchestrators.parsers import FhspbParser, JuniorParser, MihfParser
from crawler.retry.manager import RetryManager
from crawler.storage.sqlalchemy_storage import CrawlRepositories
from db.session import SessionLocal

SessionFactory = Callable[[], Session]


class OrchestratorRegistry:
    """
    Maps source names to orchestrator classes and their parser contracts.
    """

    def __init__(
        self,
        registrations: Mapping[str, tuple[type[BaseOrchestrator], type]] | None = None,
    ) -> None:
        builtins: dict[str, tuple[type[BaseOrchestrator], type]] = {
            "fhspb": (FhspbOrchestrator, FhspbParser),
            "mihf": (MihfOrchestrator, MihfParser),
            "junior": (JuniorOrchestrator, JuniorParser),
        }
        if registrations:
            builtins.update(registrations)
        self._registrations = builtins

    @property
    def sources(self) -> list[str]:
        return sorted(self._registrations)

    def register(
        self,
        *,
        source: str,
        orchestrator_class: type[BaseOrchestrator],
        parser_protocol: type,
    ) -> None:
        self._registrations[source.strip().lower()] = (orchestrator_class, parser_protocol)

    def resolve(self, source: str) -> tuple[type[BaseOrchestrator], type]:
        resolved = self._registrations.get(source.strip().lower())
        if resolved is None:
            allowed = ", ".join(self.sources)
            raise ValueError(f"Unknown source='{source}'. Allowed sources: {allowed}.")
        return resolved

    def load_parser(self, settings: SourceSettings) -> Any:
        if not settings.parser_class:
            raise ValueError(
                f"No parser configured for source='{settings.name}'. "
                f"Set {settings.name.upper()}_PARSER_CLASS to 'module.path:ClassName'."
            )
        _, protocol = self.resolve(settings.name)
        parser = self._load_dynamic_class(settings.parser_class)()
        if not isinstance(parser, protocol):
            raise ValueError(
                f"Parser '{settings.parser_class}' does not implement {protocol.__name__}."
            )
        return parser

    def create_orchestrator(
        self,
        source: str,
        *,
        parser: Any = None,
        client: FetchClient | None = None,
        repositories: CrawlRepositories | None = None,
        retry_queue: RetryQueue | None = None,
        settings: SourceSettings | None = None,
        crawl_settings: CrawlSettings | None = None,
        session_factory: SessionFactory = SessionLocal,
    ) -> BaseOrchestrator:
        orchestrator_class, _ = self.resolve(source)
        settings = settings or get_source_settings(source)
        crawl_settings = crawl_settings or get_crawl_settings()
        if retry_queue is None and settings.retry_enabled:
            retry_queue = build_retry_manager(settings, session_factory=session_factory)

        kwargs: dict[str, Any] = {
            "retry_queue": retry_queue,
            "error_handler": ErrorHandler(max_retries=crawl_settings.error_max_retries),
        }
        if orchestrator_class is JuniorOrchestrator:
            kwargs["pool_settings"] = crawl_settings.pool
        return orchestrator_class(
            settings,
            client or build_client(settings, crawl_settings),
            parser if parser is not None else self.load_parser(settings),
            repositories or CrawlRepositories.sqlalchemy(session_factory),
            **kwargs,
        )

    @staticmethod
    def _load_dynamic_class(path: str) -> type:
        if ":" not in path:
            raise ValueError(f"Invalid parser_class '{path}'. Use 'module.path:ClassName'.")

        module_path, class_name = path.split(":", 1)
        module = importlib.import_module(module_path)
        loaded = getattr(module, class_name, None)
        if loaded is None:
            raise ValueError(f"Unable to resolve parser class '{path}'.")
        if not isinstance(loaded, type):
            raise ValueError(f"'{path}' must be a class.")
        return loaded


def fetch_backoff_for(source: str) -> BackoffStrategy:
    if source == "mihf":
        return PowerOfTwoBackoff()
    return StepBackoff()


def build_client(
    settings: SourceSettings,
    crawl_settings: CrawlSettings,
    *,
    session: requests.Session | None = None,
) -> FetchClient:
    return FetchClient(
        source=settings.name,
        base_url=settings.base_url,
        delay_seconds=settings.request_delay_seconds,
        timeout_seconds=settings.http_timeout_seconds,
        max_attempts=crawl_settings.http.max_attempts,
        backoff=fetch_backoff_for(settings.name),
        user_agent=crawl_settings.http.user_agent or BROWSER_USER_AGENT,
        session=session,
    )


def build_retry_manager(
    settings: SourceSettings,
    *,
    session_factory: SessionFactory = SessionLocal,
) -> RetryManager:
    return RetryManager(
        session_factory,
        max_retries=settings.retry_max_attempts,
        base_delay_seconds=settings.retry_delay_seconds,
    )
