"""
junior.fhr.ru crawl.

The federation portal lists regional sites (domains). Tournaments are
gathered from every domain first, deduplicated by id across domains, then
each tournament's teams are fanned out as tasks on an adaptive worker pool:
a tournament can list anything from two teams to several hundred
(team, birth year, group) contexts, so the load is not known up front.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from crawler.config.models import PoolSettings, SourceSettings
from crawler.domain import (
    PlayerProfileDTO,
    PlayerRecord,
    PlayerTeamRecord,
    TeamDTO,
    TeamRecord,
    TournamentDTO,
    TournamentRecord,
)
from crawler.error_handler import ErrorHandler
from crawler.errors import new_not_found_error, should_retry
from crawler.http.client import FetchClient
from crawler.identity import JUNIOR, team_ref
from crawler.logging_utils import log_event
from crawler.orchestrators.base import BaseOrchestrator, RetryHandler, RetryQueue
from crawler.orchestrators.parsers import JuniorParser
from crawler.storage.sqlalchemy_storage import CrawlRepositories
from crawler.workers.cancellation import CancellationToken
from crawler.workers.pool import AdaptiveWorkerPool, PoolConfig, Task
from crawler.workers.stage import CrawlCounters
from db.models.failed_job import FailedJob, JobType

logger = logging.getLogger(__name__)

PORTAL_PATH = "/"


@dataclass(frozen=True)
class _TournamentScope:
    tournament_id: str
    external_id: str
    domain: str
    season: str | None = None


@dataclass(frozen=True)
class _TeamTask:
    """
    One team in one (birth year, group) context of a tournament.
    """

    scope: _TournamentScope
    team_id: str
    url: str
    name: str
    birth_year: int | None = None
    group_name: str | None = None

    @property
    def task_id(self) -> str:
        return f"{self.team_id}|{self.birth_year or ''}|{self.group_name or ''}"


def _domain_url(domain: str) -> str:
    domain = domain.strip().rstrip("/")
    if domain.startswith(("http://", "https://")):
        return domain
    return f"https://{domain}"


class JuniorOrchestrator(BaseOrchestrator[JuniorParser]):
    source = JUNIOR

    def __init__(
        self,
        settings: SourceSettings,
        client: FetchClient,
        parser: JuniorParser,
        repositories: CrawlRepositories,
        *,
        retry_queue: RetryQueue | None = None,
        error_handler: ErrorHandler | None = None,
        pool_settings: PoolSettings | None = None,
    ) -> None:
        super().__init__(
            settings,
            client,
            parser,
            repositories,
            retry_queue=retry_queue,
            error_handler=error_handler,
        )
        self.pool_settings = pool_settings or PoolSettings()

    def _crawl(self, token: CancellationToken, counters: CrawlCounters) -> None:
        domains = self.parser.parse_domains(self.client.get(PORTAL_PATH, token=token))
        tournaments = self._discover_tournaments(token, domains)
        log_event(
            logger,
            logging.INFO,
            "tournaments_discovered",
            source=self.source.name,
            domains=len(domains),
            tournaments=len(tournaments),
        )

        pool = AdaptiveWorkerPool(self._pool_config(), token=token)
        tasks: dict[str, _TeamTask] = {}
        tasks_lock = threading.Lock()
        pool.start()
        try:
            self._stage(
                "tournaments",
                tournaments,
                lambda stage_token, item: self._process_tournament(
                    stage_token, item, pool, tasks, tasks_lock, counters
                ),
                workers=self.settings.tournament_workers,
                token=token,
            )
        finally:
            pool.close()

        for result in pool.results():
            task = tasks[result.task_id]
            if result.ok:
                counters.add(teams=1)
                continue
            self._record_failure(
                token,
                result.error,
                job_type=JobType.TEAM,
                external_id=task.team_id,
                url=task.url,
                counters=counters,
            )

        metrics = pool.metrics()
        log_event(
            logger,
            logging.INFO,
            "team_pool_finished",
            processed=metrics.processed_tasks,
            failed=metrics.failed_tasks,
            scale_events=metrics.scale_events,
            workers=metrics.active_workers,
        )

    def _pool_config(self) -> PoolConfig:
        workers = max(1, self.settings.team_workers)
        return PoolConfig(
            name=f"{self.source.name}-teams",
            worker_count=workers,
            max_workers=max(workers, self.pool_settings.max_workers),
            buffer_size=self.pool_settings.buffer_size,
            task_timeout_seconds=self.pool_settings.task_timeout_seconds,
            scale_threshold=self.pool_settings.scale_threshold,
            scale_interval_seconds=self.pool_settings.scale_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    def _discover_tournaments(
        self,
        token: CancellationToken,
        domains: list[str],
    ) -> list[tuple[str, TournamentDTO]]:
        seen: set[str] = set()
        found: list[tuple[str, TournamentDTO]] = []
        lock = threading.Lock()

        def handle(stage_token: CancellationToken, domain: str) -> bool:
            url = _domain_url(domain)
            scoped = self._scoped(stage_token, entity_type="domain", entity_id=domain, url=url)
            try:
                listed = self.parser.parse_tournaments(self.client.get(url, token=scoped), domain)
            except Exception as exc:  # noqa: BLE001
                self.error_handler.handle(exc, token=scoped)
                return False
            duplicates = 0
            with lock:
                for dto in listed:
                    if dto.external_id in seen:
                        duplicates += 1
                        continue
                    seen.add(dto.external_id)
                    if self.settings.birth_year_allowed(dto.birth_year):
                        found.append((domain, dto))
            log_event(
                logger,
                logging.INFO,
                "domain_completed",
                domain=domain,
                tournaments=len(listed),
                duplicates=duplicates,
            )
            return True

        self._stage("domains", domains, handle, workers=self.settings.domain_workers, token=token)
        return found

    # ------------------------------------------------------------------
    # Tournament -> team tasks
    # ------------------------------------------------------------------

    def _process_tournament(
        self,
        token: CancellationToken,
        item: tuple[str, TournamentDTO],
        pool: AdaptiveWorkerPool,
        tasks: dict[str, _TeamTask],
        tasks_lock: threading.Lock,
        counters: CrawlCounters,
    ) -> bool:
        domain, dto = item
        url = self.client.resolve_url(dto.url)
        scoped = self._scoped(token, entity_type="tournament", entity_id=dto.external_id, url=url)
        try:
            tournament_id = self.repositories.tournaments.upsert(
                TournamentRecord(
                    source=self.source,
                    external_id=dto.external_id,
                    name=dto.name,
                    season=dto.season,
                    birth_year=dto.birth_year,
                    url=url,
                    domain=domain,
                    start_date=dto.start_date,
                    end_date=dto.end_date,
                    is_ended=dto.is_ended,
                )
            )
            scope = _TournamentScope(
                tournament_id=tournament_id,
                external_id=dto.external_id,
                domain=domain,
                season=dto.season,
            )
            team_tasks = self._team_tasks(scope, self.parser.parse_teams(self.client.get(url, token=scoped)))
        except Exception as exc:  # noqa: BLE001
            self._record_failure(
                scoped,
                exc,
                job_type=JobType.TOURNAMENT,
                external_id=dto.external_id,
                url=url,
                counters=counters,
            )
            return False

        submitted = 0
        for task in team_tasks:
            with tasks_lock:
                if task.task_id in tasks:
                    continue
                tasks[task.task_id] = task
            if pool.submit(Task(task_id=task.task_id, fn=self._team_runner(task, counters), payload=task)):
                submitted += 1
        counters.add(tournaments=1)
        log_event(
            logger,
            logging.INFO,
            "team_tasks_submitted",
            tournament_id=scope.tournament_id,
            tasks=submitted,
        )
        return True

    def _team_tasks(self, scope: _TournamentScope, teams: list[TeamDTO]) -> list[_TeamTask]:
        """
        Upsert each distinct team once and build one task per team context.
        """

        saved: set[str] = set()
        tasks: list[_TeamTask] = []
        for team in teams:
            if not self.settings.birth_year_allowed(team.birth_year):
                continue
            team_id = team_ref(self.source, scope.tournament_id, team.external_id).render()
            url = self.client.resolve_url(team.url or "")
            if team_id not in saved:
                self.repositories.teams.upsert(
                    TeamRecord(
                        source=self.source,
                        tournament_id=scope.tournament_id,
                        external_id=team.external_id,
                        name=team.name,
                        city=team.city,
                        url=url,
                    )
                )
                saved.add(team_id)
            tasks.append(
                _TeamTask(
                    scope=scope,
                    team_id=team_id,
                    url=url,
                    name=team.name,
                    birth_year=team.birth_year,
                    group_name=team.group_name,
                )
            )
        return tasks

    # ------------------------------------------------------------------
    # Team -> players
    # ------------------------------------------------------------------

    def _team_runner(self, task: _TeamTask, counters: CrawlCounters):
        def run(token: CancellationToken) -> int:
            return self._crawl_team(token, task, counters)

        return run

    def _crawl_team(self, token: CancellationToken, task: _TeamTask, counters: CrawlCounters) -> int:
        scoped = self._scoped(token, entity_type="team", entity_id=task.team_id, url=task.url)
        players = self.parser.parse_players(self.client.get(task.url, token=scoped))
        if not players:
            log_event(logger, logging.WARNING, "team_without_players", team_id=task.team_id, url=task.url)
            return 0

        saved = 0
        skipped = 0
        failures: list[Exception] = []
        for profile in players:
            if scoped.cancelled:
                break
            birth_year = profile.birth_date.year if profile.birth_date else None
            if not self.settings.birth_year_allowed(birth_year):
                skipped += 1
                continue
            try:
                self._save_player(task, profile)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.WARNING,
                    "player_save_failed",
                    team_id=task.team_id,
                    player_id=profile.external_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                failures.append(exc)
                continue
            saved += 1
        counters.add(players=saved)
        log_event(
            logger,
            logging.INFO,
            "team_completed",
            team_id=task.team_id,
            birth_year=task.birth_year,
            group_name=task.group_name,
            players=saved,
            skipped=skipped,
            failed=len(failures),
        )
        if failures:
            # Rosters carry full profiles; the team is the retried unit.
            raise next((exc for exc in failures if should_retry(exc)), failures[0])
        return saved

    def _save_player(self, task: _TeamTask, profile: PlayerProfileDTO) -> str:
        player_id = self.repositories.players.upsert(
            PlayerRecord(
                source=self.source,
                external_id=profile.external_id,
                full_name=profile.full_name,
                birth_date=profile.birth_date,
                birth_place=profile.birth_place,
                position=profile.position,
                height=profile.height,
                weight=profile.weight,
                handedness=profile.handedness,
                citizenship=profile.citizenship,
                school=profile.school,
                profile_url=profile.profile_url,
            )
        )
        self.repositories.player_teams.upsert(
            PlayerTeamRecord(
                player_id=player_id,
                team_id=task.team_id,
                tournament_id=task.scope.tournament_id,
                number=profile.number,
                position=profile.position,
                role=profile.role,
                season=task.scope.season,
            )
        )
        return player_id

    # ------------------------------------------------------------------
    # Retry handlers
    # ------------------------------------------------------------------

    def retry_handlers(self) -> dict[str, RetryHandler]:
        # Player failures are folded into their team, so no player handler.
        return {JobType.TOURNAMENT: self._retry_tournament, JobType.TEAM: self._retry_team}

    def _retry_tournament(self, token: CancellationToken, job: FailedJob) -> None:
        """
        Re-read the tournament's team listing and crawl every context in turn.

        A team that fails again is queued as its own team job; only the
        listing itself decides the outcome of this job.
        """

        row = self.repositories.tournaments.get_by_external_id(self.source, job.external_id)
        if row is None:
            raise new_not_found_error("tournament", job.external_id)
        url = job.url or row.url
        if not url:
            raise new_not_found_error("tournament url", job.external_id)
        scope = _TournamentScope(
            tournament_id=row.id,
            external_id=row.external_id,
            domain=row.domain or "",
            season=row.season,
        )
        scoped = self._scoped(token, entity_type="tournament", entity_id=row.external_id, url=url)
        tasks = self._team_tasks(scope, self.parser.parse_teams(self.client.get(url, token=scoped)))

        counters = CrawlCounters()
        for task in tasks:
            token.raise_if_cancelled()
            try:
                self._crawl_team(token, task, counters)
            except Exception as exc:  # noqa: BLE001
                self._record_failure(
                    token,
                    exc,
                    job_type=JobType.TEAM,
                    external_id=task.team_id,
                    url=task.url,
                    counters=counters,
                )
        log_event(
            logger,
            logging.INFO,
            "tournament_retried",
            tournament_id=scope.tournament_id,
            teams=len(tasks),
            failed_jobs=counters.get("failed_jobs"),
        )

    def _retry_team(self, token: CancellationToken, job: FailedJob) -> None:
        ref = self._team_job_ref(job)
        row = self.repositories.tournaments.get_by_external_id(self.source, ref.scope[0])
        if row is None:
            raise new_not_found_error("tournament", ref.scope[0])
        if not job.url:
            raise new_not_found_error("team url", job.external_id)
        scope = _TournamentScope(
            tournament_id=row.id,
            external_id=row.external_id,
            domain=row.domain or "",
            season=row.season,
        )
        task = _TeamTask(scope=scope, team_id=ref.render(), url=job.url, name=ref.external_id)
        self._crawl_team(token, task, CrawlCounters())
