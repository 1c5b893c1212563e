"""Activity watcher: issue closures trigger aggregate completion checks."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_fixed

from warden.adapters.base import CommandResult, IssueStoreAPI
from warden.errors import MalformedEvent, WardenError
from warden.logger import get_logger
from warden.protocol.models import ActivityEvent

log = get_logger(__name__)


class StreamEnded(Exception):
    """The activity stream reached EOF."""


class Runner(Protocol):
    async def run(self, args: Sequence[str], *, cwd: str | Path | None = None) -> CommandResult: ...


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "activity_watch_restarting",
        attempt=state.attempt_number,
        error=f"{type(exc).__name__}: {exc}" if exc else "",
    )


class ActivityWatcher:
    """Follows the issue-store activity stream until cancelled.

    Only ``status`` events with ``new_status == "closed"`` are acted on,
    in stream order. When the stream ends or fails the follow is restarted
    after a fixed delay. Cancelling the task terminates the child process.
    """

    def __init__(
        self,
        *,
        issues: IssueStoreAPI,
        runner: Runner,
        completion_command: Sequence[str] = ("gt", "convoy", "check"),
        root: Path | None = None,
        retry_seconds: float = 5.0,
    ) -> None:
        self.issues = issues
        self.runner = runner
        self.completion_command = list(completion_command)
        self.root = root
        self.retry_seconds = retry_seconds
        self.completion_runs = 0

    async def run(self) -> None:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            wait=wait_fixed(self.retry_seconds),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self.follow_once()

    async def follow_once(self) -> None:
        log.info("activity_watch_started")
        async for line in self.issues.follow_events():
            await self.handle_line(line)
        raise StreamEnded("activity stream closed")

    async def handle_line(self, line: str) -> None:
        try:
            event = ActivityEvent.from_line(line)
        except MalformedEvent as exc:
            log.debug("activity_line_skipped", reason=exc.reason)
            return
        if not event.is_close:
            return
        await self.on_close(event.issue_id)

    async def on_close(self, issue_id: str) -> None:
        try:
            trackers = await self.issues.find_trackers(issue_id)
        except WardenError as exc:
            log.warning("tracker_lookup_failed", issue=issue_id, error=str(exc))
            return
        if not trackers:
            return
        log.info("closed_issue_tracked", issue=issue_id, trackers=trackers)
        for tracker in trackers:
            await self.check_tracker(tracker)

    async def check_tracker(self, tracker_id: str) -> None:
        try:
            status = await self.issues.status_of(tracker_id)
        except WardenError as exc:
            log.warning("tracker_status_failed", tracker=tracker_id, error=str(exc))
            return
        if status is None or status == "closed":
            return
        log.info("completion_check", tracker=tracker_id)
        try:
            result = await self.runner.run(self.completion_command, cwd=self.root)
        except WardenError as exc:
            log.warning("completion_check_failed", tracker=tracker_id, error=str(exc))
            return
        self.completion_runs += 1
        output = result.stdout.strip()
        if output:
            log.info("completion_check_output", tracker=tracker_id, output=output[:500])
