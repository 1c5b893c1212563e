"""Issue-store adapter (``bd``)."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from warden.adapters.base import CommandRunner
from warden.errors import ExternalError
from warden.protocol.models import AgentRecord

log = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("not found", "no issue", "no such issue", "does not exist")


def _is_not_found(exc: ExternalError) -> bool:
    text = exc.stderr.lower()
    return any(marker in text for marker in _NOT_FOUND_MARKERS)


def _decode(stdout: str) -> Any:
    text = stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        log.debug("issue store returned non-json output: %.200s", text)
        return None


class IssueStore:
    """Reads agent records and tracking relations from the issue store.

    Store versions disagree on shapes, so entries that do not decode into
    a record are skipped. A missing record is reported through the
    ``exists`` flag of :meth:`show`; any failure to run the CLI raises.
    """

    def __init__(self, runner: CommandRunner, command: Sequence[str] = ("bd",)) -> None:
        self.runner = runner
        self.command = list(command)

    async def show(self, record_id: str) -> tuple[AgentRecord | None, bool]:
        try:
            result = await self.runner.run([*self.command, "show", record_id, "--json"])
        except ExternalError as exc:
            if _is_not_found(exc):
                return None, False
            raise
        raw = _decode(result.stdout)
        if isinstance(raw, list):
            if not raw:
                return None, False
            raw = raw[0]
        if raw is None:
            return None, False
        return AgentRecord.from_raw(raw), True

    async def list_by_type(self, issue_type: str) -> list[AgentRecord]:
        result = await self.runner.run([*self.command, "list", f"--type={issue_type}", "--json"])
        raw = _decode(result.stdout)
        if not isinstance(raw, list):
            return []
        records: list[AgentRecord] = []
        for item in raw:
            record = AgentRecord.from_raw(item)
            if record is not None:
                records.append(record)
        return records

    async def status_of(self, issue_id: str) -> str | None:
        record, exists = await self.show(issue_id)
        if not exists or record is None:
            return None
        return record.status

    async def find_trackers(self, child_id: str) -> list[str]:
        """Ids of the aggregates that hold a ``tracks`` link to *child_id*."""
        result = await self.runner.run(
            [*self.command, "dep", "list", child_id, "--direction=up", "--type=tracks", "--json"]
        )
        raw = _decode(result.stdout)
        if not isinstance(raw, list):
            return []
        trackers: list[str] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            dep_type = item.get("dependency_type", item.get("type", "tracks"))
            if dep_type != "tracks":
                continue
            tracker = item.get("id") or item.get("issue_id")
            if isinstance(tracker, str) and tracker and tracker not in trackers:
                trackers.append(tracker)
        return trackers

    def follow_events(self) -> AsyncIterator[str]:
        """Raw NDJSON lines from the store's activity stream."""
        return self.runner.stream_lines([*self.command, "activity", "--follow", "--town", "--json"])
