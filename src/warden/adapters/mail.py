"""Mailbox adapter (``gt mail``)."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from warden.adapters.base import CommandRunner
from warden.identity import AgentIdentity
from warden.protocol.models import MailMessage

log = logging.getLogger(__name__)


class Mailbox:
    def __init__(self, runner: CommandRunner, command: Sequence[str] = ("gt", "mail")) -> None:
        self.runner = runner
        self.command = list(command)

    async def inbox(self, identity: AgentIdentity) -> list[MailMessage]:
        """Messages in the mailbox of *identity*, in the order the CLI lists them."""
        result = await self.runner.run(
            [*self.command, "inbox", "--identity", identity.address, "--json"]
        )
        text = result.stdout.strip()
        if not text:
            return []
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            log.warning("unparseable inbox output for %s: %.200s", identity, text)
            return []
        if not isinstance(raw, list):
            return []
        messages: list[MailMessage] = []
        for item in raw:
            msg = MailMessage.from_raw(item)
            if msg is not None:
                messages.append(msg)
        return messages

    async def delete(self, message_id: str) -> None:
        await self.runner.run([*self.command, "delete", message_id])

    async def send(self, to: str, subject: str, body: str, priority: str = "normal") -> None:
        args = [*self.command, "send", to, "-s", subject, "-m", body]
        if priority and priority != "normal":
            args += ["--priority", priority]
        await self.runner.run(args)
