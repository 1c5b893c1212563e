"""Adapters over the external CLIs the daemon shells out to."""

from warden.adapters.base import (
    CommandResult,
    CommandRunner,
    GitAPI,
    IssueStoreAPI,
    MailboxAPI,
    MultiplexerAPI,
)
from warden.adapters.git import Git, is_git_worktree
from warden.adapters.issues import IssueStore
from warden.adapters.mail import Mailbox
from warden.adapters.tmux import SessionTheme, Tmux

__all__ = [
    "CommandResult",
    "CommandRunner",
    "Git",
    "GitAPI",
    "IssueStore",
    "IssueStoreAPI",
    "Mailbox",
    "MailboxAPI",
    "MultiplexerAPI",
    "SessionTheme",
    "Tmux",
    "is_git_worktree",
]
