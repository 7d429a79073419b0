"""Built-in plugin implementations.

This package contains the integrations shipped with autonav:
    - SlackPlugin: Slack messages, mentions and reactions
    - GitHubPlugin: GitHub issues and pull requests
    - FileWatcherPlugin: Local file-system changes

All integrations implement the Plugin interface from the plugins package.
"""

from autonav.integrations.file_watcher import FileWatcherPlugin
from autonav.integrations.github import GitHubPlugin
from autonav.integrations.slack import SlackPlugin

__all__ = [
    "FileWatcherPlugin",
    "GitHubPlugin",
    "SlackPlugin",
]
