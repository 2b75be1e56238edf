"""Heuristic detection of scripts that need root.

Classification is a pure function over an ordered table of rules. It is a
convenience for choosing how to run a script, not a security boundary: a
script can always escalate in ways no regular expression will see.
"""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scriptdeck.core.context import Context
    from scriptdeck.core.discovery import ScriptEntry
    from scriptdeck.core.logging import EventLogger


@dataclass(frozen=True)
class PatternRule:
    """A compiled pattern and the category reported when it matches."""

    pattern: re.Pattern
    category: str

    @classmethod
    def of(cls, regex: str, category: str) -> "PatternRule":
        return cls(re.compile(regex, re.IGNORECASE), category)


ELEVATION_RULES: tuple[PatternRule, ...] = (
    PatternRule.of(r"\bsudo\s+", "sudo"),
    PatternRule.of(r"\bsudo\s+\$", "sudo"),
    PatternRule.of(
        r"\b(apt|apt-get|yum|dnf|pacman|zypper)\s+(install|remove|update|upgrade)",
        "package-manager",
    ),
    PatternRule.of(
        r"\b(systemctl|service)\s+(start|stop|restart|enable|disable)",
        "service-manager",
    ),
    PatternRule.of(r"\b(usermod|useradd|userdel|groupadd|groupdel)", "user-admin"),
    PatternRule.of(r"\b(mount|umount|fdisk|parted|mkfs)", "disk"),
    PatternRule.of(r"\b(ifconfig|ip\s+link|ip\s+addr|ip\s+route)", "network"),
    PatternRule.of(r"\b(ufw|iptables|firewall-cmd)", "firewall"),
    PatternRule.of(r"\b(crontab|at)\b", "scheduling"),
    PatternRule.of(r"\b(visudo|passwd|chpasswd)", "credentials"),
    PatternRule.of(r"\b(rsync|scp|ssh)\s+.*root@", "remote-root"),
    PatternRule.of(r"\b(chmod|chown|chgrp)\s+.*[0-7]{3,4}", "permissions"),
    PatternRule.of(
        r"\b(rm|rmdir|mkdir|touch|cp|mv)\s+.*/(etc|var|usr|opt|root)",
        "system-files",
    ),
    PatternRule.of(r"\b(echo|cat|tee)\s+.*>\s*/etc/", "system-files"),
    PatternRule.of(r"\b(echo|cat|tee)\s+.*>\s*/var/", "system-files"),
    PatternRule.of(r"\b(echo|cat|tee)\s+.*>\s*/usr/", "system-files"),
    PatternRule.of(r"\b(netstat|ss|lsof)\s+-[a-z]*p", "sockets"),
    PatternRule.of(r"\b(tcpdump|wireshark|tshark)", "packet-capture"),
    PatternRule.of(r"\b(nmap|masscan|zmap)", "port-scan"),
    PatternRule.of(
        r"\bdocker\s+(run|start|stop|restart|rm|rmi|build|push|pull)",
        "container",
    ),
    PatternRule.of(r"\b(podman|docker-compose)", "container"),
    PatternRule.of(r"\b(journalctl|logrotate)", "logs"),
    PatternRule.of(r"\b(tail|head|grep|awk|sed)\s+.*/var/log/", "logs"),
    PatternRule.of(r"\b(modprobe|insmod|rmmod|lsmod)", "kernel-module"),
    PatternRule.of(r"\b(lspci|lsusb|lscpu|lsblk)", "hardware"),
    PatternRule.of(r"\b(hdparm|smartctl|badblocks)", "hardware"),
)

# Constructs that look like elevation but usually are not. They are matched
# and reported, but never override an elevation match.
SUPPRESSION_RULES: tuple[PatternRule, ...] = (
    PatternRule.of(r"\b(sudo\s+-n|sudo\s+--non-interactive)", "non-interactive-sudo"),
    PatternRule.of(r"#.*sudo", "commented-sudo"),
    PatternRule.of(r"\becho.*sudo", "echoed-sudo"),
    PatternRule.of(r"\b(which|whereis|type)\s+sudo", "sudo-presence-check"),
)


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one script."""

    requires_elevation: bool
    categories: tuple[str, ...] = ()
    suppressors: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassificationSummary:
    """Counts over a batch of scripts."""

    total: int
    elevated_count: int
    plain_count: int

    @property
    def has_elevated(self) -> bool:
        return self.elevated_count > 0

    @property
    def has_plain(self) -> bool:
        return self.plain_count > 0

    def __str__(self) -> str:
        return (
            f"Total: {self.total}, Sudo required: {self.elevated_count}, "
            f"Non-sudo: {self.plain_count}"
        )


def _matching(rules: tuple[PatternRule, ...], content: str) -> tuple[str, ...]:
    """Categories of all matching rules, in rule order, without repeats."""
    found: list[str] = []
    for rule in rules:
        if rule.category not in found and rule.pattern.search(content):
            found.append(rule.category)
    return tuple(found)


def classify_text(
    content: str,
    rules: tuple[PatternRule, ...] = ELEVATION_RULES,
    suppressors: tuple[PatternRule, ...] = SUPPRESSION_RULES,
) -> Classification:
    """
    Classify script text.

    Args:
        content: Script source
        rules: Rules whose match means elevation is required
        suppressors: Rules recorded for diagnostics only

    Returns:
        Classification with the matched categories
    """
    if not content or not content.strip():
        return Classification(requires_elevation=False)

    categories = _matching(rules, content)
    return Classification(
        requires_elevation=bool(categories),
        categories=categories,
        suppressors=_matching(suppressors, content),
    )


def _script_text(entry: "ScriptEntry", context: "Context") -> str:
    """Cached content, else a fresh read of the file."""
    if entry.content and entry.content.strip():
        return entry.content
    if context.file_exists(str(entry.path)):
        return context.read_file(str(entry.path))
    return ""


class PrivilegeClassifier:
    """Decides whether a catalog entry should run with sudo."""

    def __init__(
        self,
        rules: tuple[PatternRule, ...] = ELEVATION_RULES,
        suppressors: tuple[PatternRule, ...] = SUPPRESSION_RULES,
        context: "Context | None" = None,
        logger: "EventLogger | None" = None,
    ):
        if context is None:
            from scriptdeck.core.context import Context
            context = Context()
        self.rules = rules
        self.suppressors = suppressors
        self.context = context
        self.logger = logger

    def classify(self, entry: "ScriptEntry") -> Classification:
        """
        Classify an entry; never raises.

        Any failure to obtain the script text yields "no elevation".
        """
        try:
            content = _script_text(entry, self.context)
            return classify_text(content, self.rules, self.suppressors)
        except Exception as e:
            if self.logger is not None:
                self.logger.warning(
                    "Error analyzing script for sudo requirements",
                    script=str(entry.path),
                    error=str(e),
                )
            return Classification(requires_elevation=False)

    def requires_elevation(self, entry: "ScriptEntry") -> bool:
        """True if the script likely needs root."""
        return self.classify(entry).requires_elevation

    def classify_all(self, entries: list["ScriptEntry"]) -> ClassificationSummary:
        """Count elevated and plain scripts."""
        elevated = sum(1 for entry in entries if self.requires_elevation(entry))
        return ClassificationSummary(
            total=len(entries),
            elevated_count=elevated,
            plain_count=len(entries) - elevated,
        )
