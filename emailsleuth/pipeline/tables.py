"""Immutable heuristic tables loaded from ``emailsleuth/data``.

The decoder, validator, planner and blocked-page detector read their keyword
lists and regex families from here, so the tables can be extended or tested
without touching control flow.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

LOCAL_CHARS = r"[a-z0-9._%+-]"
LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"


@dataclass(frozen=True)
class ObfuscationPattern:
    """One obfuscation family compiled into a single regex."""

    name: str
    regex: re.Pattern[str]
    dot: re.Pattern[str]

    def rebuild(self, match: re.Match[str]) -> str:
        domain = self.dot.sub(".", match.group("domain"))
        return f"{match.group('local')}@{domain}".lower()


@dataclass(frozen=True)
class BlockedSignal:
    """Anti-bot detection rule."""

    reason: str
    suggestion: str
    status_codes: frozenset[int]
    markers: tuple[str, ...]


@dataclass(frozen=True)
class HeuristicTables:
    obfuscation_patterns: tuple[ObfuscationPattern, ...]
    reversed_regex: re.Pattern[str]
    email_attribute_names: frozenset[str]
    script_key_regex: re.Pattern[str]
    contact_context_regex: re.Pattern[str]
    mail_icon_regex: re.Pattern[str]
    social_domains: tuple[str, ...]
    asset_extensions: frozenset[str]
    placeholder_domains: frozenset[str]
    reserved_tlds: frozenset[str]
    noise_fragments: tuple[str, ...]
    noreply_locals: frozenset[str]
    placeholder_locals: frozenset[str]
    role_prefixes: frozenset[str]
    keyword_families: tuple[tuple[str, tuple[str, ...]], ...]
    noise_paths: tuple[str, ...]
    noise_extensions: tuple[str, ...]
    known_paths: tuple[tuple[str, tuple[str, ...]], ...]
    full_scroll_keywords: tuple[str, ...]
    platform_signatures: tuple[tuple[str, tuple[str, ...]], ...]
    spa_markers: tuple[str, ...]
    blocked_signals: tuple[BlockedSignal, ...]
    fallback_prefixes: tuple[str, ...]
    disposable_domains: frozenset[str]


def _compile_obfuscation(entry: dict[str, Any]) -> ObfuscationPattern:
    flags = re.IGNORECASE if entry.get("ignore_case", True) else 0
    at, dot = entry["at"], entry["dot"]
    # Local parts and labels are matched case-insensitively even for
    # case-sensitive families; only the AT/DOT tokens keep their case.
    local = r"(?i:[a-z0-9._%+-]+)"
    label = r"(?i:[a-z0-9-]+)"
    regex = re.compile(
        rf"(?<![a-zA-Z0-9._%+-])(?P<local>{local}){at}"
        rf"(?P<domain>{label}(?:(?:{dot}|\.){label})+)",
        flags,
    )
    return ObfuscationPattern(name=entry["name"], regex=regex, dot=re.compile(dot, flags))


def _word_regex(words: list[str]) -> re.Pattern[str]:
    return re.compile("|".join(re.escape(w) for w in words), re.IGNORECASE)


def _load_disposable_domains() -> frozenset[str]:
    """Load disposable domains from file into a frozenset for O(1) lookup."""
    domains_file = DATA_DIR / "disposable_domains.txt"
    if not domains_file.exists():
        return frozenset()

    domains = set()
    with open(domains_file) as f:
        for line in f:
            line = line.strip().lower()
            # Skip comments and empty lines
            if line and not line.startswith("#"):
                domains.add(line)
    return frozenset(domains)


def build_tables(data: dict[str, Any]) -> HeuristicTables:
    """Compile raw YAML data into immutable tables."""
    reversed_tlds = sorted(data.get("reversed_tlds", []), key=len, reverse=True)
    reversed_regex = re.compile(
        rf"(?<![a-z0-9])(?:{'|'.join(map(re.escape, reversed_tlds))})"
        rf"(?:\.{LABEL})+@{LOCAL_CHARS}+",
        re.IGNORECASE,
    )

    script_keys = sorted(data.get("script_email_keys", []), key=len, reverse=True)
    script_key_regex = re.compile(
        rf"[\"']?(?:{'|'.join(map(re.escape, script_keys))})[\"']?\s*[:=]\s*"
        r"[\"'](?P<value>[^\"'\s<>]{3,254})[\"']",
        re.IGNORECASE,
    )

    blocked = tuple(
        BlockedSignal(
            reason=entry["reason"],
            suggestion=entry["suggestion"],
            status_codes=frozenset(entry.get("status_codes", [])),
            markers=tuple(entry.get("markers", [])),
        )
        for entry in data.get("blocked_signals", [])
    )

    return HeuristicTables(
        obfuscation_patterns=tuple(
            _compile_obfuscation(entry) for entry in data.get("obfuscation_patterns", [])
        ),
        reversed_regex=reversed_regex,
        email_attribute_names=frozenset(data.get("email_attribute_names", [])),
        script_key_regex=script_key_regex,
        contact_context_regex=_word_regex(data.get("contact_context_hints", [])),
        mail_icon_regex=_word_regex(data.get("mail_icon_hints", [])),
        social_domains=tuple(data.get("social_domains", [])),
        asset_extensions=frozenset(data.get("asset_extensions", [])),
        placeholder_domains=frozenset(data.get("placeholder_domains", [])),
        reserved_tlds=frozenset(data.get("reserved_tlds", [])),
        noise_fragments=tuple(data.get("noise_fragments", [])),
        noreply_locals=frozenset(data.get("noreply_locals", [])),
        placeholder_locals=frozenset(data.get("placeholder_locals", [])),
        role_prefixes=frozenset(data.get("role_prefixes", [])),
        keyword_families=tuple(
            (family, tuple(words)) for family, words in data.get("keyword_families", {}).items()
        ),
        noise_paths=tuple(data.get("noise_paths", [])),
        noise_extensions=tuple(data.get("noise_extensions", [])),
        known_paths=tuple(
            (family, tuple(paths)) for family, paths in data.get("known_paths", {}).items()
        ),
        full_scroll_keywords=tuple(data.get("full_scroll_keywords", [])),
        platform_signatures=tuple(
            (platform, tuple(markers))
            for platform, markers in data.get("platform_signatures", {}).items()
        ),
        spa_markers=tuple(data.get("spa_markers", [])),
        blocked_signals=blocked,
        fallback_prefixes=tuple(data.get("fallback_prefixes", [])),
        disposable_domains=_load_disposable_domains(),
    )


@lru_cache
def get_tables() -> HeuristicTables:
    """Get the cached heuristic tables."""
    with open(DATA_DIR / "heuristics.yml") as f:
        data = yaml.safe_load(f) or {}
    return build_tables(data)
