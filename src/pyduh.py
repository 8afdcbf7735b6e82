#!/usr/bin/env python3
"""
pyduh - Disk usage split by version-control ignore rules.

Reports disk usage per directory (and optionally per file), classifying every
byte as either ignored or not ignored according to .gitignore, .ignore and
.git/info/exclude rules. Results are printed in a du-like column layout, or
served from a local web server as an interactive visualization. Hidden files
and directories are excluded by default.
"""

import argparse
import errno
import http.server
import json
import locale
import logging
import os
import stat
import sys
import time
import webbrowser
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Callable, Iterable, Iterator

import pathspec

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

# Unit used by st_blocks and by the block-count output column.
BLOCK_SIZE = 512

PROGRESS_INTERVAL = 0.1

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8001
MAX_PORT = 65535

IGNORE_FILES = (".gitignore", ".ignore")
GIT_EXCLUDE_FILE = os.path.join(".git", "info", "exclude")

GroupKey = tuple[str, ...]


class NodeType(Enum):
    """Enumeration of filesystem entry kinds handed out by the walker."""

    FILE = "file"
    DIRECTORY = "directory"


class Mode(Enum):
    """Which bytes a report is about."""

    DU = "du"
    IGNORED = "ignored"
    NOT_IGNORED = "not-ignored"

    @property
    def description(self) -> str:
        return {
            Mode.DU: "all files (both ignored and not ignored)",
            Mode.IGNORED: "only files that are ignored by .gitignore rules",
            Mode.NOT_IGNORED: "only files that are NOT ignored by .gitignore rules",
        }[self]

    def accepts(self, ignored: bool) -> bool:
        """Return whether an entry with the given classification is counted."""
        if self is Mode.IGNORED:
            return ignored
        if self is Mode.NOT_IGNORED:
            return not ignored
        return True


class SizePolicy(Enum):
    """How the size of a single entry is measured."""

    APPARENT = "apparent"
    BLOCKS = "blocks"


class ConfigError(ValueError):
    """Raised when command-line options cannot be combined."""


class NoFreePortError(OSError):
    """Raised when every port in the scanned range is already taken."""


class UnsortedEntriesError(RuntimeError):
    """Raised when the metafile export is handed entries out of key order."""


class ColorFormatter(logging.Formatter):
    """
    Custom logging formatter that adds ANSI color codes to log messages.

    This formatter applies color coding based on log levels for better
    readability in terminal output.
    """

    COLORS = {
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[41m",  # Red background
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record with colors.

        Args:
            record (logging.LogRecord):
                The log record to format.

        Returns:
            str:
                The formatted log message with ANSI color codes.

        """
        color = self.COLORS.get(record.levelno, "")
        message = super().format(record)
        if color:
            message = f"{color}{message}{self.RESET}"
        return message


@dataclass
class Config:
    """Options that drive a single scan and its output.

    Attributes:
        max_depth (int | None):
            Number of path components kept in a group key (None for unbounded).
        recursive (bool):
            Roll every entry up into all of its ancestor keys.
        mode (Mode):
            Which bytes are counted and reported.
        directories_only (bool):
            Hide nodes that were created by a file.
        size_policy (SizePolicy):
            Apparent length or allocated blocks.
        human_readable (bool):
            Print sizes as 1.2K / 34M tokens instead of 512-byte blocks.
        include_hidden (bool):
            Walk into dot-files and dot-directories.
        web (bool):
            Serve the visualization instead of printing text.
        open_browser (bool):
            Open the visualization in the default browser.
        progress (bool):
            Show the scanning progress line on stderr.

    """

    max_depth: int | None = None
    recursive: bool = True
    mode: Mode = Mode.DU
    directories_only: bool = True
    size_policy: SizePolicy = SizePolicy.BLOCKS
    human_readable: bool = False
    include_hidden: bool = False
    web: bool = False
    open_browser: bool = False
    progress: bool = True

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Config":
        """
        Build a configuration from parsed command-line arguments.

        Raises:
            ConfigError: If web mode is combined with more than one path.

        """
        web = args.web or args.open
        if web and len(args.paths) > 1:
            raise ConfigError("Cannot open multiple directories in web mode")
        return cls(
            max_depth=0 if args.summarize else args.depth,
            recursive=not args.direct_size,
            mode=Mode(args.mode),
            directories_only=not args.all,
            size_policy=SizePolicy.APPARENT if args.apparent else SizePolicy.BLOCKS,
            human_readable=args.human_readable,
            include_hidden=args.hidden,
            web=web,
            open_browser=args.open,
            progress=not args.quiet,
        )


@dataclass
class DirectoryEntry:
    """A single filesystem entry as produced by the walker.

    Attributes:
        path (str):
            Path of the entry, rooted at the scan path it was found under.
        node_type (NodeType):
            FILE or DIRECTORY. Symbolic links are reported as files.
        ignored (bool):
            Whether ignore rules exclude this entry.
        stat (os.stat_result | None):
            Entry metadata, or None when it could not be read.

    """

    path: str
    node_type: NodeType
    ignored: bool
    stat: os.stat_result | None = None


@dataclass
class AggregateNode:
    """Byte counters accumulated under one group key."""

    not_ignored: int = 0
    ignored: int = 0
    is_file: bool = False

    @property
    def total(self) -> int:
        return self.ignored + self.not_ignored


class AggregationTable:
    """
    Insertion-ordered mapping from group key to byte counters.

    The table is filled by exactly one pass over the entry stream and keeps
    track of the largest combined total seen so far, which the text output
    uses to size its first column.
    """

    def __init__(self, recursive: bool = True):
        self.recursive = recursive
        self.groups: dict[GroupKey, AggregateNode] = {}
        self.max_size = 0

    def __len__(self) -> int:
        return len(self.groups)

    def __contains__(self, key: GroupKey) -> bool:
        return key in self.groups

    def __getitem__(self, key: GroupKey) -> AggregateNode:
        return self.groups[key]

    def add(self, key: GroupKey, size: int, ignored: bool, is_file: bool) -> None:
        """
        Account ``size`` bytes of one entry under ``key``.

        With roll-up enabled every prefix of the key, from the empty root key
        to the key itself, receives the same increment. Otherwise only the key
        is updated, which yields direct-content totals.

        Args:
            key (GroupKey):
                Truncated path components of the entry.
            size (int):
                Byte count of the entry.
            ignored (bool):
                Which of the two counters receives the bytes.
            is_file (bool):
                Recorded on nodes created by this call only.

        """
        if self.recursive:
            for depth in range(len(key)):
                self._accumulate(key[:depth], size, ignored, is_file)
        self._accumulate(key, size, ignored, is_file)

    def _accumulate(
        self, key: GroupKey, size: int, ignored: bool, is_file: bool
    ) -> None:
        node = self.groups.get(key)
        if node is None:
            node = self.groups[key] = AggregateNode(is_file=is_file)
        if ignored:
            node.ignored += size
        else:
            node.not_ignored += size
        self.max_size = max(self.max_size, node.total)

    def sorted_items(self) -> list[tuple[GroupKey, AggregateNode]]:
        """Return the nodes ordered so that every key precedes its descendants."""
        return sorted(self.groups.items(), key=sort_key_group)


def sort_key_group(item: tuple[GroupKey, AggregateNode]) -> GroupKey:
    """
    Sort key function for table items.

    Tuples compare component by component and a strict prefix sorts before any
    longer key, so a directory always lands right before its contents.
    """
    return item[0]


def entry_size(entry: DirectoryEntry, policy: SizePolicy) -> int | None:
    """
    Measure a single entry.

    Args:
        entry (DirectoryEntry):
            Entry produced by the walker.
        policy (SizePolicy):
            APPARENT uses the logical length, BLOCKS the allocated 512-byte
            blocks.

    Returns:
        int | None:
            Size in bytes, or None when the entry metadata is unavailable and
            the entry has to be skipped.

    """
    if entry.stat is None:
        return None
    if policy is SizePolicy.BLOCKS:
        blocks = getattr(entry.stat, "st_blocks", None)
        if blocks is not None:
            return blocks * BLOCK_SIZE
    return entry.stat.st_size


def relative_parts(path: str, root: str) -> GroupKey | None:
    """Return the components of ``path`` below ``root``, or None if it is not under it."""
    try:
        return PurePath(path).relative_to(PurePath(root)).parts
    except ValueError:
        return None


def group_key(parts: GroupKey, max_depth: int | None = None) -> GroupKey:
    """
    Truncate relative path components to the aggregation key.

    A depth of 0 collapses every entry onto the empty root key.

    Examples:
        >>> group_key(("src", "lib", "a.py"), 2)
        ('src', 'lib')
        >>> group_key(("src", "lib", "a.py"))
        ('src', 'lib', 'a.py')

    """
    if max_depth is None:
        return tuple(parts)
    return tuple(parts[:max_depth])


def select_size(node: AggregateNode, mode: Mode) -> int:
    """Return the part of the node's bytes that the given mode reports."""
    if mode is Mode.IGNORED:
        return node.ignored
    if mode is Mode.NOT_IGNORED:
        return node.not_ignored
    return node.total


def read_ignore_file(path: str) -> list[str]:
    """Read the lines of an ignore file, returning nothing if it cannot be read."""
    if not os.path.isfile(path):
        return []
    try:
        with open(path, encoding="utf-8", errors="ignore") as f:
            return f.read().splitlines()
    except OSError as e:
        logger.warning(f"Cannot read ignore file {path}: {e}")
        return []


class IgnoreRules:
    """
    Ignore rules collected from one directory, chained to its parent's rules.

    Patterns are matched relative to the directory holding the rule file. The
    innermost rule file with a matching pattern decides, and within a file the
    last matching pattern wins, so negations behave as they do in git.
    """

    def __init__(
        self,
        base: GroupKey,
        spec: pathspec.GitIgnoreSpec,
        parent: "IgnoreRules | None" = None,
    ):
        self.base = base
        self.spec = spec
        self.parent = parent

    @classmethod
    def load(
        cls,
        directory: str,
        base: GroupKey,
        parent: "IgnoreRules | None" = None,
        extra_files: Iterable[str] = (),
    ) -> "IgnoreRules | None":
        """
        Load the rule files found in ``directory``.

        Returns:
            IgnoreRules | None:
                New rules chained to ``parent``, or ``parent`` itself when the
                directory has no rules of its own.

        """
        lines: list[str] = []
        for name in (*extra_files, *IGNORE_FILES):
            lines.extend(read_ignore_file(os.path.join(directory, name)))
        if not lines:
            return parent
        spec = pathspec.GitIgnoreSpec.from_lines(lines)
        logger.debug(f"Loaded {len(spec.patterns)} ignore patterns from {directory}")
        return cls(base, spec, parent)

    def match(self, parts: GroupKey, is_dir: bool) -> bool | None:
        """
        Classify a path given as components relative to the repository root.

        Returns:
            bool | None:
                True if ignored, False if explicitly re-included, None if no
                rule mentions the path.

        """
        rules: IgnoreRules | None = self
        while rules is not None:
            rel = "/".join(parts[len(rules.base) :])
            if is_dir:
                rel += "/"
            verdict = None
            for pattern in rules.spec.patterns:
                if pattern.include is None:
                    continue
                if pattern.match_file(rel) is not None:
                    verdict = pattern.include
            if verdict is not None:
                return verdict
            rules = rules.parent
        return None


def find_repository_root(path: str) -> str:
    """Return the nearest directory at or above ``path`` holding ``.git``.

    Falls back to the filesystem root outside of a repository.
    """
    current = os.path.abspath(path)
    while True:
        if os.path.exists(os.path.join(current, ".git")):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return current
        current = parent


def load_root_rules(
    root: str, is_dir: bool = True
) -> tuple["IgnoreRules | None", GroupKey, bool]:
    """
    Collect the ignore rules that apply to ``root`` from its enclosing repository.

    Rule files are read from the repository root down to ``root`` itself, and
    ``.git/info/exclude`` from the repository root. Components handed to
    ``IgnoreRules.match`` are relative to the repository root.

    Args:
        root (str):
            Scan root, as given by the user.
        is_dir (bool):
            Whether the scan root is a directory.

    Returns:
        tuple[IgnoreRules | None, GroupKey, bool]:
            The rule chain, the components of ``root`` below the repository
            root, and whether ``root`` itself is ignored.

    """
    top = find_repository_root(root)
    root_parts = PurePath(os.path.abspath(root)).relative_to(PurePath(top)).parts
    rules = IgnoreRules.load(top, (), extra_files=(GIT_EXCLUDE_FILE,))
    for depth in range(1, len(root_parts) + 1):
        parts = root_parts[:depth]
        part_is_dir = is_dir or depth < len(root_parts)
        if rules is not None and rules.match(parts, part_is_dir) is True:
            return rules, root_parts, True
        if part_is_dir:
            rules = IgnoreRules.load(os.path.join(top, *parts), parts, rules)
    return rules, root_parts, False


def walk_entries(root: str, include_hidden: bool = False) -> Iterator[DirectoryEntry]:
    """
    Walk ``root`` and yield every entry with its ignore classification.

    The root itself comes first, then a depth-first traversal where entries
    are visited in name order and every directory precedes its contents.
    ``.git`` directories are never entered. Symbolic links are not followed.
    Rule files above ``root``, up to the enclosing repository root, apply too.

    Args:
        root (str):
            Directory or file to walk.
        include_hidden (bool):
            Whether to yield names starting with '.'.

    Yields:
        DirectoryEntry:
            One entry per visited path.

    """
    try:
        root_stat = os.stat(root)
    except OSError as e:
        logger.warning(f"Error accessing {root}: {e}")
        return
    is_dir = stat.S_ISDIR(root_stat.st_mode)
    rules, root_parts, ignored = load_root_rules(root, is_dir)
    yield DirectoryEntry(
        path=root,
        node_type=NodeType.DIRECTORY if is_dir else NodeType.FILE,
        ignored=ignored,
        stat=root_stat,
    )
    if is_dir:
        yield from _walk_directory(root, root_parts, rules, ignored, include_hidden)


def _walk_directory(
    directory: str,
    parts: GroupKey,
    rules: IgnoreRules | None,
    ignored: bool,
    include_hidden: bool,
) -> Iterator[DirectoryEntry]:
    try:
        with os.scandir(directory) as it:
            children = sorted(it, key=lambda e: e.name)
    except PermissionError:
        logger.warning(f"Permission denied: {directory}")
        return
    except OSError as e:
        logger.warning(f"Error accessing {directory}: {e}")
        return

    for child in children:
        if child.name == ".git":
            continue
        if child.name.startswith(".") and not include_hidden:
            continue

        try:
            is_dir = child.is_dir(follow_symlinks=False)
        except OSError:
            is_dir = False
        try:
            child_stat = child.stat(follow_symlinks=False)
        except OSError:
            child_stat = None

        child_parts = (*parts, child.name)
        child_ignored = ignored or (
            rules is not None and rules.match(child_parts, is_dir) is True
        )
        yield DirectoryEntry(
            path=child.path,
            node_type=NodeType.DIRECTORY if is_dir else NodeType.FILE,
            ignored=child_ignored,
            stat=child_stat,
        )

        if is_dir:
            # Rules inside an ignored directory cannot re-include anything.
            child_rules = (
                rules
                if child_ignored
                else IgnoreRules.load(child.path, child_parts, rules)
            )
            yield from _walk_directory(
                child.path, child_parts, child_rules, child_ignored, include_hidden
            )


def format_number(num: int) -> str:
    """Format a count with the thousands separator of the current locale."""
    return locale.format_string("%d", num, grouping=True)


class ProgressReporter:
    """
    Count visited entries and keep a throttled progress line on stderr.

    Every entry the walker visits is counted, including those the selected
    mode does not report.
    """

    def __init__(
        self,
        mode: Mode = Mode.DU,
        enabled: bool = True,
        interval: float = PROGRESS_INTERVAL,
    ):
        self.mode = mode
        self.enabled = enabled
        self.interval = interval
        self.visited = 0
        self.ignored = 0
        self.not_ignored = 0
        self._last_update = 0.0

    def __call__(self, entry: DirectoryEntry) -> None:
        self.visited += 1
        if entry.ignored:
            self.ignored += 1
        else:
            self.not_ignored += 1
        if not self.enabled:
            return
        now = time.monotonic()
        if now - self._last_update >= self.interval:
            self._last_update = now
            print(
                f"\rScanning files... ({format_number(self.visited)} files)",
                end="",
                file=sys.stderr,
            )

    def summary(self) -> str:
        """Describe the finished scan in the words of the selected mode."""
        visited = f"Visited {format_number(self.visited)} files"
        if self.mode is Mode.IGNORED:
            return f"{visited}, {format_number(self.ignored)} ignored"
        if self.mode is Mode.NOT_IGNORED:
            return f"{visited}, {format_number(self.not_ignored)} not ignored"
        return (
            f"{visited}, {format_number(self.ignored)} ignored, "
            f"{format_number(self.not_ignored)} not ignored"
        )

    def finish(self) -> None:
        if self.enabled:
            # Clear progress line
            print(file=sys.stderr)
        logger.info(self.summary())


def scan(
    root: str,
    config: Config,
    progress_callback: Callable[[DirectoryEntry], None] | None = None,
) -> AggregationTable:
    """
    Aggregate the disk usage below ``root`` in a single pass.

    Args:
        root (str):
            Scan root, as given by the user.
        config (Config):
            Depth, roll-up, mode, size policy and hidden-file options.
        progress_callback (Callable[[DirectoryEntry], None] | None):
            Called once for every visited entry (None for no progress).

    Returns:
        AggregationTable:
            A fresh table owned by this scan root.

    """
    table = AggregationTable(recursive=config.recursive)
    for entry in walk_entries(root, include_hidden=config.include_hidden):
        if progress_callback:
            progress_callback(entry)
        if not config.mode.accepts(entry.ignored):
            continue

        size = entry_size(entry, config.size_policy)
        if size is None:
            logger.debug(f"Skipping {entry.path}: metadata unavailable")
            continue

        parts = relative_parts(entry.path, root)
        if parts is None:
            logger.warning(f"Failed to strip prefix '{root}' from '{entry.path}'")
            continue

        table.add(
            group_key(parts, config.max_depth),
            size,
            entry.ignored,
            entry.node_type == NodeType.FILE,
        )
    return table


def format_human_readable(size: int) -> str:
    """
    Render a byte count as a 5-character token with a unit suffix.

    Examples:
        >>> format_human_readable(512)
        ' 512B'
        >>> format_human_readable(1536)
        ' 1.5K'

    """
    units = ["B", "K", "M", "G", "T", "P", "E"]
    i = 0
    size_f = float(size)
    while size_f >= 1024 and i < len(units) - 1:
        size_f /= 1024
        i += 1
    if size_f < 10:
        return f"{size_f:4.1f}{units[i]}"
    return f"{size_f:4.0f}{units[i]}"


def format_blocks(size: int, width: int) -> str:
    """Render a byte count as 512-byte blocks right-aligned to ``width``."""
    return f"{size // BLOCK_SIZE:>{width}}"


def render_lines(table: AggregationTable, path: str, config: Config) -> list[str]:
    """
    Render the sorted table as ``<size> <path>`` lines.

    Args:
        table (AggregationTable):
            Result of a finished scan.
        path (str):
            Scan root as given by the user; keys are joined onto it.
        config (Config):
            Mode, directory filter and size format.

    Returns:
        list[str]:
            One line per reported node, parents before their contents.

    """
    width = len(str(table.max_size // BLOCK_SIZE))
    lines = []
    for key, node in table.sorted_items():
        if config.directories_only and node.is_file:
            continue
        size = select_size(node, config.mode)
        if config.human_readable:
            s = format_human_readable(size)
        else:
            s = format_blocks(size, width)
        lines.append(f"{s} {os.path.join(path, *key)}")
    return lines


def _is_strict_prefix(prefix: GroupKey, key: GroupKey) -> bool:
    return len(prefix) < len(key) and key[: len(prefix)] == prefix


def encode_metafile(entries: list[tuple[GroupKey, AggregateNode]]) -> str:
    """
    Export sorted table entries as a bundle metafile for the visualization.

    Only leaves are exported: a node is a leaf when the entry right after it
    does not descend from it. Sorting keeps every subtree contiguous, so one
    entry of lookahead is enough. All leaves feed a single "root" output.

    Args:
        entries (list[tuple[GroupKey, AggregateNode]]):
            Table items in the order of ``AggregationTable.sorted_items``.

    Returns:
        str:
            Pretty-printed JSON with "inputs" and "outputs" keys.

    Raises:
        UnsortedEntriesError: If ``entries`` is not in key order.

    """
    for (key, _), (next_key, _) in zip(entries, entries[1:]):
        if key >= next_key:
            raise UnsortedEntriesError(
                f"Entries are not sorted: {key!r} precedes {next_key!r}"
            )

    total_size = 0
    inputs = {}
    output_inputs = {}
    for i, (key, node) in enumerate(entries):
        if not key:
            continue
        if i + 1 < len(entries) and _is_strict_prefix(key, entries[i + 1][0]):
            continue

        name = "/".join(key)
        record = {"bytes": node.total, "imports": []}
        if node.ignored and node.not_ignored:
            record["format"] = "both"
        elif node.ignored:
            record["format"] = "cjs"
        elif node.not_ignored:
            record["format"] = "esm"
        inputs[name] = record
        output_inputs[name] = {"bytesInOutput": node.total}
        total_size += node.total

    metafile = {
        "inputs": inputs,
        "outputs": {
            "root": {
                "bytes": total_size,
                "inputs": output_inputs,
                "imports": [],
                "exports": [],
            }
        },
    }
    return json.dumps(metafile, indent=2)


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>pyduh</title>
<link rel="stylesheet" href="/index.css">
</head>
<body>
<header>
<h1>Disk usage</h1>
<p id="summary">Loading&hellip;</p>
<p class="legend">
<span class="esm">not ignored</span>
<span class="cjs">ignored</span>
<span class="both">mixed</span>
</p>
</header>
<main id="chart"></main>
<script src="/index.js"></script>
</body>
</html>
"""

INDEX_CSS = """body {
  font: 14px/1.4 -apple-system, "Segoe UI", Helvetica, Arial, sans-serif;
  margin: 0 2em;
  color: #222;
}
.legend span, .row .bar { display: inline-block; padding: 0 6px; border-radius: 3px; }
.esm { background: #7cb8f2; }
.cjs { background: #f2b47c; }
.both { background: #c9a6e8; }
.row { display: flex; align-items: center; margin: 2px 0; }
.row .size { width: 6em; text-align: right; padding-right: 1em; font-variant-numeric: tabular-nums; }
.row .track { flex: 1; }
.row .bar { height: 1.2em; min-width: 2px; }
.row .name { padding-left: 1em; white-space: nowrap; overflow: hidden; text-overflow: ellipsis; max-width: 50%; }
"""

INDEX_JS = """(function () {
  var UNITS = ["B", "K", "M", "G", "T", "P", "E"];

  function human(bytes) {
    var i = 0;
    while (bytes >= 1024 && i < UNITS.length - 1) { bytes /= 1024; i++; }
    return (bytes < 10 ? bytes.toFixed(1) : bytes.toFixed(0)) + UNITS[i];
  }

  function render(metafile, started) {
    var root = metafile.outputs.root;
    var chart = document.getElementById("chart");
    var names = Object.keys(metafile.inputs).sort(function (a, b) {
      return metafile.inputs[b].bytes - metafile.inputs[a].bytes || (a < b ? -1 : 1);
    });
    var largest = names.length ? metafile.inputs[names[0]].bytes : 0;
    names.forEach(function (name) {
      var input = metafile.inputs[name];
      var row = document.createElement("div");
      row.className = "row";
      var size = document.createElement("span");
      size.className = "size";
      size.textContent = human(input.bytes);
      var track = document.createElement("span");
      track.className = "track";
      var bar = document.createElement("span");
      bar.className = "bar " + (input.format || "");
      bar.style.width = (largest ? 100 * input.bytes / largest : 0) + "%";
      track.appendChild(bar);
      var label = document.createElement("span");
      label.className = "name";
      label.textContent = name;
      label.title = name;
      row.appendChild(size);
      row.appendChild(track);
      row.appendChild(label);
      chart.appendChild(row);
    });
    var elapsed = (performance.now() - started).toFixed(1);
    document.getElementById("summary").textContent =
      human(root.bytes) + " in " + names.length + " entries (rendered in " + elapsed + " ms)";
  }

  var started = performance.now();
  fetch("/metafile.json")
    .then(function (response) { return response.json(); })
    .then(function (metafile) { render(metafile, started); })
    .catch(function (error) {
      document.getElementById("summary").textContent = "Failed to load data: " + error;
    });
})();
"""

STATIC_ROUTES = {
    "/": (INDEX_HTML.encode("utf-8"), "text/html"),
    "/index.js": (INDEX_JS.encode("utf-8"), "application/javascript"),
    "/index.css": (INDEX_CSS.encode("utf-8"), "text/css"),
}

METAFILE_ROUTE = "/metafile.json"

# Cross-origin isolation, required by browsers for high resolution timers.
ISOLATION_HEADERS = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Embedder-Policy": "require-corp",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Timing-Allow-Origin": "*",
}


class MetafileServer(http.server.ThreadingHTTPServer):
    """HTTP server holding the precomputed metafile shared by every request."""

    def __init__(self, server_address, payload: bytes):
        self.payload = payload
        super().__init__(server_address, MetafileRequestHandler)


class MetafileRequestHandler(http.server.BaseHTTPRequestHandler):
    """Serve the visualization page, its assets and the metafile."""

    server: MetafileServer

    def do_GET(self):
        if self.path == METAFILE_ROUTE:
            self._send(200, self.server.payload, "application/json")
        elif self.path in STATIC_ROUTES:
            content, content_type = STATIC_ROUTES[self.path]
            self._send(200, content, content_type)
        else:
            self._send(404, b"404 Not Found", "text/plain")

    def _send(self, code: int, content: bytes, content_type: str) -> None:
        self.send_response(code)
        self.send_header("Content-Length", str(len(content)))
        self.send_header("Content-Type", content_type)
        for name, value in ISOLATION_HEADERS.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(content)

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


def is_address_in_use(error: OSError) -> bool:
    """Return whether a bind failure means the port is taken."""
    # Windows sockets report WSAEADDRINUSE instead of EADDRINUSE.
    codes = (errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", None))
    return error.errno is not None and error.errno in codes


def bind_server(
    payload: bytes,
    host: str = DEFAULT_HOST,
    start_port: int = DEFAULT_PORT,
    end_port: int = MAX_PORT,
) -> MetafileServer:
    """
    Bind a metafile server to the first free port in ``[start_port, end_port)``.

    Raises:
        NoFreePortError: If every port in the range is in use.
        OSError: For bind failures other than a port conflict.

    """
    for port in range(start_port, end_port):
        try:
            return MetafileServer((host, port), payload)
        except OSError as e:
            if not is_address_in_use(e):
                raise
            logger.warning(f"Port {port} is in use, trying the next one")
    raise NoFreePortError(
        errno.EADDRINUSE,
        f"No free port between {start_port} and {end_port - 1} on {host}",
    )


def view_in_browser(
    entries: list[tuple[GroupKey, AggregateNode]], open_browser: bool = False
) -> None:
    """
    Serve the visualization of ``entries`` until interrupted.

    The metafile is encoded once here; every request gets the same bytes.
    """
    payload = encode_metafile(entries).encode("utf-8")
    server = bind_server(payload)
    host, port = server.server_address[:2]
    url = f"http://{host}:{port}"
    logger.info(f"Server running on {url}")
    if open_browser:
        webbrowser.open(url)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down server")
    finally:
        server.server_close()


def process_directory(path: str, config: Config) -> None:
    """Scan one path and print or serve its report."""
    logger.info(f"Mode: '{config.mode.value}' - analyzing {config.mode.description}")
    logger.info(
        "Note: Progress shows ALL files visited, but results will only include "
        "files matching the selected mode."
    )

    progress = ProgressReporter(mode=config.mode, enabled=config.progress)
    table = scan(path, config, progress)
    progress.finish()

    if config.web:
        view_in_browser(table.sorted_items(), config.open_browser)
        return

    for line in render_lines(table, path, config):
        print(line)


def non_negative_int(value: str) -> int:
    """Argparse type for depth values."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid depth: '{value}'") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"depth must be non-negative, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Display disk usage for each directory, split into files that are "
            "ignored and not ignored by .gitignore rules. Hidden files and "
            "directories are skipped unless -H is given."
        ),
        conflict_handler="resolve",
        add_help=False,
    )
    parser.add_argument(
        "--help",
        action="help",
        help="Show this help message and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        default=["./"],
        metavar="PATH",
        help="Paths to analyze (default: current directory)",
    )
    parser.add_argument(
        "-A",
        "--apparent",
        action="store_true",
        help="Display the apparent size instead of the disk usage",
    )
    parser.add_argument(
        "-H",
        "--hidden",
        action="store_true",
        help="Include hidden files and directories in the count",
    )
    parser.add_argument(
        "-a",
        "--all",
        action="store_true",
        help="Display an entry for each file as well as each directory",
    )
    depth_group = parser.add_mutually_exclusive_group()
    depth_group.add_argument(
        "-d",
        "--depth",
        type=non_negative_int,
        default=None,
        help="Display entries at most this many directories deep",
    )
    depth_group.add_argument(
        "-s",
        "--summarize",
        action="store_true",
        help="Display only a total for each path (equivalent to -d 0)",
    )
    parser.add_argument(
        "--direct-size",
        action="store_true",
        help="Only count the direct contents of each directory",
    )
    parser.add_argument(
        "-h",
        "--human-readable",
        action="store_true",
        help="Print sizes in human-readable format (e.g., 1.0K 234M 2.0G)",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in Mode],
        default=Mode.DU.value,
        help="Which files to count (default: du, i.e. all files)",
    )
    parser.add_argument(
        "--web",
        action="store_true",
        help="Start a local web server with an interactive visualization",
    )
    parser.add_argument(
        "--open",
        action="store_true",
        help="Start the web server and open it in the default browser",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Do not show the scanning progress line",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main() -> None:
    """
    Main entry point for the pyduh disk usage analyzer.

    Parses command-line arguments, scans each path and prints or serves the
    results.
    """
    parser = build_parser()
    args = parser.parse_args()

    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter("%(levelname)s: %(message)s"))
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if args.debug else logging.INFO)

    try:
        locale.setlocale(locale.LC_ALL, "")
    except locale.Error:
        logger.debug("Falling back to the default locale")

    try:
        config = Config.from_args(args)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    for path in args.paths:
        if not os.path.exists(path):
            logger.error(f"The path '{path}' does not exist.")
            sys.exit(1)

    try:
        for path in args.paths:
            process_directory(path, config)
    except NoFreePortError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
