"""
mothur SOP batch template

The reference protocol is published as a wiki page; its commands are pulled
out of the page, filtered for this project's input (unpaired reads already
split per sample) and rewritten to run on the implicit "current" dataset.

Filtering is expressed as declarative rules over parsed commands so that a
rule which no longer matches anything in the page is reported instead of
silently doing nothing.
"""

import re
import html
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import requests

from .config import RunConfig


logger = logging.getLogger(__name__)

TEMPLATE_MARKER = "mothur &gt;"
CURRENT = "current"

# Parameters that name the dataset a command works on
DATASET_PARAMS = ("fasta", "file", "shared", "name", "accnos")

FULL_REFERENCE_DB = "silva.bacteria.fasta"

_COMMAND_RE = re.compile(r'^\s*([A-Za-z][\w.]*)\s*\((.*)\)\s*;?\s*$')
_TAG_RE = re.compile(r'<[^>]+>')


class TemplateDriftError(RuntimeError):
    """Raised when rewrite rules no longer match the downloaded template."""


@dataclass
class Command:
    """A mothur command: name plus ordered key=value parameters"""

    name: str
    params: List[Tuple[str, Optional[str]]] = field(default_factory=list)

    @classmethod
    def parse(cls, line):
        match = _COMMAND_RE.match(line)
        if not match:
            raise ValueError(f"Not a mothur command: {line!r}")
        name, body = match.group(1), match.group(2).strip()

        params = []
        if body:
            for token in body.split(","):
                token = token.strip()
                if not token:
                    continue
                if "=" in token:
                    key, value = token.split("=", 1)
                    params.append((key.strip(), value.strip()))
                else:
                    params.append((token, None))
        return cls(name=name, params=params)

    def get(self, key, default=None):
        for k, v in self.params:
            if k == key:
                return v
        return default

    def has(self, key):
        return any(k == key for k, _ in self.params)

    def __str__(self):
        rendered = [k if v is None else f"{k}={v}" for k, v in self.params]
        return f"{self.name}({','.join(rendered)})"


# ============================================================================
# Template download and extraction
# ============================================================================

def extract_commands(page):
    """Pull every mothur command line out of the SOP page HTML"""
    lines = []
    for raw in page.splitlines():
        if TEMPLATE_MARKER not in raw:
            continue
        text = raw.split(TEMPLATE_MARKER, 1)[1]
        text = html.unescape(_TAG_RE.sub("", text)).strip()
        if text:
            lines.append(text)
    return lines


def template_cache_path(directory, url):
    """Cache file for one template URL, so a changed URL is fetched again"""
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:10]
    return Path(directory) / f"mothur_sop_{digest}.html"


def fetch_template(url, cache_path, timeout=120):
    """Download the SOP page once and reuse the cached copy afterwards"""
    cache_path = Path(cache_path)
    if cache_path.exists() and cache_path.stat().st_size > 0:
        logger.info("Using cached template %s", cache_path)
        return cache_path.read_text(encoding="utf-8")

    logger.info("Downloading template %s", url)
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()

    cache_path.parent.mkdir(parents=True, exist_ok=True)
    cache_path.write_text(response.text, encoding="utf-8")
    return response.text


# ============================================================================
# Rewrite rules
# ============================================================================

def command_named(*names) -> Callable[[Command], bool]:
    """Predicate matching any command whose name is in names"""
    wanted = frozenset(names)

    def predicate(command):
        return command.name in wanted
    return predicate


def command_with(name, *param_keys) -> Callable[[Command], bool]:
    """Predicate matching a command that carries all of param_keys"""
    def predicate(command):
        return command.name == name and all(command.has(k) for k in param_keys)
    return predicate


@dataclass(frozen=True)
class DeleteRule:
    """Drop every template command the predicate accepts"""

    label: str
    predicate: Callable[[Command], bool]
    expect_match: bool = True


# Steps for paired reads or raw 454 flowgrams; input here is unpaired FASTQ
INPUT_SHAPE_RULES = (
    DeleteRule("flowgram extraction", command_named("sffinfo")),
    DeleteRule("flowgram trimming", command_named("trim.flows")),
    DeleteRule("flowgram denoising", command_named("shhh.flows")),
    DeleteRule("barcode and primer trimming", command_with("trim.seqs", "oligos")),
    DeleteRule("paired-read contig assembly", command_named("make.contigs"), expect_match=False),
)

# Analyses that are not part of the reproduced figures
DOWNSTREAM_RULES = (
    DeleteRule("alpha diversity", command_named(
        "collect.single", "rarefaction.single", "summary.single")),
    DeleteRule("community comparison", command_named(
        "dist.shared", "summary.shared", "heatmap.bin", "heatmap.sim", "venn")),
    DeleteRule("trees", command_named(
        "tree.shared", "clearcut", "parsimony", "unifrac.weighted",
        "unifrac.unweighted", "phylo.diversity")),
    DeleteRule("ordination", command_named("pcoa", "nmds", "corr.axes")),
    DeleteRule("distance statistics", command_named("amova", "homova", "anosim")),
    DeleteRule("subsampling", command_named("sub.sample"), expect_match=False),
    DeleteRule("population statistics", command_named(
        "metastats", "lefse", "indicator"), expect_match=False),
)

DEFAULT_RULES = INPUT_SHAPE_RULES + DOWNSTREAM_RULES


@dataclass
class RewriteReport:
    """Which delete rules fired, and how often"""

    removed: dict = field(default_factory=dict)
    unparsed: List[str] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)

    @property
    def total_removed(self):
        return sum(self.removed.values())


def substitute(command: Command, num_processors, reference_db) -> Command:
    """Point dataset parameters at the current dataset and set run options"""
    params = []
    for key, value in command.params:
        if key in DATASET_PARAMS:
            value = CURRENT
        elif key == "processors":
            value = str(num_processors)
        elif value == FULL_REFERENCE_DB:
            value = reference_db
        params.append((key, value))
    return Command(name=command.name, params=params)


def rewrite_line(line, num_processors, reference_db):
    """Apply the parameter substitutions to a single command line"""
    return str(substitute(Command.parse(line), num_processors, reference_db))


def screening_commands(num_processors) -> List[str]:
    """Project-specific steps run on the merged dataset before the SOP"""
    return [
        f"screen.seqs(fasta={CURRENT},maxambig=0,minlength=200,processors={num_processors})",
        f"summary.seqs(fasta={CURRENT},processors={num_processors})",
    ]


def rewrite_template(lines, config: RunConfig, rules=DEFAULT_RULES):
    """
    Filter and rewrite SOP command lines for this project

    Args:
        lines: Command lines extracted from the SOP page
        config: Run configuration (worker count, reference, strictness)
        rules: Delete rules to apply

    Returns:
        (rewritten lines, RewriteReport)
    """
    report = RewriteReport(removed={rule.label: 0 for rule in rules})
    kept = []

    for line in lines:
        try:
            command = Command.parse(line)
        except ValueError:
            logger.warning("Template line is not a command, dropped: %s", line)
            report.unparsed.append(line)
            continue

        rule = next((r for r in rules if r.predicate(command)), None)
        if rule is not None:
            report.removed[rule.label] += 1
            logger.debug("Removed (%s): %s", rule.label, line)
            continue

        kept.append(str(substitute(command, config.num_processors, config.reference_db)))

    report.unmatched = [r.label for r in rules if r.expect_match and report.removed[r.label] == 0]
    if report.unmatched:
        message = "Rewrite rules matched nothing in the template: " + ", ".join(report.unmatched)
        if config.strict_template:
            raise TemplateDriftError(message)
        logger.warning(message)

    return screening_commands(config.num_processors) + kept, report


# ============================================================================
# Batch file
# ============================================================================

class BatchTemplate:
    """Ordered mothur batch lines, assembled back to front"""

    def __init__(self, lines=None):
        self.lines = list(lines or [])

    def prepend(self, lines):
        self.lines[:0] = list(lines)

    def append(self, lines):
        self.lines.extend(lines)

    def commands(self):
        return [line for line in self.lines if line and not line.startswith("#")]

    def write(self, path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            for line in self.lines:
                f.write(f"{line}\n")
        return path

    def __len__(self):
        return len(self.lines)
