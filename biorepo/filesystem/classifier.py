"""Path classifier: ordered first-match-wins rules over file names.

Each rule maps a file name pattern to a manifest category and an
``archivable`` decision (constant or size dependent). A few rules declare a
compression transcode for oversized uncompressed files; the classifier only
describes it, the scanner applies it and re-classifies the compressed file.
"""

from __future__ import annotations

import gzip
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from biorepo.filesystem.manifest import Category

if TYPE_CHECKING:
    from pathlib import Path

    from biorepo.config import Settings

logger = logging.getLogger(__name__)

MACHINE_PLATFORMS: dict[str, str] = {
    "D00550": "Illumina HiSeq 2500",
    "D00294": "Illumina HiSeq 2500",
    "A00421": "Illumina NovaSeq 6000",
    "M05774": "Illumina MiSeq",
    "M00736": "Illumina MiSeq",
    "DQNZZQ1": "Illumina HiSeq 2000",
    "HWI-ST1117": "Illumina HiSeq 2000",
    "LH00227": "Illumina NovaSeq X",
}

_READ_NAME_RE = re.compile(r"^@([A-Z]{1,2}\d+):")
_SAMPLE_IN_PATH_RE = re.compile(r"(\d{4,6}X\d{1,3})[.\-_/]")
_PAIR_IN_NAME_RE = re.compile(r"r?([12])\.", re.IGNORECASE)
_UMI_SIZE_RATIO = 3


class Compressor(StrEnum):
    GZIP = "gzip"
    BGZIP = "bgzip"


@dataclass(frozen=True)
class FileFacts:
    """What the classifier may look at: location, name and size."""

    path: Path
    relative_path: str
    size: int

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ClassificationResult:
    category: Category
    archivable: bool
    rule: str
    fields: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TranscodeEffect:
    """A compression the caller must apply before recording the file."""

    source: Path
    compressor: Compressor

    @property
    def target(self) -> Path:
        return self.source.with_name(f"{self.source.name}.gz")


Archivability = bool | Callable[[FileFacts, "Settings"], bool]
Enricher = Callable[[re.Match[str], FileFacts], dict[str, str]]


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    pattern: re.Pattern[str]
    category: Category
    archivable: Archivability
    transcode: Compressor | None = None
    enrich: Enricher | None = None

    def matches(self, facts: FileFacts) -> re.Match[str] | None:
        return self.pattern.search(facts.name)

    def is_archivable(self, facts: FileFacts, settings: Settings) -> bool:
        if callable(self.archivable):
            return self.archivable(facts, settings)
        return self.archivable


def sniff_instrument(path: Path) -> str:
    """Read the first fastq read name and return the instrument id, or ''."""
    try:
        if path.name.endswith(".gz"):
            with gzip.open(path, "rt", encoding="ascii", errors="replace") as fh:
                first = fh.readline()
        else:
            with path.open(encoding="ascii", errors="replace") as fh:
                first = fh.readline()
    except (OSError, EOFError) as exc:
        logger.debug("Cannot read first line of %s: %s", path, exc)
        return ""
    match = _READ_NAME_RE.match(first)
    return match.group(1) if match else ""


# --- archivability predicates ---


def _small(facts: FileFacts, settings: Settings) -> bool:
    return facts.size <= settings.transcode_min_size


def _annotation_archivable(facts: FileFacts, settings: Settings) -> bool:
    return not (facts.name.endswith(".gz") and facts.size > settings.archive_keep_max_size)


def _archive_archivable(facts: FileFacts, settings: Settings) -> bool:
    if facts.name.endswith("fastqc.zip"):
        return True
    return facts.size < settings.archive_keep_max_size


# --- enrichment ---


def _fastq_fields(
    sample: str = "", machine: str = "", lane: str = "", pair: str = ""
) -> dict[str, str]:
    return {
        "sample_id": sample or "-",
        "platform": MACHINE_PLATFORMS.get(machine, "-") if machine else "-",
        "platform_unit_id": lane or "-",
        "paired_end": pair or "-",
    }


def _umi_pair(facts: FileFacts, pair: str) -> str:
    """Relabel R2/R3 reads when one of them is really a short UMI read."""
    if pair == "2":
        other = facts.path.with_name(facts.name.replace("_R2_", "_R3_"))
        if other.exists() and other.stat().st_size > facts.size * _UMI_SIZE_RATIO:
            return "UMI"
    elif pair == "3":
        other = facts.path.with_name(facts.name.replace("_R3_", "_R2_"))
        if other.exists() and facts.size > other.stat().st_size * _UMI_SIZE_RATIO:
            return "2"
    return pair


def _casava(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    sample, machine, lane, pair = match.groups()
    return _fastq_fields(sample, machine, lane, _umi_pair(facts, pair))


def _casava_index(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    sample, machine, lane, index = match.groups()
    return _fastq_fields(sample, machine, lane, f"index{index}")


def _hiseq_read(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    sample, machine, pair = match.groups()
    return _fastq_fields(sample, machine, "1", pair)


def _old_single(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    sample, machine, lane = match.groups()
    return _fastq_fields(sample, machine, lane)


def _old_paired(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    sample, machine, lane, pair = match.groups()
    return _fastq_fields(sample, machine, lane, pair)


def _sniffed_read(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    sample, lane, pair = match.groups()
    return _fastq_fields(sample, sniff_instrument(facts.path), lane, pair)


def _sniffed_index(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    sample, lane, index = match.groups()
    return _fastq_fields(sample, sniff_instrument(facts.path), lane, f"index{index}")


def _undetermined(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    lane = re.search(r"_L(\d+)", facts.name)
    pair = re.search(r"_R([12])", facts.name)
    return _fastq_fields(
        "undetermined",
        sniff_instrument(facts.path),
        lane.group(1) if lane else "",
        pair.group(1) if pair else "",
    )


def _generic_fastq(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    pair = _PAIR_IN_NAME_RE.search(facts.name)
    return _fastq_fields(pair=pair.group(1) if pair else "")


def _star_unmapped(match: re.Match[str], facts: FileFacts) -> dict[str, str]:
    return _fastq_fields(pair=match.group(1))


def _rule(
    name: str,
    pattern: str,
    category: Category,
    archivable: Archivability,
    *,
    transcode: Compressor | None = None,
    enrich: Enricher | None = None,
    case_sensitive: bool = False,
) -> ClassificationRule:
    flags = 0 if case_sensitive else re.IGNORECASE
    return ClassificationRule(
        name=name,
        pattern=re.compile(pattern, flags),
        category=category,
        archivable=archivable,
        transcode=transcode,
        enrich=enrich,
    )


_ANNOTATION_EXT = (
    r"bed|bed\d+|gtf|gff|gff\d|narrowpeak|broadpeak|gappedpeak|refflat|genepred|ucsc"
)

# Most specific first; the catch-all must stay last.
RULES: tuple[ClassificationRule, ...] = (
    # Illumina demultiplexer output, e.g.
    # 16013X1_190529_D00550_0563_BCDLULANXX_S12_L001_R1_001.fastq.gz
    _rule(
        "illumina_read",
        r"^(\d{4,5}[xXP]\d+)_\d+_([LHADM]{1,2}\d+)_\d+_[A-Z\d\-]+"
        r"_S\d+_L(\d+)_R(\d)_001\.fastq\.gz$",
        Category.FASTQ,
        _small,
        enrich=_casava,
        case_sensitive=True,
    ),
    _rule(
        "illumina_index",
        r"^(\d{4,5}[xX]\d+)_\d+_([LHADM]{1,2}\d+)_\d+_[A-Z\d\-]+_S\d+_L(\d+)_I(\d)_001\.fastq\.gz$",
        Category.FASTQ,
        _small,
        enrich=_casava_index,
        case_sensitive=True,
    ),
    _rule(
        "hiseq_read",
        r"^(\d{4,5}[xX]\d+)_\d+_([ADM]\d+)_\d+_[A-Z\d\-]+_R(\d)\.(?:txt|fastq)\.gz$",
        Category.FASTQ,
        _small,
        enrich=_hiseq_read,
        case_sensitive=True,
    ),
    _rule(
        "old_single_end",
        r"^(\d{4,5}[xX]\d+)_\d+_([ADM]\d+)_\d+_[A-Z\d]+_(\d)\.txt\.gz$",
        Category.FASTQ,
        _small,
        enrich=_old_single,
        case_sensitive=True,
    ),
    _rule(
        "old_paired_end",
        r"^(\d{4,5}[xX]\d+)_\d+_([ADM]\d+)_\d+_[A-Z\d]+_(\d)_([12])\.txt\.gz$",
        Category.FASTQ,
        _small,
        enrich=_old_paired,
        case_sensitive=True,
    ),
    # 10X and MiSeq names carry no instrument; it is read from the first record
    _rule(
        "tenx_read",
        r"^(\d{4,5}[xX]\d+)_S\d+_L(\d+)_R(\d)_001\.fastq(?:\.gz)?$",
        Category.FASTQ,
        _small,
        transcode=Compressor.GZIP,
        enrich=_sniffed_read,
        case_sensitive=True,
    ),
    _rule(
        "tenx_index",
        r"^(\d{4,5}[xX]\d+)_S\d+_L(\d+)_I(\d)_001\.fastq\.gz$",
        Category.FASTQ,
        _small,
        enrich=_sniffed_index,
        case_sensitive=True,
    ),
    _rule(
        "undetermined",
        r"^Undetermined_.+\.fastq\.gz$",
        Category.FASTQ,
        _small,
        enrich=_undetermined,
        case_sensitive=True,
    ),
    _rule(
        "fastq",
        r"\.(?:fq|fastq)(?:\.gz)?$",
        Category.FASTQ,
        _small,
        transcode=Compressor.GZIP,
        enrich=_generic_fastq,
    ),
    _rule(
        "star_unmapped",
        r"^Unmapped\.out\.mate([12])",
        Category.FASTQ,
        _small,
        transcode=Compressor.GZIP,
        enrich=_star_unmapped,
    ),
    _rule("browser_track", r"\.(?:bw|bigwig|bb|bigbed|hic)$", Category.BROWSER_TRACK, False),
    _rule("alignment", r"\.(?:bam|cram|sam\.gz)$", Category.ALIGNMENT, False),
    _rule("sam", r"\.sam$", Category.ALIGNMENT, _small, transcode=Compressor.GZIP),
    _rule("variant_compressed", r"\.vcf\.gz$", Category.VARIANT, False),
    _rule("variant", r"\.(?:vcf|maf)$", Category.VARIANT, _small, transcode=Compressor.BGZIP),
    _rule("loupe", r"\.[cv]loupe$", Category.ANALYSIS, False),
    _rule(
        "sequence",
        r"\.(?:fa|fasta|fai|ffn|dict)(?:\.gz)?$",
        Category.SEQUENCE,
        _small,
        transcode=Compressor.GZIP,
    ),
    _rule(
        "annotation",
        rf"\.(?:{_ANNOTATION_EXT})(?:\.gz)?$",
        Category.ANNOTATION,
        _annotation_archivable,
    ),
    _rule("script", r"\.(?:sh|pl|py|pyc|r|rmd|rscript|awk|sm|sing)$", Category.SCRIPT, True),
    _rule("command_file", r"^cmd\.txt$", Category.SCRIPT, True, case_sensitive=True),
    _rule("sample_sheet", r"samplesheet\.\w+$", Category.DOCUMENT, True),
    _rule(
        "text",
        r"\.(?:txt|tsv|tab|csv|cdt|counts|results|cns|cnr|cnn|md|log|biotypes|summary"
        r"|rna_metrics|out|err|idxstats?)(?:\.gz)?$",
        Category.TEXT,
        True,
    ),
    _rule("wiggle", r"\.(?:wig|bg|bdg|bedgraph)(?:\.gz)?$", Category.ANALYSIS, True),
    _rule("mpileup_compressed", r"\.mpileup.*\.gz$", Category.ANALYSIS, False),
    _rule(
        "analysis",
        r"\.(?:bar|bar\.zip|useq|swi|swi\.gz|egr|ser|mpileup|motif|cov|mtx|mtx\.gz)$",
        Category.ANALYSIS,
        True,
    ),
    _rule(
        "results",
        r"\.(?:xls|ppt|pptx|doc|docx|rout|rda|rdata|rds|rproj|xml|json|json\.gz|html|pzfx)$",
        Category.RESULTS,
        True,
    ),
    _rule(
        "image",
        r"\.(?:pdf|ps|eps|png|jpg|jpeg|gif|tif|tiff|svg|ai)$",
        Category.IMAGE,
        True,
    ),
    # Kept out of the archive so users can open them directly
    _rule("results_large", r"\.(?:xlsx|h5|hd5|hdf5)$", Category.RESULTS, False),
    _rule("archive", r"\.(?:tar|tar\.gz|tar\.bz2|zip)$", Category.ARCHIVE, _archive_archivable),
    _rule(
        "alignment_index",
        r"\.(?:bt2|amb|ann|bwt|pac|nix|novoindex|index)$",
        Category.ALIGNMENT_INDEX,
        True,
        case_sensitive=True,
    ),
    _rule("catch_all", r"", Category.OTHER, True),
)


def _needs_transcode(facts: FileFacts, settings: Settings) -> bool:
    return not facts.name.lower().endswith(".gz") and facts.size > settings.transcode_min_size


def classify(
    facts: FileFacts,
    settings: Settings,
    rules: tuple[ClassificationRule, ...] = RULES,
) -> tuple[ClassificationResult, TranscodeEffect | None]:
    """Classify a file; returns the result and an optional transcode to apply.

    Raises LookupError only if ``rules`` lacks a catch-all.
    """
    for rule in rules:
        match = rule.matches(facts)
        if match is None:
            continue

        fields = rule.enrich(match, facts) if rule.enrich else {}
        if "sample_id" not in fields:
            sample = _SAMPLE_IN_PATH_RE.search(facts.relative_path)
            if sample:
                fields["sample_id"] = sample.group(1)

        if rule.category is Category.OTHER and facts.size > settings.large_file_threshold:
            logger.warning(
                "Large unknown file %s at %.1fG", facts.relative_path, facts.size / 1073741824
            )

        archivable = settings.archive_enabled and rule.is_archivable(facts, settings)
        result = ClassificationResult(
            category=rule.category, archivable=archivable, rule=rule.name, fields=fields
        )
        effect = None
        compressor = rule.transcode
        if compressor is not None and _needs_transcode(facts, settings):
            effect = TranscodeEffect(source=facts.path, compressor=compressor)
        return result, effect

    msg = f"No classification rule matched {facts.relative_path}"
    raise LookupError(msg)
