"""
Per-sample clinical fields from SRA metadata XML

Records are found by plain text search for the sample name and run
accession; field values are read from the SAMPLE_ATTRIBUTE
<TAG>..</TAG><VALUE>..</VALUE> pairs.
"""

import os
import re
import html
import logging
from dataclasses import dataclass, field
from typing import Dict, List

import pandas as pd

from .config import RunConfig


logger = logging.getLogger(__name__)

MISSING = "NA"

_PACKAGE_RE = re.compile(r'<EXPERIMENT_PACKAGE\b.*?</EXPERIMENT_PACKAGE>', re.DOTALL)


@dataclass
class SampleMetadata:
    """Field values scraped for one run, keyed by accession and sample"""

    accession: str
    sample_name: str
    values: Dict[str, str] = field(default_factory=dict)
    problems: List[str] = field(default_factory=list)


def split_records(xml_text):
    """Split the XML dump into per-experiment fragments"""
    fragments = _PACKAGE_RE.findall(xml_text)
    if not fragments:
        return [xml_text]
    return fragments


def _squeeze(text):
    return re.sub(r"[ \t\n]", "", text)


def _contains_token(text, token):
    pattern = r'(?<![\w.-])' + re.escape(token) + r'(?![\w.-])'
    return re.search(pattern, text) is not None


def select_records(fragments, sample_name, accession):
    """
    Fragments that mention both the sample name and the run accession

    Spaces, tabs and newlines are ignored on both sides, since run lists
    carry sample names with that whitespace already stripped.
    """
    sample_name = _squeeze(sample_name)
    accession = _squeeze(accession)
    return [
        frag for frag in fragments
        if _contains_token(_squeeze(frag), sample_name)
        and _contains_token(_squeeze(frag), accession)
    ]


def extract_field(fragment, tag):
    """All values stored under a given attribute tag in one fragment"""
    pattern = r'(?<=<TAG>' + re.escape(tag) + r'</TAG>)\s*<VALUE>(.*?)(?=</VALUE>)'
    return [html.unescape(v).strip() for v in re.findall(pattern, fragment, re.DOTALL)]


def scrape_sample(fragments, record, fields) -> SampleMetadata:
    """Collect every configured field for one run"""
    sample = SampleMetadata(accession=record.accession, sample_name=record.sample_name)
    matched = select_records(fragments, record.sample_name, record.accession)

    if not matched:
        sample.problems.append("no metadata record")
    elif len(matched) > 1:
        sample.problems.append(f"{len(matched)} metadata records")

    for stem, tag in fields:
        found = []
        for frag in matched:
            for value in extract_field(frag, tag):
                if value not in found:
                    found.append(value)

        if not found:
            sample.values[stem] = ""
            if matched:
                sample.problems.append(f"{tag} missing")
        else:
            sample.values[stem] = found[0]
            if len(found) > 1:
                sample.problems.append(f"{tag} has {len(found)} values: {', '.join(found)}")

    for problem in sample.problems:
        logger.warning("Metadata for %s (%s): %s", record.sample_name, record.accession, problem)

    return sample


def scrape_metadata(xml_text, records, fields) -> List[SampleMetadata]:
    """Scrape configured fields for every run, in run-list order"""
    fragments = split_records(xml_text)
    return [scrape_sample(fragments, record, fields) for record in records]


def remove_field_files(config: RunConfig):
    for stem, _ in config.metadata_fields:
        path = config.field_file(stem)
        if os.path.exists(path):
            os.remove(path)


def write_field_files(samples, config: RunConfig):
    """
    Append one line per sample to each field file and write the keyed table

    Missing values are written as NA so every field file keeps one line per
    sample in run-list order.
    """
    for stem, _ in config.metadata_fields:
        with open(config.field_file(stem), "a", encoding="utf-8") as f:
            for sample in samples:
                f.write(f"{sample.values.get(stem) or MISSING}\n")

    rows = []
    for sample in samples:
        row = {"accession": sample.accession, "sample_name": sample.sample_name}
        for stem, _ in config.metadata_fields:
            row[stem] = sample.values.get(stem) or MISSING
        row["problems"] = "; ".join(sample.problems)
        rows.append(row)

    columns = ["accession", "sample_name"] + [stem for stem, _ in config.metadata_fields] + ["problems"]
    df = pd.DataFrame(rows, columns=columns)
    df.to_csv(config.metadata_table_file, sep='\t', index=False)
    return df
