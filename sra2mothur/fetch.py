"""
SRA accession lookup and raw read download

Queries NCBI for every run under a BioProject, writes the run/sample lists
that later stages address samples by, and optionally pulls the FASTQ files
with the SRA Toolkit.
"""

import io
import os
import time
import logging
import subprocess
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import List

import numpy as np
import pandas as pd
from Bio import Entrez

from .config import RunConfig


logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Raised when run accessions cannot be obtained."""


@dataclass(frozen=True)
class RunRecord:
    """One sequencing run and the biological sample it came from"""

    accession: str
    sample_name: str


# ============================================================================
# NCBI queries
# ============================================================================

def get_sra_ids(project_id):
    """Fetch all SRA UIDs linked to a BioProject"""
    search_query = f"{project_id}[BioProject]"
    search_handle = Entrez.esearch(db="sra", term=search_query, retmax=10000)
    search_results = Entrez.read(search_handle)
    search_handle.close()
    return list(search_results["IdList"])


def _read_text(handle):
    data = handle.read()
    handle.close()
    if isinstance(data, bytes):
        return data.decode("utf-8")
    return data


def download_runinfo(sra_ids):
    """Download SRA RunInfo metadata as a DataFrame"""
    fetch_handle = Entrez.efetch(db="sra", id=",".join(sra_ids),
                                 rettype="runinfo", retmode="text")
    txt_data = _read_text(fetch_handle)

    df = pd.read_csv(io.StringIO(txt_data), dtype=str)
    # RunInfo output repeats the header between batches
    if "Run" in df.columns:
        df = df[df["Run"] != "Run"]
    df = df.dropna(how="all")

    for col in ("Run", "SampleName"):
        if col in df.columns:
            df[col] = (
                df[col]
                .astype(str)
                .str.replace(' ', '', regex=True)
                .str.replace('\n', '', regex=True)
                .str.replace('\t', '', regex=True)
            )
    return df.reset_index(drop=True)


def download_metadata_xml(sra_ids):
    """Download the full SRA experiment-package XML for the given UIDs"""
    fetch_handle = Entrez.efetch(db="sra", id=",".join(sra_ids), retmode="xml")
    return _read_text(fetch_handle)


def build_run_records(df) -> List[RunRecord]:
    """Pair each run accession with its sample name, keeping RunInfo order"""
    missing = [c for c in ("Run", "SampleName") if c not in df.columns]
    if missing:
        raise FetchError(f"RunInfo table lacks column(s): {', '.join(missing)}")

    records = []
    for _, row in df.iterrows():
        accession = row["Run"]
        sample_name = row["SampleName"]
        if accession in ("", "nan") or sample_name in ("", "nan"):
            logger.warning("Dropping run with incomplete identifiers: run=%r sample=%r",
                           accession, sample_name)
            continue
        records.append(RunRecord(accession=accession, sample_name=sample_name))

    duplicates = [name for name, n in Counter(r.sample_name for r in records).items() if n > 1]
    if duplicates:
        logger.warning("Sample names shared by several runs: %s", ", ".join(sorted(duplicates)))

    return records


# ============================================================================
# Run list files
# ============================================================================

def write_run_lists(records, config: RunConfig):
    """Write the accession and sample-name lists, one entry per line"""
    accessions = np.array([r.accession for r in records], dtype=object)
    samples = np.array([r.sample_name for r in records], dtype=object)
    np.savetxt(config.accession_file, accessions, fmt="%s")
    np.savetxt(config.sample_file, samples, fmt="%s")


def read_run_records(config: RunConfig) -> List[RunRecord]:
    """Read the accession and sample-name lists back into paired records"""
    for path in (config.accession_file, config.sample_file):
        if not path.exists():
            raise FetchError(f"Run list not found: {path} (enable get_new_data to create it)")

    with open(config.accession_file, "r", encoding="utf-8") as f:
        accessions = [line.strip() for line in f if line.strip()]
    with open(config.sample_file, "r", encoding="utf-8") as f:
        samples = [line.strip() for line in f if line.strip()]

    if len(accessions) != len(samples):
        raise FetchError(
            f"{config.accession_file.name} has {len(accessions)} lines but "
            f"{config.sample_file.name} has {len(samples)}"
        )

    return [RunRecord(accession=a, sample_name=s) for a, s in zip(accessions, samples)]


def _remove_stale(paths):
    for path in paths:
        if os.path.exists(path):
            logger.debug("Removing stale %s", path)
            os.remove(path)


def fetch_project(config: RunConfig) -> List[RunRecord]:
    """
    Query NCBI for a BioProject and write its run lists and metadata

    Writes four files into data_dir, replacing any earlier copies:
    accession list, sample-name list, full RunInfo table and metadata XML.

    Returns:
        List of RunRecord in RunInfo order
    """
    Entrez.email = config.email

    _remove_stale([
        config.accession_file,
        config.sample_file,
        config.full_dataset_file,
        config.metadata_xml_file,
    ])

    sra_ids = get_sra_ids(config.project_id)
    if not sra_ids:
        raise FetchError(f"No SRA runs found for {config.project_id}")
    print(f"  {config.project_id}: {len(sra_ids)} SRA entries")

    df = download_runinfo(sra_ids)
    time.sleep(0.4)
    xml_text = download_metadata_xml(sra_ids)

    records = build_run_records(df)
    if not records:
        raise FetchError(f"RunInfo for {config.project_id} contained no usable runs")

    write_run_lists(records, config)
    df.to_csv(config.full_dataset_file, index=False, encoding='utf-8')
    with open(config.metadata_xml_file, "w", encoding="utf-8") as f:
        f.write(xml_text)

    print(f"  Runs: {len(records)}")
    print(f"  Saved to: {config.data_dir}")
    return records


# ============================================================================
# Raw reads
# ============================================================================

def _rename_dump(input_dir: Path, record: RunRecord):
    """Rename fastq-dump output from the run accession to the sample name"""
    renamed = []
    for suffix in ("", "_1", "_2"):
        src = input_dir / f"{record.accession}{suffix}.fastq"
        if src.exists():
            dst = input_dir / f"{record.sample_name}{suffix}.fastq"
            os.replace(src, dst)
            renamed.append(dst)
    if not renamed:
        logger.warning("fastq-dump produced no FASTQ for %s", record.accession)
    return renamed


def download_fastq(records, config: RunConfig, prefetch="prefetch", fastq_dump="fastq-dump"):
    """Download each run with prefetch, convert with fastq-dump and rename by sample"""
    print(f"  Downloading {len(records)} runs")
    for i, record in enumerate(records, 1):
        print(f"  [{i}/{len(records)}] {record.accession} -> {record.sample_name}")
        subprocess.run(
            [prefetch, record.accession, "-O", str(config.download_dir)],
            check=True
        )
        # prefetch nests the archive in a per-accession folder
        sra_path = config.download_dir / record.accession / f"{record.accession}.sra"
        if not sra_path.exists():
            sra_path = config.download_dir / record.accession
        subprocess.run(
            [fastq_dump, "--outdir", str(config.input_dir), str(sra_path)],
            check=True
        )
        _rename_dump(config.input_dir, record)
