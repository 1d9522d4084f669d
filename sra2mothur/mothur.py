"""
mothur invocation

Per-sample conversion and quality trimming are run straight away as small
batches; the assembled SOP batch is run last. All console output goes to one
cumulative log.
"""

import logging
import subprocess
from pathlib import Path
from typing import List

from .config import RunConfig
from .merge import locate_sample_file


logger = logging.getLogger(__name__)

TRIM_OPTIONS = "maxambig=0,maxhomop=8,qwindowaverage=35,qwindowsize=50"


def set_dir_command(input_dir, output_dir):
    return f"set.dir(input={input_dir},output={output_dir})"


def run_batch(batch_file, log_file, executable="mothur"):
    """
    Run mothur on a batch file and append its console output to log_file

    A non-zero exit status raises subprocess.CalledProcessError. mothur
    reports many problems on stdout while still exiting 0; those lines are
    logged as warnings.

    Returns:
        List of [ERROR] lines mothur printed
    """
    cmd = [executable, str(batch_file)]
    logger.info("Running %s", " ".join(cmd))

    result = subprocess.run(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True
    )
    output = result.stdout or ""

    with open(log_file, "a", encoding="utf-8") as log:
        log.write(f"### {' '.join(cmd)}\n")
        log.write(output)
        if output and not output.endswith("\n"):
            log.write("\n")

    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, cmd, output=output)

    errors = [line.strip() for line in output.splitlines() if "[ERROR]" in line]
    for line in errors:
        logger.warning("mothur (%s): %s", Path(batch_file).name, line)
    return errors


def fastq_conversion_batch(records, config: RunConfig) -> List[str]:
    """fastq.info for every sample whose raw FASTQ is in input_dir"""
    lines = [set_dir_command(config.input_dir, config.output_dir)]
    for record in records:
        fastq = locate_sample_file(config.input_dir, record.sample_name, ".fastq")
        if fastq is None:
            logger.warning("No FASTQ for sample %s (%s), skipping conversion",
                           record.sample_name, record.accession)
            continue
        lines.append(f"fastq.info(fastq={fastq.name})")
    return lines


def quality_trim_batch(records, config: RunConfig) -> List[str]:
    """trim.seqs for every sample with a converted FASTA in output_dir"""
    lines = [set_dir_command(config.output_dir, config.output_dir)]
    for record in records:
        fasta = locate_sample_file(config.output_dir, record.sample_name, ".fasta")
        if fasta is None:
            logger.warning("No converted FASTA for sample %s (%s), skipping trim",
                           record.sample_name, record.accession)
            continue
        qual = fasta.with_suffix(".qual")
        lines.append(
            f"trim.seqs(fasta={fasta.name},qfile={qual.name},{TRIM_OPTIONS},"
            f"processors={config.num_processors})"
        )
    return lines


def _run_lines(lines, batch_file, config: RunConfig):
    batch_file = Path(batch_file)
    with open(batch_file, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(f"{line}\n")
    run_batch(batch_file, config.mothur_log)


def prepare_fasta_files(records, config: RunConfig) -> List[str]:
    """
    Convert raw FASTQ to FASTA/qual and quality-trim every sample

    Both batches run immediately because the trim batch depends on which
    files the conversion produced.

    Returns:
        The batch lines that were executed, conversion first
    """
    print("  Converting FASTQ files")
    conversion = fastq_conversion_batch(records, config)
    _run_lines(conversion, config.output_dir / "fastq_info.mothur", config)

    print("  Quality trimming")
    trimming = quality_trim_batch(records, config)
    _run_lines(trimming, config.output_dir / "trim_seqs.mothur", config)

    return conversion + trimming
