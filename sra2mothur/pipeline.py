#!/usr/bin/env python3
"""
SRA2Mothur reproduction pipeline
Fetches a BioProject's runs, builds and runs the mothur batch, and extracts
the clinical metadata tables used for the figures

Usage:
    SRA2Mothur --config run_config.json
    SRA2Mothur --config run_config.json --project-id PRJNA000000 --processors 8
"""

import sys
import logging
import argparse
import subprocess
from pathlib import Path

import requests

from .config import ConfigError, RunConfig, init_directories, load_config, remove_old_output
from .fetch import FetchError, download_fastq, fetch_project, read_run_records
from .merge import merge_commands, plan_merges, sample_fasta_paths
from .metadata import remove_field_files, scrape_metadata, write_field_files
from .mothur import prepare_fasta_files, run_batch, set_dir_command
from .template import (BatchTemplate, TemplateDriftError, extract_commands,
                       fetch_template, rewrite_template, template_cache_path)


logger = logging.getLogger(__name__)


# ============================================================================
# Stages
# ============================================================================

def build_batch(records, config: RunConfig):
    """
    Assemble the mothur batch file for this project

    Returns:
        (BatchTemplate, RewriteReport)
    """
    page = fetch_template(config.template_url,
                          template_cache_path(config.download_dir, config.template_url))
    commands = extract_commands(page)
    print(f"  Template commands: {len(commands)}")

    rewritten, report = rewrite_template(commands, config)
    print(f"  Removed {report.total_removed} commands, kept {len(rewritten)}")
    batch = BatchTemplate(rewritten)

    executed = []
    if config.make_fasta_files:
        executed = prepare_fasta_files(records, config)

    paths = sample_fasta_paths(records, config.output_dir)
    plan = plan_merges(paths, fan_out=config.merge_fan_out)
    print(f"  Merging {len(paths)} sample files in {len(plan.steps)} steps")

    batch.prepend(merge_commands(plan))
    batch.prepend([set_dir_command(config.output_dir, config.output_dir)])
    if executed:
        batch.prepend(["# already run by SRA2Mothur:"] + [f"# {line}" for line in executed])

    batch.write(config.batch_file)
    print(f"  Saved to: {config.batch_file}")
    return batch, report


def make_datasets(records, config: RunConfig):
    """Scrape the configured metadata fields into per-field files"""
    if not config.metadata_xml_file.exists():
        raise FetchError(f"Metadata XML not found: {config.metadata_xml_file}")

    with open(config.metadata_xml_file, "r", encoding="utf-8") as f:
        xml_text = f.read()

    samples = scrape_metadata(xml_text, records, config.metadata_fields)
    remove_field_files(config)
    write_field_files(samples, config)

    flagged = sum(1 for s in samples if s.problems)
    print(f"  Samples: {len(samples)} ({flagged} with metadata problems)")
    print(f"  Saved to: {config.metadata_table_file}")
    return samples


# ============================================================================
# Main Pipeline
# ============================================================================

def run_complete_pipeline(config: RunConfig):
    """
    Execute every enabled stage in order

    Args:
        config: Run configuration

    Returns:
        Dictionary describing what ran
    """
    print("="*70)
    print("SRA2Mothur Reproduction Pipeline")
    print("="*70)

    results = {'records': None, 'batch': None, 'report': None,
               'mothur_errors': None, 'samples': None}

    print("\n[Step 1/6] Preparing directories")
    init_directories(config)
    if config.remove_old_output:
        remove_old_output(config)

    records = None
    if config.get_new_data:
        print(f"\n[Step 2/6] Fetching runs for {config.project_id}")
        records = fetch_project(config)
    else:
        print("\n[Step 2/6] Fetching runs (skipped)")

    def run_records():
        nonlocal records
        if records is None:
            records = read_run_records(config)
        return records

    if config.download_fastq_files:
        print("\n[Step 3/6] Downloading FASTQ files")
        download_fastq(run_records(), config)
    else:
        print("\n[Step 3/6] Downloading FASTQ files (skipped)")

    if config.make_mothur_input:
        print("\n[Step 4/6] Building mothur batch")
        results['batch'], results['report'] = build_batch(run_records(), config)
    else:
        print("\n[Step 4/6] Building mothur batch (skipped)")

    if config.run_mothur:
        print("\n[Step 5/6] Running mothur")
        if not config.batch_file.exists():
            raise FileNotFoundError(f"Batch file not found: {config.batch_file}")
        results['mothur_errors'] = run_batch(config.batch_file, config.mothur_log)
        print(f"  Log: {config.mothur_log}")
    else:
        print("\n[Step 5/6] Running mothur (skipped)")

    if config.make_new_datasets:
        print("\n[Step 6/6] Extracting metadata")
        results['samples'] = make_datasets(run_records(), config)
    else:
        print("\n[Step 6/6] Extracting metadata (skipped)")

    results['records'] = records

    print("\n" + "="*70)
    print("Pipeline Complete")
    print("="*70)
    return results


def build_config(args):
    """Turn parsed command line arguments into a RunConfig"""
    overrides = {}
    if args.project_id:
        overrides['project_id'] = args.project_id
    if args.processors is not None:
        overrides['num_processors'] = args.processors
    if args.email:
        overrides['email'] = args.email

    if args.config:
        return load_config(args.config, base_dir=args.base_dir, overrides=overrides)
    return RunConfig.from_dict(overrides, base_dir=args.base_dir)


def main(argv=None):
    """Command line interface"""
    parser = argparse.ArgumentParser(
        description='Rebuild mothur input and metadata tables for an SRA BioProject',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Run every stage switched on in the config file
  SRA2Mothur -c run_config.json

  # Same run with a different worker count
  SRA2Mothur -c run_config.json --processors 12

See docs/example_config.json for the recognised options.
        '''
    )

    parser.add_argument('-c', '--config',
                        help='JSON file with run switches and paths')
    parser.add_argument('-b', '--base-dir', type=Path,
                        help='Directory relative paths resolve against '
                             '(default: the config file directory)')
    parser.add_argument('-p', '--project-id',
                        help='BioProject accession to reproduce')
    parser.add_argument('-n', '--processors', type=int,
                        help='Worker count passed to mothur')
    parser.add_argument('-e', '--email',
                        help='Email address for NCBI Entrez (required by NCBI)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = build_config(args)
        run_complete_pipeline(config)
    except (ConfigError, FetchError, TemplateDriftError, FileNotFoundError,
            requests.RequestException) as e:
        print(f"ERROR: {e}")
        return 1
    except subprocess.CalledProcessError as e:
        print(f"ERROR: command failed with exit status {e.returncode}: {' '.join(map(str, e.cmd))}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
