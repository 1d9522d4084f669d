"""Consolidation of per-sample FASTA files into one mothur dataset."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


logger = logging.getLogger(__name__)

FINAL_NAME = "full.fasta"


@dataclass
class MergeStep:
    """Merge of up to fan_out files into one output file"""

    inputs: List[str]
    output: str

    def command(self):
        if not self.inputs:
            return f"# merge.files: no sample FASTA files found, {self.output} not built"
        return f"merge.files(input={'-'.join(self.inputs)},output={self.output})"


@dataclass
class MergePlan:
    """Merge steps in execution order; the last one writes the final file"""

    steps: List[MergeStep] = field(default_factory=list)
    final: str = FINAL_NAME

    def commands(self):
        return [step.command() for step in self.steps]


def sample_file_candidates(sample_name, suffix):
    """File names a sample's data may appear under, in order of preference"""
    return [f"{sample_name}{suffix}", f"{sample_name}_1{suffix}"]


def locate_sample_file(directory, sample_name, suffix) -> Optional[Path]:
    """Return the first existing file for a sample, or None"""
    directory = Path(directory)
    for name in sample_file_candidates(sample_name, suffix):
        path = directory / name
        if path.exists():
            return path
    return None


def sample_fasta_paths(records, directory) -> List[str]:
    """
    Pick the most processed FASTA for every sample

    A quality-trimmed file is preferred over the untrimmed conversion.
    Samples with neither on disk are skipped with a warning.
    """
    paths = []
    for record in records:
        path = (locate_sample_file(directory, record.sample_name, ".trim.fasta")
                or locate_sample_file(directory, record.sample_name, ".fasta"))
        if path is None:
            logger.warning("No FASTA found for sample %s (%s)", record.sample_name, record.accession)
            continue
        paths.append(path.name)
    return paths


def plan_merges(paths, fan_out=10, final_name=FINAL_NAME) -> MergePlan:
    """
    Reduce a list of files to one by repeated merges of fan_out files

    Each round splits the current files into consecutive groups of fan_out;
    a shorter trailing group is merged too. Intermediate outputs are named
    merge_<k>.fasta with k counting up across rounds. When a round holds
    fan_out files or fewer they are merged straight into final_name.
    With no inputs the plan still ends in final_name, as a step that
    renders as a comment.
    """
    if fan_out < 2:
        raise ValueError(f"fan_out must be at least 2, got {fan_out}")
    current = [str(p) for p in paths]
    if not current:
        logger.warning("No sample FASTA files to merge, %s will be empty", final_name)

    plan = MergePlan(final=final_name)
    counter = 0
    while len(current) > fan_out:
        next_round = []
        for start in range(0, len(current), fan_out):
            counter += 1
            output = f"merge_{counter}.fasta"
            plan.steps.append(MergeStep(inputs=current[start:start + fan_out], output=output))
            next_round.append(output)
        logger.debug("Merge round: %d files -> %d", len(current), len(next_round))
        current = next_round

    plan.steps.append(MergeStep(inputs=current, output=final_name))
    return plan


def merge_commands(plan: MergePlan):
    """Batch lines for a merge plan, leaving the merged file as current"""
    return plan.commands() + [f"set.current(fasta={plan.final})"]
