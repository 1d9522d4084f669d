"""Shared fixtures: configs rooted in tmp_path and a small SOP page."""
from __future__ import annotations

import pytest

from sra2mothur.config import RunConfig
from sra2mothur.fetch import RunRecord


SOP_LINES = [
    "sffinfo(sff=GQY1XT001.sff, flow=T)",
    "summary.seqs(fasta=GQY1XT001.fasta)",
    "trim.flows(flow=GQY1XT001.flow, oligos=GQY1XT001.oligos, pdiffs=2, bdiffs=1, processors=2)",
    "shhh.flows(file=GQY1XT001.flow.files, processors=2)",
    "trim.seqs(fasta=GQY1XT001.fasta, oligos=GQY1XT001.oligos, qfile=GQY1XT001.qual, maxambig=0, "
    "maxhomop=8, flip=T, bdiffs=1, pdiffs=2, qwindowaverage=35, qwindowsize=50, processors=2)",
    "unique.seqs(fasta=GQY1XT001.shhh.trim.fasta, name=GQY1XT001.shhh.trim.names)",
    "align.seqs(fasta=GQY1XT001.shhh.trim.unique.fasta, reference=silva.bacteria.fasta, processors=2)",
    "screen.seqs(fasta=foo.fasta, processors=2)",
    "remove.seqs(accnos=GQY1XT001.accnos, fasta=GQY1XT001.fasta, group=GQY1XT001.groups)",
    "dist.seqs(fasta=GQY1XT001.final.fasta, cutoff=0.15, processors=2)",
    "collect.single(shared=GQY1XT001.an.shared, calc=chao-invsimpson, freq=100)",
    "dist.shared(shared=GQY1XT001.an.shared, calc=thetayc-jclass, subsample=4419)",
    "tree.shared(phylip=GQY1XT001.an.thetayc.0.03.lt.ave.dist)",
    "pcoa(phylip=GQY1XT001.an.thetayc.0.03.lt.ave.dist)",
    "amova(phylip=GQY1XT001.an.thetayc.0.03.lt.ave.dist, design=mouse.sex_time.design)",
]


def sop_page(lines=SOP_LINES):
    """Render command lines the way the wiki page shows them."""
    body = "\n".join(f"<pre>mothur &gt; {line}</pre>" for line in lines)
    return (
        "<html><head><title>454 SOP</title></head><body>\n"
        "<p>Run the commands below.</p>\n"
        f"{body}\n"
        "<p>mothur is great &amp; free</p>\n"
        "</body></html>\n"
    )


@pytest.fixture
def make_config(tmp_path):
    """Build a RunConfig whose directories live under tmp_path."""
    def _make(**options):
        options.setdefault("project_id", "PRJNA000001")
        return RunConfig.from_dict(options, base_dir=tmp_path)
    return _make


@pytest.fixture
def records():
    return [
        RunRecord(accession="SRR001", sample_name="SP001"),
        RunRecord(accession="SRR002", sample_name="SP002"),
        RunRecord(accession="SRR003", sample_name="SP003"),
    ]


@pytest.fixture
def sop_html():
    return sop_page()
