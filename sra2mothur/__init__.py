"""
SRA2Mothur: rebuild the mothur input and metadata tables of an SRA BioProject

Workflow:
  1. Fetch run accessions, sample names and metadata XML from NCBI
  2. Download and rename the raw FASTQ files
  3. Rewrite the mothur SOP into a batch file for unpaired reads
  4. Merge per-sample FASTA files into a single dataset
  5. Run mothur on the batch file
  6. Scrape per-sample clinical fields out of the metadata XML
"""

__version__ = "0.1.0"
