"""Stages of the native R/DADA2 track.

Primers are removed per sample with cutadapt, then each DADA2 step runs as
its own Rscript invocation of the packaged R/dada2_steps.R helper, passing
state between steps as RDS files in the track output directory. Taxonomy
assignment runs only when a training set is configured and present, and the
phyloseq object only when sample metadata is present; otherwise those stages
are skipped and the track still produces its ASV table and sequences.
"""
import csv
import os

from ampliconpipe import utils
from ampliconpipe.pipeline import manifest
from ampliconpipe.pipeline.stages import StageSpec

TRACK = "dada2"
# run directly from the PATH, outside the QIIME 2 environment
TOOLS = ["cutadapt", "Rscript"]
R_SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "R", "dada2_steps.R")

def track_dir(config):
    return os.path.join(config.out_dir, TRACK)

def session_info_file(config):
    return os.path.join(track_dir(config), "R_sessionInfo.txt")

def _rscript(step, out_dir, *args):
    return ["Rscript", "--vanilla", R_SCRIPT, step, "--outdir", out_dir] + [str(x) for x in args]

def write_sample_sheet(pairs, out_dir):
    """Record per-sample trimmed and filtered read locations shared by the R steps.
    """
    sheet = os.path.join(utils.safe_makedir(out_dir), "samples.tsv")
    rows = []
    for pair in pairs:
        rows.append({"sample": pair.sample,
                     "trimmed_r1": os.path.join(out_dir, "trimmed", "%s_R1.trimmed.fastq.gz" % pair.sample),
                     "trimmed_r2": os.path.join(out_dir, "trimmed", "%s_R2.trimmed.fastq.gz" % pair.sample),
                     "filtered_r1": os.path.join(out_dir, "filtered", "%s_R1.filt.fastq.gz" % pair.sample),
                     "filtered_r2": os.path.join(out_dir, "filtered", "%s_R2.filt.fastq.gz" % pair.sample)})
    with open(sheet, "w") as out_handle:
        writer = csv.DictWriter(out_handle, ["sample", "trimmed_r1", "trimmed_r2", "filtered_r1", "filtered_r2"],
                                delimiter="\t", lineterminator="\n")
        writer.writeheader()
        writer.writerows(rows)
    return sheet, rows

def build_stages(config):
    """Validate manifest pairing and return the ordered stages of the track.

    Raises ManifestError, before anything is run, when forward and reverse
    samples in the manifest differ.
    """
    pairs = manifest.paired_samples(manifest.read_manifest(config.manifest))
    out_dir = track_dir(config)
    utils.safe_makedir(os.path.join(out_dir, "trimmed"))
    utils.safe_makedir(os.path.join(out_dir, "filtered"))
    sheet, samples = write_sample_sheet(pairs, out_dir)
    d2 = config.dada2

    def o(*parts):
        return os.path.join(out_dir, *parts)

    stages = []
    for pair, sample in zip(pairs, samples):
        stages.append(StageSpec("cutadapt_%s" % pair.sample,
                                ["cutadapt", "-j", config.threads, "-g", config.primer_f, "-G", config.primer_r,
                                 "-o", sample["trimmed_r1"], "-p", sample["trimmed_r2"],
                                 pair.forward, pair.reverse],
                                [pair.forward, pair.reverse], [sample["trimmed_r1"], sample["trimmed_r2"]],
                                use_env=False))
    trimmed = [s[k] for s in samples for k in ["trimmed_r1", "trimmed_r2"]]
    filtered = [s[k] for s in samples for k in ["filtered_r1", "filtered_r2"]]
    stages.extend([
        StageSpec("filter_and_trim",
                  _rscript("filter", out_dir, "--samples", sheet,
                           "--trunc-len-f", config.trunc_len_f, "--trunc-len-r", config.trunc_len_r,
                           "--max-ee-f", d2.max_ee_f, "--max-ee-r", d2.max_ee_r,
                           "--trunc-q", d2.trunc_q, "--min-len", d2.min_len, "--threads", config.threads),
                  [sheet] + trimmed, filtered + [o("filter_summary.tsv")], use_env=False),
        StageSpec("learn_errors",
                  _rscript("learn-errors", out_dir, "--samples", sheet, "--threads", config.threads),
                  [sheet] + filtered, [o("errors_F.rds"), o("errors_R.rds")], use_env=False),
        StageSpec("denoise",
                  _rscript("denoise", out_dir, "--samples", sheet, "--pool", d2.pool, "--threads", config.threads),
                  [sheet, o("errors_F.rds"), o("errors_R.rds")],
                  [o("derep_F.rds"), o("derep_R.rds"), o("dada_F.rds"), o("dada_R.rds")], use_env=False),
        StageSpec("merge_pairs",
                  _rscript("merge", out_dir),
                  [o("derep_F.rds"), o("derep_R.rds"), o("dada_F.rds"), o("dada_R.rds")],
                  [o("mergers.rds")], use_env=False),
        StageSpec("sequence_table",
                  _rscript("seqtab", out_dir),
                  [o("mergers.rds")], [o("seqtab.rds")], use_env=False),
        StageSpec("remove_chimeras",
                  _rscript("remove-chimeras", out_dir, "--threads", config.threads),
                  [o("seqtab.rds")], [o("seqtab.nochim.rds")], use_env=False),
        StageSpec("write_outputs",
                  _rscript("write-outputs", out_dir),
                  [o("seqtab.nochim.rds")], [o("asv_table.tsv"), o("asv_seqs.fasta")], use_env=False),
        StageSpec("assign_taxonomy",
                  _rscript("taxonomy", out_dir, "--train-set", d2.tax_train_set or "",
                           "--species-set", d2.tax_species or "", "--threads", config.threads),
                  [o("seqtab.nochim.rds")], [o("taxonomy.tsv"), o("taxonomy.rds")],
                  optional_if_present=[d2.tax_train_set], use_env=False),
        StageSpec("build_phyloseq",
                  _rscript("phyloseq", out_dir, "--metadata", config.metadata),
                  [o("seqtab.nochim.rds")], [o("phyloseq.rds")],
                  optional_if_present=[config.metadata], use_env=False),
        StageSpec("session_info",
                  _rscript("session-info", out_dir),
                  [], [session_info_file(config)], use_env=False, stdout_file=session_info_file(config)),
    ])
    return stages
