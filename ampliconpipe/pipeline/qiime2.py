"""Stages of the QIIME 2 track, run inside the QIIME 2 conda environment.

Reads are imported from a normalized manifest, primer trimmed with
q2-cutadapt, denoised with DADA2, placed on a phylogeny, classified with the
pre-trained classifier and summarized with core diversity metrics. Final
tables and sequences are exported to BIOM, TSV and FASTA.
"""
import os

from ampliconpipe.pipeline import manifest
from ampliconpipe.pipeline.stages import StageSpec

TRACK = "qiime2"

def track_dir(config):
    return os.path.join(config.out_dir, TRACK)

def info_file(config):
    return os.path.join(track_dir(config), "qiime_info.txt")

def build_stages(config):
    """Prepare the QIIME 2 manifest and return the ordered stages of the track.

    Raises ManifestError when the sample manifest cannot be paired.
    """
    out_dir = track_dir(config)

    def o(*parts):
        return os.path.join(out_dir, *parts)

    q2_manifest = manifest.write_qiime_manifest(manifest.paired_samples(manifest.read_manifest(config.manifest)),
                                                o("manifest.tsv"))
    threads = str(config.threads)
    exports = o("exports")
    return [
        StageSpec("import_reads",
                  ["qiime", "tools", "import", "--type", "SampleData[PairedEndSequencesWithQuality]",
                   "--input-path", q2_manifest, "--output-path", o("demux-paired.qza"),
                   "--input-format", "PairedEndFastqManifestPhred33V2"],
                  [q2_manifest], [o("demux-paired.qza")]),
        StageSpec("demux_summarize",
                  ["qiime", "demux", "summarize", "--i-data", o("demux-paired.qza"),
                   "--o-visualization", o("demux.qzv")],
                  [o("demux-paired.qza")], [o("demux.qzv")]),
        StageSpec("trim_primers",
                  ["qiime", "cutadapt", "trim-paired", "--i-demultiplexed-sequences", o("demux-paired.qza"),
                   "--p-front-f", config.primer_f, "--p-front-r", config.primer_r,
                   "--p-match-read-wildcards", "--p-overlap", "5",
                   "--p-cores", threads, "--o-trimmed-sequences", o("trimmed.qza")],
                  [o("demux-paired.qza")], [o("trimmed.qza")]),
        StageSpec("denoise",
                  ["qiime", "dada2", "denoise-paired", "--i-demultiplexed-seqs", o("trimmed.qza"),
                   "--p-trunc-len-f", config.trunc_len_f, "--p-trunc-len-r", config.trunc_len_r,
                   "--p-trim-left-f", config.trim_left_f, "--p-trim-left-r", config.trim_left_r,
                   "--p-n-threads", threads,
                   "--o-table", o("table.qza"), "--o-representative-sequences", o("rep-seqs.qza"),
                   "--o-denoising-stats", o("denoising-stats.qza")],
                  [o("trimmed.qza")], [o("table.qza"), o("rep-seqs.qza"), o("denoising-stats.qza")]),
        StageSpec("feature_table_summarize",
                  ["qiime", "feature-table", "summarize", "--i-table", o("table.qza"),
                   "--m-sample-metadata-file", config.metadata, "--o-visualization", o("table.qzv")],
                  [o("table.qza"), config.metadata], [o("table.qzv")]),
        StageSpec("tabulate_seqs",
                  ["qiime", "feature-table", "tabulate-seqs", "--i-data", o("rep-seqs.qza"),
                   "--o-visualization", o("rep-seqs.qzv")],
                  [o("rep-seqs.qza")], [o("rep-seqs.qzv")]),
        StageSpec("phylogeny",
                  ["qiime", "phylogeny", "align-to-tree-mafft-fasttree", "--i-sequences", o("rep-seqs.qza"),
                   "--p-n-threads", threads,
                   "--o-alignment", o("aligned-rep-seqs.qza"),
                   "--o-masked-alignment", o("masked-aligned-rep-seqs.qza"),
                   "--o-tree", o("unrooted-tree.qza"), "--o-rooted-tree", o("rooted-tree.qza")],
                  [o("rep-seqs.qza")], [o("aligned-rep-seqs.qza"), o("masked-aligned-rep-seqs.qza"),
                                        o("unrooted-tree.qza"), o("rooted-tree.qza")]),
        StageSpec("classify_taxonomy",
                  ["qiime", "feature-classifier", "classify-sklearn", "--i-classifier", config.classifier_qza,
                   "--i-reads", o("rep-seqs.qza"), "--p-n-jobs", threads,
                   "--o-classification", o("taxonomy.qza")],
                  [config.classifier_qza, o("rep-seqs.qza")], [o("taxonomy.qza")]),
        StageSpec("tabulate_taxonomy",
                  ["qiime", "metadata", "tabulate", "--m-input-file", o("taxonomy.qza"),
                   "--o-visualization", o("taxonomy.qzv")],
                  [o("taxonomy.qza")], [o("taxonomy.qzv")]),
        StageSpec("taxa_barplot",
                  ["qiime", "taxa", "barplot", "--i-table", o("table.qza"), "--i-taxonomy", o("taxonomy.qza"),
                   "--m-metadata-file", config.metadata, "--o-visualization", o("taxa-barplot.qzv")],
                  [o("table.qza"), o("taxonomy.qza"), config.metadata], [o("taxa-barplot.qzv")]),
        StageSpec("core_metrics",
                  ["qiime", "diversity", "core-metrics-phylogenetic", "--i-phylogeny", o("rooted-tree.qza"),
                   "--i-table", o("table.qza"), "--p-sampling-depth", config.sampling_depth,
                   "--m-metadata-file", config.metadata, "--p-n-jobs-or-threads", threads,
                   "--output-dir", o("core-metrics")],
                  [o("rooted-tree.qza"), o("table.qza"), config.metadata],
                  [o("core-metrics", "rarefied_table.qza"), o("core-metrics", "faith_pd_vector.qza"),
                   o("core-metrics", "shannon_vector.qza"), o("core-metrics", "unweighted_unifrac_distance_matrix.qza"),
                   o("core-metrics", "weighted_unifrac_distance_matrix.qza")]),
        StageSpec("export_table",
                  ["qiime", "tools", "export", "--input-path", o("table.qza"), "--output-path", exports],
                  [o("table.qza")], [os.path.join(exports, "feature-table.biom")]),
        StageSpec("export_taxonomy",
                  ["qiime", "tools", "export", "--input-path", o("taxonomy.qza"), "--output-path", exports],
                  [o("taxonomy.qza")], [os.path.join(exports, "taxonomy.tsv")]),
        StageSpec("export_rep_seqs",
                  ["qiime", "tools", "export", "--input-path", o("rep-seqs.qza"), "--output-path", exports],
                  [o("rep-seqs.qza")], [os.path.join(exports, "dna-sequences.fasta")]),
        StageSpec("qiime_info", ["qiime", "info"], [], [info_file(config)], stdout_file=info_file(config)),
    ]
