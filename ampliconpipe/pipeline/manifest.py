"""Read QIIME 2 style sample manifests describing paired-end fastq inputs.

Manifests are tab or comma separated with one row per file:

    sample-id    absolute-filepath    direction
    S1           /data/S1_R1.fastq.gz forward
    S1           /data/S1_R2.fastq.gz reverse

A `filename` column is accepted in place of `absolute-filepath`, with relative
names resolved against the directory of the manifest.
"""
import collections
import csv
import os

from ampliconpipe import utils
from ampliconpipe.errors import ManifestError

DIRECTIONS = ["forward", "reverse"]

ManifestRow = collections.namedtuple("ManifestRow", ["sample", "path", "direction"])
SamplePair = collections.namedtuple("SamplePair", ["sample", "forward", "reverse"])

def read_manifest(manifest_file):
    """Parse a manifest into ManifestRow records with absolute file paths.
    """
    base_dir = os.path.dirname(os.path.abspath(manifest_file))
    with open(manifest_file) as in_handle:
        lines = [l for l in in_handle if l.strip() and not l.startswith("#")]
    if not lines:
        raise ManifestError("Empty sample manifest: %s" % manifest_file)
    delimiter = "\t" if "\t" in lines[0] else ","
    reader = csv.DictReader(lines, delimiter=delimiter)
    header = [x.strip() for x in reader.fieldnames]
    reader.fieldnames = header
    if "absolute-filepath" in header:
        path_col = "absolute-filepath"
    elif "filename" in header:
        path_col = "filename"
    else:
        path_col = None
    missing = [c for c in ["sample-id", "direction"] if c not in header]
    if path_col is None:
        missing.append("absolute-filepath or filename")
    if missing:
        raise ManifestError("Sample manifest %s missing required columns: %s" %
                            (manifest_file, ", ".join(missing)))
    out = []
    for i, row in enumerate(reader):
        sample = (row.get("sample-id") or "").strip()
        fname = (row.get(path_col) or "").strip()
        direction = (row.get("direction") or "").strip().lower()
        if not sample or not fname:
            raise ManifestError("Sample manifest %s line %s: empty sample-id or file path" %
                                (manifest_file, i + 2))
        if direction not in DIRECTIONS:
            raise ManifestError("Sample manifest %s line %s: direction must be forward or reverse, found %r" %
                                (manifest_file, i + 2, direction))
        out.append(ManifestRow(sample, utils.add_full_path(os.path.expandvars(fname), base_dir), direction))
    return out

def paired_samples(rows):
    """Pair forward and reverse rows by sample, sorted by sample identifier.

    The samples with a forward read must be exactly the samples with a
    reverse read, each listed once per direction.
    """
    by_dir = {d: collections.OrderedDict() for d in DIRECTIONS}
    for row in rows:
        if row.sample in by_dir[row.direction]:
            raise ManifestError("Duplicate %s entry for sample %s in manifest" % (row.direction, row.sample))
        by_dir[row.direction][row.sample] = row.path
    fwd = sorted(by_dir["forward"])
    rev = sorted(by_dir["reverse"])
    if fwd != rev:
        only_f = sorted(set(fwd) - set(rev))
        only_r = sorted(set(rev) - set(fwd))
        raise ManifestError("Forward and reverse samples in manifest do not match. "
                            "Forward only: %s; reverse only: %s" %
                            (", ".join(only_f) or "none", ", ".join(only_r) or "none"))
    if not fwd:
        raise ManifestError("No samples found in manifest")
    return [SamplePair(s, by_dir["forward"][s], by_dir["reverse"][s]) for s in fwd]

def write_qiime_manifest(pairs, out_file):
    """Write pairs in the PairedEndFastqManifestPhred33V2 tab separated layout.
    """
    utils.safe_makedir(os.path.dirname(out_file))
    with open(out_file, "w") as out_handle:
        writer = csv.writer(out_handle, delimiter="\t", lineterminator="\n")
        writer.writerow(["sample-id", "forward-absolute-filepath", "reverse-absolute-filepath"])
        for pair in pairs:
            writer.writerow([pair.sample, pair.forward, pair.reverse])
    return out_file
