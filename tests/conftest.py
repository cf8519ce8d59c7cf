"""Pytest fixtures and test helper functions"""

import hashlib
import json
import os
import platform

import pytest
import yaml

from ampliconpipe.provenance.do import ProcessResult

ENV_NAME = "qiime2-amplicon-2025.7"
CLASSIFIER_CONTENT = b"pretrained naive bayes classifier"

# Populate platform's cached uname/processor lookup before any test patches
# subprocess.check_output, which platform.processor() calls lazily.
platform.platform()


def write_manifest(base_dir, rows, name="manifest.tsv", header=("sample-id", "absolute-filepath", "direction"),
                   delimiter="\t"):
    fname = os.path.join(str(base_dir), name)
    with open(fname, "w") as out_handle:
        out_handle.write(delimiter.join(header) + "\n")
        for row in rows:
            out_handle.write(delimiter.join(row) + "\n")
    return fname


def make_fastqs(base_dir, samples):
    """Create forward and reverse fastq files, returning long-format manifest rows."""
    rows = []
    for sample in samples:
        for direction, read in [("forward", "R1"), ("reverse", "R2")]:
            fname = os.path.join(str(base_dir), "%s_%s.fastq.gz" % (sample, read))
            with open(fname, "w") as out_handle:
                out_handle.write("@read1\nACGT\n+\nIIII\n")
            rows.append((sample, fname, direction))
    return rows


def write_config(base_dir, **overrides):
    config = {"manifest": "manifest.tsv",
              "metadata": "metadata.tsv",
              "primer_f": "CCTACGGGNGGCWGCAG",
              "primer_r": "GACTACHVGGGTATCTAATCC",
              "trim_left_f": 0,
              "trim_left_r": 0,
              "trunc_len_f": 270,
              "trunc_len_r": 210,
              "sampling_depth": 1000,
              "threads": 4,
              "classifier_qza": "ref/classifier.qza",
              "classifier_sha256": hashlib.sha256(CLASSIFIER_CONTENT).hexdigest(),
              "dada2": {"max_ee_f": 2, "max_ee_r": 2, "trunc_q": 2, "min_len": 50, "pool": "pseudo",
                        "tax_train_set": "ref/train_set.fa.gz", "tax_species": "ref/species.fa.gz"}}
    for key, val in overrides.items():
        if key == "dada2":
            config["dada2"].update(val)
        elif val is None:
            config.pop(key, None)
        else:
            config[key] = val
    fname = os.path.join(str(base_dir), "config.yaml")
    with open(fname, "w") as out_handle:
        yaml.safe_dump(config, out_handle, default_flow_style=False)
    return fname


@pytest.fixture
def project_dir(tmp_path):
    """A project with two paired samples, metadata, classifier and DADA2 references."""
    write_manifest(tmp_path, make_fastqs(tmp_path, ["S2", "S1"]))
    with open(str(tmp_path / "metadata.tsv"), "w") as out_handle:
        out_handle.write("sample-id\tgroup\nS1\ta\nS2\tb\n")
    ref_dir = tmp_path / "ref"
    ref_dir.mkdir()
    (ref_dir / "classifier.qza").write_bytes(CLASSIFIER_CONTENT)
    (ref_dir / "train_set.fa.gz").write_bytes(b">Bacteria;\nACGT\n")
    (ref_dir / "species.fa.gz").write_bytes(b">id Genus species\nACGT\n")
    return tmp_path


@pytest.fixture
def config_file(project_dir):
    return write_config(project_dir)


@pytest.fixture
def conda_envs(mocker):
    """Report the QIIME 2 environment as already installed, with every tool on the PATH."""
    mocker.patch("ampliconpipe.install.shutil.which", side_effect=lambda name, path=None: "/usr/bin/" + name)
    return mocker.patch("ampliconpipe.install.subprocess.check_output",
                        return_value=json.dumps({"envs": ["/opt/conda", "/opt/conda/envs/%s" % ENV_NAME]}).encode())


class FakeExecutor(object):
    """Stand-in for the external process runner.

    Knows the declared outputs of a set of stages and creates them when
    their command runs, unless told to fail or to leave outputs out.
    """

    def __init__(self, stages, fail=None, no_outputs=None):
        self.outputs = {tuple(str(x) for x in s.cmd): list(s.outputs) for s in stages}
        self.fail = set(fail or [])
        self.no_outputs = set(no_outputs or [])
        self.ids = {tuple(str(x) for x in s.cmd): s.stage_id for s in stages}
        self.calls = []

    def _match(self, cmd):
        for stage_cmd in self.outputs:
            if tuple(cmd[-len(stage_cmd):]) == stage_cmd:
                return stage_cmd
        raise AssertionError("Unexpected command: %s" % " ".join(cmd))

    @property
    def stage_ids(self):
        return [self.ids[self._match(cmd)] for cmd, _ in self.calls]

    def __call__(self, cmd, log_file, env=None, stdout_file=None):
        cmd = [str(x) for x in cmd]
        self.calls.append((cmd, log_file))
        stage_cmd = self._match(cmd)
        stage_id = self.ids[stage_cmd]
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        with open(log_file, "w") as out_handle:
            out_handle.write("running %s\n" % stage_id)
        if stage_id in self.fail:
            return ProcessResult(1, "simulated failure in %s\n" % stage_id)
        if stage_id not in self.no_outputs:
            for fname in self.outputs[stage_cmd]:
                os.makedirs(os.path.dirname(fname), exist_ok=True)
                with open(fname, "w") as out_handle:
                    out_handle.write("output of %s\n" % stage_id)
        return ProcessResult(0, "")
