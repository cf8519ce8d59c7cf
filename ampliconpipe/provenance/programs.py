"""Identify program versions used for analysis, for the final run report.

Tool versions come from the version capture files each track writes, so the
report reflects what actually ran rather than what is on the current PATH.
"""
import os
import platform
import sys

from ampliconpipe import utils
from ampliconpipe.pipeline import version

def _parse_from_stdoutflag(stdout, x):
    for line in stdout:
        if line.find(x) >= 0:
            parts = [p for p in line[line.find(x) + len(x):].split() if p.strip()]
            if parts:
                return parts[0].strip()
    return ""

def _read_lines(fname):
    if not utils.file_exists(fname):
        return []
    with open(fname, errors="replace") as in_handle:
        return in_handle.readlines()

def qiime_versions(info_file):
    """Parse QIIME 2 release and framework versions from `qiime info` output.
    """
    lines = _read_lines(info_file)
    return {"qiime2_release": _parse_from_stdoutflag(lines, "QIIME 2 release:"),
            "qiime2_version": _parse_from_stdoutflag(lines, "QIIME 2 version:")}

def r_versions(session_info_file):
    """Parse R and DADA2 versions from a printed R sessionInfo().
    """
    lines = _read_lines(session_info_file)
    dada2 = ""
    for line in lines:
        for item in line.split():
            if item.startswith("dada2_"):
                dada2 = item[len("dada2_"):]
    return {"R": _parse_from_stdoutflag(lines, "R version"), "dada2": dada2}

def get_versions(env=None, info_file=None, session_info_file=None):
    """Versions of this pipeline, the interpreter and the wrapped toolkits.
    """
    out = {"ampliconpipe": version.__version__,
           "git_revision": version.__git_revision__,
           "python": sys.version.split()[0],
           "platform": platform.platform()}
    if env is not None:
        out["qiime2_env"] = env.name
    out.update(qiime_versions(info_file))
    out.update(r_versions(session_info_file))
    out["version_files"] = [f for f in [info_file, session_info_file] if f and os.path.exists(f)]
    return out
