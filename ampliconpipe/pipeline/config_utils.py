"""Load the YAML run configuration, validating it before any expensive work.

Every downstream stage receives the resulting RunConfig and relies on it
being well formed, so all checks on primitive values live here.
"""
import collections
import numbers
import os

import toolz as tz
import yaml

from ampliconpipe import utils
from ampliconpipe.errors import ConfigError

DEFAULTS = {"outdir": "outputs",
            "qiime2_env": "qiime2-amplicon-2025.7",
            "qiime2_env_url": "https://packages.qiime2.org/amplicon/qiime2-amplicon-2025.7-py310-linux-conda.yml",
            "classifier_url": ("https://data.qiime2.org/classifiers/sklearn-1.4.2/silva/"
                               "silva-138-99-nb-classifier.qza"),
            "classifier_sha256": "c08a1aa4d56b449b511f7215543a43249ae9c54b57491428a7e5548a62613616",
            "conda": "conda",
            "env_manager": "mamba"}
POOL_MODES = ["pseudo", "true", "independent"]

Dada2Params = collections.namedtuple("Dada2Params", ["max_ee_f", "max_ee_r", "trunc_q", "min_len",
                                                     "pool", "tax_train_set", "tax_species"])
RunConfig = collections.namedtuple("RunConfig", ["manifest", "metadata", "primer_f", "primer_r",
                                                 "trim_left_f", "trim_left_r", "trunc_len_f", "trunc_len_r",
                                                 "sampling_depth", "threads", "classifier_qza", "dada2",
                                                 "out_dir", "log_dir", "qiime2_env", "qiime2_env_url",
                                                 "classifier_url", "classifier_sha256", "conda",
                                                 "env_manager", "config_file"])

_MISSING = object()

def load_config(config_file):
    """Read a YAML configuration file into a dictionary.
    """
    if not config_file or not os.path.isfile(config_file):
        raise ConfigError("Could not find input configuration file %s" % config_file)
    try:
        with open(config_file) as in_handle:
            config = yaml.safe_load(in_handle)
    except yaml.YAMLError as e:
        raise ConfigError("Could not parse configuration file %s:\n%s" % (config_file, e))
    if not isinstance(config, dict):
        raise ConfigError("Configuration file %s must contain a mapping of keys to values" % config_file)
    return config

def resolve(config_file):
    """Load and validate a run configuration, returning an immutable RunConfig.

    Relative paths resolve against the directory holding the configuration
    file, not the current working directory. Only read-only checks touch the
    filesystem. All problems found are reported together.
    """
    config_file = os.path.abspath(config_file)
    config = load_config(config_file)
    base_dir = os.path.dirname(config_file)
    problems = []

    def get(keys, check, default=_MISSING, allow_none=False):
        name = ".".join(keys)
        val = tz.get_in(keys, config, default)
        if val is _MISSING:
            problems.append("missing required key '%s'" % name)
            return None
        if val is None and allow_none:
            return None
        msg = check(val)
        if msg:
            problems.append("'%s' %s, found %r" % (name, msg, val))
            return None
        return val

    if "dada2" in config and not isinstance(config["dada2"], dict):
        raise ConfigError("Problems found in configuration file %s:\n  'dada2' must be a mapping, found %r"
                          % (config_file, config["dada2"]))
    out = {}
    for key in ["manifest", "metadata", "classifier_qza", "primer_f", "primer_r"]:
        out[key] = get([key], _string)
    for key in ["trim_left_f", "trim_left_r", "trunc_len_f", "trunc_len_r"]:
        out[key] = get([key], _integer(0))
    out["sampling_depth"] = get(["sampling_depth"], _integer(1))
    out["threads"] = get(["threads"], _integer(1))
    for key, default in DEFAULTS.items():
        out[key] = get([key], _string, default)
    log_dir = get(["log_dir"], _string, None, allow_none=True)

    d2 = {}
    for key in ["max_ee_f", "max_ee_r"]:
        d2[key] = get(["dada2", key], _number(0))
    for key in ["trunc_q", "min_len"]:
        d2[key] = get(["dada2", key], _integer(0))
    d2["pool"] = get(["dada2", "pool"], _pool)
    for key in ["tax_train_set", "tax_species"]:
        d2[key] = get(["dada2", key], _string_or_empty, allow_none=True)

    if not problems:
        for key in ["manifest", "metadata", "classifier_qza"]:
            out[key] = utils.add_full_path(out[key], base_dir)
        for key in ["manifest", "metadata"]:
            if not os.path.isfile(out[key]):
                problems.append("%s file not found: %s" % (key, out[key]))
        if os.path.isdir(out["classifier_qza"]):
            problems.append("classifier_qza points to a directory: %s" % out["classifier_qza"])
    if problems:
        raise ConfigError("Problems found in configuration file %s:\n  %s"
                          % (config_file, "\n  ".join(problems)))

    # YAML reads an unquoted `true` as a boolean
    d2["pool"] = "true" if d2["pool"] is True else d2["pool"]
    for key in ["tax_train_set", "tax_species"]:
        d2[key] = utils.add_full_path(d2[key], base_dir) if d2[key] else None
    out_dir = utils.add_full_path(out.pop("outdir"), base_dir)
    log_dir = utils.add_full_path(log_dir, base_dir) if log_dir else os.path.join(out_dir, "logs")
    return RunConfig(dada2=Dada2Params(**d2), out_dir=out_dir, log_dir=log_dir,
                     config_file=config_file, **out)

# ## Value checks, returning an error message for bad values

def _string(val):
    if not isinstance(val, str) or not val.strip():
        return "must be a non-empty string"

def _string_or_empty(val):
    if not isinstance(val, str):
        return "must be a string path or empty"

def _integer(minimum):
    def check(val):
        if isinstance(val, bool) or not isinstance(val, int):
            return "must be an integer"
        if val < minimum:
            return "must be at least %s" % minimum
    return check

def _number(minimum):
    def check(val):
        if isinstance(val, bool) or not isinstance(val, numbers.Real):
            return "must be a number"
        if val < minimum:
            return "must be at least %s" % minimum
    return check

def _pool(val):
    if val is True:
        return None
    if val not in POOL_MODES:
        return "must be one of %s" % ", ".join(POOL_MODES)
