"""Main entry point running both amplicon analysis tracks from one configuration.

The run moves through these states:

  Init -> ConfigResolved -> EnvironmentReady -> ArtifactReady
       -> qiime2 track -> dada2 track -> Reported

Configuration, environment and classifier problems abort before any track
starts (Aborted). Once pre-flight succeeds both tracks are always attempted,
and a failure in one is recorded without hiding the results of the other.
"""
import argparse
import datetime
import os
import signal
import sys
import time

import yaml

from ampliconpipe import install, log, utils
from ampliconpipe.distributed.transaction import file_transaction
from ampliconpipe.errors import (BootstrapError, ConfigError, DownloadError, IntegrityError,
                                 ManifestError, PipelineError)
from ampliconpipe.log import logger
from ampliconpipe.pipeline import config_utils, dada2, qiime2, version
from ampliconpipe.pipeline.stages import SKIPPED, TrackResult, failed_outcome, run_track
from ampliconpipe.provenance import programs

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 3
EXIT_BOOTSTRAP = 4
EXIT_ARTIFACT = 5
EXIT_TRACK_FAILED = 6

TRACKS = [(qiime2.TRACK, qiime2.build_stages), (dada2.TRACK, dada2.build_stages)]

def run_main(config_file, executor=None, environ=None, verbose=False):
    """Run the full analysis, returning the run report.

    executor replaces the external process runner for every stage; environ is
    the process environment handed to external tools, defaulting to a copy of
    the current one taken once here. verbose echoes tool output to stdout.
    """
    start = time.time()
    started = _now()
    state = "Init"
    config = config_utils.resolve(config_file)
    state = "ConfigResolved"
    run_id = utils.utc_stamp()
    log_dir = os.path.join(config.log_dir, run_id)
    handler = log.setup_local_logging({"log_dir": log_dir, "verbose": verbose})
    try:
        logger.info("Configuration: %s" % config.config_file)
        logger.info("Run %s, logs in %s" % (run_id, log_dir))
        environ = dict(os.environ if environ is None else environ)
        try:
            install.check_tools(required_tools(config), environ)
            env = install.ensure_environment(config.qiime2_env, config.qiime2_env_url,
                                             cache_dir=_cache_dir(config), info_file=qiime2.info_file(config),
                                             conda=config.conda, env_manager=config.env_manager, environ=environ)
            state = "EnvironmentReady"
            install.ensure_artifact(install.ExternalArtifact("classifier", config.classifier_url,
                                                             config.classifier_qza, config.classifier_sha256))
            state = "ArtifactReady"
        except (BootstrapError, DownloadError, IntegrityError) as e:
            logger.error("Aborting run in state %s, %s: %s" % (state, e.category, e))
            raise
        results = []
        for name, build_fn in TRACKS:
            state = "%s:Running" % name
            results.append(_run_one_track(name, build_fn, config, env, os.path.join(log_dir, name), executor))
            state = "%s:%s" % (name, "Succeeded" if results[-1].ok else "Failed")
            logger.info("Track %s %s" % (name, "succeeded" if results[-1].ok else "failed"))
        report = _make_report(config, env, results, run_id, log_dir, started, time.time() - start)
        write_report(report, report_file(config))
        logger.info("Run report: %s" % report_file(config))
        return report
    finally:
        handler.pop_application()
        handler.close()

def required_tools(config):
    """Command line tools that must be on the PATH before a run starts.
    """
    return [config.conda, config.env_manager] + dada2.TOOLS

def _cache_dir(config):
    return os.path.join(config.out_dir, ".cache")

def report_file(config):
    return os.path.join(config.out_dir, "run_report.yaml")

def _now():
    return datetime.datetime.now(datetime.timezone.utc).isoformat()

def _run_one_track(name, build_fn, config, env, log_dir, executor):
    """Build and run a track, recording manifest problems as a failed first stage.
    """
    try:
        stages = build_fn(config)
    except (ManifestError, IOError) as e:
        logger.error("%s: manifest validation failed, no stages run: %s" % (name, e))
        return TrackResult(name, [failed_outcome("validate_manifest", e)], 0, False)
    return run_track(name, stages, env, log_dir, executor)

def _track_to_dict(result):
    stages = []
    for outcome in result.outcomes:
        cur = outcome._asdict()
        cur["elapsed"] = round(outcome.elapsed, 3)
        stages.append(cur)
    failed = result.outcomes[result.first_failure] if result.first_failure is not None else None
    return {"status": "succeeded" if result.ok else "failed",
            "first_failure": result.first_failure,
            "failed_stage": failed.stage_id if failed else None,
            "failure_class": failed.error_class if failed else None,
            "skipped": [x.stage_id for x in result.outcomes if x.status == SKIPPED],
            "stages": stages}

def _make_report(config, env, results, run_id, log_dir, started, elapsed):
    return {"state": "Reported",
            "ok": all(r.ok for r in results),
            "run_id": run_id,
            "config_file": config.config_file,
            "output_dir": config.out_dir,
            "log_dir": log_dir,
            "started": started,
            "finished": _now(),
            "elapsed": round(elapsed, 3),
            "versions": programs.get_versions(env, qiime2.info_file(config), dada2.session_info_file(config)),
            "tracks": {r.name: _track_to_dict(r) for r in results}}

def write_report(report, out_file):
    with file_transaction(out_file) as tx_out_file:
        with open(tx_out_file, "w") as out_handle:
            yaml.safe_dump(report, out_handle, default_flow_style=False, allow_unicode=False, sort_keys=False)
    return out_file

def bootstrap_environment(config_file=None, environ=None):
    """Create only the QIIME 2 environment, a no-op when it already exists.
    """
    if config_file:
        config = config_utils.resolve(config_file)
        settings = {k: getattr(config, k) for k in ["qiime2_env", "qiime2_env_url", "conda", "env_manager"]}
        out_dir = config.out_dir
    else:
        settings = dict((k, config_utils.DEFAULTS[k]) for k in ["qiime2_env", "qiime2_env_url",
                                                                 "conda", "env_manager"])
        out_dir = os.path.abspath(config_utils.DEFAULTS["outdir"])
    environ = dict(os.environ if environ is None else environ)
    install.check_tools([settings["conda"], settings["env_manager"]], environ)
    return install.ensure_environment(settings["qiime2_env"], settings["qiime2_env_url"],
                                      cache_dir=os.path.join(out_dir, ".cache"),
                                      info_file=os.path.join(out_dir, qiime2.TRACK, "qiime_info.txt"),
                                      conda=settings["conda"], env_manager=settings["env_manager"],
                                      environ=environ)

# ## Command line

def parse_cl_args(in_args):
    description = ("Run paired QIIME 2 and R/DADA2 amplicon analyses from a single YAML configuration, "
                   "producing comparable output trees for both.")
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("-c", "--config", help="YAML run configuration (see config/config.yaml)")
    parser.add_argument("--bootstrap-environment", action="store_true", default=False,
                        help="Only create the QIIME 2 conda environment (idempotent) and exit")
    parser.add_argument("--verbose", action="store_true", default=False,
                        help="Echo output of the external tools to stdout as they run")
    parser.add_argument("-v", "--version", action="store_true", help="Print current version")
    args = parser.parse_args(in_args)
    if not args.config and not args.bootstrap_environment and not args.version:
        parser.error("Require a configuration file (--config) or --bootstrap-environment")
    return args

def _terminate_on_sigterm(signum, frame):
    # unwinds through the running stage, which terminates its process group
    raise SystemExit(128 + signum)

def main(in_args=None):
    """Command line entry point, returning the process exit code.

    Exit codes separate configuration (3), environment bootstrap (4),
    classifier download or integrity (5) problems and failed tracks (6).
    """
    args = parse_cl_args(sys.argv[1:] if in_args is None else in_args)
    if args.version:
        print(version.__version__)
        return EXIT_OK
    signal.signal(signal.SIGTERM, _terminate_on_sigterm)
    try:
        if args.bootstrap_environment:
            _bootstrap_with_logging(args.config, args.verbose)
            return EXIT_OK
        report = run_main(args.config, verbose=args.verbose)
    except PipelineError as e:
        logger.error("%s: %s" % (e.category, e))
        return exit_code(e)
    if not report["ok"]:
        for name, track in report["tracks"].items():
            if track["status"] != "succeeded":
                logger.error("Track %s failed at stage %s (%s)" % (name, track["failed_stage"],
                                                                  track["failure_class"]))
        return EXIT_TRACK_FAILED
    return EXIT_OK

def _bootstrap_with_logging(config_file, verbose):
    handler = log.setup_local_logging({"verbose": verbose})
    try:
        return bootstrap_environment(config_file)
    finally:
        handler.pop_application()
        handler.close()

def exit_code(e):
    if isinstance(e, ConfigError):
        return EXIT_CONFIG
    elif isinstance(e, BootstrapError):
        return EXIT_BOOTSTRAP
    elif isinstance(e, (DownloadError, IntegrityError)):
        return EXIT_ARTIFACT
    return EXIT_ERROR
