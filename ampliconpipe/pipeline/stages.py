"""Stages of an analysis track and the fail-fast runner executing them in order.

A stage is one external tool invocation with declared inputs and outputs. It
is satisfied only when its inputs exist beforehand, the tool exits cleanly
and every declared output exists and is non-empty afterwards.
"""
import collections
import os
import time

from ampliconpipe import utils
from ampliconpipe.errors import ExternalToolError, IncompleteOutputError, MissingInputError, StageError
from ampliconpipe.log import logger
from ampliconpipe.provenance import do

SUCCEEDED, FAILED, SKIPPED = "succeeded", "failed", "skipped"

StageSpec = collections.namedtuple("StageSpec", ["stage_id", "cmd", "inputs", "outputs",
                                                 "optional_if_present", "use_env", "stdout_file"],
                                   defaults=((), (), (), True, None))
StageOutcome = collections.namedtuple("StageOutcome", ["stage_id", "status", "returncode", "log_file",
                                                       "error_class", "message", "elapsed"])
TrackResult = collections.namedtuple("TrackResult", ["name", "outcomes", "first_failure", "ok"])

def run_stage(stage, env, log_dir, executor=None):
    """Run a single stage, raising a StageError subclass when it is not satisfied.

    Stages gated on optional reference data are skipped, not failed, when
    any of those paths is unset or missing.
    """
    log_file = os.path.join(log_dir, "%s.log" % stage.stage_id)
    if stage.optional_if_present:
        absent = [p for p in stage.optional_if_present if not utils.file_exists(p)]
        if absent:
            msg = "optional data not available: %s" % ", ".join(str(p) for p in absent)
            logger.info("Skipping %s, %s" % (stage.stage_id, msg))
            return StageOutcome(stage.stage_id, SKIPPED, None, None, None, msg, 0.0)
    for in_file in stage.inputs:
        if not os.path.exists(in_file):
            raise MissingInputError("Stage %s missing required input: %s" % (stage.stage_id, in_file),
                                    stage.stage_id)
    cmd = env.wrap(stage.cmd) if stage.use_env else list(stage.cmd)
    executor = executor or do.run_external_process
    start = time.time()
    try:
        result = executor(cmd, log_file, env=env.environ if env else None, stdout_file=stage.stdout_file)
    except OSError as e:
        raise ExternalToolError("Stage %s could not start %s: %s" % (stage.stage_id, cmd[0], e),
                                stage.stage_id, log_file, elapsed=time.time() - start)
    elapsed = time.time() - start
    if result.returncode != 0:
        raise ExternalToolError("Stage %s exited with status %s. Log: %s\n%s" %
                                (stage.stage_id, result.returncode, log_file, result.tail),
                                stage.stage_id, log_file, result.returncode, elapsed)
    missing = [f for f in stage.outputs if not utils.file_exists(f)]
    if missing:
        raise IncompleteOutputError("Stage %s finished without producing: %s. Log: %s" %
                                    (stage.stage_id, ", ".join(missing), log_file),
                                    stage.stage_id, log_file, elapsed)
    return StageOutcome(stage.stage_id, SUCCEEDED, result.returncode, log_file, None, None, elapsed)

def failed_outcome(stage_id, error):
    return StageOutcome(stage_id, FAILED, getattr(error, "returncode", None), getattr(error, "log_file", None),
                        error.__class__.__name__, str(error), getattr(error, "elapsed", 0.0))

def run_track(name, stages, env, log_dir, executor=None):
    """Run stages in order, stopping at the first one that fails.

    Each stage consumes outputs of the ones before it, so nothing after a
    failure is attempted. Failures are logged and recorded in the result.
    """
    outcomes = []
    first_failure = None
    logger.info("=== %s: running %s stages" % (name, len(stages)))
    for i, stage in enumerate(stages):
        logger.info("%s: %s" % (name, stage.stage_id))
        try:
            outcome = run_stage(stage, env, log_dir, executor)
        except StageError as e:
            logger.error("%s: stage %s failed (%s). Log: %s\n%s" %
                         (name, stage.stage_id, e.category, e.log_file or "not written", e))
            outcomes.append(failed_outcome(stage.stage_id, e))
            first_failure = i
            break
        outcomes.append(outcome)
    return TrackResult(name, outcomes, first_failure, first_failure is None)
