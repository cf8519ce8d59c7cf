"""Centralize running of external commands, providing logging and tracking.

All process spawning and stream capture happens here, behind
`run_external_process`, so stages can be exercised with a fake executor.
"""
import collections
import contextlib
import os
import signal
import subprocess
import time

from ampliconpipe import utils
from ampliconpipe.log import logger, logger_cl, logger_stdout

# Seconds a terminated child gets to exit before it is killed
TERMINATE_GRACE = 30

ProcessResult = collections.namedtuple("ProcessResult", ["returncode", "tail"])

def run_external_process(cmd, log_file, env=None, stdout_file=None):
    """Run the provided command, streaming its output to log_file.

    Standard error always goes to the log file, together with standard output
    unless stdout_file is given, in which case standard output is written
    there. Output is kept in full on disk; the returned result carries the
    exit status and the last lines seen, for error messages.

    The child starts a new session. An interrupt while waiting terminates its
    whole process group before re-raising, so no orphaned tool survives
    cancellation of the run.
    """
    cmd = [str(x) for x in cmd]
    logger_cl.debug(" ".join(cmd))
    utils.safe_makedir(os.path.dirname(log_file))
    debug_stdout = collections.deque(maxlen=100)
    with open(log_file, "w") as log_handle, _out_handle(stdout_file) as out_handle:
        s = subprocess.Popen(cmd,
                             stdout=out_handle if out_handle else subprocess.PIPE,
                             stderr=subprocess.PIPE if out_handle else subprocess.STDOUT,
                             close_fds=True, start_new_session=True, env=env)
        stream = s.stderr if out_handle else s.stdout
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace")
                log_handle.write(line)
                if line.rstrip():
                    debug_stdout.append(line)
                    logger_stdout.debug(line.rstrip())
            exitcode = s.wait()
        except BaseException:
            terminate(s)
            raise
        finally:
            stream.close()
    return ProcessResult(exitcode, "".join(debug_stdout))

@contextlib.contextmanager
def _out_handle(stdout_file):
    if not stdout_file:
        yield None
    else:
        utils.safe_makedir(os.path.dirname(stdout_file))
        with open(stdout_file, "wb") as out_handle:
            yield out_handle

def terminate(proc, grace=None):
    """Stop a running child and everything it started, escalating to kill.

    Children run in their own session, so signalling the process group also
    reaches tools started through wrappers like `conda run` or Rscript. Group
    members get the grace period to exit after SIGTERM before being killed.
    """
    grace = TERMINATE_GRACE if grace is None else grace
    if proc.poll() is not None:
        return proc.returncode
    logger.warning("Terminating external process group %s" % proc.pid)
    deadline = time.time() + grace
    _signal_group(proc.pid, signal.SIGTERM)
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        pass
    while time.time() < deadline and _signal_group(proc.pid, 0):
        time.sleep(0.5)
    if _signal_group(proc.pid, signal.SIGKILL):
        logger.warning("Killed external process group %s after %ss" % (proc.pid, grace))
    return proc.wait()

def _signal_group(pgid, sig):
    """Send a signal to a process group, returning False once the group is gone.
    """
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    return True
