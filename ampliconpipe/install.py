"""Materialize large external dependencies: the QIIME 2 conda environment and
the pre-trained taxonomy classifier.

Both operations are idempotent. Nothing here retries: environment creation
and multi-gigabyte downloads are expensive, so failures surface immediately
and callers decide whether to try again.
"""
import collections
import hashlib
import json
import os
import shutil
import subprocess

import requests

from ampliconpipe import utils
from ampliconpipe.distributed.transaction import file_transaction
from ampliconpipe.errors import BootstrapError, DownloadError, IntegrityError
from ampliconpipe.log import logger
from ampliconpipe.provenance import do

# Seconds to wait on connecting or between received bytes, not on the full download
DOWNLOAD_TIMEOUT = 120
CHUNK_SIZE = 1024 * 1024

ExternalArtifact = collections.namedtuple("ExternalArtifact", ["name", "url", "dest", "sha256"],
                                          defaults=(None,))

class EnvironmentHandle(collections.namedtuple("EnvironmentHandle", ["name", "conda", "info_file", "environ"])):
    """A named conda environment that commands run inside of.
    """
    __slots__ = ()

    def wrap(self, cmd):
        return [self.conda, "run", "--no-capture-output", "-n", self.name] + list(cmd)

def check_tools(tools, environ=None):
    """Confirm command line tools are on the PATH before any work starts.

    Raises BootstrapError naming every missing tool.
    """
    path = (os.environ if environ is None else environ).get("PATH")
    missing = [t for t in tools if not shutil.which(t, path=path)]
    if missing:
        raise BootstrapError("Required tools not found on PATH: %s" % ", ".join(missing))
    logger.debug("Found required tools: %s" % ", ".join(tools))

def ensure_environment(name, definition_url, cache_dir, info_file, conda="conda",
                       env_manager="mamba", environ=None):
    """Create the named conda environment from a remote definition unless it exists.

    An existing environment returns immediately with no network access. A new
    one is created from the downloaded definition, then introspected with
    `qiime info`, keeping the output in info_file for the run report.
    """
    handle = EnvironmentHandle(name, conda, info_file if utils.file_exists(info_file) else None, environ)
    if name in list_environments(conda, environ):
        logger.info("Conda environment '%s' already exists." % name)
        return handle
    definition = os.path.join(utils.safe_makedir(cache_dir), "%s.yml" % name)
    logger.info("Downloading environment definition: %s" % definition_url)
    download(definition_url, definition)
    logger.info("Creating conda environment: %s" % name)
    _run_bootstrap_cmd([env_manager, "env", "create", "-n", name, "-f", definition],
                       os.path.join(cache_dir, "%s-create.log" % name), environ)
    _run_bootstrap_cmd(handle.wrap(["qiime", "info"]), os.path.join(cache_dir, "%s-info.log" % name),
                       environ, stdout_file=info_file)
    return handle._replace(info_file=info_file)

def list_environments(conda="conda", environ=None):
    """Names of the environments known to conda.
    """
    try:
        out = subprocess.check_output([conda, "env", "list", "--json"], env=environ)
        envs = json.loads(out)["envs"]
    except (OSError, subprocess.CalledProcessError, ValueError, KeyError) as e:
        raise BootstrapError("Could not list conda environments with %s: %s" % (conda, e))
    return [os.path.basename(os.path.normpath(x)) for x in envs]

def _run_bootstrap_cmd(cmd, log_file, environ, stdout_file=None):
    try:
        result = do.run_external_process(cmd, log_file, env=environ, stdout_file=stdout_file)
    except OSError as e:
        raise BootstrapError("Could not run %s: %s" % (cmd[0], e))
    if result.returncode != 0:
        raise BootstrapError("Command failed with exit status %s: %s\nLog: %s\n%s" %
                             (result.returncode, " ".join(cmd), log_file, result.tail))

def ensure_artifact(artifact):
    """Return the local path of an artifact, downloading it if absent.

    A file already in place with a declared digest is verified; a mismatch
    raises IntegrityError and the file is left untouched for inspection.
    Fresh downloads are verified before being moved into place.
    """
    if os.path.exists(artifact.dest):
        if artifact.sha256:
            check_digest(artifact.dest, artifact.sha256,
                         "Existing %s does not match its expected digest. Not replacing it; "
                         "inspect or remove the file and rerun." % artifact.name)
        logger.info("%s exists: %s" % (artifact.name, artifact.dest))
        return artifact.dest
    logger.info("Downloading %s from %s" % (artifact.name, artifact.url))
    download(artifact.url, artifact.dest, artifact.sha256)
    logger.info("%s downloaded%s: %s" % (artifact.name, " & verified" if artifact.sha256 else "",
                                         artifact.dest))
    return artifact.dest

def download(url, out_file, sha256=None):
    """Stream a remote file into place, only moving it to out_file once complete.
    """
    try:
        with file_transaction(out_file) as tx_out_file:
            r = requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
            with r:
                r.raise_for_status()
                with open(tx_out_file, "wb") as out_handle:
                    for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                        out_handle.write(chunk)
            if sha256:
                check_digest(tx_out_file, sha256, "Downloaded %s does not match its expected digest" % url)
    except requests.exceptions.RequestException as e:
        raise DownloadError("Could not download %s: %s" % (url, e))
    return out_file

def file_sha256(fname):
    h = hashlib.sha256()
    with open(fname, "rb") as in_handle:
        for chunk in iter(lambda: in_handle.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()

def check_digest(fname, expected, msg):
    got = file_sha256(fname)
    if got != expected.lower():
        raise IntegrityError("%s\n  file:     %s\n  got:      %s\n  expected: %s" % (msg, fname, got, expected))
    return got
