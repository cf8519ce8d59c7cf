import os

import mock
import pytest

from ampliconpipe.errors import ExternalToolError, IncompleteOutputError, MissingInputError
from ampliconpipe.install import EnvironmentHandle
from ampliconpipe.pipeline import stages
from ampliconpipe.pipeline.stages import StageSpec
from ampliconpipe.provenance.do import ProcessResult


@pytest.fixture
def env():
    return EnvironmentHandle("q2env", "conda", None, {"PATH": "/usr/bin"})


@pytest.fixture
def in_file(tmp_path):
    fname = tmp_path / "in.txt"
    fname.write_text("input\n")
    return str(fname)


def _writer(*out_files, returncode=0):
    def executor(cmd, log_file, env=None, stdout_file=None):
        for fname in out_files:
            with open(fname, "w") as out_handle:
                out_handle.write("data\n")
        return ProcessResult(returncode, "last line\n")
    return mock.Mock(side_effect=executor)


def test_run_stage_success(tmp_path, env, in_file):
    out_file = str(tmp_path / "out.txt")
    executor = _writer(out_file)
    stage = StageSpec("make_out", ["tool", "--in", in_file], [in_file], [out_file])
    outcome = stages.run_stage(stage, env, str(tmp_path / "logs"), executor)
    assert outcome.status == stages.SUCCEEDED
    assert outcome.log_file == str(tmp_path / "logs" / "make_out.log")
    cmd, log_file = executor.call_args[0]
    assert cmd == ["conda", "run", "--no-capture-output", "-n", "q2env", "tool", "--in", in_file]
    assert executor.call_args[1]["env"] == {"PATH": "/usr/bin"}


def test_run_stage_outside_environment(tmp_path, env, in_file):
    out_file = str(tmp_path / "out.txt")
    executor = _writer(out_file)
    stage = StageSpec("plain", ["cutadapt", in_file], [in_file], [out_file], use_env=False)
    stages.run_stage(stage, env, str(tmp_path), executor)
    assert executor.call_args[0][0] == ["cutadapt", in_file]


def test_missing_input_never_starts_process(tmp_path, env, mocker):
    popen = mocker.patch("ampliconpipe.provenance.do.subprocess.Popen")
    missing = str(tmp_path / "absent.fq.gz")
    stage = StageSpec("needs_input", ["tool", missing], [missing], [str(tmp_path / "out.txt")])
    with pytest.raises(MissingInputError) as excinfo:
        stages.run_stage(stage, env, str(tmp_path))
    assert missing in str(excinfo.value)
    assert excinfo.value.stage_id == "needs_input"
    assert not popen.called


def test_incomplete_output_despite_success(tmp_path, env, in_file):
    out_file = str(tmp_path / "out.txt")
    executor = _writer()
    stage = StageSpec("partial", ["tool"], [in_file], [out_file])
    with pytest.raises(IncompleteOutputError) as excinfo:
        stages.run_stage(stage, env, str(tmp_path), executor)
    assert out_file in str(excinfo.value)
    assert executor.called


def test_empty_output_is_incomplete(tmp_path, env):
    out_file = tmp_path / "out.txt"
    def executor(cmd, log_file, env=None, stdout_file=None):
        out_file.write_text("")
        return ProcessResult(0, "")
    stage = StageSpec("empty", ["tool"], [], [str(out_file)])
    with pytest.raises(IncompleteOutputError):
        stages.run_stage(stage, env, str(tmp_path), executor)


def test_nonzero_exit(tmp_path, env):
    out_file = str(tmp_path / "out.txt")
    stage = StageSpec("broken", ["tool"], [], [out_file])
    with pytest.raises(ExternalToolError) as excinfo:
        stages.run_stage(stage, env, str(tmp_path), _writer(out_file, returncode=2))
    assert excinfo.value.returncode == 2
    assert excinfo.value.log_file == str(tmp_path / "broken.log")
    assert "last line" in str(excinfo.value)


def test_failed_stage_keeps_run_time(tmp_path, env, mocker):
    clock = mocker.patch("ampliconpipe.pipeline.stages.time")
    clock.time.side_effect = [100.0, 3700.5]
    stage = StageSpec("slow", ["tool"], [], [str(tmp_path / "out.txt")])
    with pytest.raises(ExternalToolError) as excinfo:
        stages.run_stage(stage, env, str(tmp_path), _writer(returncode=1))
    assert excinfo.value.elapsed == 3600.5
    assert stages.failed_outcome("slow", excinfo.value).elapsed == 3600.5


def test_incomplete_output_keeps_run_time(tmp_path, env, mocker):
    clock = mocker.patch("ampliconpipe.pipeline.stages.time")
    clock.time.side_effect = [10.0, 70.0]
    stage = StageSpec("partial", ["tool"], [], [str(tmp_path / "out.txt")])
    with pytest.raises(IncompleteOutputError) as excinfo:
        stages.run_stage(stage, env, str(tmp_path), _writer())
    assert excinfo.value.elapsed == 60.0


def test_tool_not_found(tmp_path, env):
    executor = mock.Mock(side_effect=OSError(2, "No such file or directory"))
    stage = StageSpec("no_tool", ["not-a-real-tool"], [], [], use_env=False)
    with pytest.raises(ExternalToolError):
        stages.run_stage(stage, env, str(tmp_path), executor)


@pytest.mark.parametrize("optional", [[None], ["/nonexistent/train_set.fa.gz"]])
def test_optional_stage_skipped(tmp_path, env, optional):
    executor = mock.Mock()
    stage = StageSpec("assign_taxonomy", ["Rscript"], [], [str(tmp_path / "taxonomy.tsv")],
                      optional_if_present=optional)
    outcome = stages.run_stage(stage, env, str(tmp_path), executor)
    assert outcome.status == stages.SKIPPED
    assert not executor.called


def test_optional_stage_runs_when_present(tmp_path, env, in_file):
    out_file = str(tmp_path / "taxonomy.tsv")
    stage = StageSpec("assign_taxonomy", ["Rscript"], [], [out_file], optional_if_present=[in_file])
    outcome = stages.run_stage(stage, env, str(tmp_path), _writer(out_file))
    assert outcome.status == stages.SUCCEEDED


class TestRunTrack(object):

    @pytest.fixture
    def track(self, tmp_path):
        outs = [str(tmp_path / ("out%s.txt" % i)) for i in range(3)]
        return [StageSpec("first", ["tool", "1"], [], [outs[0]]),
                StageSpec("second", ["tool", "2"], [outs[0]], [outs[1]]),
                StageSpec("third", ["tool", "3"], [outs[1]], [outs[2]])]

    def _executor(self, fail_on=None):
        def executor(cmd, log_file, env=None, stdout_file=None):
            n = int(cmd[-1])
            if n == fail_on:
                return ProcessResult(1, "boom\n")
            with open(os.path.join(os.path.dirname(os.path.dirname(log_file)), "out%s.txt" % (n - 1)),
                      "w") as out_handle:
                out_handle.write("ok\n")
            return ProcessResult(0, "")
        return mock.Mock(side_effect=executor)

    def test_all_stages_succeed(self, tmp_path, env, track):
        executor = self._executor()
        result = stages.run_track("demo", track, env, str(tmp_path / "logs"), executor)
        assert result.ok
        assert result.first_failure is None
        assert [o.status for o in result.outcomes] == ["succeeded"] * 3
        assert executor.call_count == 3

    def test_stops_at_first_failure(self, tmp_path, env, track):
        executor = self._executor(fail_on=2)
        result = stages.run_track("demo", track, env, str(tmp_path / "logs"), executor)
        assert not result.ok
        assert result.first_failure == 1
        assert [o.stage_id for o in result.outcomes] == ["first", "second"]
        assert result.outcomes[1].error_class == "ExternalToolError"
        assert executor.call_count == 2

    def test_unexpected_errors_propagate(self, tmp_path, env, track):
        executor = mock.Mock(side_effect=KeyboardInterrupt)
        with pytest.raises(KeyboardInterrupt):
            stages.run_track("demo", track, env, str(tmp_path / "logs"), executor)

    def test_failed_outcome_records_run_time(self, tmp_path, env, track, mocker):
        clock = mocker.patch("ampliconpipe.pipeline.stages.time")
        clock.time.side_effect = [0.0, 5.0, 10.0, 40.0]
        result = stages.run_track("demo", track, env, str(tmp_path / "logs"), self._executor(fail_on=2))
        assert [o.elapsed for o in result.outcomes] == [5.0, 30.0]
