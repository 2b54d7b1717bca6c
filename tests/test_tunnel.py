import signal
import subprocess

import pytest
from unittest.mock import patch, MagicMock, call

from balena_logs.errors import TunnelStartError
from balena_logs.tunnel import READY_MARKER, TunnelSession
from balena_logs.types import ReadinessState, SessionState


@pytest.fixture
def session(tmp_path):
    return TunnelSession(
        "abc123",
        stdout_path=tmp_path / "tunnel-stdout.log",
        stderr_path=tmp_path / "tunnel-stderr.log",
    )


@pytest.fixture
def mock_popen():
    with patch('balena_logs.tunnel.subprocess.Popen') as popen:
        popen.return_value = MagicMock(pid=4242)
        yield popen


@pytest.fixture
def mock_killpg():
    with patch('balena_logs.tunnel.os.killpg') as killpg:
        yield killpg


class TestStart:

    def test_launches_detached_tunnel(self, session, mock_popen):
        handle = session.start()

        args, kwargs = mock_popen.call_args
        assert args[0] == ['balena', 'device', 'tunnel', 'abc123', '-p', '22222:4321']
        assert kwargs['start_new_session'] is True
        assert str(kwargs['stdout'].name) == str(session.stdout_path)
        assert str(kwargs['stderr'].name) == str(session.stderr_path)
        assert handle.pid == 4242
        assert handle.pgid == 4242
        assert handle.started
        assert session.state is SessionState.STARTED
        assert session.stdout_path.exists()
        assert session.stderr_path.exists()

    def test_truncates_existing_capture_files(self, session, mock_popen):
        session.stdout_path.write_text(READY_MARKER)
        session.start()
        assert session.read_output() == ''

    def test_start_failure_cleans_up(self, session, mock_killpg):
        with patch('balena_logs.tunnel.subprocess.Popen', side_effect=FileNotFoundError("balena")):
            with pytest.raises(TunnelStartError):
                session.start()
        mock_killpg.assert_not_called()
        assert session.state is SessionState.TERMINATED
        assert not session.stdout_path.exists()
        assert not session.stderr_path.exists()

    def test_cannot_start_twice(self, session, mock_popen):
        session.start()
        with pytest.raises(RuntimeError):
            session.start()

    @pytest.mark.parametrize("kwargs", [{"local_port": 0}, {"remote_port": 70000}, {"local_port": "4321"}])
    def test_invalid_ports(self, kwargs):
        with pytest.raises(ValueError):
            TunnelSession("abc123", **kwargs)

    def test_empty_uuid(self):
        with pytest.raises(ValueError):
            TunnelSession("")


class TestWaitUntilReady:

    def test_ready_when_marker_appears(self, session, mock_popen):
        session.start()

        def fake_sleep(_):
            if fake_sleep.calls == 2:
                session.stdout_path.write_text(f"Tunnel opened\n{READY_MARKER} on localhost:4321\n")
            fake_sleep.calls += 1
        fake_sleep.calls = 0

        state = session.wait_until_ready(max_attempts=30, interval=1, sleep=fake_sleep)
        assert state is ReadinessState.READY
        assert fake_sleep.calls == 3
        assert session.state is SessionState.READY

    def test_times_out_after_budget(self, session, mock_popen):
        session.start()
        sleep = MagicMock()
        state = session.wait_until_ready(max_attempts=30, interval=1, sleep=sleep)
        assert state is ReadinessState.TIMED_OUT
        assert sleep.call_count == 30
        assert session.state is SessionState.READY_TIMEOUT

    def test_missing_capture_file_is_not_ready(self, session, mock_popen):
        session.start()
        session.stdout_path.unlink()
        assert session.wait_until_ready(max_attempts=2, interval=0, sleep=MagicMock()) is ReadinessState.TIMED_OUT

    def test_requires_started_tunnel(self, session):
        with pytest.raises(RuntimeError):
            session.wait_until_ready(sleep=MagicMock())


class TestTerminate:

    def test_signals_group_and_removes_files(self, session, mock_popen, mock_killpg):
        session.start()
        session.terminate()
        mock_killpg.assert_called_once_with(4242, signal.SIGTERM)
        mock_popen.return_value.wait.assert_called_once_with(timeout=5.0)
        assert not session.stdout_path.exists()
        assert not session.stderr_path.exists()
        assert session.state is SessionState.TERMINATED

    def test_idempotent(self, session, mock_popen, mock_killpg):
        session.start()
        session.terminate()
        session.terminate()
        assert mock_killpg.call_count == 1

    def test_noop_when_never_started(self, session, mock_killpg):
        session.terminate()
        mock_killpg.assert_not_called()
        assert session.state is SessionState.CREATED

    def test_already_exited_is_success(self, session, mock_popen, mock_killpg):
        mock_killpg.side_effect = ProcessLookupError()
        session.start()
        session.terminate()
        assert session.cleanup_errors == []
        assert not session.stdout_path.exists()

    def test_signal_error_is_logged_not_raised(self, session, mock_popen, mock_killpg, caplog):
        mock_killpg.side_effect = PermissionError("Operation not permitted")
        session.start()
        session.terminate()
        assert len(session.cleanup_errors) == 1
        assert 'Failed to kill tunnel processes' in caplog.text
        assert not session.stdout_path.exists()
        assert not session.stderr_path.exists()

    def test_escalates_to_sigkill_when_group_ignores_sigterm(self, session, mock_popen, mock_killpg):
        mock_popen.return_value.wait.side_effect = [subprocess.TimeoutExpired(cmd='balena', timeout=5), 0]
        session.start()
        session.terminate()
        assert mock_killpg.call_args_list == [call(4242, signal.SIGTERM), call(4242, signal.SIGKILL)]
        assert session.cleanup_errors == []

    def test_tolerates_already_removed_files(self, session, mock_popen, mock_killpg):
        session.start()
        session.stdout_path.unlink()
        session.stderr_path.unlink()
        session.terminate()
        assert session.cleanup_errors == []

    def test_context_manager_terminates_on_error(self, session, mock_popen, mock_killpg):
        with pytest.raises(RuntimeError, match="boom"):
            with session:
                session.start()
                raise RuntimeError("boom")
        mock_killpg.assert_called_once_with(4242, signal.SIGTERM)
        assert not session.stdout_path.exists()
