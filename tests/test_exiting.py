import pytest

from ovmwin import channel, exiting, logger


def test_run_exit_funcs_calls_in_order():
    calls = []
    exiting.register_exit_func(lambda: calls.append("first"))
    exiting.register_exit_func(lambda: calls.append("second"))
    exiting.run_exit_funcs()
    assert calls[-2:] == ["first", "second"]


def test_exit_cleans_up_and_raises(tmp_path):
    calls = []
    exiting.register_exit_func(lambda: calls.append("done"))
    log = logger.new(str(tmp_path), "exit")
    try:
        with pytest.raises(SystemExit) as info:
            exiting.exit(3)
        assert info.value.code == 3
        assert "done" in calls
        assert log.closed
        assert channel.receive_wsl_updated().closed
    finally:
        channel._reset()