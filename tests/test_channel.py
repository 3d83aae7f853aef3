import threading

import pytest

from ovmwin import channel


@pytest.fixture(autouse=True)
def fresh_channels():
    channel._reset()
    yield
    channel._reset()


def test_config_flag_round_trip():
    channel.notify_wsl_config_updated(2)
    assert channel.receive_wsl_config_updated().get(timeout=1) == 2


def test_updated_signal_delivered():
    channel.notify_wsl_updated()
    receiver = channel.receive_wsl_updated()
    assert receiver.get(timeout=1) is None
    with pytest.raises(TimeoutError):
        receiver.get(timeout=0.05)


def test_second_send_blocks_until_received():
    channel.notify_wsl_shutdown()
    sender = threading.Thread(target=channel.notify_wsl_shutdown)
    sender.start()
    sender.join(0.1)
    assert sender.is_alive()
    channel.receive_wsl_shutdown().get(timeout=1)
    sender.join(1)
    assert not sender.is_alive()
    assert channel.receive_wsl_shutdown().get(timeout=1) is None


def test_receive_after_close_gives_zero():
    channel.close()
    assert channel.receive_wsl_config_updated().get(timeout=1) == 0
    assert channel.receive_wsl_updated().closed


def test_send_after_close_raises():
    channel.close()
    with pytest.raises(RuntimeError, match="closed"):
        channel.notify_wsl_updated()


def test_receive_wakes_when_closed():
    results = []
    waiter = threading.Thread(target=lambda: results.append(channel.receive_wsl_config_updated().get()))
    waiter.start()
    channel.close()
    waiter.join(1)
    assert results == [0]
    assert channel.receive_wsl_config_updated().closed