import socket
import threading
import time
import urllib.error
import urllib.request

import pytest

from answer_service.health import HealthChecker


class Dep:
    def __init__(self, healthy):
        self.healthy = healthy
        self.calls = 0

    def is_healthy(self):
        self.calls += 1
        return self.healthy


def test_status_ok_when_all_healthy():
    assert HealthChecker(Dep(True), Dep(True)).status() == "OK"


def test_status_unhealthy_asks_everyone():
    deps = [Dep(False), Dep(True), Dep(True)]
    assert HealthChecker(*deps).status() == "UNHEALTHY"
    assert [d.calls for d in deps] == [1, 1, 1]


def test_status_without_dependencies_is_ok():
    assert HealthChecker().status() == "OK"


@pytest.fixture
def running():
    dep = Dep(True)
    checker = HealthChecker(dep)
    thread = threading.Thread(target=checker.run_server, args=("127.0.0.1:0",))
    thread.start()
    deadline = time.monotonic() + 5
    while checker.address is None and time.monotonic() < deadline:
        time.sleep(0.01)
    yield checker, dep, thread
    checker.close()
    thread.join(5)


def _get(checker, path):
    host, port = checker.address
    try:
        with urllib.request.urlopen(
            f"http://{host}:{port}{path}", timeout=5
        ) as resp:
            return resp.status, resp.read().decode()
    except urllib.error.HTTPError as err:
        return err.code, err.read().decode()


def test_server_reports_health(running):
    checker, dep, _ = running
    assert _get(checker, "/health") == (200, "OK")
    dep.healthy = False
    assert _get(checker, "/health") == (200, "UNHEALTHY")


def test_server_unknown_path_is_404(running):
    checker, dep, _ = running
    status, _body = _get(checker, "/other")
    assert status == 404
    assert dep.calls == 0
    assert _get(checker, "/health") == (200, "OK")


def test_close_stops_server(running):
    checker, _, thread = running
    checker.close()
    thread.join(5)
    assert not thread.is_alive()
    assert checker.address is None


def test_bad_address_returns_without_serving():
    checker = HealthChecker()
    checker.run_server("no-port-here")
    assert checker.address is None


def test_busy_port_returns_without_serving():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        port = sock.getsockname()[1]
        checker = HealthChecker()
        thread = threading.Thread(
            target=checker.run_server, args=(f"127.0.0.1:{port}",)
        )
        thread.start()
        thread.join(5)
        assert not thread.is_alive()
        assert checker.address is None