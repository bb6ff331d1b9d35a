import asyncio

from core.broadcast import BroadcastCoordinator
from core.sweeper import sweep_stuck_sessions


class FakeConnection:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)


def test_broadcast_reaches_only_that_display():
    coordinator = BroadcastCoordinator()
    lobby, cafe = FakeConnection(), FakeConnection()
    coordinator.register("lobby", lobby)
    coordinator.register("cafe", cafe)

    delivered = asyncio.run(coordinator.broadcast("lobby", {"type": "game_start"}))

    assert delivered == 1
    assert lobby.sent == [{"type": "game_start"}]
    assert cafe.sent == []


def test_dead_connections_are_dropped():
    coordinator = BroadcastCoordinator()
    alive, dead = FakeConnection(), FakeConnection(fail=True)
    coordinator.register("lobby", alive)
    coordinator.register("lobby", dead)

    assert asyncio.run(coordinator.broadcast("lobby", {"type": "ping"})) == 1
    assert coordinator.connection_count("lobby") == 1


def test_publish_without_connections_is_dropped():
    coordinator = BroadcastCoordinator()
    assert coordinator.publish("lobby", {"type": "session_ready"}) is False
    assert asyncio.run(coordinator.broadcast("lobby", {"type": "session_ready"})) == 0


def test_unregister_last_connection():
    coordinator = BroadcastCoordinator()
    connection = FakeConnection()
    coordinator.register("lobby", connection)
    coordinator.unregister("lobby", connection)
    coordinator.unregister("lobby", connection)
    assert coordinator.connection_count() == 0


def test_sweep_job_with_nothing_stuck(db):
    assert sweep_stuck_sessions(timeout_seconds=120) == 0
