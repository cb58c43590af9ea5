"""Row-change feed."""
import asyncio

from api.realtime import ChangeFeed


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)


class TestChangeFeed:

    def test_publish_reaches_listeners_and_drops_dead_ones(self):
        feed = ChangeFeed()
        alive, dead = FakeSocket(), FakeSocket(fail=True)
        feed.connections.update({alive, dead})

        delivered = asyncio.run(feed.publish("visits", "UPDATE", 7))

        assert delivered == 1
        assert alive.sent[0]["table"] == "visits"
        assert alive.sent[0]["event"] == "UPDATE"
        assert alive.sent[0]["id"] == 7
        assert dead not in feed.connections

    def test_publish_without_listeners(self):
        assert asyncio.run(ChangeFeed().publish("visits", "INSERT", 1)) == 0

    def test_booking_pushes_insert_notice(self, client, departments, booking_payload):
        with client.websocket_connect("/api/realtime/ws") as websocket:
            visit_id = client.post("/api/booking/book", json=booking_payload()).json()["visit_id"]
            notice = websocket.receive_json()

        assert notice["table"] == "visits"
        assert notice["event"] == "INSERT"
        assert notice["id"] == visit_id

