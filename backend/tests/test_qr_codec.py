"""QR token wire format: CLINIC_TOKEN: + base64(JSON)."""
import base64
import json
from datetime import date

from api.booking import (
    QR_PREFIX,
    build_qr_payload,
    encode_qr_payload,
    decode_qr_payload,
    render_qr_png,
)


def raw_token(payload):
    return QR_PREFIX + base64.b64encode(json.dumps(payload).encode()).decode()


class TestQRCodec:

    def test_round_trip_preserves_fields(self):
        payload = {
            "clinic": "CLN1",
            "uid": "CLN1-MGX3K2P0A7F9QZ",
            "stn": 17,
            "visit_date": "2025-03-10",
            "issued_at": 1741600000123,
        }
        assert decode_qr_payload(encode_qr_payload(payload)) == payload

    def test_built_payload_shape(self):
        payload = build_qr_payload("CLN1-ABC", 3, date(2025, 3, 10))

        assert payload["uid"] == "CLN1-ABC"
        assert payload["stn"] == 3
        assert payload["visit_date"] == "2025-03-10"
        assert isinstance(payload["issued_at"], int)
        assert encode_qr_payload(payload).startswith("CLINIC_TOKEN:")

    def test_accepts_link_with_token_parameter(self):
        payload = build_qr_payload("CLN1-ABC", 5, date(2025, 3, 10))
        body = encode_qr_payload(payload)[len(QR_PREFIX):]

        link = f"https://clinic.example.com/checkin?token={body}"

        assert decode_qr_payload(link) == payload

    def test_link_without_token_is_rejected(self):
        assert decode_qr_payload("https://clinic.example.com/checkin?id=4") is None

    def test_missing_prefix_is_rejected(self):
        body = base64.b64encode(b'{"clinic":"CLN1","uid":"X","stn":1,"visit_date":"2025-03-10"}').decode()
        assert decode_qr_payload(body) is None

    def test_garbage_is_rejected(self):
        assert decode_qr_payload("") is None
        assert decode_qr_payload("CLINIC_TOKEN:***not-base64***") is None
        assert decode_qr_payload(QR_PREFIX + base64.b64encode(b"not json").decode()) is None
        assert decode_qr_payload(raw_token(["a", "list"])) is None

    def test_missing_or_falsy_fields_are_rejected(self):
        complete = {"clinic": "CLN1", "uid": "CLN1-A", "stn": 2, "visit_date": "2025-03-10"}
        for key in ("clinic", "uid", "stn", "visit_date"):
            broken = dict(complete)
            broken.pop(key)
            assert decode_qr_payload(raw_token(broken)) is None

        assert decode_qr_payload(raw_token(dict(complete, uid=""))) is None
        assert decode_qr_payload(raw_token(dict(complete, stn=0))) is None

    def test_non_integer_stn_is_rejected(self):
        payload = {"clinic": "CLN1", "uid": "CLN1-A", "stn": "2", "visit_date": "2025-03-10"}
        assert decode_qr_payload(raw_token(payload)) is None

    def test_png_rendering(self):
        image = base64.b64decode(render_qr_png(encode_qr_payload(build_qr_payload("CLN1-A", 1, date(2025, 3, 10)))))
        assert image.startswith(b"\x89PNG")
