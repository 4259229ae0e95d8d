"""Shared fixtures: throwaway SQLite database and fake Odoo/SteVe backends."""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="ev-portal-bridge-tests-")

os.environ.update(
    {
        "DATABASE_URL": f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}",
        "SCHEDULER_ENABLED": "false",
        "ENVIRONMENT": "test",
        "INTERNAL_API_KEY": "internal-test-key",
        "OIDC_JWT_KEY": "oidc-test-key",
        "OIDC_ALGORITHMS": '["HS256"]',
        "OIDC_AUDIENCE": "",
        "OIDC_ISSUER": "",
        "ODOO_HOST": "http://odoo.test",
        "ODOO_ADMIN_API_KEY": "odoo-admin-key",
        "ODOO_API_SECRET": "odoo-shared-secret",
        "STEVE_BASE_URL": "http://steve.test/steve",
        "STEVE_AUTH_USERNAME": "steve",
        "STEVE_API_PASSWORD": "steve-password",
    }
)

import json  # noqa: E402
from datetime import datetime, timezone  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from app.config import get_odoo_config, get_steve_config  # noqa: E402
from app.core import security  # noqa: E402
from app.core.time_utils import STEVE_FORMAT  # noqa: E402
from app.infrastructure.database import Base, SessionLocal, engine  # noqa: E402
from app.infrastructure.odoo_api import OdooAPIClient  # noqa: E402
from app.infrastructure.steve_api import SteveAPIClient  # noqa: E402

# Register every table on Base.metadata
from app.domain.models.user import User  # noqa: E402
from app.domain.models.api_key import ApiKeyCredential  # noqa: E402, F401
from app.domain.models.activity_log import ActivityLog  # noqa: E402, F401
from app.domain.models.transaction import ChargingTransaction  # noqa: E402, F401
from app.domain.models.sync_iteration import SyncIteration  # noqa: E402, F401


def steve_tx(tx_id, stop, start_value="1000", stop_value="2500", id_tag="TAG0001", tag_pk=1, **overrides):
    """A SteVe transaction payload as the REST API returns it."""
    tx = {
        "id": tx_id,
        "connectorId": 1,
        "chargeBoxPk": 3,
        "ocppTagPk": tag_pk,
        "chargeBoxId": "WALLBOX-01",
        "ocppIdTag": id_tag,
        "startTimestamp": "2024-01-01T08:00:00Z",
        "stopTimestamp": stop,
        "startValue": start_value,
        "stopValue": stop_value,
        "stopReason": "Local",
        "stopEventActor": "station",
    }
    tx.update(overrides)
    return tx


def _iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


def _steve_param(value: str) -> datetime:
    return datetime.strptime(value, STEVE_FORMAT).replace(tzinfo=timezone.utc)


class FakeOdoo:
    """In-memory Odoo answering the internal API with signed payloads."""

    def __init__(self, secret: str):
        self.secret = secret
        self.requests: list[tuple[str, dict]] = []
        self.next_user_id = 500
        self.next_invoice_id = 9000
        self.create_status = 201
        self.invoice_status = 201
        self.rotation_status = 200
        self.tamper_create = False
        self.tamper_rotation = False
        self.rotation_user_id = None
        self.rotation_counter = 0

    def calls(self, path: str) -> list[dict]:
        return [body for p, body in self.requests if p == path]

    def _signed(self, payload: dict, fields: tuple) -> dict:
        payload["hash"] = security.sign_payload(payload, fields, self.secret)
        return payload

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        path = request.url.path
        self.requests.append((path, body))

        if path == "/internal/user/create":
            if self.create_status != 201:
                return httpx.Response(self.create_status, json={"error": "create refused"})
            self.next_user_id += 1
            payload = self._signed(
                {
                    "timestamp": security.signature_timestamp(),
                    "user_id": self.next_user_id,
                    "partner_id": self.next_user_id + 1000,
                    "key": f"key-{self.next_user_id}",
                    "key_salt": f"key-salt-{self.next_user_id}",
                    "salt": security.generate_salt(),
                },
                security.USER_CREATION_FIELDS,
            )
            if self.tamper_create:
                payload["key"] = "injected-key"
            return httpx.Response(201, json=payload)

        if path == "/internal/rotate_api_key":
            if self.rotation_status != 200:
                return httpx.Response(self.rotation_status, json={"error": "rotation refused"})
            if not security.verify_payload(body, security.ROTATION_FIELDS, self.secret):
                return httpx.Response(403, json={"error": "bad signature"})
            self.rotation_counter += 1
            payload = self._signed(
                {
                    "timestamp": security.signature_timestamp(),
                    "user_id": self.rotation_user_id or body["user_id"],
                    "key": f"rotated-key-{self.rotation_counter}",
                    "key_salt": f"rotated-salt-{self.rotation_counter}",
                    "salt": security.generate_salt(),
                },
                security.ROTATION_FIELDS,
            )
            if self.tamper_rotation:
                payload["key"] = "injected-key"
            return httpx.Response(200, json=payload)

        if path == "/internal/bill/create":
            if self.invoice_status != 201:
                return httpx.Response(self.invoice_status, json={"error": "billing down"})
            self.next_invoice_id += 1
            return httpx.Response(201, json={"invoice_id": self.next_invoice_id})

        return httpx.Response(404, json={"error": "not found"})


class FakeSteve:
    """In-memory SteVe with OCPP tags and a fixed transaction list."""

    def __init__(self):
        self.tags: dict[str, dict] = {}
        self.transactions: list[dict] = []
        self.transaction_queries: list[dict] = []
        self.next_pk = 0
        self.echo_id_tag = None
        self.ignore_block_request = False
        self.duplicate_tags = False

    def add_tag(self, id_tag: str, blocked: bool = True) -> dict:
        self.next_pk += 1
        tag = {
            "ocppTagPk": self.next_pk,
            "idTag": id_tag,
            "blocked": blocked,
            "maxActiveTransactionCount": 0 if blocked else 1,
            "inTransaction": False,
            "note": None,
        }
        self.tags[id_tag] = tag
        return tag

    def _in_window(self, params: dict) -> list[dict]:
        """FROM_TO is inclusive on both ends, at second resolution, like SteVe."""
        if params.get("periodType") != "FROM_TO":
            return self.transactions
        start = _steve_param(params["from"])
        end = _steve_param(params["to"])
        return [
            tx
            for tx in self.transactions
            if tx["stopTimestamp"] and start <= _iso(tx["stopTimestamp"]).replace(microsecond=0) <= end
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        assert path.startswith("/steve/api/v1/")

        if path.endswith("/transactions") and request.method == "GET":
            params = dict(request.url.params)
            self.transaction_queries.append(params)
            return httpx.Response(200, json=self._in_window(params))

        if path.endswith("/ocppTags") and request.method == "GET":
            id_tag = request.url.params.get("idTag")
            tag = self.tags.get(id_tag)
            if tag is None:
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[tag, tag] if self.duplicate_tags else [tag])

        if path.endswith("/ocppTags") and request.method == "POST":
            body = json.loads(request.content)
            tag = self.add_tag(body["idTag"], blocked=body["maxActiveTransactionCount"] == 0)
            echoed = dict(tag)
            if self.echo_id_tag:
                echoed["idTag"] = self.echo_id_tag
            return httpx.Response(201, json=echoed)

        if "/ocppTags/" in path and request.method == "PUT":
            body = json.loads(request.content)
            pk = int(path.rsplit("/", 1)[1])
            tag = next((t for t in self.tags.values() if t["ocppTagPk"] == pk), None)
            if tag is None:
                return httpx.Response(404, json={"error": "unknown tag"})
            if not self.ignore_block_request:
                tag["maxActiveTransactionCount"] = body["maxActiveTransactionCount"]
                tag["blocked"] = body["maxActiveTransactionCount"] == 0
            return httpx.Response(200, json=tag)

        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def odoo_config():
    return get_odoo_config()


@pytest.fixture
def fake_odoo(odoo_config):
    return FakeOdoo(odoo_config.api_secret)


@pytest.fixture
def fake_steve():
    return FakeSteve()


@pytest.fixture
def odoo(fake_odoo, odoo_config):
    return OdooAPIClient(odoo_config, transport=httpx.MockTransport(fake_odoo.handler))


@pytest.fixture
def steve(fake_steve):
    return SteveAPIClient(get_steve_config(), transport=httpx.MockTransport(fake_steve.handler))


@pytest.fixture
def make_user(db):
    """Insert a user directly, in any reconciliation state."""

    def _make(oauth_id="oidc|alice", rfid="TAG0001", odoo_user_id=None, steve_id=None, with_key=False):
        user = User(
            oauth_id=oauth_id,
            name="Alice",
            email=f"{oauth_id.split('|')[-1]}@example.com",
            rfid=rfid,
            odoo_user_id=odoo_user_id,
            odoo_partner_id=odoo_user_id + 1000 if odoo_user_id else None,
            steve_id=steve_id,
        )
        db.add(user)
        db.flush()
        if with_key:
            db.add(ApiKeyCredential(user_id=user.user_id, key="initial-key", salt="initial-salt"))
        db.commit()
        db.refresh(user)
        return user

    return _make


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
