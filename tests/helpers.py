import asyncio
from datetime import timedelta

from sqlalchemy import update

from app.agreements.models import Agreement
from app.agreements.repository import AgreementRepository
from app.agreements.services import AgreementService
from app.agreements.utils import AgreementConfig, utcnow

SIGNATURE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="


# Test doubles for the outbound integrations
class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to, subject, html, text):
        if self.fail:
            raise RuntimeError("SES unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_upload = False
        self.fail_delete = False

    def upload_bytes(self, data, key, content_type=None):
        if self.fail_upload:
            return None
        self.objects[key] = data
        return f"https://files.example.com/{key}"

    def delete_file(self, key):
        self.deleted.append(key)
        if self.fail_delete:
            return False
        self.objects.pop(key, None)
        return True


def run(coro):
    """Run a coroutine to completion from synchronous test code"""
    return asyncio.run(coro)


def make_service(db, repo=None):
    """AgreementService on its own session, outside the request cycle"""
    return AgreementService(
        repo=repo or AgreementRepository(db),
        mailer=FakeMailer(),
        storage=FakeStorage(),
        config=AgreementConfig(),
    )


# === API helpers ===

def create_agreement(client, seed, inspection_id=None, template_id=None):
    response = client.post(
        "/agreements",
        json={
            "vehicle_id": seed.vehicle_id,
            "inspection_id": inspection_id or seed.inspection_id,
            "template_id": template_id or seed.template_id,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def finalise(client, agreement_id, driver_id, content=None):
    payload = {"driver_id": driver_id}
    if content is not None:
        payload["content"] = content
    return client.post(f"/agreements/{agreement_id}/finalise", json=payload)


def token_from_link(signing_link: str) -> str:
    return signing_link.split("token=", 1)[1]


def pending_agreement(client, seed):
    """Create and finalise an agreement; returns (agreement_id, token)"""
    agreement = create_agreement(client, seed)
    response = finalise(client, agreement["id"], seed.driver_id)
    assert response.status_code == 200, response.text
    return agreement["id"], token_from_link(response.json()["signing_link"])


def sign(client, agreement_id, token, signature=SIGNATURE):
    return client.post(
        f"/agreements/{agreement_id}/sign",
        json={"token": token, "signature": signature},
    )


def expire_token(session_factory, agreement_id):
    """Move the agreement's signing token expiry into the past"""
    async def push_back():
        async with session_factory() as db:
            await db.execute(
                update(Agreement)
                .where(Agreement.id == agreement_id)
                .values(signing_token_expires_at=utcnow() - timedelta(minutes=1))
            )
            await db.commit()

    run(push_back())
