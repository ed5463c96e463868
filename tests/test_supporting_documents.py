import pytest
from fastapi.testclient import TestClient

from app.agreements.exceptions import ValidationError
from app.agreements.repository import AgreementRepository
from app.agreements.services import SupportingDocumentService
from helpers import create_agreement, pending_agreement, run, sign

PDF = b"%PDF-1.4 handover photos"


def upload(client, agreement_id, name="licence.pdf", data=PDF, content_type="application/pdf"):
    return client.post(
        f"/agreements/{agreement_id}/supporting",
        files={"file": (name, data, content_type)},
    )


def test_upload_and_list_on_draft(client: TestClient, seed, storage):
    agreement = create_agreement(client, seed)

    response = upload(client, agreement["id"])

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["file_name"] == "licence.pdf"
    assert body["file_size"] == len(PDF)
    assert body["path"].startswith(f"agreements/{agreement['id']}/supporting/")
    assert body["path"].endswith("-licence.pdf")
    assert storage.objects[body["path"]] == PDF

    documents = client.get(f"/agreements/{agreement['id']}/supporting").json()
    assert [d["path"] for d in documents] == [body["path"]]


def test_upload_allowed_while_pending(client: TestClient, seed):
    agreement_id, _ = pending_agreement(client, seed)

    response = upload(client, agreement_id, name="photo.jpg", data=b"\xff\xd8\xff", content_type="image/jpeg")

    assert response.status_code == 200
    detail = client.get(f"/agreements/{agreement_id}").json()
    assert len(detail["supporting_documents"]) == 1


def test_documents_are_locked_after_signing(client: TestClient, seed, storage):
    agreement_id, token = pending_agreement(client, seed)
    uploaded = upload(client, agreement_id).json()
    assert sign(client, agreement_id, token).status_code == 200

    rejected = upload(client, agreement_id, name="late.pdf")
    assert rejected.status_code == 409
    assert len(storage.objects) == 1

    delete = client.request(
        "DELETE", f"/agreements/{agreement_id}/supporting", json={"path": uploaded["path"]}
    )
    assert delete.status_code == 409
    assert uploaded["path"] in storage.objects
    assert len(client.get(f"/agreements/{agreement_id}/supporting").json()) == 1


def test_documents_are_locked_after_termination(client: TestClient, seed):
    agreement_id, _ = pending_agreement(client, seed)
    client.post(f"/agreements/{agreement_id}/terminate", json={"notify_driver": False})

    assert upload(client, agreement_id).status_code == 409


def test_rejects_disallowed_type_and_empty_file(client: TestClient, seed, storage):
    agreement = create_agreement(client, seed)

    wrong_type = upload(client, agreement["id"], name="run.sh", data=b"echo", content_type="text/x-sh")
    assert wrong_type.status_code == 400

    empty = upload(client, agreement["id"], data=b"")
    assert empty.status_code == 400
    assert storage.objects == {}


def test_rejects_oversized_file(client: TestClient, seed, storage, agreement_config):
    agreement = create_agreement(client, seed)
    data = b"x" * (agreement_config.supporting_document_max_bytes + 1)

    response = upload(client, agreement["id"], name="scan.pdf", data=data)

    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "File too large"
    assert storage.objects == {}


def test_declared_size_is_checked_before_reading(seed, session_factory, storage, agreement_config):
    async def check():
        async with session_factory() as db:
            service = SupportingDocumentService(
                repo=AgreementRepository(db), storage=storage, config=agreement_config
            )
            service.ensure_within_limit(agreement_config.supporting_document_max_bytes)
            with pytest.raises(ValidationError) as excinfo:
                service.ensure_within_limit(agreement_config.supporting_document_max_bytes + 1)
            return excinfo.value

    error = run(check())
    assert error.message == "File too large"
    assert error.details["max_bytes"] == agreement_config.supporting_document_max_bytes


def test_office_documents_are_accepted(client: TestClient, seed):
    agreement = create_agreement(client, seed)

    response = upload(
        client, agreement["id"], name="insurance.docx", data=b"PK\x03\x04",
        content_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    )
    assert response.status_code == 200


def test_upload_failure_is_reported(client: TestClient, seed, storage):
    storage.fail_upload = True
    agreement = create_agreement(client, seed)

    response = upload(client, agreement["id"])

    assert response.status_code == 502
    assert client.get(f"/agreements/{agreement['id']}/supporting").json() == []


def test_delete_by_path(client: TestClient, seed, storage):
    agreement = create_agreement(client, seed)
    path = upload(client, agreement["id"]).json()["path"]

    response = client.request("DELETE", f"/agreements/{agreement['id']}/supporting", json={"path": path})

    assert response.status_code == 200
    assert storage.deleted == [path]
    assert client.get(f"/agreements/{agreement['id']}/supporting").json() == []


def test_delete_by_id(client: TestClient, seed, storage):
    agreement = create_agreement(client, seed)
    uploaded = upload(client, agreement["id"]).json()

    response = client.delete(f"/agreements/{agreement['id']}/supporting/{uploaded['id']}")

    assert response.status_code == 200
    assert uploaded["path"] not in storage.objects
    assert client.delete(f"/agreements/{agreement['id']}/supporting/{uploaded['id']}").status_code == 404


def test_delete_rejects_paths_outside_the_agreement(client: TestClient, seed, storage):
    first = create_agreement(client, seed)
    second = create_agreement(client, seed)
    other_path = upload(client, second["id"]).json()["path"]

    for path in (other_path, f"agreements/{first['id']}/supporting/../../{second['id']}/x.pdf", "etc/passwd"):
        response = client.request("DELETE", f"/agreements/{first['id']}/supporting", json={"path": path})
        assert response.status_code == 400

    assert other_path in storage.objects
    assert storage.deleted == []


def test_storage_delete_failure_still_removes_record(client: TestClient, seed, storage):
    storage.fail_delete = True
    agreement = create_agreement(client, seed)
    path = upload(client, agreement["id"]).json()["path"]

    response = client.request("DELETE", f"/agreements/{agreement['id']}/supporting", json={"path": path})

    assert response.status_code == 200
    assert client.get(f"/agreements/{agreement['id']}/supporting").json() == []


def test_deleting_agreement_removes_stored_files(client: TestClient, seed, storage):
    agreement = create_agreement(client, seed)
    path = upload(client, agreement["id"]).json()["path"]

    assert client.delete(f"/agreements/{agreement['id']}").status_code == 200
    assert storage.deleted == [path]


def test_document_changes_are_audited(client: TestClient, seed):
    agreement = create_agreement(client, seed)
    uploaded = upload(client, agreement["id"]).json()
    client.delete(f"/agreements/{agreement['id']}/supporting/{uploaded['id']}")

    items = client.get(
        "/audit-trail", params={"entity_type": "agreement", "entity_id": agreement["id"]}
    ).json()["items"]

    assert [item["action"] for item in items] == ["detach_document", "attach_document", "create"]
    assert items[1]["meta_data"]["path"] == uploaded["path"]
