from fastapi.testclient import TestClient

from helpers import (
    SIGNATURE, create_agreement, finalise, pending_agreement, sign, token_from_link,
)


def test_create_agreement_starts_in_draft(client: TestClient, seed):
    agreement = create_agreement(client, seed)

    assert agreement["status"] == "draft"
    assert agreement["final_content_richtext"] is None
    assert agreement["signed_by_driver_id"] is None
    assert agreement["signed_at"] is None
    assert agreement["version"] == 1


def test_create_rejects_inspection_of_another_vehicle(client: TestClient, seed):
    response = client.post(
        "/agreements",
        json={
            "vehicle_id": seed.vehicle_id,
            "inspection_id": seed.other_vehicle_inspection_id,
            "template_id": seed.template_id,
        },
    )

    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "Inspection does not match selected vehicle"
    assert client.get("/agreements").json()["total_items"] == 0


def test_create_with_missing_references_is_not_found(client: TestClient, seed):
    for payload in (
        {"vehicle_id": 999, "inspection_id": seed.inspection_id, "template_id": seed.template_id},
        {"vehicle_id": seed.vehicle_id, "inspection_id": 999, "template_id": seed.template_id},
        {"vehicle_id": seed.vehicle_id, "inspection_id": seed.inspection_id, "template_id": 999},
    ):
        assert client.post("/agreements", json=payload).status_code == 404


def test_create_with_inactive_template_is_rejected(client: TestClient, seed):
    response = client.post(
        "/agreements",
        json={
            "vehicle_id": seed.vehicle_id,
            "inspection_id": seed.inspection_id,
            "template_id": seed.inactive_template_id,
        },
    )
    assert response.status_code == 400


def test_unknown_fields_are_rejected(client: TestClient, seed):
    response = client.post(
        "/agreements",
        json={
            "vehicle_id": seed.vehicle_id,
            "inspection_id": seed.inspection_id,
            "template_id": seed.template_id,
            "status": "signed",
        },
    )
    assert response.status_code == 422


def test_happy_path_create_finalise_sign(client: TestClient, seed, mailer):
    agreement = create_agreement(client, seed)

    response = finalise(client, agreement["id"], seed.driver_id)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["agreement"]["status"] == "pending_signature"
    assert body["agreement"]["assigned_driver_id"] == seed.driver_id
    assert body["signing_link"].startswith(
        f"https://fleet.example.com/agreements/driver/sign/{agreement['id']}?token="
    )

    frozen = body["agreement"]["final_content_richtext"]
    assert "Toyota" in frozen
    assert "ABC123" in frozen
    assert "05 Mar 2025" in frozen
    assert "Harbour Fleet Pty Ltd" in frozen

    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "jordan.lee@example.com"
    assert body["signing_link"] in mailer.sent[0]["html"]
    assert "2022 Toyota Corolla" in mailer.sent[0]["text"]

    token = token_from_link(body["signing_link"])
    response = sign(client, agreement["id"], token)
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "signed"
    assert response.json()["signed_at"] is not None

    detail = client.get(f"/agreements/{agreement['id']}").json()
    assert detail["status"] == "signed"
    assert detail["signed_by_driver_id"] == seed.driver_id
    assert detail["signed_at"] is not None
    assert detail["has_signature"] is True
    assert detail["final_content_richtext"] == frozen


def test_content_override_is_frozen_verbatim(client: TestClient, seed):
    agreement = create_agreement(client, seed)

    response = finalise(client, agreement["id"], seed.driver_id, content="<p>Custom terms</p>")

    assert response.status_code == 200
    assert response.json()["agreement"]["final_content_richtext"] == "<p>Custom terms</p>"


def test_blank_override_falls_back_to_rendered_template(client: TestClient, seed):
    agreement = create_agreement(client, seed)

    response = finalise(client, agreement["id"], seed.driver_id, content="   ")

    assert response.status_code == 200
    assert "Toyota" in response.json()["agreement"]["final_content_richtext"]


def test_finalise_requires_driver_email(client: TestClient, seed, mailer):
    agreement = create_agreement(client, seed)

    response = finalise(client, agreement["id"], seed.driver_without_email_id)

    assert response.status_code == 400
    assert client.get(f"/agreements/{agreement['id']}").json()["status"] == "draft"
    assert mailer.sent == []


def test_finalise_unknown_driver_is_not_found(client: TestClient, seed):
    agreement = create_agreement(client, seed)
    assert finalise(client, agreement["id"], 999).status_code == 404


def test_refinalise_reissues_token(client: TestClient, seed, mailer):
    agreement_id, first_token = pending_agreement(client, seed)

    response = finalise(client, agreement_id, seed.driver_id)
    assert response.status_code == 200
    second_token = token_from_link(response.json()["signing_link"])

    assert second_token != first_token
    assert len(mailer.sent) == 2
    assert sign(client, agreement_id, first_token).status_code == 401
    assert sign(client, agreement_id, second_token).status_code == 200


def test_email_failure_keeps_state_and_reports_delivery_error(client: TestClient, seed, mailer):
    mailer.fail = True
    agreement = create_agreement(client, seed)

    response = finalise(client, agreement["id"], seed.driver_id)

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["message"] == "Agreement updated but email failed to send"
    assert detail["details"]["agreement_id"] == agreement["id"]
    assert detail["details"]["status"] == "pending_signature"

    stored = client.get(f"/agreements/{agreement['id']}").json()
    assert stored["status"] == "pending_signature"
    assert stored["final_content_richtext"]


def test_double_sign_is_rejected(client: TestClient, seed):
    agreement_id, token = pending_agreement(client, seed)

    assert sign(client, agreement_id, token).status_code == 200
    second = sign(client, agreement_id, token)

    assert second.status_code == 401
    assert second.json()["detail"]["message"] == "Signing link is invalid or has expired"
    assert client.get(f"/agreements/{agreement_id}").json()["status"] == "signed"


def test_terminate_pending_then_old_token_fails(client: TestClient, seed, mailer):
    agreement_id, token = pending_agreement(client, seed)

    response = client.post(f"/agreements/{agreement_id}/terminate", json={"reason": "Vehicle reassigned"})
    assert response.status_code == 200
    assert response.json()["status"] == "terminated"
    assert response.json()["termination_reason"] == "Vehicle reassigned"

    assert client.get(f"/agreements/{agreement_id}/signing", params={"token": token}).status_code == 401
    assert sign(client, agreement_id, token).status_code == 401

    assert mailer.sent[-1]["subject"].startswith("Agreement terminated")
    assert "Vehicle reassigned" in mailer.sent[-1]["text"]


def test_terminate_signed_agreement(client: TestClient, seed):
    agreement_id, token = pending_agreement(client, seed)
    sign(client, agreement_id, token)

    response = client.post(f"/agreements/{agreement_id}/terminate", json={"notify_driver": False})

    assert response.status_code == 200
    assert response.json()["status"] == "terminated"
    assert response.json()["signed_by_driver_id"] == seed.driver_id


def test_terminate_is_idempotent(client: TestClient, seed, mailer):
    agreement_id, _ = pending_agreement(client, seed)
    first = client.post(f"/agreements/{agreement_id}/terminate", json={})
    sent_before = len(mailer.sent)

    second = client.post(f"/agreements/{agreement_id}/terminate", json={})

    assert second.status_code == 200
    assert second.json()["status"] == "terminated"
    assert second.json()["version"] == first.json()["version"]
    assert len(mailer.sent) == sent_before


def test_terminate_draft_is_a_conflict(client: TestClient, seed):
    agreement = create_agreement(client, seed)

    response = client.post(f"/agreements/{agreement['id']}/terminate", json={})

    assert response.status_code == 409
    assert client.get(f"/agreements/{agreement['id']}").json()["status"] == "draft"


def test_signed_and_terminated_agreements_cannot_be_finalised(client: TestClient, seed):
    agreement_id, token = pending_agreement(client, seed)
    sign(client, agreement_id, token)
    assert finalise(client, agreement_id, seed.driver_id).status_code == 409

    client.post(f"/agreements/{agreement_id}/terminate", json={"notify_driver": False})
    assert finalise(client, agreement_id, seed.driver_id).status_code == 409


def test_link_inspection_on_draft(client: TestClient, seed):
    agreement = create_agreement(client, seed)

    response = client.patch(
        f"/agreements/{agreement['id']}/inspection",
        json={"inspection_id": seed.second_inspection_id, "reason": "Bumper repaired"},
    )

    assert response.status_code == 200
    assert response.json()["inspection_id"] == seed.second_inspection_id
    assert response.json()["version"] == 2


def test_link_inspection_keeps_frozen_content(client: TestClient, seed):
    agreement_id, _ = pending_agreement(client, seed)
    frozen = client.get(f"/agreements/{agreement_id}").json()["final_content_richtext"]

    response = client.patch(
        f"/agreements/{agreement_id}/inspection",
        json={"inspection_id": seed.second_inspection_id},
    )

    assert response.status_code == 200
    assert response.json()["final_content_richtext"] == frozen
    assert "Minor scratch on rear bumper" in frozen


def test_link_inspection_guards(client: TestClient, seed):
    agreement = create_agreement(client, seed)
    url = f"/agreements/{agreement['id']}/inspection"

    same = client.patch(url, json={"inspection_id": seed.inspection_id})
    assert same.status_code == 400
    assert same.json()["detail"]["message"] == "Agreement already linked to this inspection"

    other_vehicle = client.patch(url, json={"inspection_id": seed.other_vehicle_inspection_id})
    assert other_vehicle.status_code == 400
    assert other_vehicle.json()["detail"]["message"] == "Inspection does not belong to the same vehicle"

    assert client.patch(url, json={"inspection_id": 999}).status_code == 404


def test_link_inspection_on_signed_is_a_conflict(client: TestClient, seed):
    agreement_id, token = pending_agreement(client, seed)
    sign(client, agreement_id, token)

    response = client.patch(
        f"/agreements/{agreement_id}/inspection",
        json={"inspection_id": seed.second_inspection_id},
    )
    assert response.status_code == 409


def test_delete_agreement_in_any_status(client: TestClient, seed):
    agreement_id, token = pending_agreement(client, seed)
    sign(client, agreement_id, token)

    response = client.delete(f"/agreements/{agreement_id}")

    assert response.status_code == 200
    assert client.get(f"/agreements/{agreement_id}").status_code == 404
    assert client.delete(f"/agreements/{agreement_id}").status_code == 404


def test_list_filters_by_status_and_search(client: TestClient, seed):
    create_agreement(client, seed)
    pending_agreement(client, seed)

    everything = client.get("/agreements").json()
    assert everything["total_items"] == 2
    assert everything["items"][0]["vehicle_name"] == "2022 Toyota Corolla"

    pending = client.get("/agreements", params={"status": "pending_signature"}).json()
    assert pending["total_items"] == 1
    assert pending["items"][0]["driver_name"] == "Jordan Lee"

    assert client.get("/agreements", params={"search": "abc1"}).json()["total_items"] == 2
    assert client.get("/agreements", params={"search": "rental"}).json()["total_items"] == 2
    assert client.get("/agreements", params={"search": "hyundai"}).json()["total_items"] == 0


def test_preview_renders_template_until_finalised(client: TestClient, seed):
    agreement = create_agreement(client, seed)

    draft = client.get(f"/agreements/{agreement['id']}/preview").json()
    assert draft["frozen"] is False
    assert "Toyota" in draft["content_html"]

    finalise(client, agreement["id"], seed.driver_id, content="<p>{{ vehicle.license_plate }} only</p>")
    pending = client.get(f"/agreements/{agreement['id']}/preview").json()
    assert pending["frozen"] is True
    assert pending["content_html"] == "<p>ABC123 only</p>"


def test_every_mutation_is_audited(client: TestClient, seed):
    agreement_id, token = pending_agreement(client, seed)
    sign(client, agreement_id, token)
    client.post(f"/agreements/{agreement_id}/terminate", json={"notify_driver": False})

    response = client.get("/audit-trail", params={"entity_type": "agreement", "entity_id": agreement_id})

    assert response.status_code == 200
    actions = [item["action"] for item in response.json()["items"]]
    assert actions == ["terminate", "sign", "finalize", "create"]


def test_invalid_signature_image_is_rejected(client: TestClient, seed):
    agreement_id, token = pending_agreement(client, seed)

    response = sign(client, agreement_id, token, signature="not-an-image")

    assert response.status_code == 400
    assert sign(client, agreement_id, token, signature=SIGNATURE).status_code == 200
