"""
API tests for sender profiles, contacts, companies, events and health.
"""


class TestSenderProfiles:

    def test_create_normalizes_email(self, client):
        resp = client.post("/api/v1/sender-profiles/", json={
            "name": "Sam Lee", "email": " Sam@Example.COM ", "signature": "Sam Lee\nEvents",
        })
        assert resp.status_code == 200
        assert resp.json()["email"] == "sam@example.com"

    def test_create_requires_valid_email(self, client):
        resp = client.post("/api/v1/sender-profiles/", json={"name": "Sam", "email": "nope"})
        assert resp.status_code == 400

    def test_update(self, client, sender_profile):
        resp = client.patch(f"/api/v1/sender-profiles/{sender_profile.id}", json={"title": "Head of Events"})
        assert resp.status_code == 200
        assert resp.json()["title"] == "Head of Events"

    def test_update_blocked_while_sending(self, client, sender_profile, make_campaign):
        make_campaign(status="sending")
        resp = client.patch(f"/api/v1/sender-profiles/{sender_profile.id}", json={"name": "Other"})
        assert resp.status_code == 409

    def test_delete_blocked_while_in_use(self, client, sender_profile, campaign):
        resp = client.delete(f"/api/v1/sender-profiles/{sender_profile.id}")
        assert resp.status_code == 409
        assert resp.json()["details"]["campaigns"] == 1

    def test_delete_unused(self, client, sender_profile):
        resp = client.delete(f"/api/v1/sender-profiles/{sender_profile.id}")
        assert resp.status_code == 200
        assert client.get(f"/api/v1/sender-profiles/{sender_profile.id}").status_code == 404


class TestContacts:

    def test_create_and_filter_by_company(self, client, make_company):
        company = make_company("Bright Smiles")
        resp = client.post("/api/v1/contacts/", json={
            "first_name": "Ana", "email": "Ana@Bright.example", "company_id": company.id,
        })
        assert resp.status_code == 200
        assert resp.json()["email"] == "ana@bright.example"
        assert resp.json()["outreach_status"] == "not_contacted"

        listed = client.get("/api/v1/contacts/", params={"company_id": company.id}).json()
        assert [c["first_name"] for c in listed] == ["Ana"]

    def test_duplicate_email_rejected(self, client, make_contact):
        make_contact(email="ana@example.com")
        resp = client.post("/api/v1/contacts/", json={"first_name": "Ana", "email": " ANA@example.com"})
        assert resp.status_code == 409

    def test_unknown_company(self, client):
        resp = client.post("/api/v1/contacts/", json={"email": "x@example.com", "company_id": 404})
        assert resp.status_code == 400

    def test_companies(self, client):
        assert client.post("/api/v1/contacts/companies", json={"name": "Acme"}).status_code == 200
        assert client.post("/api/v1/contacts/companies", json={"name": " "}).status_code == 400
        assert [c["name"] for c in client.get("/api/v1/contacts/companies").json()] == ["Acme"]


class TestEvents:

    def test_create_and_link_to_campaign(self, client, campaign):
        event = client.post("/api/v1/events/", json={
            "name": "Spring Dental Expo", "start_date": "2026-05-04", "end_date": "2026-05-06", "city": "Austin",
        }).json()

        resp = client.patch(f"/api/v1/campaigns/{campaign.id}", json={"event_ids": [event["id"]]})
        assert resp.status_code == 200
        detail = client.get(f"/api/v1/campaigns/{campaign.id}").json()
        assert [e["name"] for e in detail["events"]] == ["Spring Dental Expo"]

    def test_end_before_start_rejected(self, client):
        resp = client.post("/api/v1/events/", json={
            "name": "Backwards", "start_date": "2026-05-06", "end_date": "2026-05-04",
        })
        assert resp.status_code == 400

    def test_unknown_event_id_rejected(self, client, campaign):
        resp = client.patch(f"/api/v1/campaigns/{campaign.id}", json={"event_ids": [999]})
        assert resp.status_code == 400


class TestHealth:

    def test_reports_configuration(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["email_provider"] is True
        assert body["send_timezone"] == "America/New_York"

    def test_response_headers(self, client):
        resp = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert float(resp.headers["X-Process-Time"]) >= 0
