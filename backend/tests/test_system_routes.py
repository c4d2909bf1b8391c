def test_health_reports_table_counts(client, db_session, make_student, swim_class):
    make_student()

    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    details = body["checks"]["database"]["details"]
    assert details["students"] == 1
    assert details["teachers"] == 1
    assert details["classes"] == 1
    assert details["payments"] == 0


def test_version(client):
    response = client.get("/version")
    assert response.status_code == 200
    body = response.get_json()
    assert body["api_version"] == "1.0.0"
    assert "SECRET_KEY" not in str(body)
