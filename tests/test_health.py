from __future__ import annotations


def test_healthz_endpoint(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_metrics_endpoint(client):
    client.get("/healthz")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"x-request-id": "abc-123"})
    assert response.headers["x-request-id"] == "abc-123"


def test_readyz_reports_queue_counts(client, index_queue):
    index_queue.add("index-document", {"tenantId": "t", "documentId": "d"})

    response = client.get("/readyz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert body["queues"]["index-document"]["waiting"] == 1
    assert body["queues"]["send-reminder"]["waiting"] == 0


def test_readyz_returns_503_when_queue_is_down(client):
    from search_hub.dependencies.context import get_index_queue
    from search_hub.services.queue import JobQueue, QueueUnavailableError

    class DownQueue(JobQueue):
        def counts(self):
            raise QueueUnavailableError("Queue offline", operation="counts", queue_name=self.queue_name)

    client.app.dependency_overrides[get_index_queue] = lambda: DownQueue(None, "index-document")

    response = client.get("/readyz")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "QUEUE_UNAVAILABLE"
    assert response.headers["retry-after"] == "5"
