# tests/integration/test_api.py
import uuid


def flow_payload(keyword: str):
    return {
        "name": f"Flow {keyword}",
        "trigger_type": "keyword",
        "trigger_value": keyword,
        "entry_node_id": "q1",
        "nodes": [
            {"id": "q1", "type": "question", "data": {"question": "¿Cómo te llamas?", "variable_name": "name"},
             "connections": [{"id": "c1", "target_node_id": "m2"}]},
            {"id": "m2", "type": "message", "data": {"message": "Gracias {{name}}"}},
        ],
    }


def create_active_flow(test_client, keyword: str) -> str:
    response = test_client.post("/flow/create", json=flow_payload(keyword))
    assert response.status_code == 200
    flow_id = response.json()["id"]
    response = test_client.post(f"/flow/status/{flow_id}", json={"is_active": True})
    assert response.status_code == 200
    return flow_id


def message(conversation_id: str, text: str):
    return {"conversation_id": conversation_id, "phone": "555", "contact_name": "Ana", "message_text": text}


def test_health(test_client):
    assert test_client.get("/health").json()["status"] == "healthy"
    assert test_client.get("/webhook/health").json()["status"] == "healthy"


def test_inbound_messages_drive_a_flow(test_client):
    keyword = f"kw{uuid.uuid4().hex[:8]}"
    conversation_id = f"conv-{uuid.uuid4().hex}"
    flow_id = create_active_flow(test_client, keyword)

    started = test_client.post("/webhook/message", json=message(conversation_id, f"hola {keyword}")).json()
    assert started["status"] == "started"
    assert started["flow_id"] == flow_id
    assert started["current_node_id"] == "q1"

    continued = test_client.post("/webhook/message", json=message(conversation_id, "Ana")).json()
    assert continued["status"] == "continued"
    assert continued["execution_status"] == "completed"

    execution = test_client.get(f"/execution/{started['execution_id']}").json()
    assert execution["variables"] == {"name": "Ana"}

    logs = test_client.get(f"/execution/{started['execution_id']}/logs").json()
    assert [log["node_id"] for log in logs] == ["q1", "m2"]

    executions = test_client.get(f"/flow/executions/{flow_id}").json()
    assert [item["id"] for item in executions] == [started["execution_id"]]


def test_message_without_trigger(test_client):
    response = test_client.post("/webhook/message", json=message(f"conv-{uuid.uuid4().hex}", "nothing matches zzzz"))

    assert response.status_code == 200
    assert response.json()["status"] == "no_automation"


def test_invalid_flow_is_rejected(test_client):
    payload = flow_payload("x")
    payload["entry_node_id"] = "ghost"

    response = test_client.post("/flow/create", json=payload)

    assert response.status_code == 400
    assert "ghost" in response.json()["detail"]


def test_unknown_flow_and_execution_return_404(test_client):
    assert test_client.get("/flow/detail/missing").status_code == 404
    assert test_client.post("/flow/status/missing", json={"is_active": True}).status_code == 404
    assert test_client.get("/execution/missing").status_code == 404


def test_start_flow_endpoint(test_client):
    keyword = f"kw{uuid.uuid4().hex[:8]}"
    flow_id = create_active_flow(test_client, keyword)
    body = {"conversation_id": f"conv-{uuid.uuid4().hex}", "phone": "555", "variables": {"campaign": "oct"}}

    started = test_client.post(f"/flow/start/{flow_id}", json=body)
    again = test_client.post(f"/flow/start/{flow_id}", json=body)

    assert started.json()["status"] == "started"
    assert again.json()["status"] == "ignored"
    assert test_client.post("/flow/start/missing", json=body).status_code == 404


def test_cleanup_endpoint(test_client):
    response = test_client.post("/execution/cleanup", json={"timeout_minutes": 60})

    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert response.json()["timeout_minutes"] == 60
    assert test_client.post("/execution/cleanup", json={"timeout_minutes": 0}).status_code == 422


def test_stop_execution_endpoint(test_client):
    keyword = f"kw{uuid.uuid4().hex[:8]}"
    conversation_id = f"conv-{uuid.uuid4().hex}"
    create_active_flow(test_client, keyword)
    started = test_client.post("/webhook/message", json=message(conversation_id, keyword)).json()

    stopped = test_client.post(f"/execution/{started['execution_id']}/stop")
    again = test_client.post(f"/execution/{started['execution_id']}/stop")

    assert stopped.status_code == 200
    assert stopped.json()["status"] == "stopped"
    assert stopped.json()["execution_status"] == "paused"
    assert again.json()["status"] == "ignored"
    assert test_client.get(f"/execution/{started['execution_id']}").json()["status"] == "paused"
    assert test_client.post("/execution/missing/stop").status_code == 404

    # Replies no longer reach the stopped execution
    reply = test_client.post("/webhook/message", json=message(conversation_id, "Ana")).json()
    assert reply["status"] == "no_automation"


def test_execution_list_endpoint(test_client):
    keyword = f"kw{uuid.uuid4().hex[:8]}"
    flow_id = create_active_flow(test_client, keyword)
    started = test_client.post("/webhook/message", json=message(f"conv-{uuid.uuid4().hex}", keyword)).json()

    everything = test_client.get("/execution/list").json()
    filtered = test_client.get("/execution/list", params={"flow_id": flow_id}).json()

    assert started["execution_id"] in [item["id"] for item in everything]
    assert [item["id"] for item in filtered] == [started["execution_id"]]
    assert test_client.get("/execution/list", params={"flow_id": "missing"}).status_code == 404
