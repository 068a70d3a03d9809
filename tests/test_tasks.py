from conftest import add_member, register_owner
from app.routers.tasks import MAX_TASK_DEPTH
from app.services.cache_service import drain_notifications


def _create_task(client, headers, **fields):
    payload = {"title": "Count pallets", **fields}
    res = client.post("/api/tasks", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["data"]["task"]


def test_create_and_get_task(test_context):
    client, _ = test_context
    owner = register_owner(client)

    task = _create_task(
        client,
        owner["headers"],
        title="  Restock aisle 4  ",
        priority="high",
        tags=["warehouse", " ", "urgent "],
        metadata={"aisle": 4},
    )
    assert task["title"] == "Restock aisle 4"
    assert task["status"] == "pending"
    assert task["progress"] == 0
    assert task["tags"] == ["warehouse", "urgent"]
    assert task["metadata"] == {"aisle": 4}
    assert task["organization_id"] == owner["organization_id"]
    assert task["created_by"] == owner["user_id"]

    res = client.get(f"/api/tasks/{task['id']}", headers=owner["headers"])
    assert res.status_code == 200, res.text
    detail = res.json()["data"]["task"]
    assert detail["creator"]["id"] == owner["user_id"]
    assert "password_hash" not in detail["creator"]
    assert detail["assignee"] is None
    assert detail["subtasks"] == []
    assert detail["comments"] == []


def test_create_task_requires_title(test_context):
    client, _ = test_context
    owner = register_owner(client)

    res = client.post("/api/tasks", json={"priority": "low"}, headers=owner["headers"])
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation failed"
    assert body["error"]["details"][0]["field"] == "title"


def test_task_requires_organization_context(test_context):
    client, _ = test_context
    res = client.post(
        "/api/auth/register",
        json={
            "username": "loner",
            "email": "loner@example.com",
            "password": "Passw0rd!x",
            "firstName": "Lone",
            "lastName": "Ranger",
        },
    )
    token = res.json()["data"]["accessToken"]

    listed = client.get("/api/tasks", headers={"Authorization": f"Bearer {token}"})
    assert listed.status_code == 403
    assert listed.json()["message"] == "Organization context required"


def test_list_tasks_filters_statistics_and_pagination(test_context):
    client, _ = test_context
    owner = register_owner(client)

    for index in range(5):
        _create_task(client, owner["headers"], title=f"Task {index}", priority="low" if index % 2 else "urgent")
    _create_task(client, owner["headers"], title="Invoice follow-up", description="call the bank")

    page = client.get("/api/tasks?limit=2&page=2&sort_by=title&sort_order=asc", headers=owner["headers"])
    assert page.status_code == 200, page.text
    data = page.json()["data"]
    assert [item["title"] for item in data["items"]] == ["Task 1", "Task 2"]
    assert data["pagination"] == {
        "page": 2,
        "limit": 2,
        "total": 6,
        "pages": 3,
        "hasNext": True,
        "hasPrev": True,
    }
    assert data["statistics"]["total"] == 6
    assert data["statistics"]["by_status"]["pending"] == 6
    assert data["statistics"]["by_priority"]["urgent"] == 3

    urgent = client.get("/api/tasks?priority=urgent", headers=owner["headers"]).json()["data"]
    assert urgent["pagination"]["total"] == 3

    searched = client.get("/api/tasks?search=BANK", headers=owner["headers"]).json()["data"]
    assert [item["title"] for item in searched["items"]] == ["Invoice follow-up"]

    bad = client.get("/api/tasks?limit=500", headers=owner["headers"])
    assert bad.status_code == 400


def test_completion_rule_sets_and_clears_completed_at(test_context):
    client, _ = test_context
    owner = register_owner(client)
    task = _create_task(client, owner["headers"])

    done = client.patch(f"/api/tasks/{task['id']}", json={"progress": 100}, headers=owner["headers"])
    assert done.status_code == 200, done.text
    done_task = done.json()["data"]["task"]
    assert done_task["status"] == "completed"
    assert done_task["completed_at"] is not None
    assert done_task["version"] == 2

    reopened = client.put(
        f"/api/tasks/{task['id']}",
        json={"status": "in_progress", "progress": 60},
        headers=owner["headers"],
    )
    reopened_task = reopened.json()["data"]["task"]
    assert reopened_task["status"] == "in_progress"
    assert reopened_task["completed_at"] is None

    completed = client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"}, headers=owner["headers"])
    assert completed.json()["data"]["task"]["progress"] == 100


def test_stale_version_is_rejected(test_context):
    client, _ = test_context
    owner = register_owner(client)
    task = _create_task(client, owner["headers"])

    first = client.patch(f"/api/tasks/{task['id']}", json={"title": "v2", "version": 1}, headers=owner["headers"])
    assert first.status_code == 200

    second = client.patch(f"/api/tasks/{task['id']}", json={"title": "v3", "version": 1}, headers=owner["headers"])
    assert second.status_code == 409
    assert second.json()["error"]["type"] == "ConflictError"


def test_parent_validation_rejects_cycles(test_context):
    client, _ = test_context
    owner = register_owner(client)
    root = _create_task(client, owner["headers"], title="Root")
    child = _create_task(client, owner["headers"], title="Child", parent_task_id=root["id"])
    grandchild = _create_task(client, owner["headers"], title="Grandchild", parent_task_id=child["id"])

    cycle = client.patch(
        f"/api/tasks/{root['id']}",
        json={"parent_task_id": grandchild["id"]},
        headers=owner["headers"],
    )
    assert cycle.status_code == 400, cycle.text
    assert "cycle" in cycle.json()["error"]["details"][0]["message"]

    self_parent = client.patch(
        f"/api/tasks/{root['id']}",
        json={"parent_task_id": root["id"]},
        headers=owner["headers"],
    )
    assert self_parent.status_code == 400

    missing = client.post(
        "/api/tasks",
        json={"title": "Orphan", "parent_task_id": "does-not-exist"},
        headers=owner["headers"],
    )
    assert missing.status_code == 400

    with_subtasks = client.get(
        "/api/tasks?include_subtasks=true&sort_by=title&sort_order=desc",
        headers=owner["headers"],
    )
    items = {item["title"]: item for item in with_subtasks.json()["data"]["items"]}
    assert [sub["id"] for sub in items["Root"]["subtasks"]] == [child["id"]]

    plain = client.get("/api/tasks", headers=owner["headers"]).json()["data"]["items"]
    assert all("subtasks" not in item for item in plain)


def test_task_hierarchy_depth_is_bounded(test_context):
    client, services = test_context
    owner = register_owner(client)

    parent_id = None
    for index in range(MAX_TASK_DEPTH):
        record = services.database.create(
            "tasks",
            {
                "organization_id": owner["organization_id"],
                "title": f"Level {index}",
                "created_by": owner["user_id"],
                "parent_task_id": parent_id,
                "tags": [],
                "checklist": [],
                "metadata": {},
            },
        )
        parent_id = record["id"]

    res = client.post(
        "/api/tasks",
        json={"title": "Too deep", "parent_task_id": parent_id},
        headers=owner["headers"],
    )
    assert res.status_code == 400, res.text
    assert "deeper than" in res.json()["error"]["details"][0]["message"]


def test_delete_blocked_by_subtasks(test_context):
    client, _ = test_context
    owner = register_owner(client)
    parent = _create_task(client, owner["headers"], title="Parent")
    child = _create_task(client, owner["headers"], title="Child", parent_task_id=parent["id"])

    blocked = client.delete(f"/api/tasks/{parent['id']}", headers=owner["headers"])
    assert blocked.status_code == 400
    assert blocked.json()["message"].startswith("Cannot delete task with subtasks")

    comment = client.post(
        f"/api/tasks/{child['id']}/comments",
        json={"content": "picked up"},
        headers=owner["headers"],
    )
    assert comment.status_code == 201, comment.text

    assert client.delete(f"/api/tasks/{child['id']}", headers=owner["headers"]).status_code == 200
    assert client.delete(f"/api/tasks/{parent['id']}", headers=owner["headers"]).status_code == 200
    assert client.get(f"/api/tasks/{parent['id']}", headers=owner["headers"]).status_code == 404

    again = client.delete(f"/api/tasks/{parent['id']}", headers=owner["headers"])
    assert again.status_code == 404
    assert again.json()["error"]["type"] == "NotFoundError"


def test_comments_are_returned_with_authors(test_context):
    client, _ = test_context
    owner = register_owner(client)
    task = _create_task(client, owner["headers"])

    client.post(f"/api/tasks/{task['id']}/comments", json={"content": " first "}, headers=owner["headers"])
    client.post(f"/api/tasks/{task['id']}/comments", json={"content": "second"}, headers=owner["headers"])

    detail = client.get(f"/api/tasks/{task['id']}", headers=owner["headers"]).json()["data"]["task"]
    assert [comment["content"] for comment in detail["comments"]] == ["first", "second"]
    assert detail["comments"][0]["user"]["username"] == "owner"


def test_cross_organization_access_is_forbidden(test_context):
    client, _ = test_context
    owner = register_owner(client)
    other = register_owner(client, "rival", organization_name="Rival Traders")
    task = _create_task(client, owner["headers"])

    assert client.get(f"/api/tasks/{task['id']}", headers=other["headers"]).status_code == 403
    assert client.patch(f"/api/tasks/{task['id']}", json={"title": "x"}, headers=other["headers"]).status_code == 403
    assert client.delete(f"/api/tasks/{task['id']}", headers=other["headers"]).status_code == 403
    assert client.get("/api/tasks", headers=other["headers"]).json()["data"]["items"] == []
    assert client.get("/api/tasks/unknown-id", headers=owner["headers"]).status_code == 404


def test_assignment_rules_and_offline_notification(test_context):
    client, services = test_context
    owner = register_owner(client)
    agent = add_member(client, owner, "agent1", role="agent")
    outsider = register_owner(client, "outsider", organization_name="Elsewhere")

    refused = client.post(
        "/api/tasks",
        json={"title": "Call supplier", "assigned_to": outsider["user_id"]},
        headers=owner["headers"],
    )
    assert refused.status_code == 400
    assert refused.json()["error"]["details"][0]["field"] == "assigned_to"

    task = _create_task(client, owner["headers"], title="Call supplier", assigned_to=agent["user_id"])

    backlog = drain_notifications(services.cache, agent["user_id"])
    assert [item["event"] for item in backlog] == ["task:assigned"]
    assert backlog[0]["data"]["taskId"] == task["id"]

    # Agents may update tasks assigned to them but may not delete.
    updated = client.patch(f"/api/tasks/{task['id']}", json={"progress": 40}, headers=agent["headers"])
    assert updated.status_code == 200, updated.text
    assert client.delete(f"/api/tasks/{task['id']}", headers=agent["headers"]).status_code == 403

    mine = client.get("/api/tasks?my_tasks_only=true", headers=agent["headers"]).json()["data"]
    assert [item["id"] for item in mine["items"]] == [task["id"]]


def test_unrelated_agent_cannot_update_task(test_context):
    client, _ = test_context
    owner = register_owner(client)
    agent = add_member(client, owner, "agent2", role="agent")
    task = _create_task(client, owner["headers"])

    res = client.patch(f"/api/tasks/{task['id']}", json={"title": "Hijack"}, headers=agent["headers"])
    assert res.status_code == 403
