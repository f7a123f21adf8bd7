"""
tests/test_resources.py -- Integration tests for owner-scoped resources.

Coverage:
  - public list/detail without a token; detail embeds the owner's id and name
  - create requires a token; owner comes from the token subject
  - /resources/my only lists the caller's resources
  - PATCH/DELETE by a non-owner -> 403, even for an admin
  - soft-deleted resources disappear from reads
  - ResourceStore search and paging
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from resources.models import Resource
from resources.store import ResourceStore

if TYPE_CHECKING:
    from conftest import ApiContext

RESOURCES = "/api/v1/resources"


def _create(ctx: ApiContext, token: str, title: str = "Notes", description: str | None = None) -> dict:
    body = {"title": title}
    if description is not None:
        body["description"] = description
    resp = ctx.client.post(RESOURCES, json=body, headers=ctx.bearer(token))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


class TestPublicReads:
    def test_list_is_public(self, api_client: ApiContext) -> None:
        _create(api_client, api_client.user_token, "First")
        resp = api_client.client.get(RESOURCES)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [r["title"] for r in data["items"]] == ["First"]
        assert data["pagination"]["totalItems"] == 1

    def test_detail_is_public(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token, "Detail", "body")
        resp = api_client.client.get(f"{RESOURCES}/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["data"]["description"] == "body"
        assert resp.json()["data"]["ownerId"] == api_client.user.id

    def test_detail_embeds_public_owner(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token, "Owned")
        owner = api_client.client.get(f"{RESOURCES}/{created['id']}").json()["data"]["owner"]
        assert owner == {"id": api_client.user.id, "name": "User"}

    def test_detail_owner_is_null_once_owner_deleted(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token, "Orphan")
        api_client.client.app.state.user_store.soft_delete(api_client.user.id)
        resp = api_client.client.get(f"{RESOURCES}/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["data"]["owner"] is None

    def test_unknown_is_404(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(f"{RESOURCES}/missing")
        assert resp.status_code == 404

    def test_search(self, api_client: ApiContext) -> None:
        _create(api_client, api_client.user_token, "Quarterly report")
        _create(api_client, api_client.user_token, "Shopping list")
        resp = api_client.client.get(RESOURCES, params={"search": "REPORT"})
        assert [r["title"] for r in resp.json()["data"]["items"]] == ["Quarterly report"]


class TestWrites:
    def test_create_requires_token(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(RESOURCES, json={"title": "Nope"})
        assert resp.status_code == 401

    def test_create_sets_owner_from_token(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token, "  Mine  ")
        assert created["ownerId"] == api_client.user.id
        assert created["title"] == "Mine"

    def test_blank_title_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(
            RESOURCES, json={"title": "   "}, headers=api_client.bearer(api_client.user_token)
        )
        assert resp.status_code == 400

    def test_my_lists_only_own(self, api_client: ApiContext) -> None:
        _create(api_client, api_client.user_token, "User's")
        _create(api_client, api_client.admin_token, "Admin's")
        resp = api_client.client.get(f"{RESOURCES}/my", headers=api_client.bearer(api_client.user_token))
        assert resp.status_code == 200
        assert [r["title"] for r in resp.json()["data"]["items"]] == ["User's"]

    def test_my_requires_token(self, api_client: ApiContext) -> None:
        assert api_client.client.get(f"{RESOURCES}/my").status_code == 401

    def test_owner_can_update(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token, "Old", "keep me")
        resp = api_client.client.patch(
            f"{RESOURCES}/{created['id']}", json={"title": "New"}, headers=api_client.bearer(api_client.user_token)
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["title"] == "New"
        assert data["description"] == "keep me"

    def test_null_title_is_400(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token)
        resp = api_client.client.patch(
            f"{RESOURCES}/{created['id']}", json={"title": None}, headers=api_client.bearer(api_client.user_token)
        )
        assert resp.status_code == 400

    def test_admin_non_owner_cannot_update(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token)
        resp = api_client.client.patch(
            f"{RESOURCES}/{created['id']}", json={"title": "Hijack"}, headers=api_client.bearer(api_client.admin_token)
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_non_owner_cannot_delete(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.admin_token)
        resp = api_client.client.delete(f"{RESOURCES}/{created['id']}", headers=api_client.bearer(api_client.user_token))
        assert resp.status_code == 403

    def test_owner_delete_is_soft(self, api_client: ApiContext) -> None:
        created = _create(api_client, api_client.user_token)
        resp = api_client.client.delete(f"{RESOURCES}/{created['id']}", headers=api_client.bearer(api_client.user_token))
        assert resp.status_code == 200
        assert api_client.client.get(f"{RESOURCES}/{created['id']}").status_code == 404
        assert api_client.client.get(RESOURCES).json()["data"]["items"] == []
        again = api_client.client.delete(
            f"{RESOURCES}/{created['id']}", headers=api_client.bearer(api_client.user_token)
        )
        assert again.status_code == 404


class TestResourceStore:
    @pytest.fixture
    def store(self, engine) -> ResourceStore:
        return ResourceStore(engine)

    def test_paging_newest_first(self, store: ResourceStore) -> None:
        ids = [store.create(Resource(owner_id="owner", title=f"item {i}")) for i in range(5)]
        page, total = store.list_resources(page=1, limit=2)
        assert total == 5
        assert [r.id for r in page] == [ids[4], ids[3]]
        last, _ = store.list_resources(page=3, limit=2)
        assert [r.id for r in last] == [ids[0]]

    def test_search_escapes_wildcards(self, store: ResourceStore) -> None:
        store.create(Resource(owner_id="owner", title="100% done"))
        store.create(Resource(owner_id="owner", title="1000 done"))
        found, total = store.list_resources(search="0%")
        assert total == 1
        assert found[0].title == "100% done"

    def test_update_rejects_unknown_fields(self, store: ResourceStore) -> None:
        resource_id = store.create(Resource(owner_id="owner", title="x"))
        with pytest.raises(ValueError):
            store.update(resource_id, owner_id="someone-else")

    def test_count_ignores_deleted(self, store: ResourceStore) -> None:
        keep = store.create(Resource(owner_id="owner", title="keep"))
        gone = store.create(Resource(owner_id="owner", title="gone"))
        store.soft_delete(gone)
        assert store.count() == 1
        assert store.get(keep) is not None
        assert store.get(gone) is None
