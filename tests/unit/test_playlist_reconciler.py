"""Unit tests for playlist reconciliation."""

import pytest

from models.generation import ContentRecord, GenerationRequest, PlaylistAction
from services.content_store import ContentStoreError
from services.playlist_reconciler import PlaylistReconciler


async def _saved_record(store) -> str:
    return await store.save_record(
        ContentRecord(
            title="Peace for the Morning",
            audio_url="https://media.test/audio/1.wav",
            transcript="Lord, grant us peace.",
            category_id="morning",
        )
    )


def _request(names=("Calm",), positions=None, category_id="morning") -> GenerationRequest:
    return GenerationRequest(
        title="Morning Peace",
        theme="peace",
        scriptural_basis="John 14:27",
        category_id=category_id,
        playlist_names=tuple(names),
        desired_positions=positions or {},
    )


class BrokenMembershipStore:
    """Wraps a real store but fails every membership write."""

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def insert_membership(self, playlist_id, record_id, position):
        raise ContentStoreError("disk I/O error")


class NoCreateStore:
    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def create_playlist(self, name, category_id):
        raise ContentStoreError("read-only database")


@pytest.mark.unit
@pytest.mark.asyncio
class TestPlaylistReconciler:
    async def test_insert_then_noop(self, content_store):
        record_id = await _saved_record(content_store)
        reconciler = PlaylistReconciler(content_store)
        request = _request(positions={"Calm": 1})

        (first,) = await reconciler.reconcile(record_id, request)
        (second,) = await reconciler.reconcile(record_id, request)

        assert (first.action, first.position) == (PlaylistAction.INSERTED, 1)
        assert (second.action, second.position) == (PlaylistAction.NOOP, 1)
        assert second.playlist_id == first.playlist_id
        assert len(await content_store.find_playlists("calm")) == 1

    async def test_position_change_updates(self, content_store):
        record_id = await _saved_record(content_store)
        reconciler = PlaylistReconciler(content_store)
        await reconciler.reconcile(record_id, _request(positions={"Calm": 1}))

        (result,) = await reconciler.reconcile(record_id, _request(positions={"Calm": 4}))

        assert (result.action, result.position) == (PlaylistAction.UPDATED, 4)
        membership = await content_store.get_membership(result.playlist_id, record_id)
        assert membership["position"] == 4

    async def test_no_desired_position_keeps_existing(self, content_store):
        record_id = await _saved_record(content_store)
        reconciler = PlaylistReconciler(content_store)
        await reconciler.reconcile(record_id, _request(positions={"Calm": 2}))

        (result,) = await reconciler.reconcile(record_id, _request())

        assert (result.action, result.position) == (PlaylistAction.NOOP, 2)

    async def test_reuses_playlist_by_exact_name_and_adds_category(self, content_store):
        existing = await content_store.create_playlist("calm", "evening")
        await content_store.create_playlist("Calm Nights", None)
        record_id = await _saved_record(content_store)

        (result,) = await PlaylistReconciler(content_store).reconcile(record_id, _request(["CALM"]))

        assert result.playlist_id == existing
        playlists = {p["name"]: p for p in await content_store.find_playlists("calm")}
        assert sorted(playlists["calm"]["category_ids"]) == ["evening", "morning"]
        assert playlists["Calm Nights"]["category_ids"] == []

    async def test_membership_failure_is_skipped_per_playlist(self, content_store):
        record_id = await _saved_record(content_store)
        reconciler = PlaylistReconciler(BrokenMembershipStore(content_store))

        results = await reconciler.reconcile(record_id, _request(["Calm", "Hope"]))

        assert [r.action for r in results] == [PlaylistAction.SKIPPED, PlaylistAction.SKIPPED]
        assert all(r.error for r in results)
        assert all(r.playlist_id for r in results)

    async def test_creation_failure_is_skipped(self, content_store):
        record_id = await _saved_record(content_store)

        (result,) = await PlaylistReconciler(NoCreateStore(content_store)).reconcile(
            record_id, _request()
        )

        assert result.action == PlaylistAction.SKIPPED
        assert result.playlist_id is None
        assert "created" in result.error
