"""Tests for the identity service against the in-memory store."""
import asyncio

import numpy as np
import pytest

from facetag.core.exceptions import IdentityNotFoundError, IdentityResolutionError
from facetag.domain.entities.identity import PersonIdentity
from facetag.domain.value_objects.mutations import CreateIdentity
from facetag.services.identity.identity_service import IdentityService, resolve_identity_id

from fakes import face_record, pair_with_similarity


@pytest.fixture
def service(identity_store, test_settings):
    return IdentityService(identity_store, config=test_settings)


async def add_media(store, service, media_id, *embeddings, quality=0.8):
    records = [face_record(media_id, e, face_index=i, quality=quality) for i, e in enumerate(embeddings)]
    await store.replace_media_faces(media_id, records)
    return await service.assign_faces(media_id, records)


async def seed_identity(store, name, media_id, embedding, quality=0.8):
    identity = PersonIdentity(name=name)
    await store.apply([CreateIdentity(identity=identity)])
    await store.replace_media_faces(
        media_id, [face_record(media_id, embedding, quality=quality, person_id=identity.identity_id)]
    )
    return identity


async def total_faces(store):
    identities = await store.list_identities()
    return sum([len(await store.list_identity_faces(i.identity_id)) for i in identities])


class TestAssignFaces:
    """Matching faces of media items into identities."""

    async def test_first_face_creates_placeholder(self, service, identity_store):
        a, _ = pair_with_similarity(0.5)

        matches = await add_media(identity_store, service, "img1", a)

        assert [m.name for m in matches] == ["Unknown 1"]
        assert identity_store.media_tags("img1") == ["Unknown 1"]
        identity = await identity_store.get_identity(matches[0].identity_id)
        assert identity.quality_score > 0
        assert identity.primary_face_id is not None

    async def test_same_person_joins_one_identity(self, service, identity_store):
        a, b = pair_with_similarity(0.8)

        first = await add_media(identity_store, service, "img1", a)
        second = await add_media(identity_store, service, "img2", b)

        assert first[0].identity_id == second[0].identity_id
        assert len(await identity_store.list_identities()) == 1

    async def test_different_people_get_distinct_identities(self, service, identity_store):
        a, b = pair_with_similarity(0.1)

        first = await add_media(identity_store, service, "img1", a)
        second = await add_media(identity_store, service, "img2", b)

        assert first[0].identity_id != second[0].identity_id
        assert {first[0].name, second[0].name} == {"Unknown 1", "Unknown 2"}

    async def test_low_quality_face_is_not_relaxed_onto_placeholder(self, service, identity_store):
        a, b = pair_with_similarity(0.47)
        unknown = await seed_identity(identity_store, "Unknown 3", "img0", a)

        matches = await add_media(identity_store, service, "img1", b, quality=0.3)

        assert matches[0].identity_id != unknown.identity_id
        assert matches[0].name == "Unknown 4"

    async def test_good_face_is_relaxed_onto_placeholder(self, service, identity_store):
        a, b = pair_with_similarity(0.47)
        unknown = await seed_identity(identity_store, "Unknown 3", "img0", a)

        matches = await add_media(identity_store, service, "img1", b, quality=0.9)

        assert matches[0].identity_id == unknown.identity_id

    async def test_user_name_with_superscript_suffix_does_not_block_creation(self, service, identity_store):
        a, b = pair_with_similarity(0.1)
        await seed_identity(identity_store, "Unknown \u00b2", "img0", a)

        matches = await add_media(identity_store, service, "img1", b)

        assert matches[0].name == "Unknown 1"

    async def test_new_identity_is_visible_within_the_same_media(self, service, identity_store):
        a, b = pair_with_similarity(0.9)

        matches = await add_media(identity_store, service, "group", a, b)

        assert matches[0].identity_id == matches[1].identity_id
        assert identity_store.media_tags("group") == ["Unknown 1"]

    async def test_other_embedder_models_are_not_compared(self, service, identity_store):
        a, b = pair_with_similarity(0.95)
        identity = PersonIdentity(name="Alice")
        await identity_store.apply([CreateIdentity(identity=identity)])
        await identity_store.replace_media_faces(
            "old", [face_record("old", a, person_id=identity.identity_id, embedder_model_id="emb-v0")]
        )

        matches = await add_media(identity_store, service, "img1", b)

        assert matches[0].identity_id != identity.identity_id

    async def test_concurrent_scans_share_one_new_identity(self, service, identity_store):
        a, b = pair_with_similarity(0.9)
        r1 = face_record("img1", a)
        r2 = face_record("img2", b)
        await identity_store.replace_media_faces("img1", [r1])
        await identity_store.replace_media_faces("img2", [r2])

        first, second = await asyncio.gather(
            service.assign_faces("img1", [r1]),
            service.assign_faces("img2", [r2]),
        )

        assert first[0].identity_id == second[0].identity_id
        assert len(await identity_store.list_identities()) == 1

    async def test_refresh_clears_quality_of_emptied_identity(self, service, identity_store):
        a, _ = pair_with_similarity(0.0)
        match = (await add_media(identity_store, service, "img1", a))[0]
        await identity_store.replace_media_faces("img1", [])

        await service.refresh_identities([match.identity_id, "missing"])

        identity = await identity_store.get_identity(match.identity_id)
        assert identity.quality_score == 0.0
        assert identity.primary_face_id is None


class TestMergeAndRename:
    """Merge, rename and ignore semantics."""

    async def test_merge_preserves_faces_and_redirects(self, service, identity_store):
        a, b = pair_with_similarity(0.0)
        first = (await add_media(identity_store, service, "img1", a))[0]
        second = (await add_media(identity_store, service, "img2", b))[0]
        before = await total_faces(identity_store)

        survivor = await service.merge(first.identity_id, second.identity_id)

        assert survivor.identity_id == second.identity_id
        assert await total_faces(identity_store) == before
        source = await identity_store.get_identity(first.identity_id)
        assert source.merged_into == second.identity_id
        assert await identity_store.list_identity_faces(first.identity_id) == []
        ids = {i.identity_id for i in await identity_store.list_identities()}
        for media in ("img1", "img2"):
            for face in await identity_store.list_media_faces(media):
                assert face.person_id in ids
        assert identity_store.media_tags("img1") == [second.name]

    async def test_merge_follows_redirects(self, service, identity_store):
        vectors = np.eye(8, dtype=np.float32)
        ids = [(await add_media(identity_store, service, f"img{i}", vectors[i]))[0].identity_id for i in range(3)]

        await service.merge(ids[0], ids[1])
        survivor = await service.merge(ids[0], ids[2])

        assert survivor.identity_id == ids[2]
        assert (await service.resolve(ids[0])).identity_id == ids[2]
        assert len(await identity_store.list_identity_faces(ids[2])) == 3

    async def test_merge_into_itself_is_noop(self, service, identity_store):
        a, _ = pair_with_similarity(0.0)
        match = (await add_media(identity_store, service, "img1", a))[0]

        survivor = await service.merge(match.identity_id, match.identity_id)

        assert survivor.identity_id == match.identity_id
        assert not survivor.is_merged

    async def test_rename_updates_name_and_tags(self, service, identity_store):
        a, _ = pair_with_similarity(0.0)
        match = (await add_media(identity_store, service, "img1", a))[0]

        renamed = await service.rename(match.identity_id, "  Alice ")

        assert renamed.name == "Alice"
        assert identity_store.media_tags("img1") == ["Alice"]

    async def test_blank_rename_is_ignored(self, service, identity_store):
        a, _ = pair_with_similarity(0.0)
        match = (await add_media(identity_store, service, "img1", a))[0]

        renamed = await service.rename(match.identity_id, "   ")

        assert renamed.name == "Unknown 1"

    async def test_rename_to_existing_name_merges(self, service, identity_store):
        a, b = pair_with_similarity(0.0)
        first = (await add_media(identity_store, service, "img1", a))[0]
        second = (await add_media(identity_store, service, "img2", b))[0]
        await service.rename(second.identity_id, "Alice")

        survivor = await service.rename(first.identity_id, "alice")

        assert survivor.identity_id == second.identity_id
        assert survivor.name == "Alice"
        assert (await identity_store.get_identity(first.identity_id)).merged_into == second.identity_id
        assert identity_store.media_tags("img1") == ["Alice"]

    async def test_rename_to_own_name_is_noop(self, service, identity_store):
        a, _ = pair_with_similarity(0.0)
        match = (await add_media(identity_store, service, "img1", a))[0]
        await service.rename(match.identity_id, "Alice")
        before = await identity_store.get_identity(match.identity_id)

        after = await service.rename(match.identity_id, "ALICE")

        assert after.name == "Alice"
        assert after.updated_at == before.updated_at

    async def test_ignored_identity_is_untagged_but_still_matched(self, service, identity_store):
        a, b = pair_with_similarity(0.9)
        match = (await add_media(identity_store, service, "img1", a))[0]

        await service.set_ignored(match.identity_id, True)
        again = (await add_media(identity_store, service, "img2", b))[0]

        assert again.identity_id == match.identity_id
        assert identity_store.media_tags("img1") == []
        assert identity_store.media_tags("img2") == []

    async def test_unknown_identity_raises(self, service):
        with pytest.raises(IdentityNotFoundError):
            await service.rename("missing", "Bob")


class TestResolveIdentityId:
    def test_cycle_is_detected(self):
        a = PersonIdentity(identity_id="a", merged_into="b")
        b = PersonIdentity(identity_id="b", merged_into="a")
        with pytest.raises(IdentityResolutionError):
            resolve_identity_id("a", {"a": a, "b": b})

    def test_chain_resolves_to_terminal(self):
        identities = {
            "a": PersonIdentity(identity_id="a", merged_into="b"),
            "b": PersonIdentity(identity_id="b", merged_into="c"),
            "c": PersonIdentity(identity_id="c"),
        }
        assert resolve_identity_id("a", identities) == "c"
