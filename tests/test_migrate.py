from migrate import as_list, migrate_all, migrate_card
from models import FAILED, PENDING, PROCESSED, new_pending_card, processed_card

from conftest import JANE


def current_card():
    return processed_card(new_pending_card("data:image/png;base64,AAAA"), JANE)


class TestScalarNormalization:
    def test_scalar_phone_becomes_list(self):
        card = migrate_card({"id": "a", "phone": "555-1234"})
        assert card["phone"] == ["555-1234"]

    def test_null_phone_becomes_empty(self):
        card = migrate_card({"id": "a", "phone": None})
        assert card["phone"] == []

    def test_missing_email_becomes_empty(self):
        assert migrate_card({"id": "a"})["email"] == []

    def test_list_kept_as_is(self):
        card = migrate_card({"id": "a", "email": ["x@a.com", "x@a.com"]})
        assert card["email"] == ["x@a.com", "x@a.com"]

    def test_as_list(self):
        assert as_list(None) == []
        assert as_list("") == []
        assert as_list("x") == ["x"]
        assert as_list(["x", "y"]) == ["x", "y"]


class TestIdempotence:
    def test_current_record_unchanged(self):
        card = current_card()
        assert migrate_card(card) == card

    def test_migrate_twice(self):
        raw = {"id": "a", "imageUri": "data:", "phone": "1", "tags": ["pending"]}
        once = migrate_card(raw)
        assert migrate_card(once) == once

    def test_does_not_mutate_input(self):
        raw = {"id": "a", "phone": "1"}
        migrate_card(raw)
        assert raw == {"id": "a", "phone": "1"}


class TestLegacyLayout:
    def test_camel_case_keys_renamed(self):
        card = migrate_card({
            "id": "a",
            "imageUri": "data:image/jpeg;base64,AA",
            "createdAt": "2024-01-01T00:00:00Z",
            "processedAt": "2024-01-01T00:00:05Z",
            "lastSyncedAt": None,
            "isSyncing": True,
        })
        assert card["image_uri"] == "data:image/jpeg;base64,AA"
        assert card["created_at"] == "2024-01-01T00:00:00Z"
        assert card["processed_at"] == "2024-01-01T00:00:05Z"
        assert card["is_syncing"] is True
        assert "imageUri" not in card

    def test_defaults_filled(self):
        card = migrate_card({"id": "a", "notes": None})
        assert card["notes"] == ""
        assert card["tags"] == []
        assert card["nickname"] is None
        assert card["revision"] == 0

    def test_phase_from_sentinel_tags(self):
        assert migrate_card({"id": "a", "tags": ["pending"]})["phase"] == PENDING
        assert migrate_card({"id": "a", "tags": ["error"]})["phase"] == FAILED
        assert migrate_card({"id": "a", "tags": ["sales"]})["phase"] == PROCESSED

    def test_migrate_all_drops_garbage(self):
        cards = migrate_all([{"id": "a"}, "nonsense", {"name": "no id"}, None])
        assert [c["id"] for c in cards] == ["a"]

    def test_migrate_all_non_list(self):
        assert migrate_all({"id": "a"}) == []


class TestListEntries:
    def test_non_string_entries_dropped(self):
        card = migrate_card({"id": "a", "phone": [None, "555", 7], "email": [None],
                             "tags": ["vip", {"x": 1}]})
        assert card["phone"] == ["555"]
        assert card["email"] == []
        assert card["tags"] == ["vip"]

    def test_migrated_card_is_usable(self):
        from models import clean_contacts
        from view import share_text

        card = migrate_card({"id": "a", "name": "Bob", "phone": [None, "555"]})
        assert clean_contacts(card)["phone"] == ["555"]
        assert share_text(card) == "Bob\nTel: 555"
