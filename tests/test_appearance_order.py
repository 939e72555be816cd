"""Tests for ranking first-appearance offsets into appearance orders.

Run: pytest tests/test_appearance_order.py -v
"""
from domain.appearance_order import rank_appearance_order
from domain.entities import is_valid_order


def entity(value, mentions_by_source, offsets):
    return {
        "value": value,
        "mentions": sum(mentions_by_source.values()),
        "mentions_by_source": mentions_by_source,
        "first_appearance_char_by_source": offsets,
    }


class TestRankAppearanceOrder:
    def test_offsets_become_ordinals(self):
        acme = entity("Acme", {"gpt": 1, "claude": 2}, {"gpt": 120, "claude": 0})
        globex = entity("Globex", {"gpt": 2, "claude": 1}, {"gpt": 10, "claude": -1})
        rank_appearance_order([acme, globex])

        assert acme["appearance_order_by_source"] == {"gpt": 2, "claude": 1}
        assert acme["appearance_order"] == 1.5
        # claude mentioned Globex without a known offset
        assert globex["appearance_order_by_source"] == {"gpt": 1, "claude": 999}
        assert globex["appearance_order"] == 1

    def test_unmentioned_entity_never_appeared(self):
        ghost = entity("Ghost", {}, {"gpt": -1})
        rank_appearance_order([entity("Acme", {"gpt": 1}, {"gpt": 5}), ghost])

        assert ghost["appearance_order"] == -1
        assert ghost["appearance_order_by_source"] == {}

    def test_mentioned_without_offsets_is_unknown(self):
        acme = entity("Acme", {"gpt": 3}, {})
        rank_appearance_order([acme])

        assert acme["appearance_order"] == 999
        assert acme["appearance_order_by_source"] == {"gpt": 999}

    def test_ties_keep_input_order(self):
        first = entity("First", {"gpt": 1}, {"gpt": 42})
        second = entity("Second", {"gpt": 1}, {"gpt": 42})
        rank_appearance_order([first, second])

        assert first["appearance_order"] == 1
        assert second["appearance_order"] == 2

    def test_source_filter(self):
        acme = entity("Acme", {"gpt": 1}, {"gpt": 7, "gemini": 3})
        rank_appearance_order([acme], source_ids=["gpt"])

        assert acme["appearance_order_by_source"] == {"gpt": 1}


class TestIsValidOrder:
    def test_real_positions(self):
        assert is_valid_order(1)
        assert is_valid_order(2.5)

    def test_sentinels_and_garbage(self):
        assert not is_valid_order(-1)
        assert not is_valid_order(0)
        assert not is_valid_order(999)
        assert not is_valid_order(None)
        assert not is_valid_order("1")

    def test_booleans_are_not_positions(self):
        assert not is_valid_order(True)
        assert not is_valid_order(False)
