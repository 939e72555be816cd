"""Tests for the cross-question merger.

Run: pytest tests/test_merge.py -v
"""
import pytest

from domain.errors import ConfigurationGapError, MissingUpstreamDataError
from domain.links import build_link_types
from domain.logging import AggregationRunLogger
from domain.merge import CrossQueryMerger


@pytest.fixture
def merger(sources):
    return CrossQueryMerger(sources)


def by_value(entities):
    return {e["value"]: e for e in entities}


class TestMergeTotals:
    def test_peak_and_summed_mentions(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Acme", {"gpt": 3}, {"gpt": 1})],
            "q2": [make_entity("Acme", {"gpt": 5}, {"gpt": 2})],
        }, "products")

        acme = rollup[0]
        assert acme["mentions"] == 5
        assert acme["mentions_by_source"] == {"gpt": 8}
        assert acme["mentions_by_question"] == {"q1": 3, "q2": 5}

    def test_peaks_are_per_source(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Acme", {"gpt": 3, "claude": 1}, {"gpt": 1, "claude": 1})],
            "q2": [make_entity("Acme", {"gpt": 1, "claude": 4}, {"gpt": 1, "claude": 1})],
        }, "products")

        acme = rollup[0]
        assert acme["mentions"] == 7
        assert acme["mentions_by_source"] == {"gpt": 4, "claude": 5}
        assert acme["source_count"] == 2
        assert acme["unique_source_count"] == 2

    def test_single_question_is_idempotent(self, merger, make_entity):
        snapshot = [
            make_entity("Acme", {"gpt": 2, "claude": 1}, {"gpt": 1, "claude": 3}),
            make_entity("Globex", {"claude": 4}, {"claude": 2}),
        ]
        rollup = by_value(merger.merge({"q1": snapshot}, "products"))

        assert rollup["Acme"]["mentions"] == 3
        assert rollup["Acme"]["appearance_order"] == 2.0
        assert rollup["Acme"]["appearance_order_by_source"] == {"gpt": 1, "claude": 3}
        assert rollup["Globex"]["mentions"] == 4
        assert rollup["Globex"]["appearance_order"] == 2

    def test_entity_in_one_question_carried_through(self, merger, make_entity):
        rollup = by_value(merger.merge({
            "q1": [make_entity("Acme", {"gpt": 2}, {"gpt": 1})],
            "q2": [make_entity("Globex", {"claude": 3}, {"claude": 2}, description="CRM vendor")],
        }, "products"))

        globex = rollup["Globex"]
        assert globex["mentions"] == 3
        assert globex["mentions_by_source"] == {"claude": 3}
        assert globex["appearance_order"] == 2
        assert globex["description"] == "CRM vendor"
        assert globex["mentions_by_question"] == {"q2": 3}

    def test_zero_counts_dropped_from_summed_map(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Acme", {"gpt": 2, "claude": 0}, {"gpt": 1})],
        }, "products")

        assert rollup[0]["mentions_by_source"] == {"gpt": 2}
        assert rollup[0]["source_count"] == 1


class TestMergeAppearanceOrder:
    def test_mean_of_valid_orders(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Acme", {"gpt": 1}, {"gpt": 1})],
            "q2": [make_entity("Acme", {"gpt": 1}, {"gpt": 3})],
            "q3": [make_entity("Acme", {"gpt": 1}, {"gpt": 999}, appearance_order=999)],
        }, "products")

        acme = rollup[0]
        assert acme["appearance_order"] == 2
        assert acme["appearance_order_by_source"] == {"gpt": 2}

    def test_mentions_without_order_is_unknown(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Acme", {"gpt": 2}, {})],
        }, "products")

        assert rollup[0]["appearance_order"] == 999
        assert rollup[0]["appearance_order_by_source"] == {"gpt": 999}

    def test_no_mentions_never_appeared(self, merger, make_entity):
        rollup = by_value(merger.merge({
            "q1": [make_entity("Acme", {"gpt": 2}, {"gpt": 1}), make_entity("Ghost", {})],
        }, "products"))

        ghost = rollup["Ghost"]
        assert ghost["mentions"] == 0
        assert ghost["appearance_order"] == -1
        assert ghost["influence"] == 0.0


class TestMergeScoring:
    def test_rollup_is_rescored(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Acme", {"gpt": 3}, {"gpt": 1}), make_entity("Globex", {"gpt": 1}, {"gpt": 2})],
            "q2": [make_entity("Globex", {"gpt": 6}, {"gpt": 1})],
        }, "products")

        scored = by_value(rollup)
        assert max(e["influence"] for e in rollup) == 1.0
        assert scored["Globex"]["influence"] == 1.0
        assert scored["Acme"]["influence"] < 1.0

    def test_closed_category_rollup(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Documentation", {"gpt": 2}, {"gpt": 1}, code="doc")],
            "q2": [make_entity("News", {"gpt": 2}, {"gpt": 1}, code="news")],
        }, "linkTypes")

        assert sum(e["influence"] for e in rollup) == pytest.approx(1.0)

    def test_stale_scores_and_trends_not_carried(self, merger, make_entity):
        stale = make_entity("Acme", {"gpt": 2}, {"gpt": 1}, trend="down", volatility=4.2, mentions_as_percent=0.9)
        rollup = merger.merge({"q1": [stale]}, "products")

        assert "trend" not in rollup[0]
        assert "volatility" not in rollup[0]
        assert "mentions_as_percent" not in rollup[0]

    def test_question_snapshots_not_mutated(self, merger, make_entity):
        entity = make_entity("Acme", {"gpt": 2}, {"gpt": 1})
        merger.merge({"q1": [entity], "q2": [make_entity("Acme", {"gpt": 5}, {"gpt": 1})]}, "products")

        assert entity["mentions"] == 2
        assert "mentions_by_question" not in entity


class TestMergeExcerpts:
    def test_excerpts_tagged_with_question(self, merger, make_entity):
        rollup = merger.merge({
            "q1": [make_entity("Acme", {"gpt": 1}, {"gpt": 1},
                               excerpts_by_source={"gpt": [{"excerpt": "Acme leads the market"}]})],
            "q2": [make_entity("Acme", {"gpt": 1}, {"gpt": 1},
                               excerpts_by_source={"gpt": [{"excerpt": "Acme is pricey"}]})],
        }, "products", question_texts={"q1": "Best CRM tools?"})

        assert rollup[0]["excerpts_by_source"]["gpt"] == [
            {"excerpt": "Acme leads the market", "question": "Best CRM tools?", "question_id": "q1"},
            {"excerpt": "Acme is pricey", "question": "q2", "question_id": "q2"},
        ]

    def test_no_excerpts_key_when_none(self, merger, make_entity):
        rollup = merger.merge({"q1": [make_entity("Acme", {"gpt": 1}, {"gpt": 1})]}, "products")
        assert "excerpts_by_source" not in rollup[0]


class TestMergeLinkMembers:
    def test_link_type_members_from_every_question(self, merger):
        q1 = build_link_types([
            {"link": "https://acme.com/docs", "link_type": "doc", "mentions": 1,
             "mentions_by_source": {"gpt": 1}, "appearance_order": 1,
             "appearance_order_by_source": {"gpt": 1}},
        ])
        q2 = build_link_types([
            {"link": "https://globex.com/guide", "link_type": "doc", "mentions": 2,
             "mentions_by_source": {"claude": 2}, "appearance_order": 1,
             "appearance_order_by_source": {"claude": 1}},
        ])
        rollup = merger.merge({"q1": q1, "q2": q2}, "linkTypes")

        members = rollup[0]["sources"]
        assert [(m["link"], m["question_id"]) for m in members] == [
            ("https://acme.com/docs", "q1"),
            ("https://globex.com/guide", "q2"),
        ]
        assert "question_id" not in q1[0]["sources"][0]

    def test_no_members_key_for_plain_entities(self, merger, make_entity):
        rollup = merger.merge({"q1": [make_entity("Acme", {"gpt": 1}, {"gpt": 1})]}, "products")
        assert "sources" not in rollup[0]


class TestMergeErrors:
    def test_empty_input(self, merger):
        assert merger.merge({}, "products") == []

    def test_missing_question_snapshot(self, merger, make_entity):
        with pytest.raises(MissingUpstreamDataError) as exc_info:
            merger.merge({
                "q1": [make_entity("Acme", {"gpt": 1}, {"gpt": 1})],
                "q2": None,
            }, "products", context={"project": "acme", "date": "2025-01-31"})

        error = exc_info.value
        assert error.question == "q2"
        assert error.category == "products"
        assert error.project == "acme"

    def test_unclassified_category(self, merger, make_entity):
        with pytest.raises(ConfigurationGapError):
            merger.merge({"q1": [make_entity("Acme", {"gpt": 1}, {"gpt": 1})]}, "vehicles")


class TestSuspiciousAggregate:
    def test_warning_recorded(self, merger, make_entity, capsys):
        run_logger = AggregationRunLogger("acme", "2025-01-31")
        rollup = merger.merge(
            {"q1": [make_entity("Acme", {"gpt": 25}, {"gpt": 1}), make_entity("Globex", {"gpt": 3}, {"gpt": 2})]},
            "products",
            context={"project": "acme", "date": "2025-01-31", "question": "_aggregate"},
            run_logger=run_logger
        )

        # Warning only; the entity is still scored
        assert by_value(rollup)["Acme"]["mentions"] == 25

        assert len(run_logger.warnings) == 1
        warning = run_logger.warnings[0]
        assert warning["kind"] == "SuspiciousAggregate"
        assert warning["value"] == "Acme"
        assert warning["mentions"] == 25
        assert warning["mentions_by_source"] == {"gpt": 25}
        assert warning["ceiling"] == 20
        assert warning["category"] == "products"

        assert "Suspiciously high mention count" in capsys.readouterr().err

    def test_ceiling_scales_with_questions(self, merger, make_entity):
        run_logger = AggregationRunLogger("acme", "2025-01-31")
        merger.merge({
            "q1": [make_entity("Acme", {"gpt": 15}, {"gpt": 1})],
            "q2": [make_entity("Acme", {"gpt": 25}, {"gpt": 1})],
        }, "products", run_logger=run_logger)

        # 2 sources x 2 questions x 10
        assert run_logger.warnings == []
