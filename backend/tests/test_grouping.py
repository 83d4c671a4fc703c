"""
Tests for grouping.py - category classification, similarity and batching.
"""
import pytest

from nuggets.services.grouping import (
    DEFAULT_CATEGORY,
    DEFAULT_CATEGORY_KEYWORDS,
    CategoryClassifier,
    _load_keyword_table,
)

from tests.fixtures.pipeline_fixtures import SimpleItem


@pytest.fixture
def clf():
    return CategoryClassifier()


class TestClassify:
    """Tests for CategoryClassifier.classify."""

    def test_explicit_category_wins(self, clf):
        """A set category is returned untouched, whatever the text says."""
        item = SimpleItem("1", title="football match report", category="culture")
        assert clf.classify(item) == "culture"

    def test_no_keywords_falls_back_to_other(self, clf):
        """Nothing matches -> `other`."""
        item = SimpleItem("1", title="Zebra xylophone quartz")
        assert clf.classify(item) == DEFAULT_CATEGORY

    def test_empty_item_is_other(self, clf):
        """No text at all -> `other`."""
        assert clf.classify(SimpleItem("1")) == DEFAULT_CATEGORY

    def test_top_score_wins(self, clf):
        """More keyword hits in one category beats a single hit in another."""
        item = SimpleItem(
            "1",
            title="Football coach praises athlete",
            raw_description="The team won the championship",
            key_points=["music in the stadium"],
        )
        assert clf.classify(item) == "sport"

    def test_ties_go_to_first_declared_category(self, clf):
        """One hit each for technology and finance -> technology (declared first)."""
        item = SimpleItem("1", title="software bank")
        assert clf.classify(item) == "technology"

    def test_key_points_and_summary_count(self, clf):
        """Summary and key points are part of the scored text."""
        item = SimpleItem("1", summary="A new vaccine study", key_points=["hospital capacity", "doctor shortage"])
        assert clf.classify(item) == "health"

    def test_matches_whole_words_only(self, clf):
        """`ai` does not fire inside `said`, `art` not inside `start`."""
        item = SimpleItem("1", title="He said the start was slow")
        assert clf.classify(item) == DEFAULT_CATEGORY

    def test_multi_word_keyword(self, clf):
        """Phrases like `mental health` match as a whole."""
        scores = clf.score_text("Mental health at work")
        assert scores["health"] == 2  # "health" and "mental health"

    def test_injected_table_replaces_default(self):
        """A custom table is used as-is, in its own order."""
        custom = CategoryClassifier({"gardening": ["tomato", "soil"], "cooking": ["tomato"]})
        assert custom.classify(SimpleItem("1", title="Tomato soup")) == "gardening"
        assert custom.categories == ["gardening", "cooking"]

    def test_table_is_immutable(self, clf):
        """The keyword table cannot be mutated after construction."""
        with pytest.raises(TypeError):
            clf.category_keywords["new"] = ("x",)


class TestSimilarity:
    """Tests for CategoryClassifier.similarity."""

    def test_identical_items_score_100(self, clf):
        """Same category, same domain, same title words."""
        a = SimpleItem("a", title="Quantum computing breakthrough", category="science",
                       source_url="https://www.nature.com/a")
        b = SimpleItem("b", title="Quantum computing breakthrough", category="science",
                       source_url="https://nature.com/b")
        assert clf.similarity(a, b) == 100

    def test_category_only(self, clf):
        """Shared category and nothing else is 40."""
        a = SimpleItem("a", title="alpha beta", category="science", source_url="https://a.com/")
        b = SimpleItem("b", title="gamma delta", category="science", source_url="https://b.com/")
        assert clf.similarity(a, b) == 40

    def test_title_overlap_is_jaccard_of_long_words(self, clf):
        """Short words are ignored; 1 shared of 3 distinct long words -> round(30/3) = 10."""
        a = SimpleItem("a", title="the rust compiler", category="x")
        b = SimpleItem("b", title="a rust runtime", category="y")
        assert clf.similarity(a, b) == 10

    def test_no_title_words(self, clf):
        """No words over three characters contributes nothing."""
        a = SimpleItem("a", title="a b c", category="x")
        b = SimpleItem("b", title="d e f", category="y")
        assert clf.similarity(a, b) == 0


class TestGroup:
    """Tests for CategoryClassifier.group."""

    def _items(self, spec):
        return [SimpleItem(f"i{n}", title=f"title {n}", category=cat) for n, cat in enumerate(spec)]

    def test_partitions_by_category_and_chunks_by_limit(self, clf):
        """5 tech with limit 2 -> chunks of 2, 2, 1; lone science item is a singleton."""
        items = self._items(["technology"] * 5 + ["science"])
        batches = clf.group(items, batch_limit=2)
        sizes = [(b.category, len(b.items)) for b in batches]
        assert sizes == [("technology", 2), ("technology", 2), ("technology", 1), ("science", 1)]
        assert [b.is_group for b in batches] == [True, True, False, False]

    def test_all_same_category_under_limit_is_one_group(self, clf):
        """5 items, limit 10 -> one group of 5."""
        batches = clf.group(self._items(["technology"] * 5), batch_limit=10)
        assert len(batches) == 1
        assert batches[0].item_ids == ["i0", "i1", "i2", "i3", "i4"]

    def test_largest_partition_first(self, clf):
        """Partition order follows size, descending."""
        items = self._items(["science", "sport", "sport", "finance", "sport", "finance"])
        batches = clf.group(items, batch_limit=10)
        assert [b.category for b in batches] == ["sport", "finance", "science"]

    def test_equal_size_partitions_ordered_by_cohesion(self, clf):
        """Same size: the more similar pair goes first."""
        items = [
            SimpleItem("a1", title="zzz one", category="culture", source_url="https://a.com/1"),
            SimpleItem("a2", title="yyy two", category="culture", source_url="https://b.com/2"),
            SimpleItem("b1", title="shared headline", category="career", source_url="https://c.com/1"),
            SimpleItem("b2", title="shared headline", category="career", source_url="https://c.com/2"),
        ]
        batches = clf.group(items, batch_limit=10)
        assert [b.category for b in batches] == ["career", "culture"]
        assert batches[0].cohesion > batches[1].cohesion

    def test_grouping_is_deterministic(self, clf):
        """Same input, same partitioning."""
        items = self._items(["technology", "sport", "technology", "other", "sport", "technology"])
        first = [b.item_ids for b in clf.group(items, batch_limit=2)]
        second = [b.item_ids for b in clf.group(items, batch_limit=2)]
        assert first == second

    def test_invalid_limit(self, clf):
        """A batch limit below one is rejected."""
        with pytest.raises(ValueError):
            clf.group(self._items(["technology"]), batch_limit=0)

    def test_empty_input(self, clf):
        """No items, no batches."""
        assert clf.group([], batch_limit=3) == []


class TestMajorityCategory:
    """Tests for CategoryClassifier.majority_category."""

    def test_most_common_wins(self, clf):
        items = [SimpleItem("1", category="sport"), SimpleItem("2", category="science"),
                 SimpleItem("3", category="science")]
        assert clf.majority_category(items) == "science"

    def test_tie_goes_to_first_seen(self, clf):
        items = [SimpleItem("1", category="sport"), SimpleItem("2", category="science")]
        assert clf.majority_category(items) == "sport"


class TestKeywordTableLoading:
    """Tests for the CATEGORY_KEYWORDS_JSON override parser."""

    def test_valid_json(self):
        assert _load_keyword_table('{"a": ["x"]}') == {"a": ["x"]}

    def test_invalid_json_falls_back(self):
        assert _load_keyword_table("{not json") is None

    def test_wrong_shape_falls_back(self):
        assert _load_keyword_table('{"a": "x"}') is None

    def test_default_table_order(self):
        assert list(DEFAULT_CATEGORY_KEYWORDS)[:3] == ["technology", "business", "finance"]
