"""
Text Helper Tests

Covers the in-process relevance score, summary truncation and highlight
fragments used by the database search engine.
"""

import pytest

from blog_search.search.text import (
    calculate_relevance_score,
    extract_highlight_fragments,
    generate_highlights,
    generate_summary,
    get_matched_fields,
)


class TestRelevanceScore:

    def test_title_match_beats_content_only_match(self, make_document):
        titled = make_document(title="Getting Started with React", content="A short guide")
        content_only = make_document(title="Frontend notes", content="we use react daily")

        title_score = calculate_relevance_score(titled, ["react"])
        content_score = calculate_relevance_score(content_only, ["react"])

        assert title_score == pytest.approx(30.0)
        assert content_score == pytest.approx(5.1)
        assert title_score > content_score

    def test_title_prefix_bonus(self, make_document):
        doc = make_document(title="React Hooks", content="")
        assert calculate_relevance_score(doc, ["react"]) == pytest.approx(35.0)

    def test_keyword_match(self, make_document):
        doc = make_document(title="Notes", content="", keywords="frontend, react")
        assert calculate_relevance_score(doc, ["React"]) == pytest.approx(16.0)

    def test_term_frequency_bonus(self, make_document):
        doc = make_document(title="Notes", content="react and react native")
        assert calculate_relevance_score(doc, ["react"]) == pytest.approx(5.2)

    def test_no_match_scores_floor(self, make_document):
        doc = make_document(title="Notes", content="nothing here")
        assert calculate_relevance_score(doc, ["react"]) == pytest.approx(0.1)

    def test_empty_terms_score_one(self, make_document):
        doc = make_document(title="Notes", content="nothing here")
        assert calculate_relevance_score(doc, []) == 1.0

    def test_multiple_terms_accumulate(self, make_document):
        doc = make_document(title="Python and React", content="")
        assert calculate_relevance_score(doc, ["python", "react"]) == pytest.approx(65.0)

    def test_matched_fields_order(self, make_document):
        doc = make_document(title="React", content="react", keywords="vue")
        assert get_matched_fields(doc, ["react", "vue"]) == ["title", "content", "keywords"]


class TestSummary:

    def test_short_content_unchanged(self):
        assert generate_summary("short text") == "short text"

    def test_none_content(self):
        assert generate_summary(None) is None

    def test_backs_off_to_late_space(self):
        content = "a" * 190 + " " + "b" * 59
        assert len(content) == 250

        assert generate_summary(content) == "a" * 190 + "…"

    def test_hard_cut_without_late_space(self):
        content = "x" * 250
        assert generate_summary(content) == "x" * 200 + "…"

    def test_early_space_ignored(self):
        content = "a" * 100 + " " + "b" * 149
        assert generate_summary(content) == content[:200] + "…"


class TestHighlights:

    def test_fragment_without_ellipsis(self):
        fragments = extract_highlight_fragments("hello react world", "react")
        assert fragments == ["hello <mark>react</mark> world"]

    def test_fragment_with_ellipses(self):
        content = "x" * 80 + "react" + "y" * 80

        fragments = extract_highlight_fragments(content, "react")

        assert fragments == ["..." + "x" * 50 + "<mark>react</mark>" + "y" * 45 + "..."]

    def test_at_most_three_fragments(self):
        fragments = extract_highlight_fragments("react " * 10, "react")
        assert len(fragments) == 3

    def test_highlight_preserves_case(self, make_document):
        doc = make_document(title="React and react", content="Learn REACT")

        highlights = generate_highlights(doc, ["react"])

        assert highlights["title"] == ["<mark>React</mark> and <mark>react</mark>"]
        assert highlights["content"] == ["Learn <mark>REACT</mark>"]

    def test_no_match_no_highlights(self, make_document):
        doc = make_document(title="Vue", content="nothing")
        assert generate_highlights(doc, ["react"]) == {}
