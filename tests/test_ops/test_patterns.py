"""Tests for ops/patterns.py -- directory, filename, and parent-folder shapes."""

import pytest

from audiobook_automator.ops.patterns import (
    FILENAME_PATTERNS,
    SERIES_SUFFIX_RE,
    match_filename,
    match_numbered_collection,
    match_parent_hint,
    match_segmented_name,
    parse_directory_name,
)


class TestDirectoryNames:
    def test_author_title(self):
        assert parse_directory_name("Isaac Asimov - Foundation") == {
            "author": "Isaac Asimov",
            "title": "Foundation",
        }

    def test_numbered_collection(self):
        assert parse_directory_name("51 - Battlefield Earth - L Ron Hubbard - 1982") == {
            "title": "Battlefield Earth",
            "author": "L Ron Hubbard",
            "year": "1982",
        }

    def test_series_indicator_becomes_complete_series(self):
        result = parse_directory_name("Brandon Sanderson - Mistborn Trilogy")
        assert result["author"] == "Brandon Sanderson"
        assert result["series"] == "Mistborn Trilogy"
        assert result["title"] == "Mistborn Trilogy Complete Series"

    @pytest.mark.parametrize("suffix", ["Series", "Cycle", "Trilogy", "Universe", "Verse"])
    def test_each_series_indicator(self, suffix):
        result = match_segmented_name(f"Some Author - Big {suffix}")
        assert result["series"] == f"Big {suffix}"

    def test_three_segments(self):
        assert parse_directory_name("Robert Jordan - Wheel of Time - The Eye of the World") == {
            "author": "Robert Jordan",
            "series": "Wheel of Time",
            "title": "The Eye of the World",
        }

    def test_no_separator(self):
        assert parse_directory_name("Foundation") == {}

    def test_numbered_requires_four_digit_year(self):
        assert match_numbered_collection("51 - Battlefield Earth - L Ron Hubbard - 82") is None


class TestFilenamePatterns:
    def test_order_is_fixed(self):
        assert [p.name for p in FILENAME_PATTERNS] == [
            "author-title-year",
            "author-series#-title",
            "author-series-book-title",
            "title-author-narrator",
            "title-year-author",
            "author-series-book-title-alt",
            "title-the-series-n-author",
            "numbered-collection",
        ]

    def test_author_title_year(self):
        assert match_filename("Frank Herbert - Dune (1965)") == {
            "author": "Frank Herbert",
            "title": "Dune",
            "year": "1965",
        }

    def test_author_series_hash_title(self):
        assert match_filename("Brandon Sanderson - Mistborn #1 - The Final Empire") == {
            "author": "Brandon Sanderson",
            "series": "Mistborn",
            "series_part": "1",
            "title": "The Final Empire",
        }

    def test_author_series_book_title(self):
        assert match_filename("James S. A. Corey - The Expanse Book 2 - Calibans War") == {
            "author": "James S. A. Corey",
            "series": "The Expanse",
            "series_part": "2",
            "title": "Calibans War",
        }

    def test_title_author_narrator(self):
        assert match_filename("The Hobbit - J.R.R. Tolkien - Andy Serkis") == {
            "title": "The Hobbit",
            "author": "J.R.R. Tolkien",
            "narrator": "Andy Serkis",
        }

    def test_title_year_author(self):
        assert match_filename("Dune (1965) - Frank Herbert") == {
            "title": "Dune",
            "year": "1965",
            "author": "Frank Herbert",
        }

    def test_author_series_book_title_alt(self):
        assert match_filename("Dennis E. Taylor - Bobiverse - Book 1 - We Are Legion") == {
            "author": "Dennis E. Taylor",
            "series": "Bobiverse",
            "series_part": "1",
            "title": "We Are Legion",
        }

    def test_title_the_series_n_author(self):
        assert match_filename("Leviathan Wakes - The Expanse 1 - James S. A. Corey") == {
            "title": "Leviathan Wakes",
            "series": "The Expanse",
            "series_part": "1",
            "author": "James S. A. Corey",
        }

    def test_numbered_collection(self):
        assert match_filename("51 - Battlefield Earth - L Ron Hubbard - 1982") == {
            "title": "Battlefield Earth",
            "author": "L Ron Hubbard",
            "year": "1982",
        }

    def test_plain_track_name_matches_nothing(self):
        assert match_filename("Track 01") == {}
        assert match_filename("01") == {}


class TestParentHint:
    def test_collection_with_genre(self):
        assert match_parent_hint("Top 100 Science Fiction Books") == {"genre": "Science Fiction"}

    def test_best_fantasy(self):
        assert match_parent_hint("Best Fantasy Audiobooks") == {"genre": "Fantasy"}

    def test_collection_without_genre(self):
        assert match_parent_hint("My Collection") is None

    def test_genre_without_collection_word(self):
        assert match_parent_hint("Fantasy") is None

    def test_detective_collection(self):
        assert match_parent_hint("Classic Detective Collection") == {"genre": "Mystery & Thriller"}

    def test_history_anthology(self):
        assert match_parent_hint("Best of World History") == {"genre": "Historical Fiction"}


class TestSeriesSuffix:
    @pytest.mark.parametrize(
        "name", ["The Stormlight saga", "Foundation series", "The Cosmere VERSE", "Dune Saga"]
    )
    def test_suffix_any_case(self, name):
        assert SERIES_SUFFIX_RE.search(name)

    def test_suffix_must_end_name(self):
        assert SERIES_SUFFIX_RE.search("Saga of the Seven Suns") is None
