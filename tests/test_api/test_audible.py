"""Tests for api/audible.py -- Audible catalog search with mocked HTTP."""

from unittest.mock import MagicMock, patch

import httpx

from audiobook_automator.api.audible import (
    _extract_genres,
    _pick_best_series,
    _strip_html,
    search,
)


def _response(payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = payload
    return resp


class TestSearch:
    @patch("audiobook_automator.api.audible.httpx.get")
    def test_successful_search_returns_results(self, mock_get):
        mock_get.return_value = _response(
            {
                "products": [
                    {
                        "asin": "B001ABC",
                        "title": "The Final Empire",
                        "authors": [{"name": "Brandon Sanderson"}],
                        "narrators": [{"name": "Michael Kramer"}],
                        "series": [{"title": "Mistborn", "sequence": "1"}],
                        "release_date": "2006-07-17",
                        "product_images": {"500": "https://img/500.jpg", "1024": "https://img/1024.jpg"},
                        "publisher_summary": "<p>A <b>great</b> book.</p>",
                        "category_ladders": [
                            {"ladder": [{"name": "Science Fiction & Fantasy"}, {"name": "Fantasy"}]},
                        ],
                    },
                    {
                        "asin": "B002DEF",
                        "title": "Another Book",
                        "authors": [{"name": "Bob Jones"}],
                        "series": None,
                    },
                ],
            }
        )

        results = search("mistborn sanderson")

        assert len(results) == 2
        first = results[0]
        assert first["asin"] == "B001ABC"
        assert first["authors"] == ["Brandon Sanderson"]
        assert first["narrators"] == ["Michael Kramer"]
        assert first["series"] == "Mistborn"
        assert first["position"] == "1"
        assert first["year"] == "2006"
        assert first["cover_url"] == "https://img/1024.jpg"
        assert first["description"] == "A great book."
        assert first["genres"] == ["Science Fiction & Fantasy", "Fantasy"]

        second = results[1]
        assert second["series"] == ""
        assert second["narrators"] == []
        assert second["genres"] == []
        assert second["year"] == ""

    @patch("audiobook_automator.api.audible.httpx.get")
    def test_region_in_url(self, mock_get):
        mock_get.return_value = _response({"products": []})
        search("dune", region="co.uk")
        url = mock_get.call_args.args[0]
        assert url.startswith("https://api.audible.co.uk/1.0/")
        assert mock_get.call_args.kwargs["params"]["keywords"] == "dune"

    @patch("audiobook_automator.api.audible.httpx.get")
    def test_http_error_returns_empty(self, mock_get):
        mock_get.side_effect = httpx.ConnectError("no route")
        assert search("dune") == []

    @patch("audiobook_automator.api.audible.httpx.get")
    def test_status_error_returns_empty(self, mock_get):
        resp = MagicMock()
        resp.raise_for_status.side_effect = httpx.HTTPStatusError(
            "503", request=MagicMock(), response=MagicMock()
        )
        mock_get.return_value = resp
        assert search("dune") == []

    @patch("audiobook_automator.api.audible.httpx.get")
    def test_bad_json_returns_empty(self, mock_get):
        resp = MagicMock()
        resp.json.side_effect = ValueError("not json")
        mock_get.return_value = resp
        assert search("dune") == []


class TestPickBestSeries:
    def test_lowest_sequence_wins(self):
        series = [
            {"title": "Cosmere", "sequence": "7"},
            {"title": "Mistborn", "sequence": "1"},
        ]
        assert _pick_best_series(series)["title"] == "Mistborn"

    def test_non_numeric_sequence_sorts_last(self):
        series = [{"title": "Odd", "sequence": "1-3"}, {"title": "Main", "sequence": "2"}]
        assert _pick_best_series(series)["title"] == "Main"

    def test_empty(self):
        assert _pick_best_series([]) is None


class TestHelpers:
    def test_strip_html(self):
        assert _strip_html("<p>Hello <i>world</i></p>") == "Hello world"

    def test_extract_genres_first_ladder_only(self):
        ladders = [
            {"ladder": [{"name": "Mystery"}, {"name": "Noir"}]},
            {"ladder": [{"name": "Romance"}]},
        ]
        assert _extract_genres(ladders) == ["Mystery", "Noir"]

    def test_extract_genres_empty(self):
        assert _extract_genres([]) == []
