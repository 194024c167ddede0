"""Unit tests for the pandas feed reader."""

import pytest

from fixtures.sample_data import get_sample_records, write_sample_feed

from elementa.models.config import FeedSource
from elementa.models.exceptions import FeedReadError
from elementa.pipeline.feed_reader import read_feed, read_feed_chunks


class TestReadFeedChunks:

    def test_chunks_are_bounded(self, tmp_path):
        path = tmp_path / "feed.csv"
        write_sample_feed(path, get_sample_records(25))

        chunks = list(read_feed_chunks(FeedSource(path=str(path)), chunk_size=10))

        assert [len(c) for c in chunks] == [10, 10, 5]
        assert chunks[0][0]["SKU"] == "S1"

    def test_values_stay_strings(self, tmp_path):
        path = tmp_path / "feed.csv"
        path.write_text('SKU,Price,Note\n007,"$1,299.00",\n')

        record = read_feed(str(path))[0]

        assert record == {"SKU": "007", "Price": "$1,299.00", "Note": ""}

    def test_custom_delimiter_and_enclosure(self, tmp_path):
        path = tmp_path / "feed.txt"
        path.write_text("SKU|Title\nS1|'Shoe | Red'\n")

        records = read_feed(FeedSource(path=str(path), delimiter="|", enclosure="'"))

        assert records == [{"SKU": "S1", "Title": "Shoe | Red"}]

    def test_headers_are_stripped(self, tmp_path):
        path = tmp_path / "feed.csv"
        path.write_text(" SKU , Title \nS1,Shoe\n")
        assert list(read_feed(str(path))[0]) == ["SKU", "Title"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FeedReadError):
            read_feed(str(tmp_path / "absent.csv"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        with pytest.raises(FeedReadError):
            read_feed(str(path))
