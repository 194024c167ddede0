"""Delimited feed reader yielding bounded chunks of raw records."""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

import pandas as pd

from elementa.models.config import FeedSource
from elementa.models.exceptions import FeedReadError


def read_feed_chunks(feed: FeedSource, chunk_size: int = 100) -> Iterator[List[Dict[str, Any]]]:
    """
    Read a feed file in chunks of raw records.

    Every value is kept as a string; empty cells stay empty strings rather
    than becoming NaN. Header names are stripped of surrounding whitespace.

    Raises:
        FeedReadError: If the file is missing or cannot be parsed
    """
    path = Path(feed.path)
    if not path.exists():
        raise FeedReadError("Feed file not found", context={"path": str(path)})

    try:
        reader = pd.read_csv(
            path,
            sep=feed.delimiter,
            quotechar=feed.enclosure,
            dtype=str,
            keep_default_na=False,
            chunksize=chunk_size,
            skipinitialspace=False,
        )
        with reader:
            for frame in reader:
                frame.columns = frame.columns.str.strip()
                yield frame.to_dict(orient="records")
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise FeedReadError(f"Could not parse feed: {exc}", context={"path": str(path)}) from exc


def read_feed(feed: Union[FeedSource, str], chunk_size: int = 100) -> List[Dict[str, Any]]:
    """Read a whole feed into memory."""
    if isinstance(feed, str):
        feed = FeedSource(path=feed)
    records: List[Dict[str, Any]] = []
    for chunk in read_feed_chunks(feed, chunk_size):
        records.extend(chunk)
    return records
