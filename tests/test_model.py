import json

import pandas as pd
import pytest

from termvec_model import FrameIndex, IndexCollaborator


RECORDS = [
    {"doc": 0, "field": "title", "term": "cat", "freq": 1},
    {"doc": 0, "field": "body", "term": "cat", "freq": 2},
    {"doc": 2, "field": "body", "term": "dog", "freq": 4},
]


def test_frame_index_contract():
    index = FrameIndex.from_records(RECORDS)
    assert isinstance(index, IndexCollaborator)
    assert index.num_docs() == 3
    assert sorted(index.vocabulary()) == [
        ("body", "cat", 2),
        ("body", "dog", 4),
        ("title", "cat", 1),
    ]
    assert index.term_frequencies(0, "body") == {"cat": 2}
    assert index.term_frequencies(1, "body") == {}
    assert index.term_frequencies(0, "url") == {}


def test_explicit_num_docs():
    assert FrameIndex.from_records(RECORDS, num_docs=10).num_docs() == 10
    with pytest.raises(ValueError):
        FrameIndex.from_records(RECORDS, num_docs=2)


def test_missing_columns():
    with pytest.raises(ValueError, match="missing columns"):
        FrameIndex(pd.DataFrame({"doc": [0], "term": ["x"]}))


def test_empty_index():
    index = FrameIndex.from_records([])
    assert index.num_docs() == 0
    assert list(index.vocabulary()) == []


def test_load_formats(tmp_path):
    df = pd.DataFrame.from_records(RECORDS)
    df.to_csv(tmp_path / "p.csv", index=False)
    df.to_json(tmp_path / "p.jsonl", orient="records", lines=True)
    (tmp_path / "p.json").write_text(json.dumps({"num_docs": 5, "postings": RECORDS}))

    for name in ("p.csv", "p.jsonl"):
        index = FrameIndex.load(tmp_path / name)
        assert index.num_docs() == 3
        assert index.term_frequencies(2, "body") == {"dog": 4}
    assert FrameIndex.load(tmp_path / "p.json").num_docs() == 5


def test_load_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        FrameIndex.load(tmp_path / "nope.csv")
    (tmp_path / "p.xml").write_text("<x/>")
    with pytest.raises(ValueError, match="Unsupported"):
        FrameIndex.load(tmp_path / "p.xml")


def test_field_names_are_lowercased():
    index = FrameIndex.from_records(
        [{"doc": 0, "field": "Body", "term": "Cat", "freq": 1}]
    )
    assert list(index.vocabulary()) == [("body", "Cat", 1)]
    assert index.term_frequencies(0, "body") == {"Cat": 1}
