import numpy as np
import pytest

from termvec_model import Config, FrameIndex
from termvec import DocVectorWriter, RealVector


def write_stream(path, config, vectors, ids=None, header=None):
    ids = ids or [f"doc{i}" for i in range(len(vectors))]
    with DocVectorWriter.open(path, config, header) as w:
        for doc_id, vec in zip(ids, vectors):
            w.write_record(doc_id, vec)
    return path


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def corpus():
    """Three documents, two fields, vocabulary {cat, dog} after filtering."""
    postings = [
        {"doc": 0, "field": "title", "term": "cat", "freq": 1},
        {"doc": 0, "field": "body", "term": "cat", "freq": 2},
        {"doc": 0, "field": "body", "term": "dog", "freq": 1},
        {"doc": 1, "field": "body", "term": "cat", "freq": 1},
        {"doc": 1, "field": "title", "term": "dog", "freq": 3},
        {"doc": 2, "field": "title", "term": "cat", "freq": 2},
        {"doc": 2, "field": "body", "term": "x1", "freq": 1},
        {"doc": 2, "field": "other", "term": "bird", "freq": 5},
    ]
    doc_vectors = [
        RealVector([1, 0, 0, 0]),
        RealVector([0, 1, 0, 0]),
        RealVector([0, 0, 1, 1]),
    ]
    return FrameIndex.from_records(postings), doc_vectors


@pytest.fixture
def corpus_config(tmp_path):
    return Config(
        dimension=4,
        fields_to_index=["title", "body"],
        max_nonalphabet_chars=0,
        docvector_file=str(tmp_path / "docvectors.bin"),
    )
