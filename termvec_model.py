"""
termvec_model - Shared foundation for termvec.

Config schema, error types, the index collaborator protocol and a
table-backed index implementation.

The index is treated purely as a collaborator: anything that can
enumerate its vocabulary, report per-document per-field term
frequencies and a document count satisfies IndexCollaborator.
FrameIndex is the implementation the CLI uses; it reads a postings
table (doc, field, term, freq) with pandas.

This module has zero dependency on the vector engine (termvec.py)
or the command line (termvec_cli.py).
"""

from __future__ import annotations

import json, logging
import dataclasses
from dataclasses import dataclass, asdict, field, fields
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, runtime_checkable

import numpy as np
import pandas as pd
import yaml


logger = logging.getLogger(__name__)


# ── Errors ────────────────────────────────────────────────────────


class ConfigError(ValueError):
    """Missing or invalid setting, raised before any building starts."""


class DimensionMismatchError(ValueError):
    """Vectors of different dimension or type were combined."""


class StreamExhausted(EOFError):
    """The doc-vector stream ended before the expected record."""


class BuildCancelled(RuntimeError):
    pass


# ── Index Protocol ────────────────────────────────────────────────


@runtime_checkable
class IndexCollaborator(Protocol):
    """Structural interface consumed by the term-vector builder."""

    def num_docs(self) -> int: ...
    def vocabulary(self) -> Iterator[tuple[str, str, int]]: ...
    def term_frequencies(self, doc: int, field_name: str) -> dict[str, int]: ...


# ── Config ─────────────────────────────────────────────────────────

VECTOR_TYPES = ("real", "binary", "complex")
STREAM_FORMATS = ("packed", "text")
MAX_INT = 2**31 - 1

_CASTS = {"int": int, "str": str, "bool": bool, "float": float}


def _opt(default, help: str, choices: tuple = None, **kw):
    meta = {"help": help}
    if choices:
        meta["choices"] = choices
    if isinstance(default, list):
        return field(default_factory=lambda: list(default), metadata=meta, **kw)
    return field(default=default, metadata=meta, **kw)


@dataclass
class Config:
    dimension: int = _opt(200, "Dimension of semantic vector space")
    vector_type: str = _opt(
        "real", "Ground field for vectors: real, binary or complex", VECTOR_TYPES
    )
    seed_length: int = _opt(
        10, "Number of +1 and -1 entries in a sparse random vector"
    )
    binary_vector_decimal_places: int = _opt(
        2, "Decimal places kept in weighted superpositions of binary vectors"
    )
    min_frequency: int = _opt(0, "Minimum aggregate term frequency")
    max_frequency: int = _opt(MAX_INT, "Maximum aggregate term frequency")
    max_nonalphabet_chars: int = _opt(
        -1, "Maximum non-alphabetic characters in a term (-1 for any number)"
    )
    fields_to_index: list = _opt(["contents"], "Index fields whose terms are used")
    index_path: str = _opt("", "Postings table (parquet, jsonl, json or csv)")
    docvector_file: str = _opt("docvectors", "Input document vector stream")
    termvector_file: str = _opt(
        "incremental_termvectors", "Output term vector stream"
    )
    docvector_format: str = _opt(
        "packed", "Serialization used for vector streams", STREAM_FORMATS
    )
    stoplist_file: str = _opt("", "Terms never given a vector, one per line")
    startlist_file: str = _opt("", "If set, only these terms get a vector")
    seed: int = _opt(0, "Seed for random elemental vectors")
    log_interval: int = _opt(1000, "Documents between progress messages")
    verify_header: bool = _opt(
        False, "Reject streams whose header disagrees on dimension or type"
    )

    def __post_init__(self):
        for f in fields(self):
            choices = f.metadata.get("choices")
            value = getattr(self, f.name)
            if choices and value not in choices:
                raise ConfigError(
                    f"Value {value!r} not valid for option {f.name}; "
                    f"valid values are: {list(choices)}"
                )
        if isinstance(self.fields_to_index, str):
            self.fields_to_index = self.fields_to_index.split(",")
        # Field names are case-insensitive; FrameIndex lowercases its own
        names = (str(x).strip().lower() for x in self.fields_to_index)
        self.fields_to_index = list(dict.fromkeys(x for x in names if x))
        if not self.fields_to_index:
            raise ConfigError("fields_to_index must name at least one field")
        if self.dimension <= 0:
            raise ConfigError(f"dimension must be positive, got {self.dimension}")
        if self.seed_length < 0:
            raise ConfigError(f"seed_length must be >= 0, got {self.seed_length}")
        if self.binary_vector_decimal_places < 0:
            raise ConfigError("binary_vector_decimal_places must be >= 0")
        if self.log_interval <= 0:
            raise ConfigError("log_interval must be positive")
        self._make_compatible()

    def _make_compatible(self):
        if self.vector_type != "binary":
            return
        # Binary vectors are scored and permuted in 64-bit words
        if self.dimension % 64:
            self.dimension = (1 + self.dimension // 64) * 64
            logger.warning(
                f"Binary vector dimension must be a multiple of 64, "
                f"dimension set to {self.dimension}"
            )
        # Balanced elemental vectors are needed for reasonable voting
        if self.seed_length != self.dimension // 2:
            self.seed_length = self.dimension // 2
            logger.warning(
                f"Binary vectors need balanced zeros and ones, "
                f"seed_length set to {self.seed_length}"
            )

    @classmethod
    def describe(cls) -> list[dict]:
        """Option schema: name, type, default, allowed values, help."""
        out = []
        for f in fields(cls):
            default = (
                f.default_factory()
                if f.default_factory is not dataclasses.MISSING
                else f.default
            )
            out.append(
                {
                    "name": f.name,
                    "type": f.type,
                    "default": default,
                    "choices": f.metadata.get("choices"),
                    "help": f.metadata.get("help", ""),
                }
            )
        return out

    def replace(self, **changes) -> Config:
        data = asdict(self)
        data.update({k: v for k, v in changes.items() if v is not None})
        return type(self)(**data)

    # ── Persistence ──

    def save(self, path: str):
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: str) -> Config:
        if not Path(path).exists():
            raise FileNotFoundError(f"Config not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must be a mapping")
        valid = {f.name for f in fields(cls)}
        unknown = set(data) - valid
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in valid})

    # ── Flag strings ──

    @classmethod
    def from_flags(cls, args: list[str]) -> Config:
        """Parse ``-name value`` pairs; booleans take no value."""
        types = {f.name: f.type for f in fields(cls)}
        values, i = {}, 0
        while i < len(args):
            arg = args[i]
            if not arg or arg == "-":
                i += 1
                continue
            if not arg.startswith("-"):
                raise ConfigError(f"Expected a flag, got {arg!r}")
            name = arg.lstrip("-")
            if name not in types:
                raise ConfigError(f"Flag not defined: {name}")
            if types[name] == "bool":
                values[name] = True
                i += 1
                continue
            if i + 1 >= len(args):
                raise ConfigError(f"Option -{name} requires an argument")
            raw = args[i + 1]
            try:
                values[name] = _CASTS.get(types[name], str)(raw)
            except ValueError:
                raise ConfigError(
                    f"Option -{name} expects {types[name]}, got {raw!r}"
                ) from None
            i += 2
        return cls(**values)

    @classmethod
    def from_header(cls, header: str) -> Config:
        return cls.from_flags(header.split())

    def to_header(self) -> str:
        return (
            f"-dimension {self.dimension} -vector_type {self.vector_type} "
            f"-seed_length {self.seed_length}"
        )


# ── Term Lists ────────────────────────────────────────────────────


def read_term_list(path: str) -> set[str]:
    if not path:
        return set()
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Term list not found: {path}")
    with open(p, encoding="utf-8") as f:
        return {line.strip() for line in f if line.strip()}


# ── Frame Index ───────────────────────────────────────────────────


class FrameIndex:
    """IndexCollaborator over a postings table.

    Columns: ``doc`` (ordinal, 0-based), ``field``, ``term``, ``freq``.
    Documents without postings still count toward ``num_docs`` when an
    explicit count is given.
    """

    COLUMNS = ("doc", "field", "term", "freq")

    def __init__(self, postings: pd.DataFrame, num_docs: Optional[int] = None):
        missing = set(self.COLUMNS) - set(postings.columns)
        if missing:
            raise ValueError(f"Postings table missing columns: {sorted(missing)}")
        df = postings.loc[:, list(self.COLUMNS)].copy()
        df["doc"] = df["doc"].astype(np.int64)
        df["freq"] = df["freq"].astype(np.int64)
        df["field"] = df["field"].astype(str).str.lower()
        df["term"] = df["term"].astype(str)
        if (df["doc"] < 0).any():
            raise ValueError("Document ordinals must be non-negative")
        self._df = df
        seen = int(df["doc"].max()) + 1 if len(df) else 0
        self._num_docs = seen if num_docs is None else int(num_docs)
        if self._num_docs < seen:
            raise ValueError(
                f"num_docs={self._num_docs} but postings reference doc {seen - 1}"
            )
        self._postings: dict[tuple[int, str], dict[str, int]] = {}
        for (doc, fname), grp in df.groupby(["doc", "field"], sort=False):
            counts = grp.groupby("term", sort=False)["freq"].sum()
            self._postings[(int(doc), fname)] = {
                t: int(n) for t, n in counts.items()
            }

    @classmethod
    def from_records(cls, records: Iterable[dict], num_docs: int = None) -> FrameIndex:
        return cls(pd.DataFrame.from_records(list(records), columns=cls.COLUMNS), num_docs)

    @classmethod
    def load(cls, path: str, num_docs: int = None) -> FrameIndex:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Index not found: {path}")
        if p.suffix == ".parquet":
            df = pd.read_parquet(p)
        elif p.suffix == ".jsonl":
            df = pd.read_json(p, lines=True, dtype={"field": str, "term": str})
        elif p.suffix == ".json":
            with open(p, encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                num_docs = data.get("num_docs", num_docs)
                data = data.get("postings", [])
            df = pd.DataFrame.from_records(data, columns=cls.COLUMNS)
        elif p.suffix == ".csv":
            df = pd.read_csv(p, keep_default_na=False, dtype={"field": str, "term": str})
        else:
            raise ValueError(f"Unsupported format: {p.suffix}")
        return cls(df, num_docs)

    def num_docs(self) -> int:
        return self._num_docs

    def vocabulary(self) -> Iterator[tuple[str, str, int]]:
        totals = self._df.groupby(["field", "term"], sort=True)["freq"].sum()
        for (fname, term), freq in totals.items():
            yield fname, term, int(freq)

    def term_frequencies(self, doc: int, field_name: str) -> dict[str, int]:
        return dict(self._postings.get((doc, field_name), {}))

