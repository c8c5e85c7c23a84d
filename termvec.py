"""
termvec - Incremental term vectors for distributional semantics

Build:  index vocabulary → filter → zero term vectors
        doc-vector stream + per-field term frequencies → superpose → normalize

Three vector representations share one capability surface
(superpose, normalize, measure_overlap, dimension): dense real,
bit-packed binary with a vote accumulator, and complex.

This module depends on termvec_model for Config, errors and the
index protocol. It has zero dependency on the command line
(termvec_cli.py).
"""

from __future__ import annotations

import logging, math
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import (
    BinaryIO,
    Callable,
    Generator,
    Iterable,
    Iterator,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import numpy as np

from termvec_model import (
    BuildCancelled,
    Config,
    ConfigError,
    DimensionMismatchError,
    IndexCollaborator,
    MAX_INT,
    StreamExhausted,
    read_term_list,
)


# ── Constants & Core Math ──────────────────────────────────────────

_M1, _M2, _M4, _H01 = (
    np.uint64(x)
    for x in (
        0x5555555555555555,
        0x3333333333333333,
        0x0F0F0F0F0F0F0F0F,
        0x0101010101010101,
    )
)


def popcount64(x: np.ndarray) -> np.ndarray:
    x = x - ((x >> 1) & _M1)
    x = (x & _M2) + ((x >> 2) & _M2)
    x = (x + (x >> 4)) & _M4
    return ((x * _H01) >> 56).astype(np.int32)


def _check_compatible(a: Vector, b: Vector):
    if a.vector_type != b.vector_type or a.dimension != b.dimension:
        raise DimensionMismatchError(
            f"Cannot combine {a.vector_type}[{a.dimension}] "
            f"with {b.vector_type}[{b.dimension}]"
        )


def _check_perm(permutation, n: int) -> np.ndarray:
    perm = np.asarray(permutation, dtype=np.int64)
    if perm.shape != (n,):
        raise DimensionMismatchError(
            f"Permutation length {perm.size} does not match {n}"
        )
    return perm


# ── Vector Protocol ───────────────────────────────────────────────


@runtime_checkable
class Vector(Protocol):
    """Capability surface shared by every vector representation."""

    vector_type: str

    @property
    def dimension(self) -> int: ...

    def superpose(self, other: Vector, weight: float, permutation=None) -> None: ...
    def normalize(self) -> None: ...
    def measure_overlap(self, other: Vector) -> float: ...
    def is_zero(self) -> bool: ...
    def copy(self) -> Vector: ...
    def to_bytes(self) -> bytes: ...
    def to_text(self) -> str: ...


# ── Real Vectors ──────────────────────────────────────────────────


class RealVector:
    vector_type = "real"

    def __init__(self, coords: np.ndarray):
        self.coords = np.array(coords, dtype=np.float32).ravel()

    @classmethod
    def zeros(cls, dimension: int, **_) -> RealVector:
        return cls(np.zeros(dimension, dtype=np.float32))

    @property
    def dimension(self) -> int:
        return self.coords.shape[0]

    def superpose(self, other: RealVector, weight: float, permutation=None):
        """self += weight * permute(other); permute sends i to permutation[i]."""
        _check_compatible(self, other)
        if permutation is None:
            self.coords += np.float32(weight) * other.coords
        else:
            perm = _check_perm(permutation, self.dimension)
            self.coords[perm] += np.float32(weight) * other.coords

    def normalize(self):
        norm = float(np.linalg.norm(self.coords.astype(np.float64)))
        if norm > 0:
            self.coords /= np.float32(norm)

    def measure_overlap(self, other: RealVector) -> float:
        _check_compatible(self, other)
        a = self.coords.astype(np.float64)
        b = other.coords.astype(np.float64)
        na, nb = np.linalg.norm(a), np.linalg.norm(b)
        if na == 0 or nb == 0:
            return 0.0
        return float(a @ b / (na * nb))

    def is_zero(self) -> bool:
        return not self.coords.any()

    def copy(self) -> RealVector:
        return RealVector(self.coords.copy())

    @staticmethod
    def byte_size(dimension: int) -> int:
        return dimension * 4

    @staticmethod
    def text_width(dimension: int) -> int:
        return dimension

    def to_bytes(self) -> bytes:
        return self.coords.astype(">f4").tobytes()

    @classmethod
    def from_bytes(cls, data: bytes, dimension: int, **_) -> RealVector:
        return cls(np.frombuffer(data, dtype=">f4", count=dimension))

    def to_text(self) -> str:
        return "|".join(f"{x:.9g}" for x in self.coords.tolist())

    @classmethod
    def from_text(cls, parts: list[str], dimension: int, **_) -> RealVector:
        if len(parts) != dimension:
            raise ValueError(f"Expected {dimension} coordinates, got {len(parts)}")
        return cls(np.array([float(x) for x in parts], dtype=np.float32))

    def __repr__(self):
        return f"RealVector(dimension={self.dimension})"


# ── Binary Vectors ────────────────────────────────────────────────


class VoteAccumulator:
    """Per-dimension vote tally behind a binary vector under construction.

    Each superposition votes ``weight * 10**decimal_places`` (rounded to
    an integer) for the bit value it carries in every dimension: set bits
    vote for 1, clear bits vote for 0. Votes are stored doubled so that the
    seed vote of one unit, cast for the bits the vector held when the
    accumulator was created, only ever breaks exact ties.
    """

    def __init__(self, votes: np.ndarray, decimal_places: int):
        self.votes = votes
        self.decimal_places = decimal_places
        self.scale = 10**decimal_places

    @classmethod
    def seeded(cls, bits: np.ndarray, decimal_places: int) -> VoteAccumulator:
        return cls(np.where(bits, 1, -1).astype(np.int64), decimal_places)

    def copy(self) -> VoteAccumulator:
        return VoteAccumulator(self.votes.copy(), self.decimal_places)

    def add(self, bits: np.ndarray, weight: float):
        w = 2 * int(round(weight * self.scale))
        if w:
            self.votes += np.where(bits, w, -w)

    def tally(self) -> np.ndarray:
        return self.votes > 0


class BinaryVector:
    """Bit-packed binary vector; dimension is a multiple of 64.

    Superposition only touches the vote accumulator. The packed bits,
    which similarity and serialization read, change at normalize().
    Permutations act on 64-bit words, so they have length dimension // 64.
    """

    vector_type = "binary"

    def __init__(self, packed: np.ndarray, decimal_places: int = 2):
        self.packed = np.array(packed, dtype=np.uint8).ravel()
        if self.packed.size % 8:
            raise ValueError("Binary vector dimension must be a multiple of 64")
        self.decimal_places = decimal_places
        self._votes: Optional[VoteAccumulator] = None

    @classmethod
    def zeros(cls, dimension: int, decimal_places: int = 2) -> BinaryVector:
        if dimension % 64:
            raise ValueError(
                f"Binary vector dimension must be a multiple of 64, got {dimension}"
            )
        return cls(np.zeros(dimension // 8, dtype=np.uint8), decimal_places)

    @classmethod
    def from_bits(cls, bits: np.ndarray, decimal_places: int = 2) -> BinaryVector:
        return cls(np.packbits(np.asarray(bits, dtype=bool)), decimal_places)

    @property
    def dimension(self) -> int:
        return self.packed.size * 8

    @property
    def words(self) -> np.ndarray:
        return self.packed.view(np.uint64)

    @property
    def pending(self) -> bool:
        return self._votes is not None

    def bits(self) -> np.ndarray:
        return np.unpackbits(self.packed).astype(bool)

    def superpose(self, other: BinaryVector, weight: float, permutation=None):
        _check_compatible(self, other)
        if self._votes is None:
            self._votes = VoteAccumulator.seeded(self.bits(), self.decimal_places)
        src = other.packed
        if permutation is not None:
            perm = _check_perm(permutation, self.dimension // 64)
            words = np.empty_like(other.words)
            words[perm] = other.words
            src = words.view(np.uint8)
        self._votes.add(np.unpackbits(src).astype(bool), weight)

    def normalize(self):
        if self._votes is None:
            return
        self.packed = np.packbits(self._votes.tally())
        self._votes = None

    def measure_overlap(self, other: BinaryVector) -> float:
        _check_compatible(self, other)
        ham = int(popcount64(self.words ^ other.words).sum())
        return 1.0 - 2.0 * ham / self.dimension

    def is_zero(self) -> bool:
        return not self.packed.any()

    def copy(self) -> BinaryVector:
        out = BinaryVector(self.packed.copy(), self.decimal_places)
        if self._votes is not None:
            out._votes = self._votes.copy()
        return out

    @staticmethod
    def byte_size(dimension: int) -> int:
        return dimension // 8

    @staticmethod
    def text_width(dimension: int) -> int:
        return 1

    def to_bytes(self) -> bytes:
        return self.packed.tobytes()

    @classmethod
    def from_bytes(
        cls, data: bytes, dimension: int, decimal_places: int = 2
    ) -> BinaryVector:
        return cls(
            np.frombuffer(data, dtype=np.uint8, count=dimension // 8), decimal_places
        )

    def to_text(self) -> str:
        return (np.unpackbits(self.packed) + ord("0")).tobytes().decode("ascii")

    @classmethod
    def from_text(
        cls, parts: list[str], dimension: int, decimal_places: int = 2
    ) -> BinaryVector:
        if len(parts) != 1 or len(parts[0]) != dimension:
            raise ValueError(f"Expected one bit string of length {dimension}")
        raw = np.frombuffer(parts[0].encode("ascii"), dtype=np.uint8) - ord("0")
        if (raw > 1).any():
            raise ValueError("Bit string may only contain 0 and 1")
        return cls.from_bits(raw.astype(bool), decimal_places)

    def __repr__(self):
        return f"BinaryVector(dimension={self.dimension}, pending={self.pending})"


# ── Complex Vectors ───────────────────────────────────────────────


class ComplexVector:
    vector_type = "complex"

    def __init__(self, coords: np.ndarray):
        self.coords = np.array(coords, dtype=np.complex64).ravel()

    @classmethod
    def zeros(cls, dimension: int, **_) -> ComplexVector:
        return cls(np.zeros(dimension, dtype=np.complex64))

    @property
    def dimension(self) -> int:
        return self.coords.shape[0]

    def superpose(self, other: ComplexVector, weight: float, permutation=None):
        _check_compatible(self, other)
        if permutation is None:
            self.coords += np.float32(weight) * other.coords
        else:
            perm = _check_perm(permutation, self.dimension)
            self.coords[perm] += np.float32(weight) * other.coords

    def normalize(self):
        norm = float(np.linalg.norm(self.coords.astype(np.complex128)))
        if norm > 0:
            self.coords /= np.float32(norm)

    def measure_overlap(self, other: ComplexVector) -> float:
        """Real part of the Hermitian inner product over both norms."""
        _check_compatible(self, other)
        a = self.coords.astype(np.complex128)
        b = other.coords.astype(np.complex128)
        na, nb = np.linalg.norm(a), np.linalg.norm(b)
        if na == 0 or nb == 0:
            return 0.0
        return float(np.vdot(a, b).real / (na * nb))

    def is_zero(self) -> bool:
        return not self.coords.any()

    def copy(self) -> ComplexVector:
        return ComplexVector(self.coords.copy())

    @staticmethod
    def byte_size(dimension: int) -> int:
        return dimension * 8

    @staticmethod
    def text_width(dimension: int) -> int:
        return 2 * dimension

    def to_bytes(self) -> bytes:
        return self.coords.astype(">c8").tobytes()

    @classmethod
    def from_bytes(cls, data: bytes, dimension: int, **_) -> ComplexVector:
        return cls(np.frombuffer(data, dtype=">c8", count=dimension))

    def to_text(self) -> str:
        return "|".join(
            f"{z.real:.9g}|{z.imag:.9g}" for z in self.coords.tolist()
        )

    @classmethod
    def from_text(cls, parts: list[str], dimension: int, **_) -> ComplexVector:
        if len(parts) != 2 * dimension:
            raise ValueError(
                f"Expected {2 * dimension} components, got {len(parts)}"
            )
        vals = np.array([float(x) for x in parts], dtype=np.float32)
        return cls(vals[0::2] + 1j * vals[1::2])

    def __repr__(self):
        return f"ComplexVector(dimension={self.dimension})"


VECTOR_CLASSES = {
    "real": RealVector,
    "binary": BinaryVector,
    "complex": ComplexVector,
}


def vector_class(vector_type: str):
    try:
        return VECTOR_CLASSES[vector_type]
    except KeyError:
        raise ConfigError(
            f"Unknown vector type {vector_type!r}; "
            f"valid values are: {list(VECTOR_CLASSES)}"
        ) from None


def create_zero(vector_type: str, dimension: int, decimal_places: int = 2) -> Vector:
    if dimension <= 0:
        raise ValueError(f"dimension must be positive, got {dimension}")
    return vector_class(vector_type).zeros(dimension, decimal_places=decimal_places)


# ── Random Vectors ────────────────────────────────────────────────


def generate_random_vector(
    seed_length: int, dimension: int, rng: np.random.Generator
) -> np.ndarray:
    """Sparse ternary seed: signed 1-based positions of the nonzero entries.

    The first ``seed_length // 2`` entries are +1 positions, the rest -1
    positions, so odd seed lengths carry one extra -1. ``+20`` marks a +1
    at index 19, ``-1`` a -1 at index 0.
    """
    if dimension <= 0:
        raise ValueError(f"dimension must be positive, got {dimension}")
    if not 0 <= seed_length <= dimension:
        raise ValueError(
            f"seed_length must be in [0, {dimension}], got {seed_length}"
        )
    taken = np.zeros(dimension, dtype=bool)
    out = np.empty(seed_length, dtype=np.int32)
    n_pos, count = seed_length // 2, 0
    while count < seed_length:
        place = int(rng.integers(dimension))
        if taken[place]:
            continue
        taken[place] = True
        out[count] = place + 1 if count < n_pos else -(place + 1)
        count += 1
    return out


def elemental_vector(
    vector_type: str,
    dimension: int,
    seed_length: int,
    rng: np.random.Generator,
    decimal_places: int = 2,
) -> Vector:
    """Dense vector from a random seed; binary vectors set every seed position."""
    if vector_type == "binary" and dimension % 64:
        raise ValueError(
            f"Binary vector dimension must be a multiple of 64, got {dimension}"
        )
    seed = generate_random_vector(seed_length, dimension, rng)
    idx = np.abs(seed) - 1
    if vector_type == "binary":
        bits = np.zeros(dimension, dtype=bool)
        bits[idx] = True
        return BinaryVector.from_bits(bits, decimal_places)
    vec = create_zero(vector_type, dimension)
    vec.coords[idx] = np.sign(seed)
    return vec


# ── Vector Utilities ──────────────────────────────────────────────


def _orthogonalize_binary(kth: BinaryVector, jth: BinaryVector, rng: np.random.Generator):
    """Flip bits of ``kth`` until it is at Hamming distance dimension/2 from ``jth``."""
    bits, other = kth.bits(), jth.bits()
    half = kth.dimension // 2
    ham = int((bits ^ other).sum())
    if ham == half:
        return
    # Too close: flip agreeing bits apart. Too far: flip differing bits together.
    pool = np.flatnonzero(bits == other) if ham < half else np.flatnonzero(bits != other)
    flip = rng.choice(pool, size=abs(half - ham), replace=False)
    bits[flip] = ~bits[flip]
    kth.packed = np.packbits(bits)


def orthogonalize_vectors(
    vectors: Sequence[Vector],
    logger: logging.Logger = None,
    rng: np.random.Generator = None,
):
    """In-place Gram-Schmidt over ``vectors`` in order.

    Vector k ends orthogonal to vectors 0..k-1, so the last one can serve
    as "vectors[-1] NOT (vectors[0] OR ... OR vectors[-2])". All vectors
    are checked before any is touched.

    Binary vectors cannot be scaled, so vector k is instead moved to
    overlap 0 with each predecessor in turn by flipping randomly chosen
    bits (drawn from ``rng``). Each step is exact for the pair it fixes;
    earlier pairs drift only by the few bits later steps flip.
    """
    if not vectors:
        return
    first = vectors[0]
    for i, v in enumerate(vectors):
        if v.dimension != first.dimension or v.vector_type != first.vector_type:
            (logger or logging.getLogger(__name__)).error(
                f"[Orthogonalize] vector {i} is {v.vector_type}[{v.dimension}], "
                f"expected {first.vector_type}[{first.dimension}]"
            )
            raise DimensionMismatchError(
                "Not all vectors share the required dimension and type"
            )
    if first.vector_type == "binary":
        rng = rng or np.random.default_rng(0)
        for k, kth in enumerate(vectors):
            kth.normalize()
            for jth in vectors[:k]:
                _orthogonalize_binary(kth, jth, rng)
        return
    for k, kth in enumerate(vectors):
        kth.normalize()
        for j in range(k):
            jth = vectors[j]
            kth.superpose(jth, -kth.measure_overlap(jth))
            kth.normalize()


def nearest_vector(vector: Vector, candidates: Sequence[Vector]) -> int:
    if not candidates:
        raise ValueError("No candidates to compare against")
    scores = [vector.measure_overlap(c) for c in candidates]
    return int(np.argmax(scores))


def compare_with_projection(vector: Vector, vectors: Iterable[Vector]) -> float:
    return math.sqrt(sum(vector.measure_overlap(v) ** 2 for v in vectors))


# ── Vocabulary Filter ─────────────────────────────────────────────


class VocabularyFilter:
    def __init__(
        self,
        fields: Iterable[str],
        min_frequency: int = 0,
        max_frequency: int = MAX_INT,
        max_nonalphabet_chars: int = -1,
        stoplist: set[str] = None,
        startlist: set[str] = None,
    ):
        self.fields = set(fields)
        self.min_frequency = min_frequency
        self.max_frequency = max_frequency
        self.max_nonalphabet_chars = max_nonalphabet_chars
        self.stoplist = stoplist or set()
        self.startlist = startlist or set()

    @classmethod
    def from_config(cls, config: Config) -> VocabularyFilter:
        return cls(
            config.fields_to_index,
            config.min_frequency,
            config.max_frequency,
            config.max_nonalphabet_chars,
            read_term_list(config.stoplist_file),
            read_term_list(config.startlist_file),
        )

    def accepts(self, term: str, freq: int) -> bool:
        if not self.min_frequency <= freq <= self.max_frequency:
            return False
        if self.max_nonalphabet_chars >= 0:
            nonalpha = sum(1 for ch in term if not ch.isalpha())
            if nonalpha > self.max_nonalphabet_chars:
                return False
        if term in self.stoplist:
            return False
        if self.startlist and term not in self.startlist:
            return False
        return True

    def scan(self, entries: Iterable[tuple[str, str, int]]) -> Iterator[tuple[str, int]]:
        """(field, term, freq) entries → surviving (term, aggregate freq).

        Frequencies are summed over the configured fields first, so every
        distinct term is judged once.
        """
        totals: dict[str, int] = {}
        for fname, term, freq in entries:
            if fname in self.fields:
                totals[term] = totals.get(term, 0) + int(freq)
        for term, freq in totals.items():
            if self.accepts(term, freq):
                yield term, freq


# ── Term Vector Store ─────────────────────────────────────────────


class TermVectorStore:
    def __init__(self):
        self._vectors: dict[str, Vector] = {}

    def put(self, term: str, vector: Vector):
        self._vectors[term] = vector

    def get(self, term: str) -> Optional[Vector]:
        return self._vectors.get(term)

    def all(self) -> Iterator[tuple[str, Vector]]:
        return iter(list(self._vectors.items()))

    def count(self) -> int:
        return len(self._vectors)

    def normalize_all(self):
        for vec in self._vectors.values():
            vec.normalize()

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, term: str) -> bool:
        return term in self._vectors

    def __iter__(self) -> Iterator[tuple[str, Vector]]:
        return self.all()


# ── Doc-Vector Streams ────────────────────────────────────────────
#
# packed: VInt-prefixed UTF-8 header, then per record a VInt-prefixed
#         document id and the vector's big-endian bytes.
# text:   header line, then one "id|c1|c2|..." line per record.


def _read_exact(f: BinaryIO, n: int, what: str) -> bytes:
    data = f.read(n)
    if len(data) < n:
        raise StreamExhausted(
            f"end of stream in {what}" if not data else f"truncated {what}"
        )
    return data


def _read_vint(f: BinaryIO, what: str) -> int:
    result, shift = 0, 0
    while True:
        b = f.read(1)
        if not b:
            raise StreamExhausted(
                f"end of stream in {what}" if shift == 0 else f"truncated {what}"
            )
        result |= (b[0] & 0x7F) << shift
        if not b[0] & 0x80:
            return result
        shift += 7
        if shift > 35:
            raise ValueError(f"Malformed length prefix in {what}")


def _write_vint(f: BinaryIO, n: int):
    while n > 0x7F:
        f.write(bytes([(n & 0x7F) | 0x80]))
        n >>= 7
    f.write(bytes([n]))


def _write_string(f: BinaryIO, s: str):
    data = s.encode("utf-8")
    _write_vint(f, len(data))
    f.write(data)


class DocVectorReader:
    """Sequential reader for a vector stream.

    Vectors are decoded with the active configuration's dimension and
    type; the header is exposed as text for the caller to inspect.
    """

    def __init__(self, handle, config: Config):
        self._f = handle
        self.config = config
        self._cls = vector_class(config.vector_type)
        self.records_read = 0
        self.header = self._read_header()

    @classmethod
    @contextmanager
    def open(cls, path, config: Config) -> Generator[DocVectorReader, None, None]:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Vector stream not found: {path}")
        if config.docvector_format == "packed":
            f = open(p, "rb")
        else:
            f = open(p, "r", encoding="utf-8", newline="")
        with f:
            yield cls(f, config)

    def _read_header(self) -> str:
        if self.config.docvector_format == "text":
            line = self._f.readline()
            if not line:
                raise ValueError("Vector stream is empty: missing header")
            return line.rstrip("\r\n")
        try:
            n = _read_vint(self._f, "header")
            return _read_exact(self._f, n, "header").decode("utf-8")
        except StreamExhausted as e:
            raise ValueError(f"Vector stream has no readable header: {e}") from e

    def read_record(self) -> tuple[str, Vector]:
        """Next (id, vector). Raises StreamExhausted past the last record."""
        cfg = self.config
        if cfg.docvector_format == "text":
            record = self._read_text_record()
        else:
            n = _read_vint(self._f, f"record {self.records_read}")
            doc_id = _read_exact(self._f, n, f"record {self.records_read}").decode(
                "utf-8"
            )
            data = _read_exact(
                self._f,
                self._cls.byte_size(cfg.dimension),
                f"vector of record {self.records_read}",
            )
            record = doc_id, self._cls.from_bytes(
                data, cfg.dimension, decimal_places=cfg.binary_vector_decimal_places
            )
        self.records_read += 1
        return record

    def _read_text_record(self) -> tuple[str, Vector]:
        cfg = self.config
        while True:
            line = self._f.readline()
            if not line:
                raise StreamExhausted("end of stream")
            line = line.rstrip("\r\n")
            if line.strip():
                break
        # Vector fields hold no separator, so the id keeps any "|" it contains
        doc_id, *parts = line.rsplit("|", self._cls.text_width(cfg.dimension))
        return doc_id, self._cls.from_text(
            parts, cfg.dimension, decimal_places=cfg.binary_vector_decimal_places
        )

    def __iter__(self) -> Iterator[tuple[str, Vector]]:
        while True:
            try:
                yield self.read_record()
            except StreamExhausted:
                return


class DocVectorWriter:
    def __init__(self, handle, config: Config, header: str = None):
        self._f = handle
        self.config = config
        self.records_written = 0
        header = config.to_header() if header is None else header
        if config.docvector_format == "text":
            self._f.write(header + "\n")
        else:
            _write_string(self._f, header)

    @classmethod
    @contextmanager
    def open(
        cls, path, config: Config, header: str = None
    ) -> Generator[DocVectorWriter, None, None]:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        # Written beside the target and renamed on success; a failed write
        # leaves any existing file untouched.
        tmp = p.with_name(p.name + ".tmp")
        if config.docvector_format == "packed":
            f = open(tmp, "wb")
        else:
            f = open(tmp, "w", encoding="utf-8", newline="\n")
        try:
            with f:
                yield cls(f, config, header)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        tmp.replace(p)

    def write_record(self, doc_id: str, vector: Vector):
        cfg = self.config
        if vector.vector_type != cfg.vector_type or vector.dimension != cfg.dimension:
            raise DimensionMismatchError(
                f"Stream holds {cfg.vector_type}[{cfg.dimension}], "
                f"got {vector.vector_type}[{vector.dimension}]"
            )
        if cfg.docvector_format == "text":
            if "\n" in doc_id or "\r" in doc_id:
                raise ValueError(f"Id {doc_id!r} cannot be written to a text stream")
            self._f.write(f"{doc_id}|{vector.to_text()}\n")
        else:
            _write_string(self._f, doc_id)
            self._f.write(vector.to_bytes())
        self.records_written += 1


def write_vectors(
    path, store: TermVectorStore, config: Config, logger: logging.Logger = None
) -> int:
    logger = logger or logging.getLogger(__name__)
    with DocVectorWriter.open(path, config) as w:
        for term, vec in store.all():
            w.write_record(term, vec)
        n = w.records_written
    logger.info(f"Wrote {n:,} vectors to {path}")
    return n


def read_vectors(path, config: Config) -> TermVectorStore:
    store = TermVectorStore()
    with DocVectorReader.open(path, config) as r:
        for key, vec in r:
            store.put(key, vec)
    return store


def generate_docvectors(
    path,
    index: IndexCollaborator,
    config: Config,
    logger: logging.Logger = None,
) -> int:
    """Write one random elemental vector per index document, in ordinal order."""
    logger = logger or logging.getLogger(__name__)
    rng = np.random.default_rng(config.seed)
    n = index.num_docs()
    with DocVectorWriter.open(path, config) as w:
        for doc in range(n):
            w.write_record(
                str(doc),
                elemental_vector(
                    config.vector_type,
                    config.dimension,
                    config.seed_length,
                    rng,
                    config.binary_vector_decimal_places,
                ),
            )
    logger.info(
        f"Wrote {n:,} elemental {config.vector_type} doc vectors "
        f"(dim={config.dimension}, seed_length={config.seed_length}) to {path}"
    )
    return n


# ── Incremental Builder ───────────────────────────────────────────


@dataclass
class BuildStats:
    terms: int = 0
    num_docs: int = 0
    docs_processed: int = 0
    stream_exhausted: bool = False
    lookup_misses: int = 0
    superpositions: int = 0


class IncrementalTermVectors:
    """Builds term vectors one document at a time.

    Each document's vector is read from the doc-vector stream and
    superposed into the vector of every term the document contains,
    weighted by the term's raw frequency in each configured field.
    The stream and the index advance in lockstep by document ordinal.

    A stream shorter than the index is tolerated: the loop stops at the
    last record, keeps what was accumulated and flags
    ``stats.stream_exhausted``.
    """

    def __init__(
        self,
        config: Config,
        index: IndexCollaborator,
        logger: logging.Logger = None,
    ):
        if not isinstance(index, IndexCollaborator):
            raise TypeError(f"{type(index).__name__} does not satisfy IndexCollaborator")
        self.config = config
        self.index = index
        self.logger = logger or logging.getLogger(__name__)
        self.vocab_filter = VocabularyFilter.from_config(config)
        self.stats = BuildStats()
        self.store: Optional[TermVectorStore] = None

    def build(
        self,
        progress_cb: Callable = None,
        should_stop: Callable[[], bool] = None,
    ) -> TermVectorStore:
        cfg = self.config
        self.stats = stats = BuildStats()
        num_docs = stats.num_docs = self.index.num_docs()

        self.logger.info(f"Read vectors incrementally from {cfg.docvector_file}")
        with DocVectorReader.open(cfg.docvector_file, cfg) as reader:
            self._check_header(reader.header)
            store = self._seed_vocabulary()
            self.logger.info(
                f"There are {len(store):,} terms (and {num_docs:,} docs)"
            )

            for dc in range(num_docs):
                if should_stop and should_stop():
                    raise BuildCancelled(f"Build cancelled at document {dc:,}")
                try:
                    _, doc_vector = reader.read_record()
                except StreamExhausted as e:
                    stats.stream_exhausted = True
                    self.logger.warning(
                        f"[Build] Doc vectors fewer than documents: "
                        f"{dc:,}/{num_docs:,} ({e})"
                    )
                    break
                self._accumulate(store, dc, doc_vector)
                stats.docs_processed += 1

                if (dc + 1) % cfg.log_interval == 0 or dc + 1 == num_docs:
                    self.logger.info(
                        f"  [Build] {dc + 1:,}/{num_docs:,} "
                        f"({100 * (dc + 1) / num_docs:.0f}%)"
                    )
                if progress_cb:
                    progress_cb((dc + 1) / num_docs, f"Document {dc + 1}")

        self.logger.info(f"[Build] Normalizing {len(store):,} term vectors")
        store.normalize_all()
        if stats.lookup_misses:
            self.logger.debug(
                f"[Build] {stats.lookup_misses:,} term occurrences outside vocabulary"
            )
        self.logger.info(f"[Build] Done: {asdict(stats)}")
        self.store = store
        return store

    def _check_header(self, header: str):
        cfg = self.config
        try:
            produced = Config.from_header(header)
        except ConfigError as e:
            if cfg.verify_header:
                raise
            self.logger.warning(f"[Header] Unrecognized header {header!r}: {e}")
            return
        self.logger.debug(f"[Header] {header!r}")
        if not cfg.verify_header:
            return
        if (produced.dimension, produced.vector_type) != (
            cfg.dimension,
            cfg.vector_type,
        ):
            raise ConfigError(
                f"Doc vectors are {produced.vector_type}[{produced.dimension}], "
                f"configuration expects {cfg.vector_type}[{cfg.dimension}]"
            )

    def _seed_vocabulary(self) -> TermVectorStore:
        cfg = self.config
        store = TermVectorStore()
        for term, _ in self.vocab_filter.scan(self.index.vocabulary()):
            store.put(
                term,
                create_zero(
                    cfg.vector_type, cfg.dimension, cfg.binary_vector_decimal_places
                ),
            )
        self.stats.terms = len(store)
        return store

    def _accumulate(self, store: TermVectorStore, doc: int, doc_vector: Vector):
        stats = self.stats
        for fname in self.config.fields_to_index:
            freqs = self.index.term_frequencies(doc, fname)
            if not freqs:
                continue
            for term, freq in freqs.items():
                vec = store.get(term)
                if vec is None:
                    stats.lookup_misses += 1
                    continue
                vec.superpose(doc_vector, freq)
                stats.superpositions += 1

    # ── Store access ──

    def get_vector(self, term: str) -> Optional[Vector]:
        return self.store.get(term) if self.store else None

    def all_vectors(self) -> Iterator[tuple[str, Vector]]:
        return self.store.all() if self.store else iter(())

    def num_vectors(self) -> int:
        return len(self.store) if self.store else 0
