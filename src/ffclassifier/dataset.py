from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping

import numpy as np

from .errors import DataFormatError, StreamNotFoundError


def _parse_values(tokens: list[str], dim: int, *, where: str, sparse: bool = False) -> np.ndarray:
    out = np.zeros((dim,), dtype=np.float32)
    if not tokens:
        # an all-zero sparse row has no tokens at all
        if sparse:
            return out
        raise DataFormatError(f"{where}: expected {dim} values, got 0")

    # sparse "index:value" form (labels in one-hot files are often written this way)
    if ":" in tokens[0]:
        for tok in tokens:
            idx_s, _, val_s = tok.partition(":")
            try:
                idx = int(idx_s)
                val = float(val_s)
            except ValueError:
                raise DataFormatError(f"{where}: bad sparse token {tok!r}") from None
            if idx < 0 or idx >= dim:
                raise DataFormatError(f"{where}: sparse index {idx} out of range for dim {dim}")
            out[idx] = val
        return out

    if len(tokens) != dim:
        raise DataFormatError(f"{where}: expected {dim} values, got {len(tokens)}")
    try:
        out[:] = [float(t) for t in tokens]
    except ValueError:
        raise DataFormatError(f"{where}: non-numeric value in {tokens!r}") from None
    return out


def read_ctf(
    path: str | Path, streams: Mapping[str, int], *, sparse: Iterable[str] = ()
) -> dict[str, np.ndarray]:
    """Read a text-minibatch (CTF) file into one dense (N, dim) array per stream.

    Line format: ``[seq_id] |name v1 v2 ... |name2 i:v ...``. One sample per line;
    ``|#`` starts a comment. Streams not listed in ``streams`` are ignored.
    Only streams named in ``sparse`` may be written with no values (all zeros).
    """

    path = Path(path)
    sparse = set(sparse)
    cols: dict[str, list[np.ndarray]] = {name: [] for name in streams}
    first = True
    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            fields = line.split("|")
            seen: set[str] = set()
            # fields[0] is the optional sequence id
            for field in fields[1:]:
                parts = field.split()
                if not parts:
                    continue
                name = parts[0]
                if name.startswith("#") or name not in streams:
                    continue
                if name in seen:
                    raise DataFormatError(f"{path}:{lineno}: stream {name!r} repeated on one line")
                seen.add(name)
                cols[name].append(
                    _parse_values(parts[1:], int(streams[name]), where=f"{path}:{lineno}", sparse=name in sparse)
                )

            missing = [n for n in streams if n not in seen]
            if missing:
                # first sample decides which streams the file carries at all
                if first:
                    raise StreamNotFoundError(missing[0], tuple(_names_in_line(fields)))
                raise DataFormatError(f"{path}:{lineno}: missing stream(s) {', '.join(missing)}")
            first = False

    if not any(cols.values()):
        raise DataFormatError(f"Empty dataset: {path}")
    return {name: np.stack(rows).astype(np.float32) for name, rows in cols.items()}


def _names_in_line(fields: list[str]) -> Iterable[str]:
    for field in fields[1:]:
        parts = field.split()
        if parts and not parts[0].startswith("#"):
            yield parts[0]


def _format_row(values: np.ndarray, sparse: bool) -> str:
    if sparse:
        nz = np.flatnonzero(values)
        return " ".join(f"{int(i)}:{values[i]:.9g}" for i in nz)
    return " ".join(f"{v:.9g}" for v in values)


def write_ctf(path: str | Path, columns: Mapping[str, np.ndarray], *, sparse: Iterable[str] = ()) -> int:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    sparse = set(sparse)
    arrays = {name: np.asarray(a, dtype=np.float32) for name, a in columns.items()}
    lengths = {len(a) for a in arrays.values()}
    if len(lengths) != 1:
        raise ValueError(f"All columns must have the same number of rows, got {sorted(lengths)}")
    n = lengths.pop()

    with path.open("w", encoding="utf-8") as f:
        for i in range(n):
            parts = [f"|{name} {_format_row(a[i], name in sparse)}" for name, a in arrays.items()]
            f.write(" ".join(parts))
            f.write("\n")
    return n
