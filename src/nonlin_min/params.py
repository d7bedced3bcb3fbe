from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .util import as_shape, prod


__all__ = [
    "ParameterBlock",
    "ParameterLayout",
]


@dataclass(frozen=True)
class ParameterBlock:
    name: str
    # () for a scalar parameter
    shape: Tuple[int, ...] = ()

    @property
    def size(self) -> int:
        return prod(self.shape)


@dataclass(frozen=True)
class ParameterLayout:
    """Ordered named blocks mapped onto one flat parameter vector.

    Blocks are concatenated in order; within a block elements follow numpy's
    C order. The flat vector has length ``n``.
    """

    blocks: Tuple[ParameterBlock, ...]

    def __post_init__(self) -> None:
        names = [b.name for b in self.blocks]
        if len(set(names)) != len(names):
            dup = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"duplicate parameter names in 'param_order': {dup}")

    # ---- constructors ----
    @staticmethod
    def from_order(
        order: Sequence[str], dims: Optional[Sequence[Any]] = None
    ) -> "ParameterLayout":
        """Build a layout from parameter names and optional per-name dims."""
        order = _as_names(order)
        if dims is None:
            shapes: List[Tuple[int, ...]] = [()] * len(order)
        else:
            dims = list(dims)
            if len(dims) != len(order):
                raise ValueError("lengths of 'param_order' and 'param_dims' not equal")
            shapes = [as_shape(d) for d in dims]
        return ParameterLayout(
            blocks=tuple(ParameterBlock(n, s) for n, s in zip(order, shapes))
        )

    @staticmethod
    def from_mapping(
        values: Mapping[str, Any],
        order: Optional[Sequence[str]] = None,
        dims: Optional[Sequence[Any]] = None,
    ) -> "ParameterLayout":
        """Build a layout from a mapping of initial values.

        Without ``order`` the mapping's key order is used. Without ``dims``
        each block takes the shape of its initial value.
        """
        names = list(values.keys()) if order is None else _as_names(order)
        missing = [n for n in names if n not in values]
        if missing:
            raise ValueError(f"some initial parameters lacking: {missing}")
        if len(set(names)) != len(names):
            raise ValueError("duplicate parameter names in 'param_order'")
        if dims is None:
            return ParameterLayout(
                blocks=tuple(
                    ParameterBlock(n, tuple(np.shape(values[n]))) for n in names
                )
            )
        layout = ParameterLayout.from_order(names, dims)
        for b in layout.blocks:
            if np.size(values[b.name]) != b.size:
                raise ValueError(
                    "given param_dims and dimensions of initial parameters do not match"
                )
        return layout

    # ---- derived arrays ----
    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(b.name for b in self.blocks)

    @property
    def sizes(self) -> np.ndarray:
        return np.array([b.size for b in self.blocks], dtype=int)

    @property
    def offsets(self) -> np.ndarray:
        """Start index of every block in the flat vector."""
        return np.concatenate(([0], np.cumsum(self.sizes)[:-1])).astype(int)

    @property
    def n(self) -> int:
        return int(np.sum(self.sizes))

    @property
    def all_scalar(self) -> bool:
        return bool(np.all(self.sizes == 1))

    @property
    def block_index(self) -> np.ndarray:
        """Block number of every flat element."""
        return np.repeat(np.arange(len(self.blocks)), self.sizes)

    @property
    def element_names(self) -> Tuple[str, ...]:
        """Owning parameter name of every flat element."""
        return tuple(self.names[i] for i in self.block_index)

    @property
    def element_subindex(self) -> np.ndarray:
        """Position of every flat element within its block."""
        if not self.blocks:
            return np.zeros((0,), dtype=int)
        return np.concatenate([np.arange(s) for s in self.sizes]).astype(int)

    def labels(self) -> List[Tuple[int, str, int]]:
        """(flat index, name, subindex) for every element."""
        return list(
            zip(range(self.n), self.element_names, self.element_subindex.tolist())
        )

    def slice_of(self, name: str) -> slice:
        i = self.names.index(name)
        start = int(self.offsets[i])
        return slice(start, start + self.blocks[i].size)

    # ---- conversions ----
    def flatten(self, values: Mapping[str, Any]) -> np.ndarray:
        """Concatenate a mapping of blocks into the flat vector."""
        parts = []
        for b in self.blocks:
            if b.name not in values:
                raise ValueError(f"some initial parameters lacking: {b.name!r}")
            a = np.asarray(values[b.name])
            if a.size != b.size:
                raise ValueError(
                    f"parameter {b.name!r} has {a.size} elements, expected {b.size}."
                )
            parts.append(a.reshape((b.size,)))
        if not parts:
            return np.zeros((0,), dtype=float)
        return np.concatenate(parts)

    def unflatten(self, vector: Any) -> Dict[str, Any]:
        """Split a flat vector into a name -> block mapping.

        Scalar blocks come back as python floats (complex where the vector is
        complex), others as arrays of the block shape.
        """
        v = np.asarray(vector)
        if v.shape != (self.n,):
            raise ValueError(
                f"flat parameter vector has shape {v.shape}, expected ({self.n},)."
            )
        out: Dict[str, Any] = {}
        for b, start in zip(self.blocks, self.offsets):
            part = v[start : start + b.size]
            if b.shape == ():
                item = part[0]
                out[b.name] = complex(item) if np.iscomplexobj(part) else float(item)
            else:
                out[b.name] = part.reshape(b.shape).copy()
        return out

    def expand(self, per_name: Mapping[str, Any], item: str) -> np.ndarray:
        """Project per-name values onto flat elements.

        Every value must hold exactly as many elements as its block. Names not
        present in ``per_name`` are left as NaN; the caller tracks which
        entries were given.
        """
        out = np.full((self.n,), np.nan, dtype=float)
        for name, value in per_name.items():
            sl = self.slice_of(name)
            a = np.asarray(value, dtype=float)
            n = sl.stop - sl.start
            if a.size != n:
                raise ValueError(
                    f"param_config[{name!r}][{item!r}]: has {a.size} elements, "
                    f"parameter has {n}."
                )
            out[sl] = a.reshape((n,))
        return out

    def columns(self, blocks: Mapping[str, Any], nrows: int, what: str) -> np.ndarray:
        """Concatenate structured per-name column blocks into an (nrows, n) matrix.

        Used for structured gradients (nrows == 1) and Jacobians.
        """
        out = np.empty((nrows, self.n), dtype=_result_dtype(blocks.values()))
        for b, start in zip(self.blocks, self.offsets):
            if b.name not in blocks:
                raise ValueError(f"{what}: no entry for parameter {b.name!r}.")
            a = np.asarray(blocks[b.name])
            if a.size != nrows * b.size:
                raise ValueError(
                    f"{what}: entry for {b.name!r} has {a.size} elements, "
                    f"expected {nrows * b.size}."
                )
            out[:, start : start + b.size] = a.reshape((nrows, b.size))
        return out

    def rows(self, blocks: Mapping[str, Any], ncols: int, what: str) -> np.ndarray:
        """Stack structured per-name row blocks into an (n, ncols) matrix.

        Names missing from ``blocks`` contribute zero rows.
        """
        unknown = [k for k in blocks if k not in self.names]
        if unknown:
            raise ValueError(f"unknown fields in structure of {what}: {unknown}")
        out = np.zeros((self.n, ncols), dtype=float)
        for name, value in blocks.items():
            sl = self.slice_of(name)
            a = np.asarray(value, dtype=float)
            n = sl.stop - sl.start
            if a.size != n * ncols:
                raise ValueError(f"{what}: wrong dimensions for {name!r}")
            out[sl, :] = a.reshape((n, ncols))
        return out


def _as_names(order: Any) -> List[str]:
    if isinstance(order, str):
        return [order]
    names = [str(n) for n in order]
    return names


def _result_dtype(values: Any) -> Any:
    for v in values:
        if np.iscomplexobj(v):
            return complex
    return float
