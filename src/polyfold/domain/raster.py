"""Raster source interface, in-memory implementation and tile traversal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, NamedTuple, Optional, Protocol, Sequence, Tuple

import numpy as np

from polyfold.constants import DEFAULT_BLOCK_SIZE, MEMORY_LIMIT_MB, MIN_BLOCK_SIZE
from polyfold.domain.exceptions import ConfigurationError, ValidationError


class Tile(NamedTuple):
    """Window of a grid, in cell coordinates."""

    row: int
    col: int
    rows: int
    cols: int

    @property
    def size(self) -> int:
        return self.rows * self.cols


class RasterSource(Protocol):
    """Read-only grid of per-cell predictor vectors.

    ``read_block`` returns a ``(rows, cols, band_count)`` float array and a
    ``(rows, cols)`` boolean array that is True where the cell holds usable
    values.
    """

    @property
    def shape(self) -> Tuple[int, int]: ...

    @property
    def band_count(self) -> int: ...

    @property
    def band_names(self) -> Optional[Sequence[str]]: ...

    @property
    def block_shape(self) -> Tuple[int, int]: ...

    def read_block(self, row: int, col: int, rows: int, cols: int) -> Tuple[np.ndarray, np.ndarray]: ...


def iter_tiles(shape: Tuple[int, int], tile_shape: Tuple[int, int]) -> Iterator[Tile]:
    """Yield tiles covering ``shape`` row by row, without overlap.

    Edge tiles are clipped to the grid, the same way block reads are clipped
    at the right and bottom borders of a raster.
    """
    n_rows, n_cols = int(shape[0]), int(shape[1])
    tile_rows, tile_cols = int(tile_shape[0]), int(tile_shape[1])
    if tile_rows < 1 or tile_cols < 1:
        raise ConfigurationError(f"Tile shape must be positive, got {tile_shape}", config_key="tile_shape")
    for i in range(0, n_rows, tile_rows):
        lines = tile_rows if i + tile_rows < n_rows else n_rows - i
        for j in range(0, n_cols, tile_cols):
            cols = tile_cols if j + tile_cols < n_cols else n_cols - j
            yield Tile(i, j, lines, cols)


def count_tiles(shape: Tuple[int, int], tile_shape: Tuple[int, int]) -> int:
    n_rows, n_cols = shape
    return -(-n_rows // tile_shape[0]) * -(-n_cols // tile_shape[1])


def optimal_tile_shape(
    block_shape: Tuple[int, int],
    band_count: int,
    memory_limit_mb: int = MEMORY_LIMIT_MB,
) -> Tuple[int, int]:
    """Shrink a natural block shape so one tile of float64 values fits in memory."""
    rows, cols = int(block_shape[0]), int(block_shape[1])
    pixel_size_bytes = 8 * max(1, band_count)
    max_pixels_per_block = (memory_limit_mb * 1024 * 1024) // pixel_size_bytes
    current_block_pixels = rows * cols
    if current_block_pixels > max_pixels_per_block:
        scale_factor = (max_pixels_per_block / current_block_pixels) ** 0.5
        rows = max(MIN_BLOCK_SIZE, int(rows * scale_factor))
        cols = max(MIN_BLOCK_SIZE, int(cols * scale_factor))
    return rows, cols


@dataclass
class ArrayRasterSource:
    """Raster source backed by a numpy array of shape ``(rows, cols, bands)``.

    Parameters
    ----------
    data : np.ndarray
        Predictor values. A 2D array is treated as a single band.
    band_names : sequence of str, optional
        Names of the predictor channels, one per band.
    nodata : float, optional
        Value flagging a missing measurement. A cell is missing when any of
        its bands equals ``nodata`` or is NaN.
    valid_mask : np.ndarray, optional
        Extra ``(rows, cols)`` boolean mask; False cells are missing.
    block_size : tuple of int, optional
        Natural block shape reported to tiled readers.

    """

    data: np.ndarray
    band_names: Optional[Sequence[str]] = None
    nodata: Optional[float] = None
    valid_mask: Optional[np.ndarray] = None
    block_size: Optional[Tuple[int, int]] = None

    def __post_init__(self) -> None:
        data = np.asarray(self.data)
        if data.ndim == 2:
            data = data[:, :, np.newaxis]
        if data.ndim != 3:
            raise ValidationError("raster shape", f"expected a 2D or 3D array, got {data.ndim} dimensions")
        self.data = data
        if self.band_names is not None:
            self.band_names = tuple(str(name) for name in self.band_names)
            if len(self.band_names) != data.shape[2]:
                raise ValidationError(
                    "raster bands",
                    f"{len(self.band_names)} band names given for {data.shape[2]} bands",
                )
        if self.valid_mask is not None:
            mask = np.asarray(self.valid_mask, dtype=bool)
            if mask.shape != data.shape[:2]:
                raise ValidationError("raster mask", f"mask shape {mask.shape} differs from grid {data.shape[:2]}")
            self.valid_mask = mask

    @property
    def shape(self) -> Tuple[int, int]:
        return int(self.data.shape[0]), int(self.data.shape[1])

    @property
    def band_count(self) -> int:
        return int(self.data.shape[2])

    @property
    def block_shape(self) -> Tuple[int, int]:
        if self.block_size is not None:
            return self.block_size
        return min(DEFAULT_BLOCK_SIZE, self.shape[0]) or 1, min(DEFAULT_BLOCK_SIZE, self.shape[1]) or 1

    def read_block(self, row: int, col: int, rows: int, cols: int) -> Tuple[np.ndarray, np.ndarray]:
        values = np.asarray(self.data[row : row + rows, col : col + cols, :], dtype=np.float64)
        mask = None
        if self.valid_mask is not None:
            mask = self.valid_mask[row : row + rows, col : col + cols]
        return values, cell_validity(values, self.nodata, mask)


def cell_validity(values: np.ndarray, nodata: Optional[float], mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Return True for cells whose every band holds a usable value."""
    valid = ~np.isnan(values).any(axis=2)
    if nodata is not None:
        valid &= ~(values == nodata).any(axis=2)
    if mask is not None:
        valid &= mask
    return valid
