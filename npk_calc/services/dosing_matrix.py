"""
Dense matrix for the dosing solver.

Flat row-major buffer addressed as ``i * n + j``. Only what the solver
needs is here: element access, cloning, column augmentation, row swaps,
transpose and rank.
"""
from typing import List, Optional, Sequence, Tuple

from npk_calc.services.dosing_rules import RANK_EPS


class MatrixShapeError(ValueError):
    """Raised when data does not fit the matrix dimensions."""


class Matrix:
    """m x n matrix of floats."""

    def __init__(self, m: int, n: int, data: Optional[List[float]] = None):
        if data is not None and len(data) != m * n:
            raise MatrixShapeError(f"Buffer of {len(data)} values does not fit {m}x{n}")
        self.m = m
        self.n = n
        self.data = data if data is not None else [0.0] * (m * n)

    @classmethod
    def create(cls, m: int, n: int) -> "Matrix":
        return cls(m, n)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> "Matrix":
        m = len(rows)
        n = len(rows[0]) if m else 0
        data = []
        for row in rows:
            if len(row) != n:
                raise MatrixShapeError("Rows have different lengths")
            data.extend(float(x) for x in row)
        return cls(m, n, data)

    def clone(self) -> "Matrix":
        return Matrix(self.m, self.n, list(self.data))

    @property
    def dim(self) -> Tuple[int, int]:
        return self.m, self.n

    def g(self, i: int, j: int) -> float:
        return self.data[i * self.n + j]

    def s(self, i: int, j: int, x: float) -> None:
        self.data[i * self.n + j] = x

    def row(self, i: int) -> List[float]:
        return self.data[i * self.n:(i + 1) * self.n]

    def rows(self) -> List[List[float]]:
        return [self.row(i) for i in range(self.m)]

    def add_col(self, col: Sequence[float]) -> "Matrix":
        """Append a column in place. The buffer is rebuilt with the new stride."""
        if len(col) != self.m:
            raise MatrixShapeError(f"Column of length {len(col)} does not match {self.m} rows")
        data = []
        for i in range(self.m):
            data.extend(self.row(i))
            data.append(float(col[i]))
        self.data = data
        self.n += 1
        return self

    def swap_rows(self, row_ix1: int, row_ix2: int, cols: Optional[int] = None) -> "Matrix":
        """Swap the first ``cols`` entries (all by default) of two rows."""
        if cols is None:
            cols = self.n
        begin1, begin2 = row_ix1 * self.n, row_ix2 * self.n
        for c in range(cols):
            self.data[begin1 + c], self.data[begin2 + c] = self.data[begin2 + c], self.data[begin1 + c]
        return self

    def transpose(self) -> "Matrix":
        ret = Matrix(self.n, self.m)
        for i in range(self.m):
            for j in range(self.n):
                ret.s(j, i, self.g(i, j))
        return ret

    @property
    def rank(self) -> int:
        """
        Rank by Gauss-Jordan elimination on a working copy.

        A pivot is usable when its magnitude exceeds RANK_EPS. A negligible
        pivot is replaced by swapping in a row below with a usable entry; if
        none exists the column is dropped (the last active column is copied
        over it) and the same row is retried. Wide matrices are ranked
        through their transpose so the row loop never runs past the last row.
        """
        a = self.clone() if self.m >= self.n else self.transpose()
        rows = a.m
        rank = a.n

        row = 0
        while row < rank:
            pivot = a.g(row, row)
            if abs(pivot) > RANK_EPS:
                for r in range(rows):
                    if r == row:
                        continue
                    mult = a.g(r, row) / pivot
                    if mult == 0.0:
                        continue
                    for c in range(rank):
                        a.s(r, c, a.g(r, c) - mult * a.g(row, c))
                row += 1
                continue

            reduce = True
            for r in range(row + 1, rows):
                if abs(a.g(r, row)) > RANK_EPS:
                    a.swap_rows(row, r, rank)
                    reduce = False
                    break

            if reduce:
                rank -= 1
                for r in range(rows):
                    a.s(r, row, a.g(r, rank))
            # retry this row with the swapped row or replacement column

        return rank

    def __eq__(self, other) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.dim == other.dim and self.data == other.data

    def __repr__(self) -> str:
        return f"Matrix({self.m}x{self.n})"

    def __str__(self) -> str:
        lines = []
        for i in range(self.m):
            cells = []
            for j in range(self.n):
                x = f"{self.g(i, j):.6f}"
                if j != self.n - 1:
                    x += ","
                cells.append(x.ljust(12))
            lines.append("|" + "".join(cells) + "|")
        return "\n".join(lines) + "\n"
