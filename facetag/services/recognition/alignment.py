"""
Five-point face alignment.

A similarity transform (uniform scale, rotation, translation) maps the
detected landmarks onto a canonical 112x112 template:

    x' = a*x - b*y + tx
    y' = b*x + a*y + ty
"""
from typing import NamedTuple

import numpy as np

from facetag.core.exceptions import TransformError

ALIGNED_SIZE = 112

# Left eye, right eye, nose tip, left mouth corner, right mouth corner.
CANONICAL_LANDMARKS = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float64,
)

PIVOT_EPSILON = 1e-12


class SimilarityTransform(NamedTuple):
    a: float
    b: float
    tx: float
    ty: float

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 2) points through the transform."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        x, y = points[:, 0], points[:, 1]
        return np.stack([self.a * x - self.b * y + self.tx, self.b * x + self.a * y + self.ty], axis=1)


def _solve(matrix: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """Gauss-Jordan elimination with partial pivoting.

    Raises:
        TransformError: If a pivot falls below PIVOT_EPSILON
    """
    n = matrix.shape[0]
    aug = np.hstack([matrix.astype(np.float64), rhs.reshape(-1, 1).astype(np.float64)])
    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(aug[col:, col])))
        if abs(aug[pivot_row, col]) < PIVOT_EPSILON:
            raise TransformError(
                "Landmarks are degenerate; similarity transform is singular",
                details={"column": col},
            )
        if pivot_row != col:
            aug[[col, pivot_row]] = aug[[pivot_row, col]]
        aug[col] /= aug[col, col]
        for row in range(n):
            if row != col:
                aug[row] -= aug[row, col] * aug[col]
    return aug[:, n]


def solve_similarity_transform(
    source: np.ndarray,
    target: np.ndarray = CANONICAL_LANDMARKS,
) -> SimilarityTransform:
    """Least-squares similarity transform taking ``source`` points onto ``target``.

    Args:
        source: (5, 2) detected landmarks
        target: (5, 2) template landmarks

    Returns:
        SimilarityTransform with parameters a, b, tx, ty

    Raises:
        TransformError: If the points are non-finite or degenerate
    """
    src = np.asarray(source, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(target, dtype=np.float64).reshape(-1, 2)
    if src.shape != dst.shape or len(src) < 2:
        raise TransformError(
            "Landmark sets must have the same number of points",
            details={"source": src.shape, "target": dst.shape},
        )
    if not (np.isfinite(src).all() and np.isfinite(dst).all()):
        raise TransformError("Landmarks contain non-finite values")

    ones = np.ones(len(src))
    zeros = np.zeros(len(src))
    # Rows [x, -y, 1, 0] produce x'; rows [y, x, 0, 1] produce y'.
    design = np.vstack([
        np.stack([src[:, 0], -src[:, 1], ones, zeros], axis=1),
        np.stack([src[:, 1], src[:, 0], zeros, ones], axis=1),
    ])
    observed = np.concatenate([dst[:, 0], dst[:, 1]])

    a, b, tx, ty = _solve(design.T @ design, design.T @ observed)
    return SimilarityTransform(a=float(a), b=float(b), tx=float(tx), ty=float(ty))


def warp_similarity(
    image: np.ndarray,
    transform: SimilarityTransform,
    size: int = ALIGNED_SIZE,
) -> np.ndarray:
    """Warp an image into the canonical frame with bilinear sampling.

    Each output pixel is pulled from the source through the inverse
    transform. Samples whose 2x2 neighbourhood leaves the image are black.

    Args:
        image: (H, W, C) uint8 source image
        transform: Source-to-canonical transform
        size: Output side length

    Returns:
        (size, size, C) uint8 aligned crop

    Raises:
        TransformError: If the transform has no inverse
    """
    denom = transform.a ** 2 + transform.b ** 2
    if denom < PIVOT_EPSILON:
        raise TransformError("Similarity transform is not invertible", details={"a": transform.a, "b": transform.b})

    src = np.asarray(image)
    if src.ndim == 2:
        src = src[:, :, None]
    height, width, channels = src.shape

    inv00 = transform.a / denom
    inv01 = transform.b / denom
    inv10 = -transform.b / denom
    inv11 = transform.a / denom

    ys, xs = np.mgrid[0:size, 0:size].astype(np.float64)
    dx = xs - transform.tx
    dy = ys - transform.ty
    sx = inv00 * dx + inv01 * dy
    sy = inv10 * dx + inv11 * dy

    x0 = np.floor(sx).astype(np.int64)
    y0 = np.floor(sy).astype(np.int64)
    x1 = x0 + 1
    y1 = y0 + 1
    inside = (x0 >= 0) & (y0 >= 0) & (x1 < width) & (y1 < height)

    cx0 = np.clip(x0, 0, width - 1)
    cy0 = np.clip(y0, 0, height - 1)
    cx1 = np.clip(x1, 0, width - 1)
    cy1 = np.clip(y1, 0, height - 1)
    fx = (sx - x0)[:, :, None]
    fy = (sy - y0)[:, :, None]

    pixels = src.astype(np.float64)
    top = pixels[cy0, cx0] * (1.0 - fx) + pixels[cy0, cx1] * fx
    bottom = pixels[cy1, cx0] * (1.0 - fx) + pixels[cy1, cx1] * fx
    sampled = top * (1.0 - fy) + bottom * fy

    out = np.where(inside[:, :, None], sampled, 0.0)
    if channels == 4:
        out[:, :, 3] = 255.0
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)


def align_face(image: np.ndarray, landmarks: np.ndarray, size: int = ALIGNED_SIZE) -> np.ndarray:
    """Solve and apply the canonical alignment for one face."""
    template = CANONICAL_LANDMARKS * (size / float(ALIGNED_SIZE))
    transform = solve_similarity_transform(landmarks, template)
    return warp_similarity(image, transform, size)
