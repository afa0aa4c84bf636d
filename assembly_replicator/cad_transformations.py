"""
cad_transformations.py

3D CAD Transformation Helpers using NumPy.
Provides functions to create 4x4 homogeneous transformation matrices (identity,
translation, rotation about the vertical axis, axis-aligned reflection) and to
apply them to point data. Also includes the fixed-precision matrix key used to
group copy operations sharing a transform.
"""

import numpy as np
import math
import logging
from typing import Tuple, List, Union, Sequence

logger = logging.getLogger(__name__)

AXES = {'x': 0, 'y': 1, 'z': 2}

# --- Matrix Creation Functions ---

def identity_matrix() -> np.ndarray:
    """Return a 4x4 identity matrix."""
    return np.identity(4, dtype=float)

def translation_matrix(dx: float, dy: float, dz: float = 0.0) -> np.ndarray:
    """Return a 4x4 translation matrix for translating by (dx, dy, dz)."""
    mat = np.identity(4, dtype=float)
    mat[0, 3] = dx
    mat[1, 3] = dy
    mat[2, 3] = dz
    return mat

def rotation_z_matrix_rad(angle_rad: float, cx: float = 0.0, cy: float = 0.0) -> np.ndarray:
    """
    Return a 4x4 matrix rotating by angle_rad about the vertical axis through (cx, cy).
    Positive angles rotate counterclockwise seen from above.
    """
    cos_a = math.cos(angle_rad)
    sin_a = math.sin(angle_rad)
    rot_mat = np.array([
        [cos_a, -sin_a, 0, 0],
        [sin_a,  cos_a, 0, 0],
        [0,      0,     1, 0],
        [0,      0,     0, 1]
    ], dtype=float)
    # If center is not origin, translate to origin, rotate, translate back
    if not (math.isclose(cx, 0.0) and math.isclose(cy, 0.0)):
        return translation_matrix(cx, cy) @ rot_mat @ translation_matrix(-cx, -cy)
    return rot_mat

def rotation_z_matrix_deg(angle_deg: float, cx: float = 0.0, cy: float = 0.0) -> np.ndarray:
    """Return a 4x4 vertical-axis rotation matrix using degrees."""
    return rotation_z_matrix_rad(math.radians(angle_deg), cx, cy)

def reflection_matrix(axis: str, origin: Sequence[float] = (0.0, 0.0, 0.0)) -> np.ndarray:
    """
    Return a 4x4 matrix reflecting through the plane whose normal is the given
    axis ('x', 'y' or 'z') and which passes through origin.
    """
    try:
        index = AXES[axis.lower()]
    except KeyError:
        raise ValueError(f"Unknown reflection axis: {axis!r}")
    mat = np.identity(4, dtype=float)
    mat[index, index] = -1.0
    # Plane through origin[index]: p' = 2 * o - p along the normal axis
    mat[index, 3] = 2.0 * float(origin[index])
    return mat

def combine_transformations(*matrices: np.ndarray) -> np.ndarray:
    """
    Combine multiple 4x4 transformation matrices.
    Matrices are multiplied left to right, so the last one is applied to points first.
    """
    result = identity_matrix()
    for m in matrices:
        result = result @ m
    return result

def is_mirroring(matrix: np.ndarray) -> bool:
    """True when the linear part of the matrix flips handedness."""
    return bool(np.linalg.det(matrix[0:3, 0:3]) < 0)

def basis_and_origin(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Split a 4x4 matrix into its BasisX, BasisY, BasisZ column vectors and origin."""
    return matrix[0:3, 0].copy(), matrix[0:3, 1].copy(), matrix[0:3, 2].copy(), matrix[0:3, 3].copy()

def from_basis_and_origin(basis_x: Sequence[float], basis_y: Sequence[float],
                          basis_z: Sequence[float], origin: Sequence[float]) -> np.ndarray:
    mat = np.identity(4, dtype=float)
    mat[0:3, 0] = basis_x
    mat[0:3, 1] = basis_y
    mat[0:3, 2] = basis_z
    mat[0:3, 3] = origin
    return mat

# --- Point Transformation ---

def apply_transform(points: Sequence[Union[Sequence[float], np.ndarray]], matrix: np.ndarray) -> List[Tuple[float, float, float]]:
    """
    Apply a 4x4 transformation matrix to a sequence of 3D points.
    2D points are lifted to z = 0.
    """
    if len(points) == 0:
        return []
    pts = np.ones((len(points), 4), dtype=float)
    for i, p in enumerate(points):
        pts[i, 0], pts[i, 1] = p[0], p[1]
        pts[i, 2] = p[2] if len(p) > 2 else 0.0
    transformed = (matrix @ pts.T).T
    result = []
    for row in transformed:
        w = row[3]
        if math.isclose(w, 0.0):
            logger.error("Transformation produced a point at infinity (w=0); skipping.")
            continue
        if not math.isclose(w, 1.0):
            logger.warning("Non-affine transformation detected (perspective division != 1).")
        result.append((float(row[0] / w), float(row[1] / w), float(row[2] / w)))
    return result

def get_transformed_point(point: Sequence[float], matrix: np.ndarray) -> Tuple[float, float, float]:
    """
    Apply a 4x4 transformation matrix to a single 3D point.
    """
    res = apply_transform([point], matrix)
    if not res:
        raise ValueError(f"Invalid transformation for point: {point}")
    return res[0]

# --- Matrix Keys ---

def _fixed(value: float, decimals: int) -> str:
    # Adding 0.0 folds -0.0 into 0.0 so mirrored zeros share a key
    return f"{round(float(value), decimals) + 0.0:.{decimals}f}"

def matrix_key(matrix: np.ndarray, output_decimals: int = 6) -> str:
    """
    Stringify the basis vectors and origin of a 4x4 matrix at fixed precision.
    Matrices that agree to output_decimals produce the same key.
    """
    bx, by, bz, origin = basis_and_origin(matrix)
    parts = []
    for label, vec in (("X", bx), ("Y", by), ("Z", bz), ("O", origin)):
        parts.append(label + "(" + ",".join(_fixed(v, output_decimals) for v in vec) + ")")
    return "|".join(parts)
