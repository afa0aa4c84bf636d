"""
transform_compositor.py

Turns a solved TransformResult plus the two anchors into a 4x4 placement matrix.

Three branches, tried in order:
    mirror         mirrored with no rotation: reflect through the anchor midpoint
    half_turn      mirrored with a rotation of about 180 degrees: negate BasisX only
    general        translate(-ref) -> rotate about Z -> reflect X if mirrored -> translate(target)

Every branch maps the reference anchor exactly onto the target anchor.
"""

import logging
from typing import Optional

import numpy as np

from .cad_common import Point3
from .cad_transformations import (
    AXES, translation_matrix, rotation_z_matrix_deg, reflection_matrix,
    combine_transformations, get_transformed_point, from_basis_and_origin
)
from .config import ReplicationConfig
from .transform_solver import TransformResult

logger = logging.getLogger(__name__)

MIRROR = "mirror"
HALF_TURN = "half_turn"
GENERAL = "general"

# Anchor differences at or below this size do not pick a reflection axis
_AXIS_EPSILON = 1e-9


def composition_method(result: TransformResult, config: Optional[ReplicationConfig] = None) -> str:
    config = config or ReplicationConfig()
    if result.is_mirrored and abs(result.rotation) < config.rotation_zero_deg:
        return MIRROR
    if result.is_mirrored and abs(abs(result.rotation) - 180.0) < config.half_turn_tolerance_deg:
        return HALF_TURN
    return GENERAL


def _reflection_axis(result: TransformResult, ref: np.ndarray, tgt: np.ndarray) -> str:
    """The axis with the largest anchor difference; the detected mirror axis when anchors coincide."""
    diff = np.abs(tgt - ref)
    if float(diff.max()) > _AXIS_EPSILON:
        index = int(np.argmax(diff))
        return next(name for name, i in AXES.items() if i == index)
    return result.mirror_axis or 'x'


def compose_transform(result: TransformResult, ref_anchor: Point3, target_anchor: Point3,
                      config: Optional[ReplicationConfig] = None) -> np.ndarray:
    config = config or ReplicationConfig()
    ref = np.asarray(ref_anchor, dtype=float)
    tgt = np.asarray(target_anchor, dtype=float)
    method = composition_method(result, config)

    if method == MIRROR:
        axis = _reflection_axis(result, ref, tgt)
        reflection = reflection_matrix(axis, (ref + tgt) / 2.0)
        # Offsets along the unreflected axes still have to be carried over
        residual = tgt - np.asarray(get_transformed_point(ref, reflection))
        matrix = translation_matrix(*residual) @ reflection
    elif method == HALF_TURN:
        basis_x = np.array([-1.0, 0.0, 0.0])
        linear = np.diag([-1.0, 1.0, 1.0])
        matrix = from_basis_and_origin(basis_x, [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], tgt - linear @ ref)
    else:
        flip = reflection_matrix('x') if result.is_mirrored else np.identity(4)
        matrix = combine_transformations(
            translation_matrix(*tgt),
            flip,
            rotation_z_matrix_deg(result.rotation),
            translation_matrix(*(-ref)),
        )

    landed = np.asarray(get_transformed_point(ref, matrix))
    if not np.allclose(landed, tgt, atol=1e-6):
        logger.warning(f"Composed transform maps the reference anchor to {tuple(landed)} instead of {tuple(tgt)}")
    logger.debug(f"Composed {method} transform for {result.describe()}")
    return matrix
