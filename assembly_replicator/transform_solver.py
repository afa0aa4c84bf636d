"""
transform_solver.py

Infers the rigid transform between a reference instance and a target instance of the
same definition from matched correspondence items.

Only rotation about the vertical axis and a single-axis mirror are modelled. Rotation
comes from the first usable pair's direction vectors. A mirror is reported when
relative midpoint positions show one horizontal axis negated, or when the matched
direction vectors are nearly anti-parallel (a mirror would otherwise read as a
half-turn). The anchor difference is the translation.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .cad_common import Point3
from .config import ReplicationConfig
from .correspondence import CorrespondenceItem, ReferenceSet

logger = logging.getLogger(__name__)

Pair = Tuple[CorrespondenceItem, CorrespondenceItem]


@dataclass(frozen=True)
class TransformResult:
    translation: Point3
    rotation: float                     # degrees about +Z, counterclockwise positive
    is_mirrored: bool
    matching_elements: int
    scale: float = 1.0
    mirror_axis: Optional[str] = None   # 'x' or 'y' when the evidence names an axis
    low_confidence: bool = False

    def describe(self) -> str:
        tx, ty, tz = self.translation
        text = (f"T=({tx:.3f}, {ty:.3f}, {tz:.3f}) R={self.rotation:.3f}deg "
                f"mirror={self.is_mirrored} matches={self.matching_elements}")
        if self.low_confidence:
            text += " (low confidence)"
        return text


# --- Vector helpers ---

def _direction(item: CorrespondenceItem) -> np.ndarray:
    return np.subtract(item.point2, item.point1).astype(float)

def _unit(vec: np.ndarray, eps: float) -> Optional[np.ndarray]:
    norm = float(np.linalg.norm(vec))
    if norm <= eps:
        return None
    return vec / norm

def _signed_angle_deg(a: np.ndarray, b: np.ndarray) -> float:
    """Angle from unit vector a to unit vector b, negative when b lies clockwise of a."""
    dot = float(np.clip(np.dot(a, b), -1.0, 1.0))
    angle = math.degrees(math.acos(dot))
    cross_z = a[0] * b[1] - a[1] * b[0]
    return -angle if cross_z < 0 else angle


# --- Pair selection ---

def _matched_pairs(reference: ReferenceSet, matches: Sequence[CorrespondenceItem]) -> List[Pair]:
    by_signature = {item.signature: item for item in matches}
    return [(ref, by_signature[ref.signature]) for ref in reference.items if ref.signature in by_signature]

def _select_pairs(pairs: List[Pair], eps: float) -> Tuple[Pair, Pair]:
    """
    First pair: the first whose reference and target directions are both usable.
    Second pair: the remaining pair best separated from the first (widest angle for
    directional pairs, farthest midpoint otherwise); list order breaks ties.
    """
    first = next((p for p in pairs if _unit(_direction(p[0]), eps) is not None
                  and _unit(_direction(p[1]), eps) is not None), pairs[0])
    rest = [p for p in pairs if p is not first]
    first_dir = _unit(_direction(first[0]), eps)

    def separation(pair: Pair) -> float:
        if first_dir is None:
            return float(np.linalg.norm(np.subtract(pair[0].midpoint, first[0].midpoint)))
        candidate = _unit(_direction(pair[0]), eps)
        if candidate is None:
            return 0.0
        return 1.0 - abs(float(np.dot(first_dir, candidate)))

    second = max(rest, key=separation)
    return first, second

def _axis_mirrored(relative: Sequence[Tuple[np.ndarray, np.ndarray]], axis: int, tol: float) -> bool:
    """
    True when every relative position with a non-trivial component along axis shows
    that component negated and the other two preserved, and at least one does.
    Positions on the mirror plane carry no evidence either way.
    """
    evidence = False
    others = [i for i in range(3) if i != axis]
    for ref_pos, tgt_pos in relative:
        if abs(ref_pos[axis]) <= tol:
            continue
        if abs(ref_pos[axis] + tgt_pos[axis]) < tol and all(abs(ref_pos[i] - tgt_pos[i]) < tol for i in others):
            evidence = True
        else:
            return False
    return evidence


# --- Solver ---

def solve_transform(reference: ReferenceSet, matches: Sequence[CorrespondenceItem],
                    target_anchor: Point3, config: Optional[ReplicationConfig] = None) -> Optional[TransformResult]:
    """
    Returns None when no usable pair exists (no matches, or a single match with a
    degenerate direction). A single pair yields rotation only, never a mirror.
    """
    config = config or ReplicationConfig()
    eps = config.direction_epsilon
    pairs = _matched_pairs(reference, matches)
    ref_anchor = np.asarray(reference.anchor, dtype=float)
    tgt_anchor = np.asarray(target_anchor, dtype=float)
    translation = tuple(float(v) for v in tgt_anchor - ref_anchor)

    if not pairs:
        logger.debug("No matched correspondences; transform is undetermined.")
        return None

    if len(pairs) == 1:
        ref, tgt = pairs[0]
        ref_vec, tgt_vec = _unit(_direction(ref), eps), _unit(_direction(tgt), eps)
        if ref_vec is None or tgt_vec is None:
            logger.debug("Single matched pair has no direction; transform is undetermined.")
            return None
        rotation = _signed_angle_deg(ref_vec, tgt_vec)
        logger.warning(f"Transform solved from a single matched pair (rotation {rotation:.3f} deg); mirror cannot be detected.")
        return TransformResult(translation, rotation, False, 1, low_confidence=True)

    (ref1, tgt1), (ref2, tgt2) = _select_pairs(pairs, eps)

    ref_vec, tgt_vec = _unit(_direction(ref1), eps), _unit(_direction(tgt1), eps)
    if ref_vec is None or tgt_vec is None:
        # Point-only correspondences: orient by the vector between the two matched members
        ref_vec = _unit(np.subtract(ref2.midpoint, ref1.midpoint), eps)
        tgt_vec = _unit(np.subtract(tgt2.midpoint, tgt1.midpoint), eps)
        if ref_vec is None or tgt_vec is None:
            logger.debug("Matched members are coincident; transform is undetermined.")
            return None

    reversed_vectors = float(np.dot(ref_vec, tgt_vec)) < config.antiparallel_dot
    if reversed_vectors:
        tgt_vec = -tgt_vec

    rotation = _signed_angle_deg(ref_vec, tgt_vec)

    relative = [
        (np.subtract(ref1.midpoint, ref_anchor), np.subtract(tgt1.midpoint, tgt_anchor)),
        (np.subtract(ref2.midpoint, ref_anchor), np.subtract(tgt2.midpoint, tgt_anchor)),
    ]
    x_mirrored = _axis_mirrored(relative, 0, config.mirror_tolerance)
    y_mirrored = _axis_mirrored(relative, 1, config.mirror_tolerance)
    is_mirrored = x_mirrored or y_mirrored or reversed_vectors

    mirror_axis = None
    if x_mirrored:
        mirror_axis = 'x'
    elif y_mirrored:
        mirror_axis = 'y'
    elif reversed_vectors:
        # A reflection reverses the component of the direction normal to its plane
        mirror_axis = 'x' if abs(ref_vec[0]) >= abs(ref_vec[1]) else 'y'

    if reversed_vectors:
        logger.debug("Matched directions are anti-parallel; treating the target as mirrored.")

    return TransformResult(
        translation=translation,
        rotation=rotation,
        is_mirrored=is_mirrored,
        matching_elements=len(pairs),
        mirror_axis=mirror_axis,
    )
