from __future__ import annotations
import numpy as np
import logging

def get_logger(name: str = "weldpath") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger

def ensure_unit_vectors(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    norms = np.linalg.norm(v, axis=1, keepdims=True)
    norms = np.clip(norms, eps, None)
    return v / norms

def normalize(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """Unit vector along ``v``; zero-length input comes back as zeros."""
    v = np.asarray(v, dtype=np.float64)
    n = float(np.linalg.norm(v))
    if n < eps:
        return np.zeros_like(v)
    return v / n

def slerp_directions(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    """Interpolate two directions along the shorter great-circle arc."""
    ua = normalize(a)
    ub = normalize(b)
    if not ua.any() or not ub.any():
        return normalize(ua + (ub - ua) * t)
    dot = float(np.clip(np.dot(ua, ub), -1.0, 1.0))
    if dot > 1.0 - 1e-9:
        return normalize(ua + (ub - ua) * t)
    if dot < -1.0 + 1e-9:
        # antiparallel: rotate about any axis perpendicular to ua
        axis = np.cross(ua, [1.0, 0.0, 0.0])
        if np.linalg.norm(axis) < 1e-6:
            axis = np.cross(ua, [0.0, 1.0, 0.0])
        axis = normalize(axis)
        angle = np.pi * t
        return normalize(ua * np.cos(angle) + np.cross(axis, ua) * np.sin(angle))
    omega = np.arccos(dot)
    so = np.sin(omega)
    out = (np.sin((1.0 - t) * omega) / so) * ua + (np.sin(t * omega) / so) * ub
    return normalize(out)
