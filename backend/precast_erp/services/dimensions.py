"""Geometry helpers for precast stock."""

from __future__ import annotations


def format_dimensions(*, thickness: float, length: float, height: float) -> str:
    return f"Thickness: {thickness:.2f}mm, Length: {length:.2f}mm, Height: {height:.2f}mm"


def compute_weight(*, thickness: float, length: float, height: float, density: float) -> float:
    """Weight in kg: millimetre volume converted to m3 times density (kg/m3)."""
    return (thickness * length * height / 1e9) * density
