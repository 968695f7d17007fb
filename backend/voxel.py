"""
Org Survey Backend - Voxel Analysis
===================================

Summary statistics for one survey result vector.

A result vector is split into three equal groups of questions, one per
dimension: knowledge (x), familiarity (y) and cognitive load (z). For each
dimension we report the mean, the mode of the rounded answers and the mean
clamped to the 1-8 answer scale. The graphs are Gaussian density curves
(standard deviation 1) centred on each dimension mean.
"""

import math

import numpy as np
from scipy import stats

from errors import ValidationError

DIMENSIONS = ('knowledge', 'familiarity', 'cognitive_load')
AXES = ('x', 'y', 'z')

SCALE_MIN = 1
SCALE_MAX = 8
DENSITY_SD = 1.0
DENSITY_POINTS = np.round(np.linspace(1.0, 8.0, 71), 1)


def round_half_up(value):
    """Round to the nearest integer, .5 going up (not banker's rounding)"""
    return int(math.floor(value + 0.5))


def split_dimensions(results):
    """Split a result vector into its three equal question groups"""
    values = [float(v) for v in results]
    if not values or len(values) % len(DIMENSIONS) != 0:
        raise ValidationError(
            f'Survey results must contain a multiple of {len(DIMENSIONS)} answers, got {len(values)}'
        )
    size = len(values) // len(DIMENSIONS)
    return [values[i * size:(i + 1) * size] for i in range(len(DIMENSIONS))]


def mode_of(values):
    """Most frequent value after rounding; ties go to the smallest value"""
    counts = {}
    for v in values:
        rounded = round_half_up(v)
        counts[rounded] = counts.get(rounded, 0) + 1
    best = None
    for value in sorted(counts):
        if best is None or counts[value] > counts[best]:
            best = value
    return best


def clamped_mean(mean):
    return round_half_up(min(max(mean, SCALE_MIN), SCALE_MAX))


def density_curve(mean):
    """Gaussian pdf sampled on 1.0..8.0 in steps of 0.1"""
    pdf = stats.norm.pdf(DENSITY_POINTS, loc=mean, scale=DENSITY_SD)
    return [round(float(p), 4) for p in pdf]


def analyze_results(results):
    """
    Build (analysis_voxel, analysis_graphs) for a result vector.

    analysis_voxel = {'x': int, 'y': int, 'z': int,
                      'stats': {dimension: {'mean': float, 'mode': int}}}
    analysis_graphs = {'x_values': [...], dimension: [...71 densities]}
    """
    groups = split_dimensions(results)

    voxel = {'stats': {}}
    graphs = {'x_values': [float(x) for x in DENSITY_POINTS]}
    for axis, dimension, group in zip(AXES, DIMENSIONS, groups):
        mean = float(np.mean(group))
        voxel['stats'][dimension] = {
            'mean': mean,
            'mode': mode_of(group),
        }
        voxel[axis] = clamped_mean(mean)
        graphs[dimension] = density_curve(mean)
    return voxel, graphs


def average_results(vectors):
    """
    Element-wise mean of equally long result vectors.
    Returns (raw_average, ceiled_average).
    """
    if not vectors:
        raise ValidationError('No survey results to average')
    lengths = {len(v) for v in vectors}
    if len(lengths) != 1:
        raise ValidationError(f'Survey results have different lengths: {sorted(lengths)}')

    matrix = np.array(vectors, dtype=float)
    raw = matrix.mean(axis=0)
    return [float(v) for v in raw], [int(v) for v in np.ceil(raw)]
