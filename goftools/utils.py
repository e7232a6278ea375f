#!/usr/bin/env python3

""" Broad collection of utility functions shared by the toy generation and the study harness.
"""

import concurrent.futures
import logging
import os
from typing import Callable, Dict, Iterator, List, Optional, Sequence, TypeVar

import numpy as np

# Setup logger
logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_R = TypeVar("_R")

###################
# Utility functions
###################
def derive_seed(base_seed: int, index: int, stream: int = 0) -> int:
    """ Derive an independent seed for a single toy or trial.

    The seed only depends on the base seed, the stream and the index, so the toys (and trials) are
    reproducible regardless of the order in which they are executed or how many workers are used.

    Args:
        base_seed: Global seed of the study.
        index: Index of the toy or trial.
        stream: Separates seeds which are used for different purposes with the same base seed. Default: 0.
    Returns:
        Seed which can be passed to ``np.random.default_rng(...)``.
    """
    if base_seed < 0 or index < 0 or stream < 0:
        raise ValueError(f"Seeds must be non-negative. base_seed: {base_seed}, index: {index}, stream: {stream}")
    # SeedSequence hashes the entropy, so neighboring indices give uncorrelated streams.
    return int(np.random.SeedSequence((base_seed, stream, index)).generate_state(1, dtype=np.uint32)[0])

def clamp_workers(max_workers: Optional[int]) -> int:
    """ Determine the number of workers to use.

    Args:
        max_workers: Requested number of workers. None selects based on the number of cores.
    Returns:
        Number of workers, at least 1 and no more than the available cores.
    """
    cpu_count = os.cpu_count() or 1
    if max_workers is None:
        return cpu_count
    return max(1, min(max_workers, cpu_count))

def map_in_order(func: Callable[[int], _R], indices: Sequence[int], workers: int = 1) -> List[_R]:
    """ Evaluate the function for each index, possibly in parallel, returning results in index order.

    Each worker returns its result, which is only collected here, so there is no shared accumulator
    between the workers. The results don't depend on the order in which they complete.

    Args:
        func: Function to evaluate. It must only depend on the index (and immutable shared state).
        indices: Indices for which the function should be evaluated.
        workers: Number of worker threads. 1 evaluates serially.
    Returns:
        Results, in the same order as the indices.
    """
    if workers <= 1 or len(indices) <= 1:
        return [func(i) for i in indices]

    results: Dict[int, _R] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        future_map = {executor.submit(func, i): position for position, i in enumerate(indices)}
        for future in concurrent.futures.as_completed(future_map):
            results[future_map[future]] = future.result()
    return [results[position] for position in range(len(indices))]


def batched(values: Sequence[_T], batch_size: int) -> Iterator[Sequence[_T]]:
    """ Split the values into consecutive batches.

    Args:
        values: Values to split.
        batch_size: Maximum number of values in each batch.
    Returns:
        Iterator over the batches, in order.
    """
    if batch_size <= 0:
        raise ValueError(f"Batch size must be positive. Provided: {batch_size}")
    for start in range(0, len(values), batch_size):
        yield values[start:start + batch_size]
