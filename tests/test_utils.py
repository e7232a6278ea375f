""" Tests for the utilities module. """

import logging
import threading
from typing import Any, List

import pytest

from goftools import utils

# Setup logger
logger = logging.getLogger(__name__)


def test_derive_seed(logging_mixin: Any) -> None:
    """ Seeds are deterministic and distinct for each index and stream. """
    seeds = [utils.derive_seed(1234, i) for i in range(100)]

    assert seeds == [utils.derive_seed(1234, i) for i in range(100)]
    assert len(set(seeds)) == 100
    assert utils.derive_seed(1234, 0) != utils.derive_seed(1235, 0)
    assert utils.derive_seed(1234, 0) != utils.derive_seed(1234, 0, stream=1)


@pytest.mark.parametrize("base_seed, index", [(-1, 0), (0, -1)], ids = ["Negative seed", "Negative index"])
def test_derive_seed_validation(logging_mixin: Any, base_seed: int, index: int) -> None:
    with pytest.raises(ValueError):
        utils.derive_seed(base_seed, index)


def test_clamp_workers(logging_mixin: Any, mocker: Any) -> None:
    mocker.patch("goftools.utils.os.cpu_count", return_value=4)

    assert utils.clamp_workers(None) == 4
    assert utils.clamp_workers(0) == 1
    assert utils.clamp_workers(2) == 2
    assert utils.clamp_workers(16) == 4


@pytest.mark.parametrize("workers", [1, 4], ids = ["Serial", "Parallel"])
def test_map_in_order(logging_mixin: Any, workers: int) -> None:
    """ Results are returned in the order of the indices, regardless of the number of workers. """
    indices = [5, 3, 8, 1, 0]
    thread_names: List[str] = []

    def func(i: int) -> int:
        thread_names.append(threading.current_thread().name)
        return i * i

    result = utils.map_in_order(func, indices, workers=workers)

    assert result == [25, 9, 64, 1, 0]
    assert len(thread_names) == len(indices)


def test_map_in_order_propagates_errors(logging_mixin: Any) -> None:
    def func(i: int) -> int:
        if i == 2:
            raise RuntimeError("Failed")
        return i

    with pytest.raises(RuntimeError):
        utils.map_in_order(func, list(range(4)), workers=2)


@pytest.mark.parametrize("values, batch_size, expected", [
    ([1, 2, 3, 4, 5], 2, [[1, 2], [3, 4], [5]]),
    ([1, 2, 3, 4], 4, [[1, 2, 3, 4]]),
    ([], 3, []),
], ids = ["Partial final batch", "Single batch", "Empty"])
def test_batched(logging_mixin: Any, values: List[int], batch_size: int, expected: List[List[int]]) -> None:
    assert [list(b) for b in utils.batched(values, batch_size)] == expected


def test_batched_validation(logging_mixin: Any) -> None:
    with pytest.raises(ValueError):
        list(utils.batched([1, 2], 0))
