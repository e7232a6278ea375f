#!/usr/bin/env python3

""" YAML support for the study configuration and the stored sampling distributions.

Everything goes through a round-trip ``ruamel.yaml`` object which knows about numpy arrays (tag
``!numpy_array``) and about any classes which define ``to_yaml`` and ``from_yaml``.

Note:
    Enums are stored by name. An enum opts in with:

    .. code-block:: python

        >>> class Kind(enum.Enum):
        ...   a = 1
        ...
        ...   def __str__(self):
        ...     return self.name
        ...
        ...   to_yaml = classmethod(yaml.enum_to_yaml)
        ...   from_yaml = classmethod(yaml.enum_from_yaml)
"""

import base64
import enum
import logging
from io import BytesIO
from pathlib import Path
from typing import Any, Iterable, Optional, Type, TypeVar, Union, cast

import numpy as np
import ruamel.yaml

logger = logging.getLogger(__name__)

DictLike = ruamel.yaml.comments.CommentedMap
_T_Enum = TypeVar("_T_Enum", bound=enum.Enum)

_NUMPY_ARRAY_TAG = "!numpy_array"


def yaml(classes_to_register: Optional[Iterable[Any]] = None) -> ruamel.yaml.YAML:
    """ Create the YAML object used throughout the package.

    Args:
        classes_to_register: Additional classes to register. Default: None.
    Returns:
        Round-trip YAML object which handles numpy arrays and the registered classes.
    """
    y = ruamel.yaml.YAML(typ="rt")
    y.representer.add_representer(np.ndarray, numpy_array_to_yaml)
    y.constructor.add_constructor(_NUMPY_ARRAY_TAG, numpy_array_from_yaml)
    register_classes(y, classes_to_register)
    return y


def register_classes(y: ruamel.yaml.YAML, classes: Optional[Iterable[Any]] = None) -> ruamel.yaml.YAML:
    """ Register classes with the YAML object, in the given order. """
    for cls in classes if classes is not None else []:
        logger.debug(f"Registering {cls.__name__} with YAML")
        y.register_class(cls)
    return y


def dump(obj: Any, filename: Union[Path, str], classes_to_register: Optional[Iterable[Any]] = None) -> None:
    """ Write an object to a YAML file. """
    with open(filename, "w") as f:
        yaml(classes_to_register=classes_to_register).dump(obj, f)


def load(filename: Union[Path, str], classes_to_register: Optional[Iterable[Any]] = None) -> Any:
    """ Read an object (for example, a configuration) from a YAML file. """
    with open(filename, "r") as f:
        return yaml(classes_to_register=classes_to_register).load(f)


def numpy_array_to_yaml(representer: ruamel.yaml.representer.BaseRepresenter, data: np.ndarray) -> Any:
    """ Represent an array as its ``.npy`` bytes, base64 encoded, which keeps the dtype and NaNs exactly. """
    buffer = BytesIO()
    np.save(buffer, data, allow_pickle=False)
    encoded = base64.encodebytes(buffer.getvalue()).decode("utf-8")
    return representer.represent_scalar(_NUMPY_ARRAY_TAG, encoded)


def numpy_array_from_yaml(constructor: ruamel.yaml.constructor.BaseConstructor,
                          node: ruamel.yaml.nodes.Node) -> np.ndarray:
    """ Construct an array from either the encoded form or a hand written list.

    A list such as ``!numpy_array [1, 2, 3]`` is convenient in a configuration, while the arrays
    written by ``numpy_array_to_yaml`` are encoded.
    """
    if isinstance(node.value, list):
        return np.array([constructor.construct_object(n) for n in node.value])
    raw = base64.decodebytes(node.value.encode("utf-8"))
    return cast(np.ndarray, np.load(BytesIO(raw), allow_pickle=False))


def enum_to_yaml(cls: Type[_T_Enum], representer: ruamel.yaml.representer.BaseRepresenter,
                 data: _T_Enum) -> ruamel.yaml.nodes.ScalarNode:
    """ Represent an enum value by its name, tagged with the enum class name. """
    return cast(ruamel.yaml.nodes.ScalarNode, representer.represent_scalar(f"!{cls.__name__}", str(data)))


def enum_from_yaml(cls: Type[_T_Enum], constructor: ruamel.yaml.constructor.BaseConstructor,
                   node: ruamel.yaml.nodes.ScalarNode) -> _T_Enum:
    """ Look up the enum value from its stored name. """
    return cls[node.value]
