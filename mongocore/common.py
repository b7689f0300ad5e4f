# Copyright 2011-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License"); you
# may not use this file except in compliance with the License.  You
# may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or
# implied.  See the License for the specific language governing
# permissions and limitations under the License.


"""Functions and classes common to multiple mongocore modules."""
from __future__ import annotations

from collections import abc
from typing import Any, Callable, Mapping, Optional, Union

from mongocore.errors import ConfigurationError
from mongocore.typings import DocumentConvertible

# Defaults for the legacy wire protocol.
MAX_BSON_SIZE = 16 * (1024**2)
MAX_MESSAGE_SIZE: int = 2 * MAX_BSON_SIZE

# Hard server side limit, in bytes of UTF-8.
MAX_COLLECTION_NAME_LENGTH = 121

# Default value for maxPoolSize.
MAX_POOL_SIZE = 100

# Default value for connectTimeoutMS, in seconds.
CONNECT_TIMEOUT = 20.0

# Default value for waitQueueTimeoutMS.
WAIT_QUEUE_TIMEOUT: Optional[int] = None

# mongod/s 2.6 and above return code 59 when a
# command doesn't exist. mongod versions previous
# to 2.6 and mongos 2.4.x return no error code
# when a command does exist. mongos versions previous
# to 2.4.0 return code 13390 when a command does not
# exist.
COMMAND_NOT_FOUND_CODES = (59, 13390, None)

DEFAULT_PORT = 27017


def partition_node(node: str) -> tuple[str, int]:
    """Split a host:port string into (host, int(port)) pair."""
    host = node
    port = DEFAULT_PORT
    idx = node.rfind(":")
    if idx != -1 and not node.endswith("]"):
        host, port = node[:idx], int(node[idx + 1 :])
    if host.startswith("["):
        host = host[1:-1]
    return host, port


def raise_config_error(key: str, dummy: Any) -> None:
    """Raise ConfigurationError with the given key name."""
    raise ConfigurationError(f"Unknown option {key}")


def validate_boolean(option: str, value: Any) -> bool:
    """Validates that 'value' is True or False."""
    if isinstance(value, bool):
        return value
    raise TypeError(f"{option} must be True or False, was: {option}={value}")


def validate_boolean_or_string(option: str, value: Any) -> bool:
    """Validates that value is True, False, 'true', or 'false'."""
    if isinstance(value, str):
        if value not in ("true", "false"):
            raise ValueError(f"The value of {option} must be 'true' or 'false'")
        return value == "true"
    return validate_boolean(option, value)


def validate_integer(option: str, value: Any) -> int:
    """Validates that 'value' is an integer (or basestring representation)."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    elif isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"The value of {option} must be an integer") from None
    raise TypeError(f"Wrong type for {option}, value must be an integer")


def validate_non_negative_integer(option: str, value: Any) -> int:
    """Validate that 'value' is a positive integer or 0."""
    val = validate_integer(option, value)
    if val < 0:
        raise ValueError(f"The value of {option} must be a non negative integer")
    return val


def validate_non_negative_integer_or_none(option: str, value: Any) -> Optional[int]:
    """Validate that 'value' is a positive integer or 0 or None."""
    if value is None:
        return value
    return validate_non_negative_integer(option, value)


def validate_int_or_basestring(option: str, value: Any) -> Union[int, str]:
    """Validates that 'value' is an integer or string."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    elif isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return value
    raise TypeError(f"Wrong type for {option}, value must be an integer or a string")


def validate_positive_float(option: str, value: Any) -> float:
    """Validates that 'value' is a float, or can be converted to one, and is
    positive.
    """
    errmsg = f"{option} must be an integer or float"
    try:
        value = float(value)
    except ValueError:
        raise ValueError(errmsg) from None
    except TypeError:
        raise TypeError(errmsg) from None

    # float('inf') doesn't work in 2.4 or 2.5 on Windows, so just cap floats at
    # one billion - this is a reasonable approximation for infinity
    if not 0 < value < 1e9:
        raise ValueError(f"{option} must be greater than 0 and less than one billion")
    return value


def validate_is_document_type(option: str, value: Any) -> None:
    """Validate the type of method arguments that expect a MongoDB document."""
    if not isinstance(value, (abc.Mapping, DocumentConvertible)):
        raise TypeError(
            f"{option} must be an instance of dict, bson.son.SON, any other "
            "type that inherits from collections.abc.Mapping, or an object with "
            f"a to_document() method, not {type(value).__name__}"
        )


def validate_timeout_or_none(option: str, value: Any) -> Optional[float]:
    """Validates a timeout specified in milliseconds returning
    a value in floating point seconds.
    """
    if value is None:
        return value
    return validate_positive_float(option, value) / 1000.0


# journal is an alias for j,
# wtimeoutms is an alias for wtimeout.
VALIDATORS: dict[str, Callable[[Any, Any], Any]] = {
    "w": validate_int_or_basestring,
    "wtimeout": validate_non_negative_integer,
    "wtimeoutms": validate_non_negative_integer,
    "fsync": validate_boolean_or_string,
    "j": validate_boolean_or_string,
    "journal": validate_boolean_or_string,
    "connecttimeoutms": validate_timeout_or_none,
    "sockettimeoutms": validate_timeout_or_none,
    "waitqueuetimeoutms": validate_timeout_or_none,
    "maxpoolsize": validate_non_negative_integer_or_none,
}

# Map from an alias to the option name it is normalized to.
_ALIASES = {
    "j": "journal",
    "wtimeout": "wtimeoutms",
}


def validate(option: str, value: Any) -> tuple[str, Any]:
    """Generic validation function."""
    lower = option.lower()
    validator = VALIDATORS.get(lower, raise_config_error)
    value = validator(option, value)
    return _ALIASES.get(lower, lower), value


def get_validated_options(options: Mapping[str, Any]) -> dict[str, Any]:
    """Validate each entry in options and return a new dict keyed by the
    normalized, lower-cased option names.

    Raises ConfigurationError for unknown options.
    """
    validated = {}
    for opt, value in options.items():
        normed_key, value = validate(opt, value)
        validated[normed_key] = value
    return validated
