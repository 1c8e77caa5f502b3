from collections.abc import Mapping
from typing import Annotated

import msgspec

from src.common.errors import ConfigError


NonNegative = Annotated[int, msgspec.Meta(ge=0)]


class AggregationConfig(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    """Pipeline-wide options. filter_year=0 disables the year filter."""

    filter_year: NonNegative = 0
    sort_descending: bool = True
    top_dates: NonNegative = 10
    unknown_sample: NonNegative = 5

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "AggregationConfig":
        """
        Builds a config from loosely typed parameters (HTTP query args).
        Unknown keys are ignored; "2020" and "false" are coerced by msgspec.
        """
        known = {k: v for k, v in params.items() if k in cls.__struct_fields__}
        try:
            return msgspec.convert(known, cls, strict=False)
        except msgspec.ValidationError as e:
            raise ConfigError(f"invalid configuration: {e}") from e
