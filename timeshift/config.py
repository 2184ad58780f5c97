# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Type, TypeVar, Union

import yaml
from omegaconf import MISSING, OmegaConf


@dataclass
class StorageConfig:
    # "memory" keeps the encoded stream in process, "file" appends it to `path`
    kind: str = "memory"
    path: Optional[str] = None


@dataclass
class TimeshiftConfig:
    # how long written bytes are held back before they can be read
    delay_us: int = MISSING
    storage: StorageConfig = field(default_factory=StorageConfig)

    # settings for `python -m timeshift`
    read_size: int = 65536
    poll_interval_s: float = 0.05
    metrics_file: Optional[str] = None


C = TypeVar("C")


def typed_parse_config(
    path: Optional[Union[str, os.PathLike]],
    config_type: Type[C],
    overrides: Optional[dict] = None,
) -> C:
    """
    Parse a yaml file into an instance of the structured config `config_type`.
    Fields missing from the file keep the defaults of the dataclass; keys unknown
    to the dataclass are an error. `overrides` (e.g. from the command line) take
    precedence over the file. Without a `path` only defaults and overrides are used.
    """
    yaml_config = {}
    if path is not None:
        with open(path) as f:
            yaml_config = yaml.safe_load(f) or {}

    schema = OmegaConf.structured(config_type)
    merged = OmegaConf.merge(schema, yaml_config, overrides or {})
    return OmegaConf.to_object(merged)


def validate_config(cfg: TimeshiftConfig) -> None:
    if cfg.delay_us < 0:
        raise ValueError(f"`delay_us` must be non-negative, got {cfg.delay_us}.")
    if cfg.read_size <= 0:
        raise ValueError(f"`read_size` must be positive, got {cfg.read_size}.")
    if cfg.poll_interval_s <= 0:
        raise ValueError(
            f"`poll_interval_s` must be positive, got {cfg.poll_interval_s}."
        )
    if cfg.storage.kind == "file" and not cfg.storage.path:
        raise ValueError("`storage.path` must be set when `storage.kind` is 'file'.")
