"""
Container layer: the lifecycle contract and its docker and host drivers.
"""

from .base import (
    Container,
    FileEntry,
    NewContainerInput,
    get_env_list_from_map,
    merge_image_env,
    parse_env_file,
    prepend_paths,
    read_archive_file,
)
from .docker import DockerContainer, volume_remove_executor
from .host import HostExecutor

__all__ = [
    "Container",
    "DockerContainer",
    "FileEntry",
    "HostExecutor",
    "NewContainerInput",
    "get_env_list_from_map",
    "merge_image_env",
    "parse_env_file",
    "prepend_paths",
    "read_archive_file",
    "volume_remove_executor",
]
