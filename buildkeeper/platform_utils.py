"""
Platform Utilities
==================

OS detection and the handful of platform-specific names the build
workflows depend on (gradle wrapper, npm shims, cache locations).
"""

import platform
from enum import Enum
from pathlib import Path
from typing import NamedTuple


class OSType(Enum):
    """Supported operating system types."""
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"


class PlatformInfo(NamedTuple):
    """Platform-specific tool naming."""
    os_type: OSType
    gradle_wrapper: str        # "./gradlew" or "gradlew.bat"
    node_shim_suffix: str      # "" or ".cmd" for npm/npx on Windows
    can_build_ios: bool


def detect_os() -> OSType:
    """
    Detect the current operating system.

    Returns:
        OSType enum value for the current OS
    """
    system = platform.system().lower()
    if system == "windows":
        return OSType.WINDOWS
    elif system == "darwin":
        return OSType.MACOS
    else:
        return OSType.LINUX


def get_platform_info() -> PlatformInfo:
    """Get the tool naming for the current platform."""
    os_type = detect_os()

    if os_type == OSType.WINDOWS:
        return PlatformInfo(
            os_type=OSType.WINDOWS,
            gradle_wrapper="gradlew.bat",
            node_shim_suffix=".cmd",
            can_build_ios=False,
        )
    elif os_type == OSType.MACOS:
        return PlatformInfo(
            os_type=OSType.MACOS,
            gradle_wrapper="./gradlew",
            node_shim_suffix="",
            can_build_ios=True,
        )
    else:
        return PlatformInfo(
            os_type=OSType.LINUX,
            gradle_wrapper="./gradlew",
            node_shim_suffix="",
            can_build_ios=False,
        )


def get_gradle_wrapper() -> str:
    """Name of the gradle wrapper script to invoke from the android/ dir."""
    return get_platform_info().gradle_wrapper


def get_node_tool(name: str) -> str:
    """
    Resolve npm/npx style tools, which are .cmd shims on Windows.

    Args:
        name: Tool name such as "npm" or "npx"

    Returns:
        Executable name usable in an argv list
    """
    suffix = get_platform_info().node_shim_suffix
    if suffix and not name.endswith(suffix):
        return f"{name}{suffix}"
    return name


def get_gradle_cache_dir() -> Path:
    """Location of the user-level gradle cache."""
    return Path.home() / ".gradle" / "caches"

