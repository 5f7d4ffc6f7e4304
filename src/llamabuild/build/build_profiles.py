"""Build Profile Configuration.

Two profiles exist and they are deliberately separate concepts:

- BuildProfile: the consumer's profile (``debug``/``release``). It names the
  consumer's output directory (``<manifest>/target/<profile>``) and selects
  the debug C runtime on Windows.
- The library profile: the CMake build type used for llama.cpp itself
  (``LLAMA_LIB_PROFILE``, default ``Release``). A debug consumer build still
  links an optimized llama.cpp unless told otherwise.
"""

from enum import Enum

DEFAULT_LIB_PROFILE = "Release"

# CMake build types accepted for LLAMA_LIB_PROFILE
CMAKE_BUILD_TYPES = ("Debug", "Release", "RelWithDebInfo", "MinSizeRel")


class BuildProfile(Enum):
    """Build profile enum for type-safe profile selection."""

    DEBUG = "debug"
    RELEASE = "release"

    def __str__(self) -> str:
        """Return the string value for directory names and display."""
        return self.value

    @classmethod
    def parse(cls, value: str) -> "BuildProfile":
        """Parse a profile name, case-insensitively.

        Args:
            value: Profile name such as "debug" or "Release"

        Returns:
            Matching BuildProfile

        Raises:
            ValueError: If the name is not a known profile
        """
        normalized = value.strip().lower()
        for profile in cls:
            if profile.value == normalized:
                return profile
        raise ValueError(f"Unknown build profile '{value}' (expected one of: {', '.join(p.value for p in cls)})")


def normalize_lib_profile(value: str) -> str:
    """Map a library profile name onto the CMake spelling.

    Unknown names are passed through unchanged so projects with custom
    CMake configurations keep working.

    Args:
        value: Library profile such as "release" or "RelWithDebInfo"

    Returns:
        CMake build type string
    """
    for build_type in CMAKE_BUILD_TYPES:
        if build_type.lower() == value.strip().lower():
            return build_type
    return value.strip()


def format_profile_banner(profile: BuildProfile, lib_profile: str, shared_libs: bool) -> str:
    """Format a build profile banner for display.

    Args:
        profile: Consumer build profile
        lib_profile: CMake build type for llama.cpp
        shared_libs: Whether shared libraries are built

    Returns:
        Formatted banner string
    """
    link = "dynamic" if shared_libs else "static"
    return f"PROFILE={profile.value} LIB_PROFILE={lib_profile} LINK={link}"
