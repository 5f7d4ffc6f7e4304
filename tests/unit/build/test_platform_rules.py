"""Tests for the platform decision table."""

import pytest

from llamabuild.build.platform_rules import (
    MACOS_FRAMEWORKS,
    TargetPlatform,
    derive_lib_name,
    platform_for_target,
    rules_for,
)


@pytest.mark.parametrize(
    "platform, shared, link_pattern, deploy_pattern, runtime_subdir, prefix",
    [
        (TargetPlatform.WINDOWS, False, "*.lib", "*.dll", "bin", None),
        (TargetPlatform.WINDOWS, True, "*.lib", "*.dll", "bin", None),
        (TargetPlatform.MACOS, False, "*.a", "*.dylib", "lib", "lib"),
        (TargetPlatform.MACOS, True, "*.dylib", "*.dylib", "lib", "lib"),
        (TargetPlatform.LINUX, False, "*.a", "*.so", "lib", "lib"),
        (TargetPlatform.LINUX, True, "*.so", "*.so", "lib", "lib"),
        (TargetPlatform.UNIX, False, "*.a", "*.so", "lib", "lib"),
        (TargetPlatform.UNIX, True, "*.so", "*.so", "lib", "lib"),
    ],
)
def test_decision_table(platform, shared, link_pattern, deploy_pattern, runtime_subdir, prefix):
    rules = rules_for(platform, shared)

    assert rules.platform is platform
    assert rules.shared_libs is shared
    assert rules.link_pattern == link_pattern
    assert rules.deploy_pattern == deploy_pattern
    assert rules.runtime_subdir == runtime_subdir
    assert rules.lib_prefix == prefix


def test_rules_are_deterministic():
    for platform in TargetPlatform:
        for shared in (False, True):
            assert rules_for(platform, shared) == rules_for(platform, shared)


def test_macos_frameworks_and_runtime():
    rules = rules_for(TargetPlatform.MACOS, False)
    assert rules.frameworks == MACOS_FRAMEWORKS == ("Foundation", "Metal", "MetalKit", "Accelerate")
    assert rules.runtime_libs == ("c++",)


def test_linux_runtime():
    assert rules_for(TargetPlatform.LINUX, False).runtime_libs == ("stdc++",)
    assert rules_for(TargetPlatform.UNIX, False).runtime_libs == ()
    assert rules_for(TargetPlatform.WINDOWS, False).frameworks == ()


@pytest.mark.parametrize(
    "target, expected",
    [
        ("x86_64-pc-windows-msvc", TargetPlatform.WINDOWS),
        ("x86_64-pc-windows-gnu", TargetPlatform.WINDOWS),
        ("x86_64-apple-darwin", TargetPlatform.MACOS),
        ("aarch64-apple-darwin", TargetPlatform.MACOS),
        ("aarch64-unknown-linux-gnu", TargetPlatform.LINUX),
        ("x86_64-unknown-linux-musl", TargetPlatform.LINUX),
        ("x86_64-unknown-netbsd", TargetPlatform.UNIX),
    ],
)
def test_platform_for_target(target, expected):
    assert platform_for_target(target) is expected


@pytest.mark.parametrize(
    "stem, prefix, expected",
    [
        ("libllama", "lib", "llama"),
        ("libggml-base", "lib", "ggml-base"),
        ("llama", "lib", "llama"),
        ("lib", "lib", "lib"),
        ("libllama", None, "libllama"),
        ("llama", None, "llama"),
    ],
)
def test_derive_lib_name(stem, prefix, expected):
    assert derive_lib_name(stem, prefix) == expected
