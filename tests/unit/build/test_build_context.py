"""Tests for build context resolution from environment inputs."""

from pathlib import Path

import pytest

from llamabuild.build.build_context import (
    BuildContext,
    Feature,
    parse_bool,
    parse_features,
    resolve_build_context,
)
from llamabuild.build.build_profiles import BuildProfile
from llamabuild.build.errors import ConfigurationError
from llamabuild.build.platform_rules import TargetPlatform


@pytest.fixture
def base_env(tmp_path):
    return {
        "TARGET": "x86_64-unknown-linux-gnu",
        "OUT_DIR": str(tmp_path / "out"),
        "PROFILE": "release",
        "MANIFEST_DIR": str(tmp_path / "consumer"),
    }


class TestRequiredInputs:
    """Missing or malformed required inputs fail before anything happens."""

    @pytest.mark.parametrize("name", ["TARGET", "OUT_DIR", "PROFILE", "MANIFEST_DIR"])
    def test_missing_required_input(self, base_env, name, tmp_path):
        del base_env[name]
        with pytest.raises(ConfigurationError, match=name):
            resolve_build_context(base_env, parallelism=1)
        # Nothing was created on disk
        assert not (tmp_path / "out").exists()

    def test_all_missing_inputs_reported_together(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_build_context({}, parallelism=1)
        message = str(exc_info.value)
        for name in ("TARGET", "OUT_DIR", "PROFILE", "MANIFEST_DIR"):
            assert name in message

    def test_blank_value_counts_as_missing(self, base_env):
        base_env["OUT_DIR"] = "   "
        with pytest.raises(ConfigurationError, match="OUT_DIR"):
            resolve_build_context(base_env, parallelism=1)

    @pytest.mark.parametrize("target", ["linux", "x86_64-", "-linux"])
    def test_malformed_target(self, base_env, target):
        base_env["TARGET"] = target
        with pytest.raises(ConfigurationError, match="target triple"):
            resolve_build_context(base_env, parallelism=1)

    def test_unknown_profile(self, base_env):
        base_env["PROFILE"] = "fast"
        with pytest.raises(ConfigurationError, match="PROFILE"):
            resolve_build_context(base_env, parallelism=1)


class TestResolvedValues:
    def test_defaults(self, base_env, tmp_path):
        ctx = resolve_build_context(base_env, parallelism=3)

        assert ctx.target == "x86_64-unknown-linux-gnu"
        assert ctx.profile is BuildProfile.RELEASE
        assert ctx.out_dir == tmp_path / "out"
        assert ctx.target_dir == tmp_path / "consumer" / "target" / "release"
        assert ctx.features == frozenset()
        assert ctx.lib_profile == "Release"
        assert ctx.static_crt is False
        assert ctx.shared_libs is False
        assert ctx.debug is False
        assert ctx.parallelism == 3

    def test_derived_paths(self, base_env, tmp_path):
        ctx = resolve_build_context(base_env, parallelism=1)

        assert ctx.vendor_src == tmp_path / "consumer" / "llama.cpp"
        assert ctx.vendor_dst == tmp_path / "out" / "llama.cpp"
        assert ctx.bindings_path == tmp_path / "out" / "bindings.py"
        assert ctx.include_dirs == (
            tmp_path / "out" / "llama.cpp" / "include",
            tmp_path / "out" / "llama.cpp" / "ggml" / "include",
        )

    def test_header_prefers_wrapper(self, base_env, tmp_path):
        wrapper = tmp_path / "consumer" / "wrapper.h"
        wrapper.parent.mkdir(parents=True)
        wrapper.write_text('#include "llama.h"\n')

        ctx = resolve_build_context(base_env, parallelism=1)
        assert ctx.header == wrapper

    def test_header_falls_back_to_staged_llama_h(self, base_env, tmp_path):
        ctx = resolve_build_context(base_env, parallelism=1)
        assert ctx.header == tmp_path / "out" / "llama.cpp" / "include" / "llama.h"

    def test_explicit_header(self, base_env):
        ctx = resolve_build_context(base_env, header=Path("/custom/api.h"), parallelism=1)
        assert ctx.header == Path("/custom/api.h")

    def test_debug_profile_target_dir(self, base_env, tmp_path):
        base_env["PROFILE"] = "Debug"
        ctx = resolve_build_context(base_env, parallelism=1)
        assert ctx.profile is BuildProfile.DEBUG
        assert ctx.target_dir == tmp_path / "consumer" / "target" / "debug"

    def test_lib_profile_normalized(self, base_env):
        base_env["LLAMA_LIB_PROFILE"] = "relwithdebinfo"
        ctx = resolve_build_context(base_env, parallelism=1)
        assert ctx.lib_profile == "RelWithDebInfo"

    def test_static_crt(self, base_env):
        base_env["LLAMA_STATIC_CRT"] = "1"
        assert resolve_build_context(base_env, parallelism=1).static_crt is True

    def test_debug_enabled_by_presence(self, base_env):
        base_env["BUILD_DEBUG"] = ""
        assert resolve_build_context(base_env, parallelism=1).debug is True

    def test_parallelism_detected_when_not_given(self, base_env):
        ctx = resolve_build_context(base_env)
        assert ctx.parallelism >= 1
        assert ctx.child_env == {"CMAKE_BUILD_PARALLEL_LEVEL": str(ctx.parallelism)}

    def test_existing_parallel_level_respected(self, base_env):
        base_env["CMAKE_BUILD_PARALLEL_LEVEL"] = "2"
        ctx = resolve_build_context(base_env, parallelism=16)
        assert ctx.child_env == {"CMAKE_BUILD_PARALLEL_LEVEL": "2"}


class TestSharedMode:
    def test_static_by_default(self, base_env):
        assert resolve_build_context(base_env, parallelism=1).shared_libs is False

    @pytest.mark.parametrize("feature", ["cuda", "dynamic-link"])
    def test_feature_selects_shared(self, base_env, feature):
        ctx = resolve_build_context(base_env, features=[feature], parallelism=1)
        assert ctx.shared_libs is True
        assert ctx.has_feature(Feature(feature))

    def test_features_from_environment(self, base_env):
        base_env["LLAMABUILD_FEATURES"] = "cuda, dynamic-link"
        ctx = resolve_build_context(base_env, parallelism=1)
        assert ctx.features == frozenset({Feature.CUDA, Feature.DYNAMIC_LINK})

    def test_override_wins_over_features(self, base_env):
        base_env["LLAMA_BUILD_SHARED_LIBS"] = "off"
        ctx = resolve_build_context(base_env, features=["cuda"], parallelism=1)
        assert ctx.shared_libs is False

    def test_override_enables_shared(self, base_env):
        base_env["LLAMA_BUILD_SHARED_LIBS"] = "yes"
        assert resolve_build_context(base_env, parallelism=1).shared_libs is True

    def test_unknown_feature(self, base_env):
        with pytest.raises(ConfigurationError, match="Unknown feature 'metal'"):
            resolve_build_context(base_env, features=["metal"], parallelism=1)


class TestTargetProperties:
    @pytest.mark.parametrize(
        "target, platform",
        [
            ("x86_64-pc-windows-msvc", TargetPlatform.WINDOWS),
            ("aarch64-apple-darwin", TargetPlatform.MACOS),
            ("x86_64-unknown-linux-gnu", TargetPlatform.LINUX),
            ("x86_64-unknown-freebsd", TargetPlatform.UNIX),
        ],
    )
    def test_platform_from_triple(self, make_context, target, platform):
        assert make_context(target=target).platform is platform

    def test_gnu_toolchain(self, make_context):
        assert make_context(target="x86_64-unknown-linux-gnu").is_gnu_toolchain
        assert not make_context(target="x86_64-unknown-linux-musl").is_gnu_toolchain

    def test_legacy_macos(self, make_context):
        assert make_context(target="x86_64-apple-darwin").is_legacy_macos
        assert not make_context(target="aarch64-apple-darwin").is_legacy_macos
        assert not make_context(target="x86_64-unknown-linux-gnu").is_legacy_macos

    def test_context_is_frozen(self, make_context):
        ctx: BuildContext = make_context()
        with pytest.raises(AttributeError):
            ctx.target = "other"  # type: ignore[misc]


class TestParsers:
    @pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
    def test_truthy(self, value):
        assert parse_bool("X", value) is True

    @pytest.mark.parametrize("value", ["0", "false", "No", "off", ""])
    def test_falsy(self, value):
        assert parse_bool("X", value) is False

    def test_invalid_bool(self):
        with pytest.raises(ConfigurationError, match="X='maybe'"):
            parse_bool("X", "maybe")

    def test_parse_features_ignores_blanks(self):
        assert parse_features(["", " cuda ", ""]) == frozenset({Feature.CUDA})
