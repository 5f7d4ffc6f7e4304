"""llamabuild - build-time orchestrator for a vendored llama.cpp.

Stages the vendored sources, generates ctypes bindings from the public C
headers, drives the CMake build and emits the linker directives a consuming
build needs.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
