# rust_pipeline.py
# The Rust build & test pipeline (pipelines/rust.yml) written with the Python DSL.
from __future__ import annotations

from matrixci.dsl import (
    cache_step,
    checkout,
    job,
    matrix,
    on_pull_request,
    on_push,
    pipeline,
    sh,
    toolchain_step,
)
from matrixci.expressions import matrix_eq

CARGO_CACHES = [
    ("Cache cargo registry", "~/.cargo/registry", "cargo-registry"),
    ("Cache cargo index", "~/.cargo/git", "cargo-index"),
    ("Cache cargo build", "target", "cargo-build-target"),
]

PIPELINE = pipeline(
    "Rust",
    job(
        "build",
        checkout(),
        *(cache_step(name, path, hash_files=["Cargo.lock"], prefix=prefix) for name, path, prefix in CARGO_CACHES),
        sh(
            "Install Ubuntu Deps",
            "sudo dpkg --add-architecture i386 && sudo apt-get update && "
            "sudo apt install build-essential g++-multilib libc6-i386 libstdc++6:i386",
            when=matrix_eq("os", "ubuntu-latest"),
        ),
        toolchain_step("${{ matrix.TOOLCHAIN }}", "${{ matrix.TARGET }}"),
        sh("Build", "cargo build --verbose"),
        sh("Run tests", "cargo test --verbose"),
        runs_on="${{ matrix.os }}",
        strategy=matrix(os=["ubuntu-latest", "windows-latest"])
        .include(os="ubuntu-latest", TOOLCHAIN="stable-i686-unknown-linux-gnu", TARGET="i686-unknown-linux-gnu")
        .include(os="windows-latest", TOOLCHAIN="stable-i686-pc-windows-msvc", TARGET="i686-pc-windows-msvc"),
        fail_fast=False,
    ),
    on=[on_push("master"), on_pull_request("master")],
    env={"CARGO_TERM_COLOR": "always"},
)
