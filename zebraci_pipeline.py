# zebraci_pipeline.py
# Pipeline for zebrad: build on rust:stretch, ship on debian:buster-slim,
# dispatch pushes to Cloud Build in zealous-zebra.
from __future__ import annotations
from zebraci import BuildEnvironment, DispatchConfig, PipelineConfig, RuntimeImage

def pipeline():
    return PipelineConfig(
        # Builder stage - native tools, dependency fetch, tests, release build
        build=BuildEnvironment(
            base_image="rust:stretch",
            packages=("make", "cmake", "g++", "gcc"),
            workdir="/zebra",
            cache_dir=".cargo",
            fetch_command="cargo fetch --verbose",
            toolchain_commands=("rustc -V", "cargo -V", "rustup -V"),
            test_command="cargo test --all",
            build_command="cargo build --release",
            artifact_path="target/release/zebrad",
        ),

        # Runtime stage - only the binary on a slim base
        runtime=RuntimeImage(
            base_image="debian:buster-slim",
            artifact_name="zebrad",
            port=8233,
            command=("./zebrad", "seed"),
        ),

        # Remote build - one identifier per repository and branch
        dispatch=DispatchConfig(
            project="zealous-zebra",
            build_config="cloudbuild.yaml",
            tool_version="295.0.0",
            credential_env="GCLOUD_AUTH",
            branch_mode="last-segment",
        ),
    )
