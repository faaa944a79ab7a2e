"""Tests for the container engine abstraction and engine detection."""

from __future__ import annotations

import json
import subprocess
from unittest.mock import patch

import pytest

from agentpod.engine import (
    CliContainerEngine,
    ContainerEngine,
    build_create_args,
    detect_engine,
    state_from_inspect,
)
from agentpod.errors import EngineError, InvalidInputError
from agentpod.plugin import get_plugin_manager, hookimpl
from agentpod.types import CreateRequest, VolumeMount

_RUN = "agentpod.engine.engine.subprocess.run"
_WHICH = "agentpod.engine.engine.shutil.which"


def _completed(returncode: int = 0, stdout: str = "", stderr: str = ""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def _inspect_doc(status: str = "running") -> str:
    return json.dumps([{"Name": "/s1", "State": {"Status": status, "Running": status == "running"}}])


class TestStateFromInspect:
    def test_absent(self):
        assert state_from_inspect(None) == "absent"

    @pytest.mark.parametrize("status", ["exited", "created", "paused", "dead"])
    def test_anything_not_running_is_stopped(self, status):
        assert state_from_inspect({"State": {"Status": status, "Running": False}}) == "stopped"

    def test_running(self):
        assert state_from_inspect({"State": {"Status": "running", "Running": True}}) == "running"

    def test_podman_style_status_only(self):
        assert state_from_inspect({"State": {"Status": "Running"}}) == "running"

    def test_missing_state_block(self):
        assert state_from_inspect({}) == "stopped"


class TestBuildCreateArgs:
    def _request(self, **overrides) -> CreateRequest:
        defaults = dict(
            name="s1",
            image="agentpod-agent:latest",
            mounts=[
                VolumeMount("/repo", "/workspace/src"),
                VolumeMount("/home/u/.aws", "/home/agent/.aws", readonly=True),
            ],
            env={"AGENTPOD_IDLE_TIMEOUT": "300"},
            secret_env={"ANTHROPIC_API_KEY": "sk-secret"},
            command=["python", "-m", "agentpod.watchdog"],
            workdir="/workspace/src",
            labels={"agentpod.managed": "true", "agentpod.auth-mode": "api_key"},
        )
        defaults.update(overrides)
        return CreateRequest(**defaults)

    def test_layout(self):
        args = build_create_args(self._request())

        assert args[:3] == ["create", "--name", "s1"]
        assert "--init" in args
        assert ["-v", "/repo:/workspace/src"] == args[args.index("-v") : args.index("-v") + 2]
        assert (
            "type=bind,source=/home/u/.aws,target=/home/agent/.aws,readonly"
            == args[args.index("--mount") + 1]
        )
        assert args[args.index("-w") + 1] == "/workspace/src"
        image_at = args.index("agentpod-agent:latest")
        assert args[image_at + 1 :] == ["python", "-m", "agentpod.watchdog"]

    def test_secret_values_never_on_command_line(self):
        args = build_create_args(self._request())
        assert "sk-secret" not in " ".join(args)
        assert "ANTHROPIC_API_KEY" in args
        assert "AGENTPOD_IDLE_TIMEOUT=300" in args

    def test_labels_sorted(self):
        args = build_create_args(self._request())
        labels = [args[i + 1] for i, a in enumerate(args) if a == "--label"]
        assert labels == ["agentpod.auth-mode=api_key", "agentpod.managed=true"]

    def test_no_init(self):
        assert "--init" not in build_create_args(self._request(init=False))


class TestCliContainerEngine:
    @pytest.mark.asyncio
    async def test_inspect_running(self):
        engine = CliContainerEngine("docker", "docker")
        with patch(_RUN, return_value=_completed(stdout=_inspect_doc("running"))) as run:
            assert await engine.inspect_state("s1") == "running"
        assert run.call_args.args[0] == ["docker", "inspect", "--type", "container", "s1"]

    @pytest.mark.asyncio
    async def test_inspect_absent(self):
        engine = CliContainerEngine("docker", "docker")
        result = _completed(1, stderr="Error: No such object: s1")
        with patch(_RUN, return_value=result):
            assert await engine.inspect("s1") is None
            assert await engine.inspect_state("s1") == "absent"

    @pytest.mark.asyncio
    async def test_inspect_podman_absent_message(self):
        engine = CliContainerEngine("podman", "podman")
        result = _completed(125, stderr="Error: no such container s1")
        with patch(_RUN, return_value=result):
            assert await engine.inspect_state("s1") == "absent"

    @pytest.mark.asyncio
    async def test_inspect_other_failure_is_engine_error(self):
        engine = CliContainerEngine("docker", "docker")
        result = _completed(1, stderr="Cannot connect to the Docker daemon")
        with patch(_RUN, return_value=result), pytest.raises(EngineError) as exc_info:
            await engine.inspect_state("s1")
        assert exc_info.value.engine_exit_code == 1
        assert "Cannot connect" in exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_missing_cli(self):
        engine = CliContainerEngine("docker", "docker")
        with patch(_RUN, side_effect=FileNotFoundError("docker")), pytest.raises(EngineError):
            await engine.start("s1")

    @pytest.mark.asyncio
    async def test_cli_timeout(self):
        engine = CliContainerEngine("docker", "docker", command_timeout=1)
        with (
            patch(_RUN, side_effect=subprocess.TimeoutExpired("docker", 1)),
            pytest.raises(EngineError, match="did not finish"),
        ):
            await engine.stop("s1", timeout=10)

    @pytest.mark.asyncio
    async def test_create_passes_secrets_through_process_env(self):
        engine = CliContainerEngine("docker", "docker")
        request = CreateRequest(name="s1", image="img", secret_env={"ANTHROPIC_API_KEY": "sk-x"})
        with patch(_RUN, return_value=_completed(stdout="abc123\n")) as run:
            container_id = await engine.create(request)

        assert container_id == "abc123"
        assert "sk-x" not in run.call_args.args[0]
        assert run.call_args.kwargs["env"]["ANTHROPIC_API_KEY"] == "sk-x"

    @pytest.mark.asyncio
    async def test_create_failure_keeps_native_status(self):
        engine = CliContainerEngine("docker", "docker")
        result = _completed(125, stderr="Unable to find image 'img:latest' locally")
        with patch(_RUN, return_value=result), pytest.raises(EngineError) as exc_info:
            await engine.create(CreateRequest(name="s1", image="img"))
        assert exc_info.value.engine_exit_code == 125

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("call", "expected"),
        [
            (lambda e: e.stop("s1", timeout=7), ["docker", "stop", "-t", "7", "s1"]),
            (lambda e: e.kill("s1"), ["docker", "kill", "s1"]),
            (lambda e: e.remove("s1", force=True), ["docker", "rm", "-f", "s1"]),
            (lambda e: e.remove("s1"), ["docker", "rm", "s1"]),
        ],
    )
    async def test_mutation_argv(self, call, expected):
        engine = CliContainerEngine("docker", "docker")
        with patch(_RUN, return_value=_completed()) as run:
            await call(engine)
        assert run.call_args.args[0] == expected

    @pytest.mark.asyncio
    async def test_logs_are_best_effort(self):
        engine = CliContainerEngine("docker", "docker")
        with patch(_RUN, return_value=_completed(1, stdout="", stderr="no such container")):
            text = await engine.logs("s1")
        assert "no such container" in text

    def test_exec_argv(self):
        engine = CliContainerEngine("podman", "podman")
        argv = engine.exec_argv("s1", ["bash", "-c", "ls"], env_names=["FOO"], workdir="/w")
        assert argv == ["podman", "exec", "-w", "/w", "-e", "FOO", "s1", "bash", "-c", "ls"]

    def test_satisfies_protocol(self):
        assert isinstance(CliContainerEngine("docker", "docker"), ContainerEngine)


class _NerdctlPlugin:
    @hookimpl
    def agentpod_container_engine(self):
        return CliContainerEngine("nerdctl", "nerdctl")


class _BrokenPlugin:
    @hookimpl
    def agentpod_container_engine(self):
        return object()


class TestDetectEngine:
    def test_prefers_docker_when_available(self):
        with patch(_WHICH, side_effect=lambda cmd: f"/usr/bin/{cmd}"):
            engine = detect_engine(get_plugin_manager())
        assert engine.name == "docker"

    def test_falls_back_to_available_plugin(self):
        with patch(_WHICH, side_effect=lambda cmd: "/usr/bin/podman" if cmd == "podman" else None):
            engine = detect_engine(get_plugin_manager())
        assert engine.name == "podman"

    def test_override(self):
        with patch(_WHICH, side_effect=lambda cmd: f"/usr/bin/{cmd}"):
            engine = detect_engine(get_plugin_manager(), "Podman")
        assert engine.name == "podman"

    def test_unknown_override_is_invalid_input(self):
        with (
            patch(_WHICH, side_effect=lambda cmd: f"/usr/bin/{cmd}"),
            pytest.raises(InvalidInputError, match="lxc"),
        ):
            detect_engine(get_plugin_manager(), "lxc")

    def test_nothing_installed_defaults_to_docker(self):
        with patch(_WHICH, return_value=None):
            engine = detect_engine(get_plugin_manager())
        assert engine.name == "docker"

    def test_third_party_engine(self):
        pm = get_plugin_manager()
        pm.register(_NerdctlPlugin())
        with patch(_WHICH, side_effect=lambda cmd: "/bin/nerdctl" if cmd == "nerdctl" else None):
            engine = detect_engine(pm)
        assert engine.name == "nerdctl"

    def test_invalid_plugin_engine_ignored(self):
        pm = get_plugin_manager()
        pm.register(_BrokenPlugin())
        with patch(_WHICH, side_effect=lambda cmd: f"/usr/bin/{cmd}"):
            engine = detect_engine(pm)
        assert engine.name == "docker"
