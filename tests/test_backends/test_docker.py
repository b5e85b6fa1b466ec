"""Tests for the docker backend."""

import json
import uuid

import pytest

from taskbridge.backends.docker import DockerService, default_container_name
from taskbridge.backends.service import SchedulerError, SchedulerErrorKind
from taskbridge.containers.types import ContainerInfo, ContainerLaunchOrigin, ContainerRuntime, RestartPolicy
from taskbridge.execution.container_runtime import DockerCli
from taskbridge.infrastructure.config import TimeoutConfig
from taskbridge.scheduling.types import (
    AtStartupTrigger,
    ExecutableAction,
    ScheduledTask,
    SchedulerBackend,
    TaskState,
    TaskStatus,
)

TASK_ID = uuid.UUID("aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee")
CONTAINER_ID = "c0ffee" * 10 + "beef"


def make_task(**info_overrides) -> ScheduledTask:
    fields = {
        "image_name": "nginx:latest",
        "container_name": "web",
        "ports": ["8080:80/tcp"],
        "environment_variables": {"MODE": "prod"},
    }
    fields.update(info_overrides)
    info = ContainerInfo(**fields)
    return ScheduledTask(
        id=TASK_ID,
        name="web",
        backend=SchedulerBackend.DOCKER,
        action=ExecutableAction(path="nginx:latest"),
        status=TaskStatus(state=TaskState.ENABLED),
        container_info=info,
    )


def inspect_object(**overrides) -> dict:
    data = {
        "Id": CONTAINER_ID,
        "Name": "/web",
        "Created": "2024-03-01T10:20:30.123456789Z",
        "Config": {
            "Image": "nginx:latest",
            "Env": ["MODE=prod"],
            "Cmd": ["nginx", "-g", "daemon off;"],
            "Labels": {"taskbridge.task-id": str(TASK_ID)},
        },
        "HostConfig": {"RestartPolicy": {"Name": "always"}, "NetworkMode": "default"},
        "NetworkSettings": {"Ports": {"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}]}},
        "Mounts": [{"Type": "bind", "Source": "/site", "Destination": "/usr/share/nginx/html", "RW": False}],
        "State": {"Status": "running"},
    }
    data.update(overrides)
    return data


@pytest.fixture
def service(runner):
    return DockerService(runner, TimeoutConfig(5, 30), cli=DockerCli("docker"))


class TestInstall:
    @pytest.mark.asyncio
    async def test_create_carries_ownership_label(self, service, runner):
        await service.install(make_task())
        assert runner.argvs() == [[
            "docker", "create",
            "--name", "web",
            "--label", f"taskbridge.task-id={TASK_ID}",
            "-p", "8080:80/tcp",
            "-e", "MODE=prod",
            "nginx:latest",
        ]]

    @pytest.mark.asyncio
    async def test_unnamed_container_gets_default_name(self, service, runner):
        await service.install(make_task(container_name=""))
        argv = runner.calls[0].argv
        assert argv[argv.index("--name") + 1] == default_container_name(make_task())
        assert default_container_name(make_task()) == "taskbridge-aaaaaaaabbbb"

    @pytest.mark.asyncio
    async def test_create_failure(self, service, runner):
        runner.respond(["docker", "create"], stderr="Conflict. The container name is already in use", returncode=125)
        with pytest.raises(SchedulerError) as exc:
            await service.install(make_task())
        assert exc.value.kind == SchedulerErrorKind.ARTIFACT_CREATION_FAILED

    @pytest.mark.asyncio
    async def test_task_without_container_info(self, service):
        task = ScheduledTask(name="x", backend=SchedulerBackend.DOCKER, action=ExecutableAction(path="x"))
        with pytest.raises(SchedulerError) as exc:
            await service.install(task)
        assert exc.value.kind == SchedulerErrorKind.INVALID_TASK

    @pytest.mark.asyncio
    async def test_missing_docker(self, service, runner):
        runner.missing.add("docker")
        with pytest.raises(SchedulerError) as exc:
            await service.install(make_task())
        assert exc.value.kind == SchedulerErrorKind.TOOL_NOT_AVAILABLE


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_enable_locates_by_label(self, service, runner):
        runner.respond(["docker", "ps"], stdout=f"{CONTAINER_ID}\n")
        await service.enable(make_task())
        assert runner.argvs() == [
            ["docker", "ps", "-a", "-q", "--no-trunc", "--filter", f"label=taskbridge.task-id={TASK_ID}"],
            ["docker", "start", CONTAINER_ID],
        ]

    @pytest.mark.asyncio
    async def test_falls_back_to_name(self, service, runner):
        runner.respond(["docker", "inspect", "--format", "{{.Id}}", "web"], stdout=f"{CONTAINER_ID}\n")
        await service.disable(make_task())
        assert runner.argvs()[-1] == ["docker", "stop", CONTAINER_ID]

    @pytest.mark.asyncio
    async def test_not_found(self, service, runner):
        runner.respond(["docker", "inspect"], stderr="No such object", returncode=1)
        with pytest.raises(SchedulerError) as exc:
            await service.enable(make_task())
        assert exc.value.kind == SchedulerErrorKind.TASK_NOT_FOUND

    @pytest.mark.asyncio
    async def test_uninstall_missing_is_noop(self, service, runner):
        runner.respond(["docker", "inspect"], returncode=1)
        await service.uninstall(make_task())
        assert not any(argv[1] == "rm" for argv in runner.argvs())

    @pytest.mark.asyncio
    async def test_uninstall_force_removes(self, service, runner):
        runner.respond(["docker", "ps"], stdout=f"{CONTAINER_ID}\n")
        await service.uninstall(make_task())
        assert runner.argvs()[-1] == ["docker", "rm", "-f", CONTAINER_ID]

    @pytest.mark.asyncio
    async def test_is_running(self, service, runner):
        runner.respond(["docker", "ps"], stdout=f"{CONTAINER_ID}\n")
        runner.respond(["docker", "inspect", "--format", "{{.State.Running}}"], stdout="true\n")
        assert await service.is_running(make_task())

    @pytest.mark.asyncio
    async def test_run_now_attaches(self, service, runner):
        runner.respond(["docker", "ps"], stdout=f"{CONTAINER_ID}\n")
        runner.respond(["docker", "start", "-a"], stdout="hello\n", returncode=3)
        result = await service.run_now(make_task())
        assert result.exit_code == 3
        assert result.standard_output == "hello\n"
        assert runner.calls[-1].timeout == 30


class TestDiscover:
    @pytest.mark.asyncio
    async def test_no_containers(self, service, runner):
        assert await service.discover_tasks() == []
        assert runner.argvs() == [["docker", "ps", "-a", "-q", "--no-trunc"]]

    @pytest.mark.asyncio
    async def test_inspect_becomes_task(self, service, runner):
        runner.respond(["docker", "ps"], stdout=f"{CONTAINER_ID}\n")
        runner.respond(["docker", "context", "show"], stdout="orbstack\n")
        runner.respond(["docker", "inspect"], stdout=json.dumps([inspect_object()]))

        tasks = await service.discover_tasks()
        assert len(tasks) == 1
        task = tasks[0]
        assert task.id == TASK_ID
        assert task.name == "web"
        assert isinstance(task.trigger, AtStartupTrigger)
        assert task.status.state == TaskState.RUNNING
        info = task.container_info
        assert info.runtime == ContainerRuntime.ORBSTACK
        assert info.ports == ["8080:80/tcp"]
        assert info.volumes == ["/site:/usr/share/nginx/html:ro"]
        assert info.network_mode is None
        assert info.container_id == CONTAINER_ID[:12]
        assert info.launch_origin == ContainerLaunchOrigin.BOOT
        assert info.created_at.microsecond == 123456

    @pytest.mark.asyncio
    async def test_unlabelled_and_compose_containers(self, service, runner):
        manual = inspect_object(Id="1" * 64, Name="/db", Config={"Image": "postgres:16"})
        manual["HostConfig"] = {"RestartPolicy": {"Name": "no"}}
        compose = inspect_object(
            Id="2" * 64,
            Name="/shop-api-1",
            Config={"Image": "shop/api", "Labels": {"com.docker.compose.project": "shop"}},
        )
        runner.respond(["docker", "ps"], stdout="1\n2\n")
        runner.respond(["docker", "inspect"], stdout=json.dumps([manual, compose]))

        db_task, api_task = await service.discover_tasks()
        assert db_task.id == ScheduledTask.id_from_label("docker.db")
        assert db_task.container_info.launch_origin == ContainerLaunchOrigin.MANUAL
        assert not db_task.is_read_only
        assert api_task.is_read_only
        assert api_task.container_info.compose_project == "shop"

    @pytest.mark.asyncio
    async def test_unreadable_inspect(self, service, runner):
        runner.respond(["docker", "ps"], stdout="1\n")
        runner.respond(["docker", "inspect"], stdout="not json")
        with pytest.raises(SchedulerError) as exc:
            await service.discover_tasks()
        assert exc.value.kind == SchedulerErrorKind.COMMAND_EXECUTION_FAILED


class TestUpdate:
    @pytest.mark.asyncio
    async def test_restart_policy_applied_in_place(self, service, runner):
        previous = make_task()
        edited = make_task(restart_policy=RestartPolicy.ALWAYS)
        runner.respond(["docker", "ps"], stdout=f"{CONTAINER_ID}\n")

        await service.update(edited, previous)
        assert runner.argvs()[-1] == ["docker", "update", "--restart", "always", CONTAINER_ID]
        assert not any(argv[1] in ("rm", "create") for argv in runner.argvs())

    @pytest.mark.asyncio
    async def test_unchanged_does_nothing(self, service, runner):
        await service.update(make_task(), make_task())
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_port_change_recreates(self, service, runner):
        previous = make_task()
        edited = make_task(restart_policy=RestartPolicy.ALWAYS)
        edited.container_info.ports = ["9090:80/tcp"]
        runner.respond(["docker", "ps"], stdout=f"{CONTAINER_ID}\n")

        await service.update(edited, previous)
        subcommands = [argv[1] for argv in runner.argvs() if argv[1] != "ps"]
        assert subcommands == ["rm", "create", "start"]
        create = next(argv for argv in runner.argvs() if argv[1] == "create")
        assert "9090:80/tcp" in create
        assert "--restart" in create
