"""Tests for the container draft and container tasks."""

from taskbridge.containers.editor import (
    ContainerDraft,
    EnvVar,
    container_state,
    docker_label,
    task_for_container,
)
from taskbridge.containers.translator import PortMapping, VolumeMount
from taskbridge.containers.types import ContainerInfo, RestartPolicy
from taskbridge.scheduling.types import (
    AtStartupTrigger,
    OnDemandTrigger,
    ScheduledTask,
    SchedulerBackend,
    TaskState,
)


def web_task() -> ScheduledTask:
    info = ContainerInfo(
        image_name="nginx:latest",
        container_name="web",
        ports=["8080:80/tcp"],
        volumes=["/site:/usr/share/nginx/html:ro"],
        environment_variables={"B": "2", "A": "1"},
        command=["nginx", "-g", "daemon"],
        entrypoint=["/entry.sh"],
        full_id="f" * 64,
        container_status="exited",
    )
    return task_for_container(info)


class TestLabels:
    def test_named(self):
        assert docker_label("web", "nginx:latest") == "docker.web"

    def test_image_fallback(self):
        assert docker_label("", "ghcr.io/acme/app:1.0") == "docker.ghcr.io-acme-app-1.0"


class TestTaskForContainer:
    def test_id_from_label(self):
        task = web_task()
        assert task.id == ScheduledTask.id_from_label("docker.web")
        assert task.backend == SchedulerBackend.DOCKER
        assert task.name == "web"
        assert task.description == "nginx:latest"

    def test_boot_policy_means_startup_trigger(self):
        task = task_for_container(ContainerInfo(image_name="redis", restart_policy=RestartPolicy.UNLESS_STOPPED))
        assert isinstance(task.trigger, AtStartupTrigger)
        assert task.status.state == TaskState.ENABLED

    def test_on_failure_is_on_demand(self):
        task = task_for_container(ContainerInfo(image_name="redis", restart_policy=RestartPolicy.ON_FAILURE))
        assert isinstance(task.trigger, OnDemandTrigger)

    def test_compose_containers_read_only(self):
        task = task_for_container(ContainerInfo(image_name="db", compose_project="shop"))
        assert task.is_read_only

    def test_states(self):
        assert container_state(ContainerInfo(image_name="x", container_status="running")) == TaskState.RUNNING
        assert container_state(ContainerInfo(image_name="x", container_status="restarting")) == TaskState.RUNNING
        assert container_state(ContainerInfo(image_name="x", container_status="dead")) == TaskState.ERROR
        assert container_state(ContainerInfo(image_name="x", container_status="exited")) == TaskState.DISABLED


class TestDraftLoad:
    def test_from_task(self):
        draft = ContainerDraft.from_task(web_task())
        assert draft.title == "Edit Container"
        assert draft.image_name == "nginx:latest"
        assert draft.port_mappings == [PortMapping("8080", "80", "tcp")]
        assert draft.volume_mounts == [VolumeMount("/site", "/usr/share/nginx/html", ["ro"])]
        assert [(e.key, e.value) for e in draft.env_vars] == [("A", "1"), ("B", "2")]
        assert draft.command_override == "nginx -g daemon"

    def test_new_draft(self):
        draft = ContainerDraft()
        assert not draft.is_editing
        assert draft.title == "New Docker Container"


class TestDraftEnvImport:
    def test_updates_rows_in_place_and_appends(self):
        draft = ContainerDraft(env_vars=[EnvVar("A", "old"), EnvVar("", "")])
        draft.import_env_text("A=new\nB=2\nLD_PRELOAD=x\n")
        assert [(e.key, e.value) for e in draft.env_vars] == [("A", "new"), ("", ""), ("B", "2")]

    def test_reimport_adds_nothing(self):
        draft = ContainerDraft()
        draft.import_env_text("A=1\nB=2")
        draft.import_env_text("A=1\nB=2")
        assert len(draft.env_vars) == 2

    def test_import_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("TOKEN='abc'\n")
        draft = ContainerDraft()
        draft.import_env_file(env_file)
        assert [(e.key, e.value) for e in draft.env_vars] == [("TOKEN", "abc")]


class TestDraftValidate:
    def test_valid(self):
        assert ContainerDraft.from_task(web_task()).validate() == []

    def test_image_required(self):
        assert ContainerDraft().validate() == ["Docker image name is required"]

    def test_bad_image_and_name(self):
        errors = ContainerDraft(image_name="-bad image", container_name="_web").validate()
        assert len(errors) == 2
        assert errors[0].startswith("Invalid image name")
        assert errors[1].startswith("Invalid container name")

    def test_ports(self):
        draft = ContainerDraft(
            image_name="nginx",
            port_mappings=[PortMapping("0", "80"), PortMapping("http", "80"), PortMapping("", "70000")],
        )
        assert draft.validate() == [
            "Port mapping #1: host port must be 1-65535",
            "Port mapping #2: host port must be a number",
            "Port mapping #3: container port must be 1-65535",
        ]

    def test_env_rules(self):
        draft = ContainerDraft(
            image_name="nginx",
            env_vars=[EnvVar("", "orphan"), EnvVar("DYLD_LIBRARY_PATH", "/x"), EnvVar("OK", "a\0b"), EnvVar("", "")],
        )
        assert draft.validate() == [
            "Environment variable #1: key is required",
            "Environment variable 'DYLD_LIBRARY_PATH' is blocked for security reasons",
            "Environment variable #3: null bytes not allowed",
        ]

    def test_null_bytes_in_fields(self):
        draft = ContainerDraft(image_name="nginx", command_override="run\0")
        assert draft.validate() == ["Command contains null bytes"]


class TestDraftBuild:
    def test_new_task_id_from_label(self):
        task = ContainerDraft(image_name="redis:7", port_mappings=[PortMapping("", "6379")]).build_task()
        assert task.id == ScheduledTask.id_from_label("docker.redis-7")
        assert task.container_info.ports == ["6379/tcp"]

    def test_edit_keeps_identity_and_discovery_fields(self):
        original = web_task()
        draft = ContainerDraft.from_task(original)
        draft.command_override = "nginx"
        task = draft.build_task()
        assert task.id == original.id
        assert task.container_info.entrypoint == ["/entry.sh"]
        assert task.container_info.full_id == "f" * 64
        assert task.container_info.command == ["nginx"]

    def test_unchanged_edit_needs_no_recreation(self):
        assert not ContainerDraft.from_task(web_task()).requires_recreation

    def test_restart_policy_edit_needs_no_recreation(self):
        draft = ContainerDraft.from_task(web_task())
        draft.restart_policy = RestartPolicy.ALWAYS
        assert not draft.requires_recreation
        assert isinstance(draft.build_task().trigger, AtStartupTrigger)

    def test_port_edit_needs_recreation(self):
        draft = ContainerDraft.from_task(web_task())
        draft.port_mappings[0].host_port = "9090"
        assert draft.requires_recreation

    def test_new_draft_never_recreates(self):
        assert not ContainerDraft(image_name="nginx").requires_recreation
