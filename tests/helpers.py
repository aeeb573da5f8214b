"""Test doubles for pyinfra hosts and deployment parameters."""

import shlex
from unittest.mock import MagicMock

from hostdeploy.config import DeploymentRequest

NGINX_DEFAULT_AVAILABLE = "/etc/nginx/sites-available/default"
NGINX_DEFAULT_ENABLED = "/etc/nginx/sites-enabled/default"


def make_output(stdout: str = "", stderr: str = ""):
    output = MagicMock()
    output.stdout = stdout
    output.stderr = stderr
    return output


def make_request(key_path, **overrides) -> DeploymentRequest:
    fields = dict(
        repo_url="https://example.com/org/app.git",
        auth_token="s3cr3t-token",
        branch="main",
        ssh_user="ubuntu",
        ssh_host="203.0.113.5",
        ssh_key_path=str(key_path),
        app_port=5000,
    )
    fields.update(overrides)
    return DeploymentRequest(**fields)


class FakeHost:
    """In-memory stand-in for a pyinfra Host on a Debian/Ubuntu box.

    Understands the handful of shell commands hostdeploy issues and keeps
    enough state (packages, services, containers, files) to check end
    states. ``run_shell_command`` and ``put_file`` are MagicMocks so calls
    can be inspected.
    """

    def __init__(self, *, docker=False, nginx=False, running=None,
                 container_status="running", nginx_test_ok=True,
                 curl_code="200", home="/home/ubuntu", fail=()):
        running = (docker and nginx) if running is None else running
        self.installed = {"docker": docker, "nginx": nginx}
        self.running = {"docker": docker and running, "nginx": nginx and running}
        self.containers: dict[str, str] = {}
        self.container_ports: dict[str, str] = {}
        self.images: set[str] = set()
        self.files: dict[str, str] = {}
        self.dirs: set[str] = set()
        self.reloads = 0
        self.container_status = container_status
        self.container_logs = "Traceback: boom"
        self.nginx_test_ok = nginx_test_ok
        self.curl_code = curl_code
        self.home = home
        self.fail = tuple(fail)
        if nginx:
            self._install_nginx_defaults()

        self.run_shell_command = MagicMock(side_effect=self._run)
        self.put_file = MagicMock(side_effect=self._put)

    # Inspection helpers

    @property
    def commands(self) -> list[str]:
        return [c.kwargs.get("command", "") for c in self.run_shell_command.call_args_list]

    def sudo_commands(self) -> list[str]:
        return [c.kwargs.get("command", "") for c in self.run_shell_command.call_args_list
                if c.kwargs.get("_sudo")]

    def snapshot(self) -> dict:
        return {
            "installed": dict(self.installed),
            "running": dict(self.running),
            "containers": dict(self.containers),
            "ports": dict(self.container_ports),
            "images": set(self.images),
            "files": dict(self.files),
            "dirs": set(self.dirs),
        }

    # pyinfra API

    def _put(self, filename_or_io, remote_filename, **kw):
        self.files[remote_filename] = filename_or_io.getvalue().decode("utf-8")
        return True

    def _run(self, command="", **kw):
        ok, stdout = True, ""
        for part in command.split(" && "):
            ok, stdout = self._run_one(part)
            if not ok:
                break
        stderr = "" if ok else f"{command}: failed"
        return ok, make_output(stdout, stderr)

    def _install_nginx_defaults(self):
        self.files[NGINX_DEFAULT_AVAILABLE] = "server { listen 80 default_server; }"
        self.files[NGINX_DEFAULT_ENABLED] = f"-> {NGINX_DEFAULT_AVAILABLE}"

    def _run_one(self, command: str) -> tuple[bool, str]:
        if any(f in command for f in self.fail):
            return False, ""
        if "get.docker.com" in command:
            self.installed["docker"] = True
            return True, ""
        if command.startswith("DEBIAN_FRONTEND=noninteractive apt-get install") and "nginx" in command:
            if not self.installed["nginx"]:
                self.installed["nginx"] = True
                self._install_nginx_defaults()
            return True, ""

        args = shlex.split(command)
        head = args[0]

        if head in ("apt-get", "usermod", "true"):
            return True, ""
        if head == "printf":
            return True, self.home
        if head == "command":
            return self.installed.get(args[-1], False), ""
        if head == "systemctl":
            service = args[-1]
            if args[1] == "is-active":
                return self.running.get(service, False), ""
            if args[1] == "enable":
                if not self.installed.get(service):
                    return False, ""
                self.running[service] = True
                return True, ""
            if args[1] == "reload":
                if not self.running.get(service):
                    return False, ""
                self.reloads += 1
                return True, ""
        if head == "docker":
            return self._docker(args[1:])
        if head == "nginx":
            return self.nginx_test_ok, ""
        if head == "curl":
            return True, self.curl_code
        if head == "mkdir":
            self.dirs.add(args[-1])
            return True, ""
        if head == "rm":
            for path in args[2:]:
                self.files.pop(path, None)
                if args[1] == "-rf":
                    self.dirs.discard(path)
            return True, ""
        if head == "test":
            return args[-1] in self.files, ""
        if head == "cp":
            self.files[args[-1]] = self.files[args[-2]]
            return True, ""
        if head == "mv":
            self.files[args[-1]] = self.files.pop(args[-2])
            return True, ""
        if head == "ln":
            self.files[args[-1]] = f"-> {args[-2]}"
            return True, ""
        raise AssertionError(f"FakeHost does not understand: {command}")

    def _docker(self, args: list[str]) -> tuple[bool, str]:
        if not self.running["docker"]:
            return False, ""
        sub = args[0]
        name = args[-1]
        if sub == "ps":
            wanted = args[-1].split("=", 1)[1].strip("^$/")
            return True, "abc123\n" if wanted in self.containers else ""
        if sub == "rm":
            return (self.containers.pop(name, None) is not None), ""
        if sub == "build":
            self.images.add(args[args.index("-t") + 1])
            return True, ""
        if sub == "run":
            container = args[args.index("--name") + 1]
            if container in self.containers:
                return False, ""
            self.containers[container] = self.container_status
            self.container_ports[container] = args[args.index("-p") + 1]
            return True, "c0ffee"
        if sub == "inspect":
            if name not in self.containers:
                return False, ""
            return True, self.containers[name] + "\n"
        if sub == "logs":
            return True, self.container_logs
        if sub == "image":
            return name in self.images, ""
        if sub == "rmi":
            return (name in self.images and not self.images.discard(name)), ""
        raise AssertionError(f"FakeHost does not understand docker {args}")
