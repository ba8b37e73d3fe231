"""Tests for package-manager families, classification and adapters."""

from unittest.mock import patch

import pytest
from conftest import FakeRunner, output

from package_assistant.distro import (
    APK,
    APT,
    CUSTOM,
    DNF,
    FAMILIES,
    PACMAN,
    ZYPPER,
    CustomCommandAdapter,
    SystemAdapter,
    classify,
    expand_template,
)
from package_assistant.operations import (
    Capability,
    Install,
    OperationStatus,
    Query,
    Refresh,
    Remove,
)


@pytest.fixture(autouse=True)
def as_root():
    """Run adapters as root so no privilege prefix is added by default."""
    with patch("package_assistant.distro.os.geteuid", return_value=0):
        yield


class TestFamilies:
    """Test the family registry."""

    def test_all_system_families_registered(self) -> None:
        assert set(FAMILIES) == {"apt", "dnf", "zypper", "pacman", "apk"}

    def test_executable_is_first_refresh_word(self) -> None:
        assert APT.executable == "apt-get"
        assert ZYPPER.executable == "zypper"


class TestExpandTemplate:
    """Test placeholder expansion."""

    def test_packages_expand_to_all_names(self) -> None:
        argv = expand_template(APT.install, packages=["curl", "git"])
        assert argv == ["apt-get", "install", "-y", "--no-install-recommends", "curl", "git"]

    def test_package_expands_to_one_name(self) -> None:
        assert expand_template(PACMAN.query, packages=["tree"]) == ["pacman", "-Q", "tree"]

    def test_repos_expand_with_option(self) -> None:
        argv = expand_template(
            ZYPPER.refresh,
            repos=["http://a", "http://b"],
            repository_option="--plus-repo",
        )
        assert argv == [
            "zypper",
            "--non-interactive",
            "--plus-repo",
            "http://a",
            "--plus-repo",
            "http://b",
            "refresh",
        ]

    def test_repos_dropped_without_option(self) -> None:
        argv = expand_template(APK.refresh, repos=["http://a"], repository_option=None)
        assert argv == ["apk", "update"]


class TestSystemAdapterCommands:
    """Test the argv each family produces for each operation."""

    @pytest.mark.parametrize(
        ("family", "expected"),
        [
            (APT, ("apt-get", "update")),
            (DNF, ("dnf", "makecache", "--refresh", "-y")),
            (ZYPPER, ("zypper", "--non-interactive", "refresh")),
            (PACMAN, ("pacman", "-Sy", "--noconfirm")),
            (APK, ("apk", "update")),
        ],
    )
    def test_refresh(self, family, expected) -> None:
        runner = FakeRunner()
        SystemAdapter(family, runner=runner).refresh_repositories()
        assert runner.calls == [expected]

    @pytest.mark.parametrize(
        ("family", "expected"),
        [
            (APT, ("apt-get", "install", "-y", "--no-install-recommends", "curl", "git")),
            (DNF, ("dnf", "install", "-y", "curl", "git")),
            (ZYPPER, ("zypper", "--non-interactive", "install", "curl", "git")),
            (PACMAN, ("pacman", "-S", "--noconfirm", "--needed", "curl", "git")),
            (APK, ("apk", "add", "curl", "git")),
        ],
    )
    def test_install_single_transaction(self, family, expected) -> None:
        """All packages go into one package-manager invocation."""
        runner = FakeRunner()
        SystemAdapter(family, runner=runner).install_packages(["curl", "git"])
        assert runner.calls == [expected]

    @pytest.mark.parametrize(
        ("family", "expected"),
        [
            (APT, ("dpkg-query", "-W", "-f=${Status}", "tree")),
            (DNF, ("rpm", "-q", "tree")),
            (ZYPPER, ("rpm", "-q", "tree")),
            (PACMAN, ("pacman", "-Q", "tree")),
            (APK, ("apk", "info", "-e", "tree")),
        ],
    )
    def test_query(self, family, expected) -> None:
        runner = FakeRunner()
        SystemAdapter(family, runner=runner).query_package("tree")
        assert runner.calls == [expected]

    @pytest.mark.parametrize(
        ("family", "expected"),
        [
            (APT, ("apt-get", "remove", "-y", "tree")),
            (DNF, ("dnf", "remove", "-y", "tree")),
            (ZYPPER, ("zypper", "--non-interactive", "remove", "tree")),
            (PACMAN, ("pacman", "-R", "--noconfirm", "tree")),
            (APK, ("apk", "del", "tree")),
        ],
    )
    def test_remove(self, family, expected) -> None:
        runner = FakeRunner()
        SystemAdapter(family, runner=runner).remove_packages(["tree"])
        assert runner.calls == [expected]

    def test_empty_install_and_remove_run_nothing(self) -> None:
        runner = FakeRunner()
        adapter = SystemAdapter(APT, runner=runner)

        assert adapter.install_packages([]).ok
        assert adapter.remove_packages([]).ok
        assert runner.calls == []

    def test_timeout_passed_to_runner(self) -> None:
        runner = FakeRunner()
        SystemAdapter(APT, timeout=7.5, runner=runner).refresh_repositories()
        assert runner.timeouts == [7.5]

    def test_execute_dispatches(self) -> None:
        runner = FakeRunner()
        adapter = SystemAdapter(PACMAN, runner=runner)

        adapter.execute(Refresh())
        adapter.execute(Install(("a",)))
        adapter.execute(Query("a"))
        adapter.execute(Remove(("a",)))

        assert [call[1] for call in runner.calls] == ["-Sy", "-S", "-Q", "-R"]


class TestPrivilegeCommand:
    """Test the optional elevation prefix."""

    def test_prefix_added_when_not_root(self) -> None:
        runner = FakeRunner()
        adapter = SystemAdapter(APK, privilege_command="sudo -n", runner=runner)

        with patch("package_assistant.distro.os.geteuid", return_value=1000):
            adapter.install_packages(["curl"])

        assert runner.calls == [("sudo", "-n", "apk", "add", "curl")]

    def test_no_prefix_as_root(self) -> None:
        runner = FakeRunner()
        SystemAdapter(APK, privilege_command="sudo", runner=runner).refresh_repositories()
        assert runner.calls == [("apk", "update")]


class TestRepositorySources:
    """Test per-command repositories and mirror probing."""

    def test_sources_passed_on_install(self) -> None:
        runner = FakeRunner()
        adapter = SystemAdapter(
            APK, repository_sources=["http://m1", "http://m2"], runner=runner
        )
        adapter.install_packages(["curl"])

        assert runner.calls == [
            ("apk", "add", "--repository", "http://m1", "--repository", "http://m2", "curl")
        ]

    def test_refresh_tries_mirrors_in_order(self) -> None:
        """An unreachable mirror is skipped in favour of the next one."""
        runner = FakeRunner(
            responses=[
                output(exit_code=1, stderr="ERROR: http://m1: network error"),
                output(exit_code=0),
            ]
        )
        adapter = SystemAdapter(
            APK, repository_sources=["http://m1", "http://m2"], runner=runner
        )

        result = adapter.refresh_repositories()

        assert result.ok
        assert runner.calls == [
            ("apk", "update", "--repository", "http://m1"),
            ("apk", "update", "--repository", "http://m2"),
        ]

    def test_refresh_all_mirrors_unreachable(self) -> None:
        runner = FakeRunner(responses=[output(exit_code=106)])
        adapter = SystemAdapter(
            ZYPPER, repository_sources=["http://m1", "http://m2"], runner=runner
        )

        result = adapter.refresh_repositories()

        assert result.status is OperationStatus.NETWORK_FAILURE
        assert len(runner.calls) == 2

    def test_refresh_stops_on_non_network_failure(self) -> None:
        runner = FakeRunner(responses=[output(exit_code=5)])
        adapter = SystemAdapter(
            ZYPPER, repository_sources=["http://m1", "http://m2"], runner=runner
        )

        assert adapter.refresh_repositories().status is OperationStatus.PERMISSION_DENIED
        assert len(runner.calls) == 1

    def test_sources_ignored_for_apt(self, caplog: pytest.LogCaptureFixture) -> None:
        """Families without a repository option warn and ignore sources."""
        runner = FakeRunner()
        adapter = SystemAdapter(APT, repository_sources=["http://m1"], runner=runner)
        adapter.refresh_repositories()

        assert runner.calls == [("apt-get", "update")]
        assert "repository_sources are ignored" in caplog.text


class TestClassify:
    """Test normalization of command outcomes."""

    def test_success(self) -> None:
        result = classify(APT, Capability.INSTALL, output(exit_code=0, stdout="done"))

        assert result.status is OperationStatus.SUCCESS
        assert result.raw_exit_code == 0
        assert result.stdout_tail == "done"

    def test_timeout_is_network_failure(self) -> None:
        result = classify(APT, Capability.REFRESH, output(exit_code=None, timed_out=True))

        assert result.status is OperationStatus.NETWORK_FAILURE
        assert result.timed_out

    def test_not_executable_is_unsupported(self) -> None:
        result = classify(
            DNF, Capability.INSTALL, output(exit_code=None, not_executable=True)
        )
        assert result.status is OperationStatus.UNSUPPORTED

    def test_apt_unknown_package(self) -> None:
        result = classify(
            APT,
            Capability.INSTALL,
            output(exit_code=100, stderr="E: Unable to locate package nosuch"),
        )
        assert result.status is OperationStatus.NOT_FOUND

    def test_apt_query_requires_installed_marker(self) -> None:
        """dpkg-query exits 0 for removed-but-configured packages."""
        removed = output(exit_code=0, stdout="deinstall ok config-files")
        installed = output(exit_code=0, stdout="install ok installed")

        assert classify(APT, Capability.QUERY, removed).status is OperationStatus.NOT_FOUND
        assert classify(APT, Capability.QUERY, installed).status is OperationStatus.SUCCESS

    def test_query_exit_one_is_not_found(self) -> None:
        result = classify(
            DNF, Capability.QUERY, output(exit_code=1, stdout="package tree is not installed")
        )
        assert result.status is OperationStatus.NOT_FOUND

    def test_apt_lock_is_permission_denied(self) -> None:
        result = classify(
            APT,
            Capability.INSTALL,
            output(
                exit_code=100,
                stderr="E: Could not open lock file /var/lib/dpkg/lock-frontend",
            ),
        )
        assert result.status is OperationStatus.PERMISSION_DENIED

    def test_apt_network_failure(self) -> None:
        result = classify(
            APT,
            Capability.REFRESH,
            output(exit_code=100, stderr="Temporary failure resolving 'deb.debian.org'"),
        )
        assert result.status is OperationStatus.NETWORK_FAILURE

    def test_apt_degraded_refresh_is_network_failure(self) -> None:
        """apt-get update exits 0 when every mirror is unreachable."""
        result = classify(
            APT,
            Capability.REFRESH,
            output(
                exit_code=0,
                stdout="Reading package lists... Done",
                stderr=(
                    "W: Failed to fetch http://deb.debian.org/debian/dists/stable/"
                    "InRelease  Temporary failure resolving 'deb.debian.org'\n"
                    "W: Some index files failed to download. They have been "
                    "ignored, or old ones used instead."
                ),
            ),
        )

        assert result.status is OperationStatus.NETWORK_FAILURE
        assert result.raw_exit_code == 0
        assert not result.timed_out

    def test_apt_refresh_with_unrelated_warning_succeeds(self) -> None:
        result = classify(
            APT,
            Capability.REFRESH,
            output(
                exit_code=0,
                stderr="W: Target Packages is configured multiple times",
            ),
        )
        assert result.status is OperationStatus.SUCCESS

    def test_degraded_refresh_output_ignored_for_install(self) -> None:
        result = classify(
            APT,
            Capability.INSTALL,
            output(exit_code=0, stderr="W: Some index files failed to download."),
        )
        assert result.status is OperationStatus.SUCCESS

    @pytest.mark.parametrize(
        ("family", "stderr"),
        [
            (
                APT,
                "E: Failed to fetch http://deb.debian.org/debian/pool/main/c/curl/"
                "curl_7.88.1-10_amd64.deb  404  Not Found [IP: 151.101.2.132 80]",
            ),
            (
                DNF,
                "Curl error (22): HTTP response code said error for "
                "https://mirror.example.org/Packages/c/curl.rpm "
                "[The requested URL returned error: 404 Not Found]",
            ),
        ],
        ids=["apt", "dnf"],
    )
    def test_mirror_404_is_network_failure(self, family, stderr: str) -> None:
        """A package file missing on a mirror is not a missing package."""
        result = classify(family, Capability.INSTALL, output(exit_code=100, stderr=stderr))
        assert result.status is OperationStatus.NETWORK_FAILURE

    def test_refresh_never_not_found(self) -> None:
        """A refresh mentioning 'not found' is not a missing package."""
        result = classify(
            APT,
            Capability.REFRESH,
            output(exit_code=100, stderr="E: Release file not found"),
        )
        assert result.status is OperationStatus.FAILURE

    @pytest.mark.parametrize(
        ("code", "status"),
        [
            (100, OperationStatus.SUCCESS),
            (104, OperationStatus.NOT_FOUND),
            (5, OperationStatus.PERMISSION_DENIED),
            (106, OperationStatus.NETWORK_FAILURE),
        ],
    )
    def test_zypper_exit_codes(self, code: int, status: OperationStatus) -> None:
        result = classify(ZYPPER, Capability.INSTALL, output(exit_code=code))
        assert result.status is status

    def test_pacman_target_not_found(self) -> None:
        result = classify(
            PACMAN,
            Capability.INSTALL,
            output(exit_code=1, stderr="error: target not found: nosuch"),
        )
        assert result.status is OperationStatus.NOT_FOUND

    def test_dnf_superuser(self) -> None:
        result = classify(
            DNF,
            Capability.INSTALL,
            output(
                exit_code=1,
                stderr="Error: This command has to be run with superuser privileges",
            ),
        )
        assert result.status is OperationStatus.PERMISSION_DENIED

    def test_shell_command_missing_is_unsupported(self) -> None:
        result = classify(
            CUSTOM, Capability.REFRESH, output(exit_code=127, stderr="sh: emerge: not found")
        )
        assert result.status is OperationStatus.UNSUPPORTED

    def test_unrecognized_failure(self) -> None:
        result = classify(APK, Capability.INSTALL, output(exit_code=2, stderr="boom"))

        assert result.status is OperationStatus.FAILURE
        assert result.raw_exit_code == 2
        assert result.stderr_tail == "boom"


class TestRealToolOutput:
    """Test classification of exit codes and messages the real tools print."""

    @pytest.mark.parametrize(
        ("family", "capability", "code", "stdout", "stderr"),
        [
            (
                DNF,
                Capability.INSTALL,
                1,
                "Last metadata expiration check: 0:01:02 ago.\n",
                "No match for argument: nosuch\nError: Unable to find a match: nosuch",
            ),
            (
                DNF,
                Capability.INSTALL,
                1,
                "",
                "Failed to resolve the transaction:\nNo match for argument: nosuch",
            ),
            (
                DNF,
                Capability.REMOVE,
                1,
                "",
                "No match for argument: nosuch\nError: No packages marked for removal.",
            ),
            (DNF, Capability.QUERY, 1, "package nosuch is not installed\n", ""),
            (ZYPPER, Capability.QUERY, 1, "package nosuch is not installed\n", ""),
            (
                ZYPPER,
                Capability.INSTALL,
                104,
                "Loading repository data...\nReading installed packages...\n",
                "No provider of 'nosuch' found.",
            ),
            (
                APK,
                Capability.INSTALL,
                1,
                "",
                "ERROR: unable to select packages:\n  nosuch (no such package):\n"
                "    required by: world[nosuch]",
            ),
            (APK, Capability.QUERY, 1, "", ""),
            (PACMAN, Capability.QUERY, 1, "", "error: package 'nosuch' was not found"),
            (PACMAN, Capability.INSTALL, 1, "", "error: target not found: nosuch"),
            (
                APT,
                Capability.INSTALL,
                100,
                "Reading package lists...\nBuilding dependency tree...\n",
                "E: Unable to locate package nosuch",
            ),
            (
                APT,
                Capability.QUERY,
                1,
                "",
                "dpkg-query: no packages found matching nosuch",
            ),
        ],
        ids=[
            "dnf-install",
            "dnf5-install",
            "dnf-remove",
            "dnf-rpm-query",
            "zypper-rpm-query",
            "zypper-install",
            "apk-add",
            "apk-info",
            "pacman-query",
            "pacman-sync",
            "apt-install",
            "apt-query",
        ],
    )
    def test_missing_package_is_not_found(
        self,
        family,
        capability: Capability,
        code: int,
        stdout: str,
        stderr: str,
    ) -> None:
        result = classify(
            family, capability, output(exit_code=code, stdout=stdout, stderr=stderr)
        )

        assert result.status is OperationStatus.NOT_FOUND
        assert result.raw_exit_code == code

    @pytest.mark.parametrize(
        ("family", "code", "stderr"),
        [
            (
                DNF,
                1,
                "Errors during downloading metadata for repository 'fedora':\n"
                "Error: Failed to download metadata for repo 'fedora': "
                "Cannot download repomd.xml",
            ),
            (ZYPPER, 106, "Repository 'oss' is invalid.\nValid metadata not found"),
            (
                APK,
                1,
                "WARNING: fetching https://dl-cdn.alpinelinux.org/alpine/v3.20/main: "
                "network error (check Internet connection and firewall)",
            ),
            (
                PACMAN,
                1,
                "error: failed retrieving file 'core.db' from mirror.example.org : "
                "Could not resolve host: mirror.example.org\n"
                "error: failed to synchronize all databases",
            ),
        ],
        ids=["dnf", "zypper", "apk", "pacman"],
    )
    def test_unreachable_mirror_on_refresh(self, family, code: int, stderr: str) -> None:
        result = classify(family, Capability.REFRESH, output(exit_code=code, stderr=stderr))
        assert result.status is OperationStatus.NETWORK_FAILURE


class TestCustomCommandAdapter:
    """Test the override-command adapter."""

    def test_refresh_runs_through_shell(self) -> None:
        runner = FakeRunner()
        adapter = CustomCommandAdapter("emerge --sync", "emerge", runner=runner)

        assert adapter.refresh_repositories().ok
        assert runner.calls == [("sh", "-c", "emerge --sync")]

    def test_install_appends_quoted_names(self) -> None:
        runner = FakeRunner()
        adapter = CustomCommandAdapter("true", "emerge -n", runner=runner)

        adapter.install_packages(["curl", "a b"])

        assert runner.calls == [("sh", "-c", "emerge -n curl 'a b'")]

    def test_query_and_remove_unsupported(self) -> None:
        runner = FakeRunner()
        adapter = CustomCommandAdapter("true", "true", runner=runner)

        assert adapter.query_package("curl").status is OperationStatus.UNSUPPORTED
        assert adapter.remove_packages(["curl"]).status is OperationStatus.UNSUPPORTED
        assert adapter.execute(Query("curl")).status is OperationStatus.UNSUPPORTED
        assert runner.calls == []

    def test_capabilities(self) -> None:
        adapter = CustomCommandAdapter("true", "true")
        assert adapter.capabilities == {Capability.REFRESH, Capability.INSTALL}
        assert adapter.name == "custom"

    def test_privilege_prefix(self) -> None:
        runner = FakeRunner()
        adapter = CustomCommandAdapter(
            "emerge --sync", "emerge", privilege_command="doas", runner=runner
        )

        with patch("package_assistant.distro.os.geteuid", return_value=1000):
            adapter.refresh_repositories()

        assert runner.calls == [("doas", "sh", "-c", "emerge --sync")]

    def test_failure_classified(self) -> None:
        runner = FakeRunner(
            responses=[output(exit_code=1, stderr="Could not resolve host")]
        )
        adapter = CustomCommandAdapter("sync", "inst", runner=runner)

        assert adapter.refresh_repositories().status is OperationStatus.NETWORK_FAILURE
