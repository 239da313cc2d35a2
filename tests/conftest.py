"""
Shared pytest fixtures for CI-safe testing.

All fixtures use temporary directories - no hardcoded paths. The build tool
chain is faked with small shell scripts: a `Config` script in the source
tree and a `make` on PATH that honours config.settings.
"""

import sys
from pathlib import Path

# Add project root to sys.path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import os
import stat
import tarfile
import textwrap
from typing import Generator

import pytest

from fleet.settings import BuildSettings, FleetSettings, SourceSettings, SupervisorSettings
from fleet.supervisor import ProcessSupervisor


# =============================================================================
# TEXT FIXTURES
# =============================================================================

EXAMPLE_CONF = textwrap.dedent("""\
    /* Configuration file for UnrealIRCd 6 (trimmed for tests) */
    include "modules.default.conf";
    include "operclass.default.conf";

    me {
    \tname "irc.example.org";
    \tinfo "ExampleNET Server";
    \tsid "001";
    }

    admin {
    \t"Bob Smith";
    \t"email@example.org";
    }

    class servers { pingfreq 60; connfreq 15; maxclients 10; sendq 20M; }

    oper bobsmith {
    \tclass opers;
    \tmask *;
    \tpassword "$argon2id..etc..";
    \toperclass netadmin;
    }

    listen {
    \tip *;
    \tport 6667;
    }

    listen {
    \tip *;
    \tport 6697;
    \toptions { tls; }
    }

    listen {
    \tip *;
    \tport 6900;
    \toptions { tls; serversonly; }
    }

    set {
    \tnetwork-name "ExampleNET";
    \tdefault-server "irc.example.org";
    \tservices-server "services.example.org";
    \tkline-address "set.this.to.email.address";
    \tcloak-keys {
    \t\t"Oozahho1raezoh0iMee4ohch3cohs3ooDiu8Ohy0eeFee4";
    \t\t"and another one";
    \t\t"and another one";
    \t}
    }
    """)

CONFIG_SCRIPT = """\
#!/bin/sh
# Fake ./Config: only checks that config.settings is there
[ "$1" = "-quick" ] || { echo "Config: expected -quick"; exit 2; }
[ -f config.settings ] || { echo "Config: config.settings missing"; exit 1; }
echo "Config: using saved settings"
touch config.status
"""

MAKE_SCRIPT = """\
#!/bin/sh
# Fake make driven by marker files in the source tree
. ./config.settings
echo "$*" >> make.log
case "$1" in
    "")
        [ -f config.status ] || { echo "make: not configured"; exit 2; }
        if [ -f FAIL_COMPILE ]; then echo "src/ircd.c:42: error: expected ';'"; exit 2; fi
        echo "compiling ircd"
        touch ircd.built
        ;;
    pem)
        read country; read state; read org; read unit; read cn
        echo "$org/$unit/$cn" > server.cert.pem
        echo "Generating certificate for $cn"
        ;;
    install)
        [ -f ircd.built ] || { echo "make: nothing built"; exit 2; }
        mkdir -p "$BASEPATH/bin" "$BASEPATH/conf/tls" "$BASEPATH/logs"
        cp unrealircd.in "$BASEPATH/unrealircd"
        chmod 755 "$BASEPATH/unrealircd"
        cp server.cert.pem "$BASEPATH/conf/tls/server.cert.pem"
        echo "installed to $BASEPATH"
        ;;
    clean)
        if [ -f FAIL_CLEAN ]; then echo "make: clean failed"; exit 1; fi
        rm -f ircd.built config.status server.cert.pem
        ;;
    *)
        echo "make: unknown target $1"; exit 2
        ;;
esac
"""

LAUNCHER_SCRIPT = """\
#!/bin/sh
# Fake unrealircd launcher: stays in the foreground until signalled
case "$1" in
    start)
        if grep -q BROKEN conf/unrealircd.conf; then
            echo "[error] config file has errors"
            exit 1
        fi
        echo "UnrealIRCd starting"
        while true; do sleep 1; done
        ;;
    *)
        echo "usage: unrealircd start"
        exit 2
        ;;
esac
"""


def _write_script(path: Path, content: str, executable: bool = True):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    mode = 0o755 if executable else 0o644
    path.chmod(mode)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def example_conf() -> str:
    return EXAMPLE_CONF


@pytest.fixture
def fake_make(tmp_path: Path, monkeypatch) -> Path:
    """Put the fake `make` first on PATH."""
    bin_dir = tmp_path / "fakebin"
    _write_script(bin_dir / "make", MAKE_SCRIPT)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


@pytest.fixture
def fake_source_tree(tmp_path: Path) -> Path:
    """
    Minimal unpacked source tree.

    Config is deliberately not executable; the pipeline must chmod it.
    """
    tree = tmp_path / "upstream" / "unrealircd-6.1.0"
    _write_script(tree / "Config", CONFIG_SCRIPT, executable=False)
    _write_script(tree / "configure", "#!/bin/sh\nexit 0\n", executable=False)
    _write_script(tree / "src" / "buildmod", "#!/bin/sh\nexit 0\n", executable=False)
    _write_script(tree / "unrealircd.in", LAUNCHER_SCRIPT, executable=False)
    example = tree / "doc" / "conf" / "examples" / "example.conf"
    example.parent.mkdir(parents=True)
    example.write_text(EXAMPLE_CONF)
    return tree


@pytest.fixture
def source_archive(tmp_path: Path, fake_source_tree: Path) -> Path:
    """The fake source tree packed like an upstream release tarball."""
    archive = tmp_path / "unrealircd-6.1.0.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(fake_source_tree, arcname="unrealircd-6.1.0")
    return archive


@pytest.fixture
def parent_dir(tmp_path: Path, monkeypatch) -> Path:
    """Fleet parent directory, also exported as FLEET_PARENT_DIR."""
    parent = tmp_path / "fleets"
    parent.mkdir()
    monkeypatch.setenv("FLEET_PARENT_DIR", str(parent))
    return parent


@pytest.fixture
def offline_settings(source_archive: Path, parent_dir: Path) -> FleetSettings:
    """Settings that provision from the local archive with fast timeouts."""
    return FleetSettings(
        parent_dir=str(parent_dir),
        source=SourceSettings(archive=str(source_archive)),
        build=BuildSettings(step_timeout_s=30),
        supervisor=SupervisorSettings(grace_period_s=0.3, stop_timeout_s=2.0),
    )


@pytest.fixture
def make_fleet_layout(parent_dir: Path):
    """
    Factory creating fleet directories by name, optionally with an
    installed launcher and config in each instance.
    """
    def _make(suffix: str, count: int, installed: bool = False, source: bool = True):
        if source:
            (parent_dir / f"unrealircd-fleet-{suffix}").mkdir()
        dirs = []
        for index in range(1, count + 1):
            instance = parent_dir / f"unrealircd-fleet-{suffix}-{index}"
            instance.mkdir()
            if installed:
                _write_script(instance / "unrealircd", LAUNCHER_SCRIPT)
                conf = instance / "conf" / "unrealircd.conf"
                conf.parent.mkdir(parents=True)
                conf.write_text(f"// fleet-{suffix}-{index}\n")
            dirs.append(instance)
        return dirs

    return _make


@pytest.fixture
def supervisor() -> Generator[ProcessSupervisor, None, None]:
    """Supervisor with short timeouts; stops whatever it started."""
    sup = ProcessSupervisor(SupervisorSettings(grace_period_s=0.3, stop_timeout_s=2.0))
    yield sup
    for name in list(sup.handles):
        sup.stop(name)


@pytest.fixture
def is_executable():
    def _check(path: Path) -> bool:
        return bool(Path(path).stat().st_mode & stat.S_IXUSR)
    return _check
