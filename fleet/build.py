"""
Build pipeline - turns the shared source tree into one installed instance.

Steps, run in order against the shared source tree:

    settings   write config.settings with BASEPATH = instance dir
    configure  ./Config -quick
    compile    make
    pem        make pem (self-signed TLS material, scripted answers)
    install    make install
    compose    render conf/unrealircd.conf from the example config
    clean      make clean (so the next instance starts from a clean tree)

The tool chain keeps state in the source tree between steps, so instances
sharing a source tree must be built one at a time. Any non-zero exit stops
the pipeline with BuildStepError carrying the command's full output; whatever
the tool chain left behind stays on disk.
"""

import logging
import stat
import subprocess
from pathlib import Path
from typing import List, Optional

from core.atomic_ops import write_text_atomic
from fleet.composer import compose
from fleet.errors import BuildStepError
from fleet.naming import CONFIG_RELPATH, EXAMPLE_CONF_RELPATH
from fleet.progress import EventKind, Reporter, null_reporter
from fleet.settings import BuildSettings
from fleet.types import ServerIdentity, StepResult

logger = logging.getLogger("fleet.build")

SETTINGS_FILE = "config.settings"
EXECUTABLES = ("Config", "configure", "src/buildmod")


def render_settings(build_dir: Path, settings: BuildSettings) -> str:
    """config.settings content in the format ./Config reads back with -quick."""
    base = str(build_dir)
    return f"""#
# These are the settings saved from running './Config'.
# Note that it is not recommended to edit config.settings by hand!
# Chances are you misunderstand what a variable does or what the
# supported values are. You better just re-run the ./Config script
# and answer appropriately there, to get a correct config.settings
# file.
#
BASEPATH="{base}"
BINDIR="{base}/bin"
DATADIR="{base}/data"
CONFDIR="{base}/conf"
MODULESDIR="{base}/modules"
LOGDIR="{base}/logs"
CACHEDIR="{base}/cache"
DOCDIR="{base}/doc"
TMPDIR="{base}/tmp"
PRIVATELIBDIR="{base}/lib"
MAXCONNECTIONS_REQUEST="{settings.max_connections}"
NICKNAMEHISTORYLENGTH="{settings.nickname_history}"
GEOIP="{settings.geoip}"
DEFPERM="{settings.defperm}"
SSLDIR="{settings.ssldir}"
REMOTEINC="{settings.remoteinc}"
CURLDIR=""
NOOPEROVERRIDE=""
OPEROVERRIDEVERIFY=""
GENCERTIFICATE=""
SANITIZER="{settings.sanitizer}"
EXTRAPARA="{settings.extra_params}"
ADVANCED=""
"""


def pem_answers(identity: ServerIdentity, organization: str = "TestFleet") -> str:
    """Stdin for `make pem`: country, state, org, unit, common name, rest default."""
    return f"\n\n{organization}\nIRCd\n{identity.hostname}\n\n\n\n"


class BuildPipeline:
    """Runs the build tool chain for one instance at a time."""

    def __init__(self, settings: Optional[BuildSettings] = None, network_name: str = "TestFleet"):
        self.settings = settings or BuildSettings()
        self.network_name = network_name

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def run_step(
        self,
        step: str,
        command: List[str],
        cwd: Path,
        index: int,
        report: Reporter = null_reporter,
        stdin: Optional[str] = None,
        check: bool = True,
    ) -> StepResult:
        """Run one external command, relay its combined output, fail on non-zero."""
        logger.debug(f"[server {index}] {step}: {' '.join(command)} (cwd={cwd})")
        try:
            proc = subprocess.run(
                command,
                cwd=cwd,
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.settings.step_timeout_s,
            )
            result = StepResult(step=step, command=command, returncode=proc.returncode, output=proc.stdout or "")
        except subprocess.TimeoutExpired as e:
            output = e.output.decode(errors="replace") if isinstance(e.output, bytes) else (e.output or "")
            result = StepResult(step=step, command=command, returncode=None, output=output)
        except OSError as e:
            result = StepResult(step=step, command=command, returncode=127, output=str(e))

        if result.output:
            report(f"{step} output for server {index}:\n{result.output}", kind=EventKind.OUTPUT, index=index)

        if check and not result.ok:
            raise BuildStepError(step, index, result.returncode, result.output)
        return result

    def write_settings(self, source_dir: Path, build_dir: Path, index: int) -> Path:
        path = Path(source_dir) / SETTINGS_FILE
        try:
            Path(build_dir).mkdir(parents=True, exist_ok=True)
            path.write_text(render_settings(Path(build_dir), self.settings))
        except OSError as e:
            raise BuildStepError("settings", index, None, str(e), reason=f"could not write {path}") from e
        return path

    def make_executable(self, source_dir: Path, index: int):
        for name in EXECUTABLES:
            path = Path(source_dir) / name
            if not path.exists():
                continue
            try:
                path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            except OSError as e:
                raise BuildStepError("settings", index, None, str(e), reason=f"could not chmod {path}") from e

    def materialize_config(self, source_dir: Path, build_dir: Path, identity: ServerIdentity, total_servers: int) -> Path:
        """Render conf/unrealircd.conf from the source tree's example config."""
        example = Path(source_dir) / EXAMPLE_CONF_RELPATH
        if not example.exists():
            # Older releases install the examples next to the config
            example = Path(build_dir) / "conf" / "examples" / "example.conf"
        try:
            template = example.read_text()
        except OSError as e:
            raise BuildStepError(
                "compose", identity.index, None, str(e), reason=f"could not read example config {example}"
            ) from e

        config_path = Path(build_dir) / CONFIG_RELPATH
        content = compose(template, identity, total_servers, network_name=self.network_name)
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            write_text_atomic(content, config_path, mode=0o600)
        except OSError as e:
            raise BuildStepError(
                "compose", identity.index, None, str(e), reason=f"could not write {config_path}"
            ) from e
        return config_path

    def clean(self, source_dir: Path, index: int, report: Reporter = null_reporter) -> StepResult:
        """make clean; a failure only warns unless strict_clean is set."""
        result = self.run_step("clean", ["make", "clean"], source_dir, index, report, check=False)
        if not result.ok:
            if self.settings.strict_clean:
                raise BuildStepError("clean", index, result.returncode, result.output)
            logger.warning(f"make clean failed for server {index} (exit {result.returncode}); continuing")
            report(f"Warning: make clean failed for server {index}", index=index)
        return result

    # -------------------------------------------------------------------------
    # Whole instance
    # -------------------------------------------------------------------------

    def provision_instance(
        self,
        source_dir: Path,
        build_dir: Path,
        identity: ServerIdentity,
        total_servers: int,
        report: Reporter = null_reporter,
    ) -> List[StepResult]:
        """Build, install and configure one instance. Returns per-step results."""
        source_dir = Path(source_dir)
        build_dir = Path(build_dir)
        index = identity.index
        results: List[StepResult] = []

        report(f"Saving configuration for server {index} of {total_servers}...", index=index)
        settings_path = self.write_settings(source_dir, build_dir, index)
        results.append(StepResult(step="settings", command=[], returncode=0, output=str(settings_path)))
        self.make_executable(source_dir, index)

        report(f"Configuring server {index} of {total_servers}...", index=index)
        results.append(self.run_step("configure", ["./Config", "-quick"], source_dir, index, report))

        report(f"Building server {index} of {total_servers}...", index=index)
        results.append(self.run_step("compile", ["make"], source_dir, index, report))

        report(f"Generating TLS certificates for server {index}...", index=index)
        results.append(self.run_step("pem", ["make", "pem"], source_dir, index, report, stdin=pem_answers(identity)))

        report(f"Installing server {index} of {total_servers}...", index=index)
        results.append(self.run_step("install", ["make", "install"], source_dir, index, report))

        report(f"Writing unrealircd.conf for server {index}...", index=index)
        config_path = self.materialize_config(source_dir, build_dir, identity, total_servers)
        results.append(StepResult(step="compose", command=[], returncode=0, output=str(config_path)))

        if self.settings.clean_between_instances:
            results.append(self.clean(source_dir, index, report))

        logger.info(f"Server {index} provisioned in {build_dir}")
        return results


def binary_path(build_dir: Path) -> Path:
    """Launcher script installed by make install."""
    return Path(build_dir) / "unrealircd"


def is_provisioned(build_dir: Path) -> bool:
    return binary_path(build_dir).exists() and (Path(build_dir) / CONFIG_RELPATH).exists()

